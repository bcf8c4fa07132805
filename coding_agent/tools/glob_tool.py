"""
Glob Tool: file pattern matching, newest files first.
"""

from __future__ import annotations
from pathlib import Path

from .base import BaseTool, ToolContext, resolve_path


class GlobTool(BaseTool):
    name = "glob"
    readonly = True
    description = (
        "Fast file pattern matching. Supports patterns like '**/*.py' or 'src/**/*.ts'. "
        "Returns matching file paths sorted by modification time (newest first)."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "The glob pattern to match files against"},
            "path": {"type": "string", "description": "Directory to search in (defaults to cwd)"},
        },
        "required": ["pattern"],
    }

    MAX_RESULTS = 500

    def get_preview(self, tool_input: dict):
        return f"Glob {tool_input.get('pattern', '')}"

    async def execute(self, tool_input: dict, context: ToolContext):
        pattern = tool_input.get("pattern")
        if not pattern:
            return self._error("pattern is required")
        search_dir = Path(resolve_path(context, tool_input.get("path") or "."))
        if not search_dir.is_dir():
            return self._error(f"Not a directory: {search_dir}")

        files = [m for m in search_dir.glob(pattern) if m.is_file()]
        files.sort(key=lambda f: f.stat().st_mtime, reverse=True)
        if not files:
            return f"No files matched pattern '{pattern}' in {search_dir}"

        lines = [str(f) for f in files]
        if len(lines) > self.MAX_RESULTS:
            return "\n".join(lines[:self.MAX_RESULTS]) + f"\n\n[Showing {self.MAX_RESULTS} of {len(lines)} matches]"
        return "\n".join(lines)
