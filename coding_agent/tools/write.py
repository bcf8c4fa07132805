"""
Write Tool: create or overwrite a file, creating parent directories.
"""

from __future__ import annotations
from pathlib import Path

from .base import BaseTool, ToolContext, resolve_path


class WriteFileTool(BaseTool):
    name = "write_file"
    description = (
        "Write content to a file, creating parent directories if needed. "
        "Overwrites the file if it already exists."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path of the file to write"},
            "content": {"type": "string", "description": "The full content to write"},
        },
        "required": ["path", "content"],
    }

    # Limit directory creation depth
    MAX_DIR_DEPTH = 15

    def get_preview(self, tool_input: dict):
        content = tool_input.get("content") or ""
        return f"Write {tool_input.get('path', '')} ({len(content)} chars)"

    async def execute(self, tool_input: dict, context: ToolContext):
        raw_path = tool_input.get("path") or tool_input.get("file_path")
        content = tool_input.get("content")
        if not raw_path:
            return self._error("path is required")
        if not isinstance(content, str):
            return self._error("content must be a string")

        path = Path(resolve_path(context, raw_path))
        if len(path.parts) > self.MAX_DIR_DEPTH:
            return self._error(f"Path too deep ({len(path.parts)} levels, max {self.MAX_DIR_DEPTH})")
        if path.is_dir():
            return self._error(f"Cannot write to a directory: {raw_path}")

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)

        line_count = content.count("\n") + (1 if content and not content.endswith("\n") else 0)
        return self._success(
            f"Wrote {len(content.encode('utf-8'))} bytes ({line_count} lines) to {raw_path}",
            files_changed=[str(path)],
        )
