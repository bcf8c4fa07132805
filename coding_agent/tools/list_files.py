"""
List Files Tool: directory listing, optionally recursive.
"""

from __future__ import annotations
import os

from .base import BaseTool, ToolContext, resolve_path

SKIP_DIRS = {".git", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache"}


class ListFilesTool(BaseTool):
    name = "list_files"
    readonly = True
    description = (
        "List files and directories. Directories are shown with a trailing '/'. "
        "Set recursive to walk subdirectories (VCS and cache directories are skipped)."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory to list (defaults to cwd)"},
            "recursive": {"type": "boolean", "description": "Walk subdirectories (default: false)"},
        },
    }

    MAX_ENTRIES = 1000

    def get_preview(self, tool_input: dict):
        return f"List {tool_input.get('path') or '.'}"

    async def execute(self, tool_input: dict, context: ToolContext):
        raw_path = tool_input.get("path") or "."
        root = resolve_path(context, raw_path)
        if not os.path.isdir(root):
            return self._error(f"Not a directory: {raw_path}")

        entries: list[str] = []
        if tool_input.get("recursive"):
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
                rel_dir = os.path.relpath(dirpath, root)
                prefix = "" if rel_dir == os.curdir else rel_dir + os.sep
                entries.extend(prefix + d + "/" for d in dirnames)
                entries.extend(prefix + f for f in sorted(filenames))
                context.cancellation_token.check()
        else:
            for name in sorted(os.listdir(root)):
                full = os.path.join(root, name)
                entries.append(name + "/" if os.path.isdir(full) else name)

        if not entries:
            return f"{raw_path} is empty"
        if len(entries) > self.MAX_ENTRIES:
            shown = "\n".join(entries[:self.MAX_ENTRIES])
            return f"{shown}\n\n[Showing {self.MAX_ENTRIES} of {len(entries)} entries]"
        return "\n".join(entries)
