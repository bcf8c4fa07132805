"""
Edit Tool: exact string replacement in a file.
Fails if old_string is missing or not unique (unless replace_all=True).
"""

from __future__ import annotations
from pathlib import Path

from .base import BaseTool, ToolContext, resolve_path


class EditFileTool(BaseTool):
    name = "edit_file"
    description = (
        "Perform an exact string replacement in a file. "
        "The edit FAILS if old_string is not unique in the file; "
        "include more surrounding context or set replace_all."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path of the file to modify"},
            "old_string": {"type": "string", "description": "The exact text to replace"},
            "new_string": {"type": "string", "description": "The replacement text"},
            "replace_all": {"type": "boolean", "description": "Replace every occurrence (default: false)"},
        },
        "required": ["path", "old_string", "new_string"],
    }

    def get_preview(self, tool_input: dict):
        old = (tool_input.get("old_string") or "").splitlines()
        first = old[0][:60] if old else ""
        return f"Edit {tool_input.get('path', '')}: replace \"{first}\""

    async def execute(self, tool_input: dict, context: ToolContext):
        raw_path = tool_input.get("path") or tool_input.get("file_path")
        old_string = tool_input.get("old_string")
        new_string = tool_input.get("new_string")
        replace_all = bool(tool_input.get("replace_all"))

        if not raw_path:
            return self._error("path is required")
        if not isinstance(old_string, str) or not isinstance(new_string, str):
            return self._error("old_string and new_string must be strings")
        if not old_string:
            return self._error("old_string must not be empty")
        if old_string == new_string:
            return self._error("old_string and new_string are identical, nothing to change")

        path = Path(resolve_path(context, raw_path))
        if not path.is_file():
            return self._error(f"File not found: {raw_path}")

        content = path.read_text(encoding="utf-8")
        count = content.count(old_string)
        if count == 0:
            return self._error(f"old_string not found in {raw_path}")
        if count > 1 and not replace_all:
            return self._error(
                f"old_string appears {count} times in {raw_path}. "
                "Provide more context to make it unique, or set replace_all=true."
            )

        if replace_all:
            updated, replacements = content.replace(old_string, new_string), count
        else:
            updated, replacements = content.replace(old_string, new_string, 1), 1
        path.write_text(updated, encoding="utf-8")

        return self._success(
            f"Replaced {replacements} occurrence(s) in {raw_path}",
            files_changed=[str(path)],
        )
