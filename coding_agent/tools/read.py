"""
Read Tool: read a text file with line numbers, offset/limit support.
"""

from __future__ import annotations
from pathlib import Path

from .base import BaseTool, ToolContext, resolve_path


class ReadFileTool(BaseTool):
    name = "read_file"
    readonly = True
    description = (
        "Read a file from the project. Returns content with line numbers. "
        "Relative paths are resolved against the working directory. "
        "By default reads up to 2000 lines; use offset and limit for large files."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path of the file to read"},
            "offset": {"type": "number", "description": "Line number to start from (1-based)"},
            "limit": {"type": "number", "description": "Maximum number of lines to read"},
        },
        "required": ["path"],
    }

    def __init__(self, max_lines: int = 2000, max_line_length: int = 2000):
        self._max_lines = max_lines
        self._max_line_length = max_line_length

    def get_preview(self, tool_input: dict):
        return f"Read {tool_input.get('path', '')}"

    async def execute(self, tool_input: dict, context: ToolContext):
        raw_path = tool_input.get("path") or tool_input.get("file_path")
        if not raw_path:
            return self._error("path is required")
        path = Path(resolve_path(context, raw_path))

        if not path.exists():
            return self._error(f"File not found: {raw_path}")
        if path.is_dir():
            return self._error(f"Cannot read directory: {raw_path}. Use list_files instead.")
        if self._is_binary(path):
            return f"[Binary file: {path.name}, size: {path.stat().st_size} bytes]"

        with open(path, "r", encoding="utf-8", errors="replace") as f:
            lines = f.readlines()

        offset = int(tool_input.get("offset") or 0)
        limit = int(tool_input.get("limit") or 0)
        total = len(lines)
        start = max(0, offset - 1)
        end = start + (limit if limit > 0 else self._max_lines)

        output_lines = []
        for i, line in enumerate(lines[start:end], start=start + 1):
            line = line.rstrip("\n")
            if len(line) > self._max_line_length:
                line = line[:self._max_line_length] + "..."
            output_lines.append(f"{i:>6}\t{line}")

        output = "\n".join(output_lines)
        if end < total:
            output += f"\n\n[Showing lines {start + 1}-{end} of {total}]"
        return output if output.strip() else "[File is empty]"

    @staticmethod
    def _is_binary(path: Path) -> bool:
        with open(path, "rb") as f:
            return b"\x00" in f.read(8192)
