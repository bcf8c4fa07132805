"""
Grep Tool: content search via ripgrep (rg) with a Python ``re`` fallback.
"""

from __future__ import annotations
import asyncio
import re
import shutil
from pathlib import Path
from typing import Optional

from .base import BaseTool, ToolContext, resolve_path
from .list_files import SKIP_DIRS

MAX_OUTPUT_CHARS = 30_000


class GrepTool(BaseTool):
    name = "grep"
    readonly = True
    description = (
        "Search file contents with a regular expression. "
        "Output modes: 'content' shows matching lines (path:line:text), "
        "'files_with_matches' shows file paths, 'count' shows match counts per file."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Regex pattern to search for"},
            "path": {"type": "string", "description": "File or directory to search (defaults to cwd)"},
            "glob": {"type": "string", "description": "Glob filter for file names (e.g. '*.py')"},
            "output_mode": {
                "type": "string",
                "enum": ["content", "files_with_matches", "count"],
                "description": "Output mode (default: files_with_matches)",
            },
            "case_insensitive": {"type": "boolean", "description": "Case insensitive search"},
            "head_limit": {"type": "number", "description": "Limit output to first N results"},
        },
        "required": ["pattern"],
    }

    # Cap pattern length to limit ReDoS on the Python fallback
    MAX_PATTERN_LENGTH = 1000
    SEARCH_TIMEOUT = 30

    def __init__(self, use_rg: Optional[bool] = None):
        self._use_rg = shutil.which("rg") is not None if use_rg is None else use_rg

    def get_preview(self, tool_input: dict):
        return f"Search /{tool_input.get('pattern', '')}/ in {tool_input.get('path') or '.'}"

    async def execute(self, tool_input: dict, context: ToolContext):
        pattern = tool_input.get("pattern") or ""
        if not pattern:
            return self._error("pattern is required")
        if len(pattern) > self.MAX_PATTERN_LENGTH:
            return self._error(f"Pattern too long ({len(pattern)} chars, max {self.MAX_PATTERN_LENGTH})")
        try:
            re.compile(pattern)
        except re.error as e:
            return self._error(f"Invalid regex pattern: {e}")

        search_path = resolve_path(context, tool_input.get("path") or ".")
        mode = tool_input.get("output_mode") or "files_with_matches"
        head_limit = int(tool_input.get("head_limit") or 0)
        ignore_case = bool(tool_input.get("case_insensitive"))
        glob_filter = tool_input.get("glob") or ""

        if self._use_rg:
            output = await self._search_rg(pattern, search_path, mode, ignore_case, glob_filter)
        else:
            output = self._search_python(pattern, search_path, mode, ignore_case, glob_filter, context)

        if isinstance(output, str) and head_limit > 0:
            output = "\n".join(output.split("\n")[:head_limit])
        if isinstance(output, str):
            if not output.strip():
                return f"No matches found for pattern '{pattern}'"
            if len(output) > MAX_OUTPUT_CHARS:
                output = output[:MAX_OUTPUT_CHARS] + "\n\n[Output truncated]"
        return output

    async def _search_rg(self, pattern, path, mode, ignore_case, glob_filter):
        cmd = ["rg", {"files_with_matches": "-l", "count": "-c"}.get(mode, "-n")]
        if ignore_case:
            cmd.append("-i")
        if glob_filter:
            cmd.extend(["--glob", glob_filter])
        cmd.extend(["--", pattern, path])

        proc = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.SEARCH_TIMEOUT)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.communicate()
            return self._error(f"Search timed out after {self.SEARCH_TIMEOUT} seconds")

        # rg exits 1 when nothing matched
        if proc.returncode not in (0, 1):
            return self._error(f"rg error: {stderr.decode('utf-8', errors='replace').strip()}")
        return stdout.decode("utf-8", errors="replace").strip()

    def _search_python(self, pattern, path, mode, ignore_case, glob_filter, context: ToolContext):
        compiled = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
        root = Path(path)
        if root.is_file():
            files = [root]
        else:
            files = sorted(
                f for f in root.rglob(glob_filter or "*")
                if f.is_file() and not SKIP_DIRS.intersection(f.relative_to(root).parts)
            )

        results: list[str] = []
        for fpath in files:
            context.cancellation_token.check()
            if self._is_binary_quick(fpath):
                continue
            try:
                lines = fpath.read_text(encoding="utf-8", errors="replace").split("\n")
            except OSError:
                continue
            matches = [(i + 1, line) for i, line in enumerate(lines) if compiled.search(line)]
            if not matches:
                continue
            if mode == "files_with_matches":
                results.append(str(fpath))
            elif mode == "count":
                results.append(f"{fpath}:{len(matches)}")
            else:
                results.extend(f"{fpath}:{n}:{line}" for n, line in matches)
        return "\n".join(results)

    @staticmethod
    def _is_binary_quick(path: Path) -> bool:
        try:
            with open(path, "rb") as f:
                return b"\x00" in f.read(512)
        except OSError:
            return True
