"""
Bash Tool: run a shell command in the working directory.

The command is killed when the turn is cancelled or the timeout expires.
Safety gating happens before execution: allow-listed prefixes such as
``git status`` run without confirmation, everything else asks first.
"""

from __future__ import annotations
import asyncio
import logging

from .base import BaseTool, ToolContext
from ..core.cancellation import CancelledByUser

logger = logging.getLogger(__name__)


class BashTool(BaseTool):
    name = "bash"
    description = (
        "Execute a shell command in the project's working directory and return "
        "stdout and stderr. Do NOT use for reading or editing files; use the file "
        "tools instead. Chain dependent commands with && in one call."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "command": {"type": "string", "description": "The shell command to execute"},
            "timeout": {"type": "number", "description": "Timeout in seconds (default 120, max 600)"},
        },
        "required": ["command"],
    }

    DEFAULT_TIMEOUT = 120
    MAX_TIMEOUT = 600
    MAX_OUTPUT = 30_000

    def get_preview(self, tool_input: dict):
        return tool_input.get("command")

    async def execute(self, tool_input: dict, context: ToolContext):
        command = tool_input.get("command")
        if not isinstance(command, str) or not command.strip():
            return self._error("command is required")
        timeout = min(float(tool_input.get("timeout") or self.DEFAULT_TIMEOUT), self.MAX_TIMEOUT)

        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=context.cwd,
        )
        communicate = asyncio.ensure_future(process.communicate())
        cancelled = asyncio.ensure_future(context.cancellation_token.wait())
        try:
            done, _ = await asyncio.wait(
                {communicate, cancelled}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancelled.cancel()

        if communicate not in done:
            process.kill()
            await communicate
            if context.cancellation_token.is_cancelled:
                raise CancelledByUser(context.cancellation_token.reason)
            return self._error(f"Command timed out after {timeout:g}s: {command}")

        stdout, stderr = communicate.result()
        output = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        if err:
            output = f"{output}\n[stderr]\n{err}" if output else err
        if len(output) > self.MAX_OUTPUT:
            output = output[:self.MAX_OUTPUT] + "\n[Output truncated]"

        if process.returncode != 0:
            logger.debug(f"Command exited with {process.returncode}: {command}")
            return self._error(f"Exit code {process.returncode}\n{output}")
        return output or "(no output)"
