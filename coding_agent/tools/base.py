"""
Base tool class: all tools inherit from this.
Defines the standard interface: name, description, schema, readonly flag,
optional preview, and execute(input, context).
"""

from __future__ import annotations
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

from ..core.cancellation import CancellationToken
from ..core.models import ToolOutput, ToolSchema


@dataclass
class ToolContext:
    """Per-call execution context handed to every tool."""
    cwd: str
    cancellation_token: CancellationToken
    session_id: str


ToolReturn = Union[str, ToolOutput]


class BaseTool(ABC):
    """Abstract base class for all agent tools."""

    name: str = ""
    description: str = ""
    input_schema: dict = {}
    readonly: bool = False

    @abstractmethod
    async def execute(self, tool_input: dict, context: ToolContext) -> ToolReturn:
        """
        Run the tool.

        Return plain text, or a ToolOutput to report changed files or an
        error. Raising is also fine: the scheduler turns exceptions into
        error results.
        """

    def get_preview(self, tool_input: dict) -> Optional[str]:
        """Short human-readable description of what a call will do, if any."""
        return None

    def get_schema(self) -> ToolSchema:
        """Return the tool's schema for LLM consumption."""
        return ToolSchema(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
        )

    def _success(self, output: str, files_changed: Optional[list[str]] = None) -> ToolOutput:
        return ToolOutput(content=output, files_changed=list(files_changed or []))

    def _error(self, error: str) -> ToolOutput:
        return ToolOutput(content=error, is_error=True)


def resolve_path(context: ToolContext, path: str) -> str:
    """Absolute path for ``path``, relative paths taken from the call's cwd."""
    expanded = os.path.expanduser(path)
    if os.path.isabs(expanded):
        return os.path.normpath(expanded)
    return os.path.normpath(os.path.join(context.cwd, expanded))
