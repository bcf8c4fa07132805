"""
Tool Registry: name-keyed catalog of local and MCP-provided tools.

Names are unique. MCP tools live under a ``server.`` namespace that is
swapped out wholesale when a server reconnects or refreshes its catalog.
"""

from __future__ import annotations
import logging
from typing import Iterable, Optional

from .models import ToolSchema

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Central registry for all agent tools."""

    def __init__(self):
        self._tools: dict = {}  # name -> BaseTool instance

    def register(self, tool) -> None:
        """Register a tool instance. Names must be unique."""
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str):
        """Get a tool by name, or None if unknown."""
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def get_schemas(self) -> list[ToolSchema]:
        """Return all tool schemas for the model request."""
        return [tool.get_schema() for tool in self._tools.values()]

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def is_readonly(self, name: str) -> bool:
        tool = self._tools.get(name)
        return bool(tool is not None and getattr(tool, "readonly", False))

    def replace_namespace(self, namespace: str, tools: Iterable) -> None:
        """Drop every ``namespace.*`` tool and register ``tools`` in their place."""
        self.remove_namespace(namespace)
        for tool in tools:
            if not tool.name.startswith(f"{namespace}."):
                raise ValueError(f"Tool {tool.name} is outside namespace {namespace}")
            self._tools[tool.name] = tool
        logger.debug(f"Namespace '{namespace}' now has {len(self.namespace_tools(namespace))} tools")

    def remove_namespace(self, namespace: str) -> None:
        prefix = f"{namespace}."
        for name in [n for n in self._tools if n.startswith(prefix)]:
            del self._tools[name]

    def namespace_tools(self, namespace: str) -> list[str]:
        prefix = f"{namespace}."
        return [n for n in self._tools if n.startswith(prefix)]
