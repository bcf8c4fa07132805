"""
MCP Tool Loader: connects configured servers and exposes their tools.

Each remote tool becomes an ``McpTool`` named ``<server>.<tool>``. Tool
calls look up the server's live client at call time, so a reconnect swaps
the underlying connection without re-registering anything; the catalog
itself is refreshed on reconnect and replaced wholesale in the registry.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Callable, Optional

from ..core.events import (
    McpCacheHit, McpServerConnectError, McpServerConnectStart, McpServerConnectSuccess,
)
from ..core.models import ToolOutput
from ..tools.base import BaseTool, ToolContext
from .connection_manager import ConnectionManager
from .tool_cache import ToolCache
from .types import McpServerConfig, McpTimeoutError, McpToolInfo, sanitize_error

logger = logging.getLogger(__name__)


def format_tool_result(result) -> str:
    """Flatten an MCP tools/call result into text: text parts verbatim, other parts as JSON."""
    if not result:
        return ""
    content = result.get("content", result) if isinstance(result, dict) else result
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str):
                parts.append(part["text"])
            else:
                parts.append(json.dumps(part, indent=2, ensure_ascii=False))
        return "\n".join(parts)
    return json.dumps(content, indent=2, ensure_ascii=False)


def filter_tools(tools: list[McpToolInfo], config: McpServerConfig) -> list[McpToolInfo]:
    """Apply the server's allow-list, then its deny-list."""
    filtered = tools
    if config.enabled_tools:
        filtered = [t for t in filtered if t.name in config.enabled_tools]
    if config.disabled_tools:
        filtered = [t for t in filtered if t.name not in config.disabled_tools]
    return filtered


class McpTool(BaseTool):
    """A remote MCP tool, callable through the server's current connection."""

    readonly = False

    def __init__(self, server_name: str, info: McpToolInfo, manager: ConnectionManager,
                 config: McpServerConfig):
        self.server_name = server_name
        self.remote_name = info.name
        self.name = f"{server_name}.{info.name}"
        self.description = info.description or f"MCP tool {info.name} from {server_name}"
        self.input_schema = info.input_schema
        self._manager = manager
        self._timeout = config.tool_timeout_sec

    async def execute(self, tool_input: dict, context: ToolContext):
        client = self._manager.get_client(self.server_name)
        if client is None:
            return self._error(f"MCP server {self.server_name} is not connected")
        try:
            result = await asyncio.wait_for(
                client.call_tool(self.remote_name, tool_input or {}, timeout=self._timeout),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            raise McpTimeoutError(
                f"Tool execution timeout after {int(self._timeout * 1000)}ms"
            )
        text = format_tool_result(result)
        if isinstance(result, dict) and result.get("isError"):
            return ToolOutput(content=text, is_error=True)
        return text


class McpToolLoader:
    """
    Usage:
        loader = McpToolLoader(emit=events.append)
        tools = await loader.load({"github": McpServerConfig(url="...")})
        for tool in tools:
            registry.register(tool)
        loader.attach_registry(registry)  # refresh namespaces on reconnect
        ...
        await loader.cleanup()
    """

    def __init__(
        self,
        manager: Optional[ConnectionManager] = None,
        cache: Optional[ToolCache] = None,
        emit: Optional[Callable[[object], None]] = None,
    ):
        self._emit_fn = emit
        self.manager = manager or ConnectionManager(on_event=self._emit)
        self.cache = cache or ToolCache()
        self._registry = None
        self.manager.add_reconnect_listener(self._on_reconnected)

    def attach_registry(self, registry) -> None:
        self._registry = registry

    def _emit(self, event: object) -> None:
        if self._emit_fn is None:
            return
        try:
            self._emit_fn(event)
        except Exception as e:
            logger.debug(f"MCP loader event handler failed: {e}")

    async def load(self, servers: dict[str, McpServerConfig]) -> list[McpTool]:
        """Connect every enabled server; failures are reported and skipped."""
        self.cache.start_sweeper()
        tools: list[McpTool] = []
        for server_name, config in servers.items():
            if not config.enabled:
                logger.debug(f"MCP server {server_name} disabled, skipping")
                continue
            self._emit(McpServerConnectStart(server_name=server_name))
            try:
                server_tools = await self.load_server(server_name, config)
            except Exception as e:
                message = sanitize_error(str(e) or type(e).__name__)
                logger.warning(f'Failed to load MCP server "{server_name}": {message}')
                self._emit(McpServerConnectError(server_name=server_name, error=message))
                continue
            tools.extend(server_tools)
            self._emit(McpServerConnectSuccess(server_name=server_name, tool_count=len(server_tools)))
        return tools

    async def load_server(self, server_name: str, config: McpServerConfig) -> list[McpTool]:
        await self.manager.connect(server_name, config)
        catalog = await self._catalog(server_name)
        return [McpTool(server_name, info, self.manager, config) for info in filter_tools(catalog, config)]

    async def _catalog(self, server_name: str) -> list[McpToolInfo]:
        cached = self.cache.get(server_name)
        if cached is not None:
            self._emit(McpCacheHit(server_name=server_name))
            return cached
        tools = await self.manager.list_tools(server_name)
        self.cache.set(server_name, tools)
        return tools

    async def _on_reconnected(self, server_name: str, client) -> None:
        conn = self.manager.get_connection(server_name)
        if conn is None or self._registry is None:
            return
        catalog = await self._catalog(server_name)
        tools = [McpTool(server_name, info, self.manager, conn.config) for info in filter_tools(catalog, conn.config)]
        self._registry.replace_namespace(server_name, tools)
        logger.info(f"MCP server {server_name} reconnected with {len(tools)} tools")

    async def cleanup(self) -> None:
        await self.cache.stop_sweeper()
        await self.manager.disconnect_all()
