"""
Minimal async MCP client: initialize handshake, tools/list, tools/call.
"""

from __future__ import annotations

import itertools
import logging
from typing import Optional

from .types import (
    CLIENT_NAME, CLIENT_VERSION, DEFAULT_STARTUP_TIMEOUT_SEC, DEFAULT_TOOL_TIMEOUT_SEC,
    PROTOCOL_VERSION, McpProtocolError, McpToolInfo, McpTransportError,
)

logger = logging.getLogger(__name__)


class McpClient:
    """
    JSON-RPC client bound to one transport.

    Usage:
        client = McpClient(StdioTransport("npx", ["-y", "server"]), server_name="fs")
        await client.connect()
        tools = await client.list_tools()
        result = await client.call_tool("read_file", {"path": "a.txt"})
        await client.close()
    """

    def __init__(self, transport, server_name: str = ""):
        self.transport = transport
        self.server_name = server_name
        self.server_info: dict = {}
        self.capabilities: dict = {}
        self._ids = itertools.count(1)
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self.transport.is_connected

    async def _request(self, method: str, params: Optional[dict], timeout: float) -> dict:
        message = {"jsonrpc": "2.0", "id": next(self._ids), "method": method}
        if params is not None:
            message["params"] = params
        response = await self.transport.request(message, timeout)

        if "error" in response:
            err = response["error"] or {}
            raise McpProtocolError(
                code=err.get("code", -1),
                message=err.get("message", "Unknown error"),
                data=err.get("data"),
            )
        return response.get("result") or {}

    async def _notify(self, method: str, params: Optional[dict] = None) -> None:
        message = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self.transport.notify(message)

    async def connect(self, timeout: float = DEFAULT_STARTUP_TIMEOUT_SEC) -> dict:
        """Start the transport and run the initialize handshake."""
        await self.transport.start()
        result = await self._request("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
        }, timeout)
        self.server_info = result.get("serverInfo", {})
        self.capabilities = result.get("capabilities", {})
        await self._notify("notifications/initialized")
        self._connected = True
        logger.info(
            f"MCP connected to {self.server_name or self.server_info.get('name', 'unknown')} "
            f"(server {self.server_info.get('name', '?')} {self.server_info.get('version', '?')})"
        )
        return result

    async def list_tools(self, timeout: float = DEFAULT_STARTUP_TIMEOUT_SEC) -> list[McpToolInfo]:
        """Fetch the full tool catalog, following pagination cursors."""
        if not self._connected:
            raise McpTransportError("Not connected")
        tools: list[McpToolInfo] = []
        cursor: Optional[str] = None
        while True:
            params = {"cursor": cursor} if cursor else {}
            result = await self._request("tools/list", params, timeout)
            tools.extend(McpToolInfo.from_dict(t) for t in result.get("tools", []))
            cursor = result.get("nextCursor")
            if not cursor:
                return tools

    async def call_tool(
        self,
        name: str,
        arguments: Optional[dict] = None,
        timeout: float = DEFAULT_TOOL_TIMEOUT_SEC,
    ) -> dict:
        """Returns the raw result: ``content`` (list of parts) and ``isError``."""
        if not self._connected:
            raise McpTransportError("Not connected")
        return await self._request("tools/call", {"name": name, "arguments": arguments or {}}, timeout)

    async def close(self) -> None:
        self._connected = False
        await self.transport.close()
