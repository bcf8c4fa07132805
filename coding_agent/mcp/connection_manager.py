"""
Connection Manager: lifecycle of MCP server connections.

Per server name:

    DISCONNECTED --connect--> CONNECTING --ok--> CONNECTED
    CONNECTED --health check fails--> RECONNECTING --connect--> CONNECTED | FAILED

FAILED and DISCONNECTED stay put until someone calls connect()/reconnect().
Every connection attempt builds a fresh transport and client; a failed
attempt's client is closed before the next retry. Connected servers get a
periodic health probe that triggers reconnect() when it fails.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from ..core.events import McpHealthCheck, McpReconnectAttempt
from .client import McpClient
from .health import HealthChecker
from .retry import RetryPolicy, RetryStrategy
from .transport import create_transport
from .types import (
    DEFAULT_JITTER_FACTOR, DEFAULT_MAX_DELAY_MS, ConnectionState, ManagedConnection,
    McpError, McpServerConfig, McpTimeoutError, McpToolInfo, sanitize_error,
)

logger = logging.getLogger(__name__)

ReconnectListener = Callable[[str, McpClient], Awaitable[None]]


class ConnectionManager:
    """
    Owns at most one live connection per configured server name.

    Usage:
        manager = ConnectionManager(on_event=print)
        client = await manager.connect("github", McpServerConfig(url="https://..."))
        tools = await manager.list_tools("github")
        await manager.disconnect_all()
    """

    def __init__(
        self,
        on_event: Optional[Callable[[object], None]] = None,
        transport_factory: Callable = create_transport,
        client_factory: Callable = McpClient,
        strategy_factory: Optional[Callable[[RetryPolicy], RetryStrategy]] = None,
    ):
        self._on_event = on_event
        self._transport_factory = transport_factory
        self._client_factory = client_factory
        self._strategy_factory = strategy_factory or RetryStrategy
        self._connections: dict[str, ManagedConnection] = {}
        self._in_flight: dict[str, asyncio.Task] = {}
        self._reconnect_listeners: list[ReconnectListener] = []
        self.health = HealthChecker(
            probe=self.probe,
            on_unhealthy=self._handle_unhealthy,
            on_result=self._on_health_result,
        )

    # ── Queries ─────────────────────────────────────────────────

    def get_connection(self, server_name: str) -> Optional[ManagedConnection]:
        return self._connections.get(server_name)

    def get_state(self, server_name: str) -> ConnectionState:
        conn = self._connections.get(server_name)
        return conn.state if conn else ConnectionState.DISCONNECTED

    def get_client(self, server_name: str) -> Optional[McpClient]:
        conn = self._connections.get(server_name)
        if conn is None or conn.state is not ConnectionState.CONNECTED:
            return None
        return conn.client

    @property
    def server_names(self) -> list[str]:
        return list(self._connections.keys())

    def add_reconnect_listener(self, listener: ReconnectListener) -> None:
        """``listener(server_name, client)`` runs after every successful reconnect()."""
        self._reconnect_listeners.append(listener)

    # ── Lifecycle ───────────────────────────────────────────────

    async def connect(self, server_name: str, config: McpServerConfig) -> McpClient:
        """Connect (with retries) or return the existing client if already connected."""
        existing = self._connections.get(server_name)
        if existing is not None and existing.state is ConnectionState.CONNECTED and existing.client:
            return existing.client

        pending = self._in_flight.get(server_name)
        if pending is not None:
            return await asyncio.shield(pending)

        state = (
            ConnectionState.RECONNECTING
            if existing is not None and existing.state is ConnectionState.RECONNECTING
            else ConnectionState.CONNECTING
        )
        task = asyncio.create_task(self._establish(server_name, config, state))
        self._in_flight[server_name] = task
        task.add_done_callback(lambda t: self._forget_in_flight(server_name, t))
        return await asyncio.shield(task)

    def _forget_in_flight(self, server_name: str, task: asyncio.Task) -> None:
        if self._in_flight.get(server_name) is task:
            del self._in_flight[server_name]

    async def _establish(
        self,
        server_name: str,
        config: McpServerConfig,
        state: ConnectionState,
    ) -> McpClient:
        conn = ManagedConnection(server_name=server_name, config=config, state=state)
        self._connections[server_name] = conn

        strategy = self._strategy_factory(RetryPolicy(
            max_retries=config.max_retries,
            initial_delay_ms=config.retry_delay_ms,
            max_delay_ms=DEFAULT_MAX_DELAY_MS,
            jitter_factor=DEFAULT_JITTER_FACTOR,
        ))

        def _on_retry(attempt: int, delay_ms: int) -> None:
            conn.retry_count = attempt
            logger.info(
                f"Retrying MCP server {server_name} ({attempt}/{config.max_retries}) in {delay_ms}ms"
            )
            self._emit(McpReconnectAttempt(
                server_name=server_name, attempt=attempt, max_attempts=config.max_retries,
            ))

        try:
            client = await strategy.execute(lambda: self._attempt(server_name, config), on_retry=_on_retry)
        except Exception as e:
            conn.state = ConnectionState.FAILED
            conn.last_error = sanitize_error(str(e))
            logger.warning(f"MCP server {server_name} failed to connect: {conn.last_error}")
            raise

        if self._connections.get(server_name) is not conn:
            # disconnected while we were connecting
            await self._safe_close(server_name, client)
            raise McpError(f"MCP server {server_name} was disconnected during connect")

        conn.client = client
        conn.transport = client.transport
        conn.mark_connected()
        self.health.start(server_name, config.health_check_interval_sec)
        return client

    async def _attempt(self, server_name: str, config: McpServerConfig) -> McpClient:
        transport = self._transport_factory(config)
        client = self._client_factory(transport, server_name)
        try:
            await asyncio.wait_for(client.connect(config.startup_timeout_sec), config.startup_timeout_sec)
        except asyncio.TimeoutError:
            await self._safe_close(server_name, client)
            raise McpTimeoutError(
                f"Connection timeout: {server_name} did not start within {config.startup_timeout_sec}s"
            )
        except Exception:
            await self._safe_close(server_name, client)
            raise
        return client

    async def reconnect(self, server_name: str) -> McpClient:
        """Tear down and re-establish a connection using its last config."""
        conn = self._connections.get(server_name)
        if conn is None:
            raise McpError(f"Unknown MCP server: {server_name}")
        config = conn.config
        await self.disconnect(server_name)
        self._connections[server_name] = ManagedConnection(
            server_name=server_name, config=config, state=ConnectionState.RECONNECTING,
        )
        client = await self.connect(server_name, config)

        for listener in list(self._reconnect_listeners):
            try:
                await listener(server_name, client)
            except Exception as e:
                logger.warning(f"Reconnect listener failed for {server_name}: {e}")
        return client

    async def disconnect(self, server_name: str) -> None:
        """Stop health checks, close the client and forget the connection. Never raises."""
        self.health.stop(server_name)
        conn = self._connections.pop(server_name, None)
        if conn is None:
            return
        conn.state = ConnectionState.DISCONNECTED
        if conn.client is not None:
            await self._safe_close(server_name, conn.client)
            conn.client = None
            conn.transport = None

    async def disconnect_all(self) -> None:
        await self.health.stop_all()
        names = list(self._connections.keys())
        await asyncio.gather(*(self.disconnect(name) for name in names), return_exceptions=True)
        self._connections.clear()

    async def _safe_close(self, server_name: str, client: McpClient) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error closing MCP client for {server_name}: {e}")

    # ── Catalog & health ────────────────────────────────────────

    async def list_tools(self, server_name: str) -> list[McpToolInfo]:
        conn = self._connections.get(server_name)
        if conn is None or conn.client is None or conn.state is not ConnectionState.CONNECTED:
            raise McpError(f"MCP server {server_name} is not connected")
        return await conn.client.list_tools(conn.config.startup_timeout_sec)

    async def probe(self, server_name: str) -> None:
        await self.list_tools(server_name)

    def _on_health_result(self, server_name: str, latency_ms: float, healthy: bool) -> None:
        conn = self._connections.get(server_name)
        if conn is not None:
            conn.last_health_check = time.time()
        self._emit(McpHealthCheck(server_name=server_name, latency_ms=latency_ms, healthy=healthy))

    async def _handle_unhealthy(self, server_name: str) -> None:
        logger.info(f"MCP server {server_name} unhealthy, reconnecting")
        await self.reconnect(server_name)

    def _emit(self, event: object) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception as e:
            logger.debug(f"MCP event handler failed: {e}")
