"""
Periodic liveness probes for MCP connections.

One asyncio task per server. A failed probe reports the server unhealthy
and hands recovery to ``on_unhealthy`` in a separate task, so a slow
reconnect never stalls the probes of other servers and the recovering
server's own checker can be replaced cleanly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Probe = Callable[[str], Awaitable[object]]
UnhealthyHandler = Callable[[str], Awaitable[object]]
ResultHandler = Callable[[str, float, bool], None]


class HealthChecker:
    """
    Usage:
        checker = HealthChecker(probe=manager.probe, on_unhealthy=manager.reconnect)
        checker.start("github", interval=60)
        ...
        await checker.stop_all()
    """

    def __init__(
        self,
        probe: Probe,
        on_unhealthy: UnhealthyHandler,
        on_result: Optional[ResultHandler] = None,
        probe_timeout: float = 30.0,
    ):
        self._probe = probe
        self._on_unhealthy = on_unhealthy
        self._on_result = on_result
        self.probe_timeout = probe_timeout
        self._tasks: dict[str, asyncio.Task] = {}
        self._recoveries: set[asyncio.Task] = set()

    def is_running(self, server_name: str) -> bool:
        task = self._tasks.get(server_name)
        return task is not None and not task.done()

    def start(self, server_name: str, interval: float) -> None:
        if interval <= 0:
            return
        self.stop(server_name)
        self._tasks[server_name] = asyncio.create_task(
            self._loop(server_name, interval), name=f"mcp-health-{server_name}",
        )

    def stop(self, server_name: str) -> None:
        task = self._tasks.pop(server_name, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def stop_all(self) -> None:
        tasks = list(self._tasks.values()) + list(self._recoveries)
        self._tasks.clear()
        self._recoveries.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def check(self, server_name: str) -> bool:
        """Run one probe and report the result. Returns True if healthy."""
        t0 = time.monotonic()
        try:
            await asyncio.wait_for(self._probe(server_name), timeout=self.probe_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"MCP health check failed for {server_name}: {e}")
            self._report(server_name, 0.0, False)
            return False
        self._report(server_name, (time.monotonic() - t0) * 1000, True)
        return True

    def _report(self, server_name: str, latency_ms: float, healthy: bool) -> None:
        if self._on_result is None:
            return
        try:
            self._on_result(server_name, latency_ms, healthy)
        except Exception as e:
            logger.debug(f"Health result handler failed for {server_name}: {e}")

    async def _loop(self, server_name: str, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if not await self.check(server_name):
                break
        # This checker is done; recovery starts a fresh one on success
        if self._tasks.get(server_name) is asyncio.current_task():
            del self._tasks[server_name]
        recovery = asyncio.create_task(self._recover(server_name))
        self._recoveries.add(recovery)
        recovery.add_done_callback(self._recoveries.discard)

    async def _recover(self, server_name: str) -> None:
        try:
            await self._on_unhealthy(server_name)
        except Exception as e:
            logger.warning(f"MCP reconnect after failed health check failed for {server_name}: {e}")
