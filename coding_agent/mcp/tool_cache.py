"""
Tool Cache: TTL cache for MCP server catalogs.

Entries are keyed by server name and live independently of the
connection: a cached catalog survives a disconnect and speeds up the next
connect, until its TTL runs out. A background sweep drops expired entries.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .types import DEFAULT_CACHE_SWEEP_INTERVAL_SEC, DEFAULT_CACHE_TTL_SEC, McpToolInfo

logger = logging.getLogger(__name__)


@dataclass
class ToolCacheEntry:
    tools: list[McpToolInfo]
    timestamp: float

    def is_expired(self, ttl: float, now: float) -> bool:
        if ttl <= 0:
            return False  # TTL disabled
        return now - self.timestamp > ttl


class ToolCache:
    """
    Usage:
        cache = ToolCache(ttl=300)
        tools = cache.get("github")
        if tools is None:
            tools = await client.list_tools()
            cache.set("github", tools)
    """

    def __init__(
        self,
        ttl: float = DEFAULT_CACHE_TTL_SEC,
        sweep_interval: float = DEFAULT_CACHE_SWEEP_INTERVAL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, ToolCacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._sweeper: Optional[asyncio.Task] = None

    def get(self, server_name: str) -> Optional[list[McpToolInfo]]:
        entry = self._entries.get(server_name)
        if entry is None:
            self._misses += 1
            return None
        if entry.is_expired(self.ttl, self._clock()):
            del self._entries[server_name]
            self._misses += 1
            return None
        self._hits += 1
        return list(entry.tools)

    def set(self, server_name: str, tools: list[McpToolInfo]) -> None:
        self._entries[server_name] = ToolCacheEntry(tools=list(tools), timestamp=self._clock())

    def invalidate(self, server_name: str) -> None:
        self._entries.pop(server_name, None)

    def clear(self) -> None:
        self._entries.clear()

    def sweep(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        expired = [name for name, e in self._entries.items() if e.is_expired(self.ttl, now)]
        for name in expired:
            del self._entries[name]
        if expired:
            logger.debug(f"Tool cache swept {len(expired)} expired entries")
        return len(expired)

    # ── Background sweep ────────────────────────────────────────

    def start_sweeper(self) -> None:
        """Start the periodic sweep. Must be called from a running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    async def stop_sweeper(self) -> None:
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def stats(self) -> dict:
        return {
            "size": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "ttl": self.ttl,
        }
