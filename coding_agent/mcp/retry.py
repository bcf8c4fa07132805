"""
Retry strategy for MCP connections: exponential backoff with jitter.

Errors are classified by message: auth/config/protocol failures stop
immediately, network and timeout failures are retried, and anything
unrecognized is treated as retryable.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .types import (
    DEFAULT_INITIAL_DELAY_MS, DEFAULT_JITTER_FACTOR, DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_RETRIES, McpConfigError, McpProtocolError,
)

logger = logging.getLogger(__name__)

RETRYABLE_PATTERN = re.compile(
    r"econnrefused|etimedout|enotfound|socket hang up|network error|"
    r"connection timeout|connection reset|connection refused|timed out",
    re.IGNORECASE,
)
NON_RETRYABLE_PATTERN = re.compile(
    r"unauthorized|forbidden|authentication|invalid config|protocol error",
    re.IGNORECASE,
)


# ── Policy ──────────────────────────────────────────────────────────

@dataclass
class RetryPolicy:
    """Backoff configuration. ``max_retries`` counts retries after the first attempt."""
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    jitter_factor: float = DEFAULT_JITTER_FACTOR


# ── Strategy ────────────────────────────────────────────────────────

class RetryStrategy:
    """
    Run an async operation under a RetryPolicy.

    Usage:
        strategy = RetryStrategy(RetryPolicy(max_retries=3))
        client = await strategy.execute(
            lambda: open_client(),
            on_retry=lambda attempt, delay_ms: print(attempt, delay_ms),
        )
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rand = rand

    def get_delay(self, attempt: int) -> int:
        """Backoff in milliseconds before retry number ``attempt + 1`` (attempt is 0-based)."""
        policy = self.policy
        capped = min(policy.initial_delay_ms * (2 ** attempt), policy.max_delay_ms)
        jitter = capped * policy.jitter_factor * self._rand()
        return math.floor(capped + jitter)

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        message = str(error)
        if RETRYABLE_PATTERN.search(message):
            return True
        if isinstance(error, (McpProtocolError, McpConfigError)) or NON_RETRYABLE_PATTERN.search(message):
            return False
        return True

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        if attempt >= self.policy.max_retries:
            return False
        return self.is_retryable(error)

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        on_retry: Optional[Callable[[int, int], None]] = None,
    ) -> Any:
        """
        Call ``operation`` until it succeeds, fails non-retryably, or retries run out.

        ``on_retry(attempt_number, delay_ms)`` fires before each backoff sleep.
        The last error is re-raised on failure.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                if not self.should_retry(exc, attempt):
                    logger.debug(f"Giving up after attempt {attempt + 1}: {exc}")
                    raise
                delay_ms = self.get_delay(attempt)
                logger.info(
                    f"Retry {attempt + 1}/{self.policy.max_retries} in {delay_ms}ms: {exc}"
                )
                if on_retry is not None:
                    on_retry(attempt + 1, delay_ms)
                await self._sleep(delay_ms / 1000)
                attempt += 1
