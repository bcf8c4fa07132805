"""
Cooperative cancellation for a single turn.

One token is created per send_message() call and shared by the stream
consumer, the tool scheduler and every tool invocation. stop() on the
agent cancels it; the loop notices at its next check and ends quietly.
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class CancelledByUser(Exception):
    """Raised by CancellationToken.check() once the token is cancelled."""

    def __init__(self, message: str = "Turn cancelled by user"):
        super().__init__(message)


class CancellationToken:
    """
    Token for cooperative cancellation of streaming and tool execution.

    Usage:
        token = CancellationToken()

        # UI side:
        token.cancel()

        # agent loop or tool:
        if token.is_cancelled:
            return
        # or:
        token.check()  # raises CancelledByUser
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: str = ""

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str = "User cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        logger.info(f"Cancellation requested: {reason}")

    def check(self) -> None:
        if self._event.is_set():
            raise CancelledByUser(self._reason or "Turn cancelled")

    async def wait(self, timeout: float | None = None) -> bool:
        """
        Wait for cancellation to be requested.

        Returns True if cancelled, False if the timeout expired first.
        """
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False
