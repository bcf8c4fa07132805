"""
Pending confirmation requests, keyed by id.

Each request owns one future. The first resolution wins; later calls for
the same id are no-ops. Requests still pending when the process exits are
simply dropped.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Optional

from .models import ConfirmationRequest

logger = logging.getLogger(__name__)


class ConfirmationBroker:
    """
    Maps confirmation ids to single-resolution futures.

    Usage:
        broker = ConfirmationBroker()
        request, future = broker.create("bash", "needs approval", "rm x")
        # ... emit request to the UI ...
        allowed = await future
        # elsewhere:
        broker.resolve(request.id, True)
    """

    def __init__(self):
        self._pending: dict[str, tuple[ConfirmationRequest, asyncio.Future]] = {}
        self._counter = itertools.count(1)

    def create(
        self,
        tool_name: str,
        reason: str,
        preview: Optional[str] = None,
    ) -> tuple[ConfirmationRequest, asyncio.Future]:
        request_id = f"{int(time.time() * 1000)}-{next(self._counter)}"
        request = ConfirmationRequest(
            id=request_id, tool_name=tool_name, reason=reason, preview=preview,
        )
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (request, future)
        return request, future

    def resolve(self, request_id: str, allowed: bool) -> bool:
        """Resolve a pending request. Returns False if unknown or already resolved."""
        entry = self._pending.pop(request_id, None)
        if entry is None:
            logger.debug(f"Ignoring response for unknown confirmation {request_id}")
            return False
        _, future = entry
        if future.done():
            return False
        future.set_result(bool(allowed))
        return True

    def discard(self, request_id: str) -> None:
        """Forget a request without resolving it (its waiter went away)."""
        self._pending.pop(request_id, None)

    def cancel_all(self) -> int:
        """Resolve every pending request as denied. Returns how many were pending."""
        ids = list(self._pending)
        for request_id in ids:
            self.resolve(request_id, False)
        return len(ids)

    def get(self, request_id: str) -> Optional[ConfirmationRequest]:
        entry = self._pending.get(request_id)
        return entry[0] if entry else None

    @property
    def pending_count(self) -> int:
        return len(self._pending)
