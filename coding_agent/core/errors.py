"""
Error taxonomy for the agent runtime.

Provider failures are classified by message/status heuristics so the turn
loop can tell a context-window overflow (compact and retry once) apart
from everything else (surface and end the turn).
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    NETWORK = "network"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    CONTEXT_OVERFLOW = "context_overflow"
    OTHER = "other"


class AgentError(Exception):
    """Base class for runtime errors raised by this package."""


class ConfigError(AgentError):
    """Invalid or unreadable configuration."""


class TurnInProgressError(AgentError):
    """A second send_message() was started while a turn is still running."""

    def __init__(self, message: str = "A turn is already in progress"):
        super().__init__(message)


class ProviderError(AgentError):
    """A model-provider call failed."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.OTHER,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class ContextOverflowError(ProviderError):
    """The request did not fit into the model's context window."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, kind=ErrorKind.CONTEXT_OVERFLOW, status_code=status_code)


# ── Classification ──────────────────────────────────────────────────

_OVERFLOW_MARKERS = (
    "prompt is too long",
    "context length",
    "context window",
    "maximum context",
    "too many tokens",
    "context_length_exceeded",
    "input length and `max_tokens` exceed",
)


def classify_error_kind(exception: BaseException, status_code: Optional[int] = None) -> ErrorKind:
    """Pattern-match an exception message (and optional HTTP status) to an ErrorKind."""
    msg = str(exception).lower()

    if status_code == 413 or any(marker in msg for marker in _OVERFLOW_MARKERS):
        return ErrorKind.CONTEXT_OVERFLOW
    if status_code == 429 or "rate limit" in msg or "too many requests" in msg:
        return ErrorKind.RATE_LIMIT
    if status_code in (401, 403) or "authentication" in msg or "unauthorized" in msg or "api key" in msg:
        return ErrorKind.AUTH
    if isinstance(exception, (ConnectionError, TimeoutError)) or "timed out" in msg or "connection" in msg:
        return ErrorKind.NETWORK
    return ErrorKind.OTHER


def classify_provider_error(exception: BaseException) -> ProviderError:
    """
    Wrap an arbitrary provider exception into a ProviderError.

    Already-classified errors pass through unchanged. Overflow errors come
    back as ContextOverflowError so callers can ``except`` on the type.
    """
    if isinstance(exception, ProviderError):
        return exception
    status_code = getattr(exception, "status_code", None)
    if not isinstance(status_code, int):
        status_code = None
    kind = classify_error_kind(exception, status_code)
    if kind is ErrorKind.CONTEXT_OVERFLOW:
        return ContextOverflowError(str(exception), status_code=status_code)
    return ProviderError(str(exception) or type(exception).__name__, kind=kind, status_code=status_code)
