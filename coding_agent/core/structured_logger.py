"""
Structured Logger: JSON or human log output with session context.

Every record passing through the installed handler is stamped with the
current ``session_id`` and ``turn`` by a ContextFilter. Two output modes:

- **JSON mode** (``--log-json`` / ``logging.json: true``): one JSON object per line.
- **Human mode** (default): ``HH:MM:SS [LEVEL] name: [session/turn] message``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional


# ── LogContext ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class LogContext:
    """Contextual fields attached to every log line."""
    session_id: str = ""
    turn: int = 0


_current = LogContext()


def bind_log_context(**kwargs: Any) -> LogContext:
    """Replace fields of the process-wide log context. Returns the new context."""
    global _current
    _current = replace(_current, **kwargs)
    return _current


def current_log_context() -> LogContext:
    return _current


# ── ContextFilter ───────────────────────────────────────────────────

class ContextFilter(logging.Filter):
    """Copies the current LogContext onto each record unless already set."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _current
        if not getattr(record, "session_id", ""):
            record.session_id = ctx.session_id
        if not getattr(record, "turn", 0):
            record.turn = ctx.turn
        return True


# ── Formatters ──────────────────────────────────────────────────────

class StructuredFormatter(logging.Formatter):
    """Emits each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        session_id = getattr(record, "session_id", "")
        if session_id:
            entry["session_id"] = session_id
        turn = getattr(record, "turn", 0)
        if turn:
            entry["turn"] = turn
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Traditional format with an optional [session/turn] prefix."""

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None):
        super().__init__(
            fmt=fmt or "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt=datefmt or "%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        session_id = getattr(record, "session_id", "")
        if not session_id:
            return line
        tag = f"[{session_id[:8]}/{getattr(record, 'turn', 0)}] "
        head = f"{record.name}: "
        idx = line.find(head)
        if idx < 0:
            return tag + line
        return line[:idx + len(head)] + tag + line[idx + len(head):]


# ── Setup ───────────────────────────────────────────────────────────

def setup_structured_logging(
    level: str = "WARNING",
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> logging.Handler:
    """
    Configure the root logger. Replaces existing root handlers.

    Logs go to ``log_file`` when given, otherwise to stderr.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.WARNING))
    root.handlers.clear()

    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler()

    if json_format:
        handler.setFormatter(StructuredFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
    else:
        handler.setFormatter(HumanFormatter())
    handler.addFilter(ContextFilter())
    root.addHandler(handler)

    # SDK transports are chatty at INFO
    for noisy in ("httpx", "httpcore", "anthropic"):
        logging.getLogger(noisy).setLevel(max(root.level, logging.WARNING))
    return handler
