"""
MCP data types, constants and errors.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ── Constants ────────────────────────────────────────────────────

CLIENT_NAME = "coding-agent"
CLIENT_VERSION = "1.0.0"
PROTOCOL_VERSION = "2024-11-05"

DEFAULT_STARTUP_TIMEOUT_SEC = 30.0
DEFAULT_TOOL_TIMEOUT_SEC = 60.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 30_000
DEFAULT_JITTER_FACTOR = 0.1
DEFAULT_CACHE_TTL_SEC = 300.0
DEFAULT_HEALTH_CHECK_INTERVAL_SEC = 60.0
DEFAULT_CACHE_SWEEP_INTERVAL_SEC = 60.0


# ── Errors ───────────────────────────────────────────────────────

class McpError(Exception):
    """Base class for MCP failures."""


class McpConfigError(McpError):
    """A server entry is unusable (e.g. neither command nor url)."""


class McpTransportError(McpError):
    """Transport-level communication failed."""


class McpTimeoutError(McpError):
    """A request did not complete in time."""


class McpProtocolError(McpError):
    """The server answered with a JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.error_message = message
        self.data = data
        super().__init__(f"MCP protocol error {code}: {message}")


def sanitize_error(msg: str) -> str:
    """Remove credentials and tokens from error messages."""
    msg = re.sub(r'(https?://)([^:/@]+):([^@]+)@', r'\1***:***@', msg)
    msg = re.sub(r'Bearer\s+[A-Za-z0-9_\-\.]{8,}', 'Bearer [redacted]', msg, flags=re.IGNORECASE)
    msg = re.sub(
        r'(api[_-]?key|token|password|secret|authorization)["\s:=]+\S+',
        r'\1=[redacted]', msg, flags=re.IGNORECASE,
    )
    return msg


# ── Configuration ────────────────────────────────────────────────

@dataclass
class McpAuthConfig:
    type: str = "bearer"  # bearer | basic
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass
class McpServerConfig:
    """One configured MCP server. Exactly one of ``command`` / ``url`` must be set."""
    command: Optional[str] = None
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: Optional[str] = None
    url: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    auth: Optional[McpAuthConfig] = None
    enabled: bool = True
    startup_timeout_sec: float = DEFAULT_STARTUP_TIMEOUT_SEC
    tool_timeout_sec: float = DEFAULT_TOOL_TIMEOUT_SEC
    enabled_tools: Optional[list[str]] = None
    disabled_tools: Optional[list[str]] = None
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_INITIAL_DELAY_MS
    health_check_interval_sec: float = DEFAULT_HEALTH_CHECK_INTERVAL_SEC

    @classmethod
    def from_dict(cls, data: dict) -> "McpServerConfig":
        data = dict(data or {})
        auth = data.pop("auth", None)
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise McpConfigError(f"Unknown MCP server option(s): {sorted(unknown)}")
        config = cls(**data)
        if isinstance(auth, dict):
            config.auth = McpAuthConfig(**auth)
        return config

    @property
    def transport_kind(self) -> str:
        return "stdio" if self.command else "http"


# ── Runtime state ────────────────────────────────────────────────

class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass
class ManagedConnection:
    server_name: str
    config: McpServerConfig
    client: Any = None
    transport: Any = None
    state: ConnectionState = ConnectionState.DISCONNECTED
    retry_count: int = 0
    last_error: Optional[str] = None
    connected_at: Optional[float] = None
    last_health_check: Optional[float] = None

    def mark_connected(self) -> None:
        self.state = ConnectionState.CONNECTED
        self.connected_at = time.time()
        self.last_error = None


@dataclass
class McpToolInfo:
    """A tool as listed by a server's tools/list."""
    name: str
    description: str = ""
    input_schema: dict = field(default_factory=lambda: {"type": "object", "properties": {}})

    @classmethod
    def from_dict(cls, data: dict) -> "McpToolInfo":
        return cls(
            name=data["name"],
            description=data.get("description") or "",
            input_schema=data.get("inputSchema") or {"type": "object", "properties": {}},
        )
