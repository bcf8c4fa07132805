"""
Agent Events: typed event protocol for a running turn.

Every observable step of the turn loop (streamed text, thinking, tool
activity, confirmation prompts, token usage, MCP server lifecycle) is one
of the dataclasses below. They are delivered in order through the async
iterator returned by ``Agent.send_message`` and, if configured, mirrored
to an ``on_event`` callback.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, ClassVar, Optional, Union


@dataclass
class _Event:
    type: ClassVar[str] = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type
        return data


# ── Conversation ─────────────────────────────────────────────────

@dataclass
class UserMessage(_Event):
    content: str
    timestamp: float = field(default_factory=time.time)
    type: ClassVar[str] = "user_message"


@dataclass
class AssistantMessageStart(_Event):
    type: ClassVar[str] = "assistant_message_start"


@dataclass
class AssistantMessageDelta(_Event):
    delta: str
    type: ClassVar[str] = "assistant_message_delta"


@dataclass
class AssistantMessageEnd(_Event):
    type: ClassVar[str] = "assistant_message_end"


@dataclass
class AssistantThinkingStart(_Event):
    redacted: bool = False
    type: ClassVar[str] = "assistant_thinking_start"


@dataclass
class AssistantThinkingDelta(_Event):
    delta: str
    type: ClassVar[str] = "assistant_thinking_delta"


@dataclass
class AssistantThinkingEnd(_Event):
    type: ClassVar[str] = "assistant_thinking_end"


# ── Tools ────────────────────────────────────────────────────────

@dataclass
class ToolUse(_Event):
    tool_use_id: str
    tool_name: str
    input: dict
    preview: Optional[str] = None
    type: ClassVar[str] = "tool_use"


@dataclass
class ToolResultEvent(_Event):
    """Full (untruncated) tool output, as shown to the user."""
    tool_use_id: str
    tool_name: str
    content: str
    is_error: bool = False
    files_changed: list[str] = field(default_factory=list)
    type: ClassVar[str] = "tool_result"


@dataclass
class ConfirmRequest(_Event):
    """The user must answer via ``Agent.confirm_response(id, allowed)``."""
    id: str
    tool_name: str
    reason: str
    preview: Optional[str] = None
    type: ClassVar[str] = "confirm_request"


# ── Accounting ───────────────────────────────────────────────────

@dataclass
class TokenUsage(_Event):
    input_tokens: int
    output_tokens: int
    total: int
    type: ClassVar[str] = "token_usage"


@dataclass
class ContextCompacted(_Event):
    reason: str
    removed_message_count: int
    tokens_before: int
    type: ClassVar[str] = "context_compacted"


@dataclass
class ErrorEvent(_Event):
    message: str
    type: ClassVar[str] = "error"


# ── MCP lifecycle ────────────────────────────────────────────────

@dataclass
class McpServerConnectStart(_Event):
    server_name: str
    type: ClassVar[str] = "mcp_server_connect_start"


@dataclass
class McpServerConnectSuccess(_Event):
    server_name: str
    tool_count: int
    type: ClassVar[str] = "mcp_server_connect_success"


@dataclass
class McpServerConnectError(_Event):
    server_name: str
    error: str
    type: ClassVar[str] = "mcp_server_connect_error"


@dataclass
class McpReconnectAttempt(_Event):
    server_name: str
    attempt: int
    max_attempts: int
    type: ClassVar[str] = "mcp_reconnect_attempt"


@dataclass
class McpHealthCheck(_Event):
    server_name: str
    latency_ms: float
    healthy: bool
    type: ClassVar[str] = "mcp_health_check"


@dataclass
class McpCacheHit(_Event):
    server_name: str
    type: ClassVar[str] = "mcp_cache_hit"


AgentEvent = Union[
    UserMessage,
    AssistantMessageStart, AssistantMessageDelta, AssistantMessageEnd,
    AssistantThinkingStart, AssistantThinkingDelta, AssistantThinkingEnd,
    ToolUse, ToolResultEvent, ConfirmRequest,
    TokenUsage, ContextCompacted, ErrorEvent,
    McpServerConnectStart, McpServerConnectSuccess, McpServerConnectError,
    McpReconnectAttempt, McpHealthCheck, McpCacheHit,
]

EventCallback = Callable[[Any], None]
