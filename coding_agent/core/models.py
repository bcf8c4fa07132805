"""
Universal data models for the agent runtime.
These are provider-agnostic; each provider converts to/from its native format.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import ClassVar, Literal, Optional, Union


# ── Content blocks ───────────────────────────────────────────────


@dataclass
class TextBlock:
    text: str = ""
    type: ClassVar[str] = "text"

    def to_dict(self) -> dict:
        return {"type": self.type, "text": self.text}


@dataclass
class ToolUseBlock:
    """A tool invocation requested by the model."""
    id: str
    name: str
    input: dict = field(default_factory=dict)
    type: ClassVar[str] = "tool_use"

    def to_dict(self) -> dict:
        return {"type": self.type, "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolResultBlock:
    """The outcome of one tool_use, matched by ``tool_use_id``."""
    tool_use_id: str
    content: str
    is_error: bool = False
    type: ClassVar[str] = "tool_result"

    def to_dict(self) -> dict:
        d = {"type": self.type, "tool_use_id": self.tool_use_id, "content": self.content}
        if self.is_error:
            d["is_error"] = True
        return d


@dataclass
class ThinkingBlock:
    thinking: str = ""
    signature: Optional[str] = None
    type: ClassVar[str] = "thinking"

    def to_dict(self) -> dict:
        d = {"type": self.type, "thinking": self.thinking}
        if self.signature:
            d["signature"] = self.signature
        return d


@dataclass
class RedactedThinkingBlock:
    data: str = ""
    type: ClassVar[str] = "redacted_thinking"

    def to_dict(self) -> dict:
        return {"type": self.type, "data": self.data}


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, ThinkingBlock, RedactedThinkingBlock]


@dataclass
class Message:
    """A single message in the conversation history."""
    role: Literal["user", "assistant"]
    content: list = field(default_factory=list)  # list[ContentBlock]

    @classmethod
    def user_text(cls, text: str) -> "Message":
        return cls(role="user", content=[TextBlock(text=text)])

    @classmethod
    def assistant_text(cls, text: str) -> "Message":
        return cls(role="assistant", content=[TextBlock(text=text)])

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    def has_tool_result(self) -> bool:
        return any(isinstance(b, ToolResultBlock) for b in self.content)

    def to_dict(self) -> dict:
        return {"role": self.role, "content": [b.to_dict() for b in self.content]}


# ── Tools ────────────────────────────────────────────────────────


@dataclass
class ToolSchema:
    """Universal tool definition for LLM consumption."""
    name: str
    description: str
    input_schema: dict  # JSON Schema format

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass
class ToolOutput:
    """Structured tool result. Plain ``str`` results are also accepted."""
    content: str
    files_changed: list[str] = field(default_factory=list)
    is_error: bool = False


# ── Safety ───────────────────────────────────────────────────────


@dataclass
class SafetyAction:
    """An action proposed for execution: a shell command or a tool call."""
    kind: Literal["bash", "tool"]
    tool_name: str = ""
    input: dict = field(default_factory=dict)
    command: str = ""
    preview: Optional[str] = None


@dataclass
class SafetyDecision:
    allowed: bool
    requires_confirm: bool
    reason: str = ""


@dataclass
class ConfirmationRequest:
    """A pending yes/no question for the user about one tool call."""
    id: str
    tool_name: str
    reason: str
    preview: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tool_name": self.tool_name,
            "reason": self.reason,
            "preview": self.preview,
        }


# ── Context ──────────────────────────────────────────────────────


DEFAULT_COMPACT_PROMPT = (
    "Summarize the conversation so far so that work can continue without it. "
    "Cover: the user's goal, decisions made, work completed, pending work, "
    "constraints and preferences, key files and commands, and open risks or "
    "questions. Be concise and precise; keep identifiers, paths and error "
    "messages verbatim."
)


@dataclass(frozen=True)
class ContextSettings:
    """Resolved per-session context window settings."""
    context_window_tokens: int = 200_000
    auto_compact_token_limit: int = 160_000
    recent_messages_to_keep: int = 8
    compact_prompt: str = DEFAULT_COMPACT_PROMPT
    compact_max_output_tokens: int = 2048
    enable_auto_compact: bool = True


@dataclass
class TokenCount:
    tokens: int
    estimated: bool = False


@dataclass
class CompactionResult:
    summary: str
    removed_message_count: int
    summary_message: Message
    preserved_tail: list[Message]

    @property
    def messages(self) -> list[Message]:
        return [self.summary_message, *self.preserved_tail]
