"""
Abstract base class for LLM providers.

Providers translate a ModelRequest into their native streaming API and
yield the provider-neutral stream events defined here. The turn loop only
ever sees these events, never SDK objects.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Literal, Optional, Union

from ..models import Message, ToolSchema


# ── Request ──────────────────────────────────────────────────────

@dataclass
class ModelRequest:
    model: str
    messages: list[Message]
    system: str = ""
    tools: list[ToolSchema] = field(default_factory=list)
    max_tokens: int = 4096
    thinking_budget: Optional[int] = None  # None = thinking disabled


# ── Stream events ────────────────────────────────────────────────

@dataclass
class BlockStart:
    """A content block opened. ``block_type`` is text, tool_use, thinking or redacted_thinking."""
    index: int
    block_type: str
    id: Optional[str] = None
    name: Optional[str] = None
    data: str = ""  # opaque payload of redacted_thinking blocks


@dataclass
class BlockDelta:
    index: int
    delta_type: Literal["text", "input_json", "thinking", "signature"]
    data: str


@dataclass
class BlockStop:
    index: int


@dataclass
class MessageDelta:
    """Message-level update: stop reason and/or token usage."""
    stop_reason: Optional[str] = None
    usage: Optional[dict] = None  # {"input_tokens": N} and/or {"output_tokens": N}


ProviderStreamEvent = Union[BlockStart, BlockDelta, BlockStop, MessageDelta]


class BaseLLMProvider(ABC):
    """Abstract LLM provider interface."""

    def __init__(self, model: str, base_url: Optional[str] = None, api_key: Optional[str] = None, **kwargs):
        self.model = model
        self.base_url = base_url
        # Keep the key out of repr/logging
        self._api_key = api_key
        self.timeout = kwargs.get("timeout", 300)

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key

    def __repr__(self) -> str:
        masked = f"***{self._api_key[-4:]}" if self._api_key and len(self._api_key) > 4 else "***"
        return (
            f"{self.__class__.__name__}(model={self.model!r}, "
            f"api_key={masked!r})"
        )

    @abstractmethod
    def stream(self, request: ModelRequest) -> AsyncIterator[ProviderStreamEvent]:
        """
        Stream one model response as provider-neutral events.

        Implementations are async generators. Failures are raised as
        ``ProviderError`` (``ContextOverflowError`` for window overflows).
        """

    async def count_tokens(self, request: ModelRequest) -> int:
        """Exact input-token count for ``request``. Optional; callers fall back to an estimate."""
        raise NotImplementedError(f"{self.provider_name} does not count tokens")

    async def complete(self, request: ModelRequest) -> str:
        """Run ``request`` to completion and return only its text."""
        parts: list[str] = []
        async for event in self.stream(request):
            if isinstance(event, BlockDelta) and event.delta_type == "text":
                parts.append(event.data)
        return "".join(parts)

    async def close(self) -> None:
        """Release network resources held by the provider."""

    @property
    def provider_name(self) -> str:
        return self.__class__.__name__


class ProviderFactory:
    """Create LLM provider from config."""

    _providers: dict[str, type[BaseLLMProvider]] = {}

    @classmethod
    def register(cls, name: str, provider_class: type[BaseLLMProvider]):
        cls._providers[name] = provider_class

    @classmethod
    def available(cls) -> list[str]:
        return list(cls._providers.keys())

    @classmethod
    def create(cls, config) -> BaseLLMProvider:
        """
        Create provider from config.

        Config structure:
            llm:
              provider: "anthropic"
              model: "claude-sonnet-4-5"
            providers:
              anthropic:
                base_url: null
                timeout: 300
        """
        llm_config = config.get("llm", {}) or {}
        provider_name = llm_config.get("provider", "anthropic")
        provider_config = (config.get("providers", {}) or {}).get(provider_name, {}) or {}

        if provider_name not in cls._providers:
            raise ValueError(
                f"Unknown provider: {provider_name}. "
                f"Available: {list(cls._providers.keys())}"
            )

        provider_class = cls._providers[provider_name]
        kwargs = {k: v for k, v in provider_config.items() if v is not None}
        return provider_class(model=llm_config.get("model"), **kwargs)
