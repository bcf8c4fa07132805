"""
Anthropic LLM Provider: native Messages API with streaming tool_use and
extended thinking.
"""

from __future__ import annotations
import logging
import os
from typing import AsyncIterator, Optional

from .base import (
    BaseLLMProvider, BlockDelta, BlockStart, BlockStop, MessageDelta,
    ModelRequest, ProviderFactory, ProviderStreamEvent,
)
from ..errors import ProviderError, classify_provider_error

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"

_DELTA_TYPES = {
    "text_delta": ("text", "text"),
    "input_json_delta": ("input_json", "partial_json"),
    "thinking_delta": ("thinking", "thinking"),
    "signature_delta": ("signature", "signature"),
}


def to_wire_name(name: str) -> str:
    """API tool names allow only [a-zA-Z0-9_-]; namespaced MCP names use a dot."""
    return name.replace(".", "__")


class AnthropicProvider(BaseLLMProvider):
    """Anthropic provider with native tool_use and thinking support."""

    def __init__(self, model: Optional[str] = None,
                 api_key: Optional[str] = None,
                 auth_token: Optional[str] = None, **kwargs):
        super().__init__(
            model=model or DEFAULT_MODEL,
            api_key=api_key or os.getenv("ANTHROPIC_API_KEY"),
            **kwargs,
        )
        self._auth_token = auth_token or os.getenv("ANTHROPIC_AUTH_TOKEN")
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise ProviderError(
                    "Anthropic package not installed. Run: pip install anthropic"
                ) from e
            self._client = AsyncAnthropic(
                api_key=self.api_key,
                auth_token=self._auth_token,
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    def _build_params(self, request: ModelRequest) -> dict:
        messages = [m.to_dict() for m in request.messages]
        for message in messages:
            for block in message["content"]:
                if block["type"] == "tool_use":
                    block["name"] = to_wire_name(block["name"])
        if messages and messages[0]["role"] != "user":
            # Compacted histories open with an assistant summary; the API wants a user turn first
            messages.insert(0, {"role": "user", "content": "Continue the conversation."})
        params = {
            "model": request.model or self.model,
            "max_tokens": request.max_tokens,
            "messages": messages,
        }
        if request.system:
            params["system"] = request.system
        if request.tools:
            params["tools"] = [
                {**t.to_dict(), "name": to_wire_name(t.name)} for t in request.tools
            ]
        if request.thinking_budget:
            params["thinking"] = {"type": "enabled", "budget_tokens": request.thinking_budget}
        return params

    async def stream(self, request: ModelRequest) -> AsyncIterator[ProviderStreamEvent]:
        """Stream a response using the raw Messages API event stream."""
        client = self._get_client()
        wire_names = {to_wire_name(t.name): t.name for t in request.tools}
        try:
            response = await client.messages.create(stream=True, **self._build_params(request))
            async for event in response:
                converted = self._convert_event(event)
                if isinstance(converted, BlockStart) and converted.name:
                    converted.name = wire_names.get(converted.name, converted.name)
                if converted is not None:
                    yield converted
        except ProviderError:
            raise
        except Exception as e:
            raise classify_provider_error(e) from e

    @staticmethod
    def _convert_event(event) -> Optional[ProviderStreamEvent]:
        kind = event.type
        if kind == "message_start":
            usage = getattr(event.message, "usage", None)
            if usage is not None:
                return MessageDelta(usage={"input_tokens": getattr(usage, "input_tokens", 0) or 0})
            return None

        if kind == "content_block_start":
            block = event.content_block
            return BlockStart(
                index=event.index,
                block_type=block.type,
                id=getattr(block, "id", None),
                name=getattr(block, "name", None),
                data=getattr(block, "data", "") or "",
            )

        if kind == "content_block_delta":
            mapping = _DELTA_TYPES.get(event.delta.type)
            if mapping is None:
                logger.debug(f"Ignoring delta type {event.delta.type}")
                return None
            delta_type, attr = mapping
            return BlockDelta(index=event.index, delta_type=delta_type, data=getattr(event.delta, attr, ""))

        if kind == "content_block_stop":
            return BlockStop(index=event.index)

        if kind == "message_delta":
            usage = None
            if getattr(event, "usage", None) is not None:
                usage = {"output_tokens": getattr(event.usage, "output_tokens", 0) or 0}
            return MessageDelta(stop_reason=getattr(event.delta, "stop_reason", None), usage=usage)

        return None

    async def count_tokens(self, request: ModelRequest) -> int:
        client = self._get_client()
        params = self._build_params(request)
        params.pop("max_tokens", None)
        try:
            result = await client.messages.count_tokens(**params)
        except Exception as e:
            raise classify_provider_error(e) from e
        return result.input_tokens

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


ProviderFactory.register("anthropic", AnthropicProvider)
