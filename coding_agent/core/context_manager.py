"""
Context Manager: token accounting and history compaction.

Counts tokens for the next request (exact via the provider when it can,
otherwise ~4 chars per token) and, once the auto-compact limit is reached,
replaces the older part of the history with a model-written summary.

The split point never separates a tool_use from its tool_result: the
preserved tail always starts at a message that carries no tool_result.
"""

from __future__ import annotations
import json
import logging
import math
from typing import Optional

from .models import (
    CompactionResult, ContextSettings, Message, RedactedThinkingBlock,
    TextBlock, ThinkingBlock, TokenCount, ToolResultBlock, ToolSchema, ToolUseBlock,
)
from .providers.base import BaseLLMProvider, ModelRequest

logger = logging.getLogger(__name__)

SUMMARY_TAG = "[Context Summary | reason={reason}]"


class ContextManager:
    """
    Decides when to compact and performs the compaction.

    Usage:
        cm = ContextManager(provider, ContextSettings())
        count = await cm.count_tokens(history, system, tools)
        if cm.should_compact(count.tokens):
            result = await cm.compact_history(history, reason="auto")
            if result:
                history = result.messages
    """

    # Rough chars-per-token estimate (conservative for English text)
    CHARS_PER_TOKEN = 4

    # The transcript sent for summarization keeps only its most recent chars
    TRANSCRIPT_CHAR_LIMIT = 120_000

    MIN_KEEP_MESSAGES = 2

    SUMMARY_SYSTEM_PROMPT = (
        "You produce concise, loss-minimizing technical summaries for context compaction."
    )
    FALLBACK_SUMMARY = (
        "Conversation was compacted due to context window limits. "
        "Continue using recent turns as source of truth."
    )

    def __init__(self, provider: BaseLLMProvider, settings: ContextSettings, model: Optional[str] = None):
        self.provider = provider
        self.settings = settings
        self.model = model or provider.model

    # ── Token accounting ────────────────────────────────────────

    async def count_tokens(
        self,
        messages: list[Message],
        system: str = "",
        tools: Optional[list[ToolSchema]] = None,
    ) -> TokenCount:
        """Exact provider-side count if available, else a flagged estimate."""
        request = ModelRequest(model=self.model, messages=messages, system=system, tools=list(tools or []))
        try:
            tokens = await self.provider.count_tokens(request)
            return TokenCount(tokens=int(tokens), estimated=False)
        except Exception as e:
            logger.debug(f"Provider token count unavailable, estimating: {e}")
            return TokenCount(tokens=self.estimate_tokens(messages, system, tools), estimated=True)

    def estimate_tokens(
        self,
        messages: list[Message],
        system: str = "",
        tools: Optional[list[ToolSchema]] = None,
    ) -> int:
        chars = len(json.dumps([m.to_dict() for m in messages], ensure_ascii=False))
        chars += len(system)
        chars += len(json.dumps([t.to_dict() for t in tools or []], ensure_ascii=False))
        return math.ceil(chars / self.CHARS_PER_TOKEN)

    def should_compact(self, tokens: int) -> bool:
        return self.settings.enable_auto_compact and tokens >= self.settings.auto_compact_token_limit

    # ── Compaction ──────────────────────────────────────────────

    @classmethod
    def aggressive_keep(cls, keep: int) -> int:
        return max(cls.MIN_KEEP_MESSAGES, keep // 2)

    def select_compaction_boundary(self, messages: list[Message], keep_recent_messages: int) -> int:
        """
        Index of the first preserved message, or 0 if nothing can be compacted.

        At least ``max(2, keep_recent_messages)`` trailing messages are kept.
        The boundary moves earlier while it lands on a tool_result message.
        """
        min_keep = max(self.MIN_KEEP_MESSAGES, keep_recent_messages)
        if len(messages) <= min_keep + 1:
            return 0

        index = len(messages) - min_keep
        while index > 1 and messages[index].has_tool_result():
            index -= 1
        if messages[index].has_tool_result():
            return 0
        return index

    async def compact_history(
        self,
        messages: list[Message],
        reason: str,
        keep_recent_messages: Optional[int] = None,
        aggressive: bool = False,
    ) -> Optional[CompactionResult]:
        """
        Summarize everything before the boundary.

        Returns None when there is nothing to compact. Provider failures
        while summarizing propagate to the caller.
        """
        keep = keep_recent_messages if keep_recent_messages is not None else self.settings.recent_messages_to_keep
        if aggressive:
            keep = self.aggressive_keep(keep)

        split = self.select_compaction_boundary(messages, keep)
        if split <= 0 or split >= len(messages):
            return None

        removed = messages[:split]
        preserved = list(messages[split:])
        transcript = self.serialize_transcript(removed)
        summary = await self.generate_summary(transcript, reason)

        summary_message = Message(
            role="assistant",
            content=[TextBlock(text=f"{SUMMARY_TAG.format(reason=reason)}\n{summary}")],
        )
        logger.info(
            f"Compacted {len(removed)} messages (reason={reason}, keep={len(preserved)})"
        )
        return CompactionResult(
            summary=summary,
            removed_message_count=len(removed),
            summary_message=summary_message,
            preserved_tail=preserved,
        )

    async def generate_summary(self, transcript: str, reason: str) -> str:
        prompt = "\n".join([
            self.settings.compact_prompt,
            "",
            f"Compaction reason: {reason}",
            "",
            "Conversation transcript:",
            transcript,
        ])
        request = ModelRequest(
            model=self.model,
            messages=[Message.user_text(prompt)],
            system=self.SUMMARY_SYSTEM_PROMPT,
            tools=[],
            max_tokens=self.settings.compact_max_output_tokens,
        )
        summary = (await self.provider.complete(request)).strip()
        return summary or self.FALLBACK_SUMMARY

    # ── Transcript ──────────────────────────────────────────────

    def serialize_transcript(self, messages: list[Message]) -> str:
        lines: list[str] = []
        for message in messages:
            lines.append(f"{message.role.upper()}:")
            for block in message.content:
                rendered = self._render_block(block)
                if rendered:
                    lines.append(rendered)
            lines.append("")

        transcript = "\n".join(lines)
        if len(transcript) > self.TRANSCRIPT_CHAR_LIMIT:
            transcript = transcript[-self.TRANSCRIPT_CHAR_LIMIT:]
        return transcript

    @staticmethod
    def _render_block(block) -> str:
        if isinstance(block, TextBlock):
            return block.text
        if isinstance(block, ToolUseBlock):
            return f"[tool_use:{block.name}] {json.dumps(block.input, ensure_ascii=False)}"
        if isinstance(block, ToolResultBlock):
            return f"[tool_result:{block.tool_use_id}] {block.content}"
        if isinstance(block, ThinkingBlock):
            return "[thinking omitted]"
        if isinstance(block, RedactedThinkingBlock):
            return "[redacted_thinking]"
        return ""
