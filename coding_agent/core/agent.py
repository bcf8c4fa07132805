"""
Agent Loop: the conversation orchestrator.

Flow per send_message():
  user message → history → [compact if over budget] → stream model response
  → buffer tool-call JSON per block → append assistant turn
  → if tool_use blocks: run the batch through the scheduler → append results → loop
  → otherwise the turn ends

Everything observable is emitted as a typed event (see events.py) through
the async iterator returned by send_message() and, optionally, an
``on_event`` callback. Tool failures never end the turn; provider errors
end it with an ErrorEvent; cancellation ends it silently.
"""

from __future__ import annotations
import asyncio
import contextlib
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from .cancellation import CancellationToken, CancelledByUser
from .confirmations import ConfirmationBroker
from .context_manager import ContextManager
from .errors import (
    ContextOverflowError, ProviderError, TurnInProgressError, classify_provider_error,
)
from .events import (
    AgentEvent, AssistantMessageDelta, AssistantMessageEnd, AssistantMessageStart,
    AssistantThinkingDelta, AssistantThinkingEnd, AssistantThinkingStart,
    ContextCompacted, ErrorEvent, EventCallback, TokenUsage, UserMessage,
)
from .json_repair import coerce_tool_input
from .models import (
    ContextSettings, Message, RedactedThinkingBlock, TextBlock, ThinkingBlock,
    TokenCount, ToolUseBlock,
)
from .prompt_builder import PromptBuilder
from .providers.base import (
    BaseLLMProvider, BlockDelta, BlockStart, BlockStop, MessageDelta, ModelRequest,
)
from .safety import SafetyPolicy, SafetySettings
from .scheduler import ToolScheduler
from .skills import (
    SkillMetadata, SkillRegistry, merge_skill_mcp_dependencies, validate_skill_dependencies,
)
from .structured_logger import bind_log_context
from .tool_registry import ToolRegistry
from ..mcp.loader import McpToolLoader

logger = logging.getLogger(__name__)

REDACTED_THINKING_TEXT = "[thinking is redacted]"
DEFAULT_MAX_TOKENS = 4096
THINKING_HEADROOM_TOKENS = 4096

_DONE = object()


@dataclass
class _BlockBuffer:
    """One content block being assembled from stream deltas."""
    block_type: str
    id: str = ""
    name: str = ""
    text: str = ""
    signature: str = ""
    data: str = ""
    closed: bool = False


@dataclass
class _StreamState:
    blocks: dict[int, _BlockBuffer] = field(default_factory=dict)
    text_started: bool = False
    stop_reason: Optional[str] = None
    usage: dict[str, int] = field(default_factory=lambda: defaultdict(int))


class Agent:
    """
    Multi-turn, tool-using conversation with a model.

    Usage:
        agent = Agent(provider, registry, SafetySettings(project_root=cwd), cwd=cwd)
        await agent.init()
        async for event in agent.send_message("list files"):
            if isinstance(event, ConfirmRequest):
                agent.confirm_response(event.id, True)
        await agent.close()

    Only one turn runs at a time; iterating a second send_message() while
    one is active raises TurnInProgressError.
    """

    def __init__(
        self,
        provider: BaseLLMProvider,
        registry: ToolRegistry,
        safety: SafetySettings,
        cwd: str,
        context_settings: Optional[ContextSettings] = None,
        model: Optional[str] = None,
        skill_registry: Optional[SkillRegistry] = None,
        mcp_servers: Optional[dict] = None,
        mcp_loader=None,
        settings_store=None,
        on_event: Optional[EventCallback] = None,
        system_prompt_extra: str = "",
        max_tokens: int = DEFAULT_MAX_TOKENS,
        max_history_result_chars: Optional[int] = None,
        session_id: Optional[str] = None,
    ):
        self.provider = provider
        self.registry = registry
        self.cwd = cwd
        self.model = model or provider.model
        self.session_id = session_id or uuid.uuid4().hex
        self.on_event = on_event
        self.max_tokens = max_tokens

        self.policy = SafetyPolicy(safety)
        self.broker = ConfirmationBroker()
        self.context = ContextManager(provider, context_settings or ContextSettings(), self.model)
        self.prompt_builder = PromptBuilder(self.model, cwd, system_prompt_extra)
        self.scheduler = ToolScheduler(
            registry, self.policy, self.broker,
            emit=self._emit, cwd=cwd, session_id=self.session_id,
            max_history_result_chars=max_history_result_chars,
        )

        self.skill_registry = skill_registry
        self.mcp_servers = dict(mcp_servers or {})
        self.mcp_loader = mcp_loader
        self.settings_store = settings_store

        self._messages: list[Message] = []
        self._skills: list[SkillMetadata] = []
        self._thinking_budget: Optional[int] = None
        self._initialized = False
        self._running = False
        self._turn = 0
        self._token: Optional[CancellationToken] = None
        self._queue: Optional[asyncio.Queue] = None
        self._background: set[asyncio.Task] = set()

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def skills(self) -> list[SkillMetadata]:
        return list(self._skills)

    # ── Lifecycle ───────────────────────────────────────────────

    async def init(self) -> None:
        """Discover skills and connect MCP servers. Safe to call more than once."""
        if self._initialized:
            return
        self._initialized = True

        if self.skill_registry is not None:
            outcome = await asyncio.to_thread(self.skill_registry.get_skills_for_cwd, self.cwd)
            for error in outcome.errors:
                logger.warning(f"Skill load error: {error}")
            self._skills = outcome.skills

        servers, warnings = merge_skill_mcp_dependencies(self.mcp_servers, self._skills)
        for warning in warnings:
            logger.warning(warning)
        for skill_name, server_name in validate_skill_dependencies(self._skills, servers):
            logger.warning(f'Skill "{skill_name}" requires MCP server "{server_name}", which is not configured')

        if not servers:
            return
        if self.mcp_loader is None:
            self.mcp_loader = McpToolLoader(emit=self._emit)

        tools = await self.mcp_loader.load(servers)
        by_server: dict[str, list] = defaultdict(list)
        for tool in tools:
            by_server[tool.server_name].append(tool)
        for server_name, server_tools in by_server.items():
            self.registry.replace_namespace(server_name, server_tools)
        self.mcp_loader.attach_registry(self.registry)
        logger.info(f"Loaded {len(tools)} MCP tools from {len(by_server)} servers")

    async def close(self) -> None:
        """Deny pending confirmations, stop MCP, and release the provider."""
        self.stop()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self.mcp_loader is not None:
            await self.mcp_loader.cleanup()
        await self.provider.close()

    # ── Public controls ─────────────────────────────────────────

    def stop(self) -> None:
        """Cancel the running turn, if any. The turn ends without an error event."""
        if self._token is not None:
            self._token.cancel("Stopped by user")
        pending = self.broker.cancel_all()
        if pending:
            logger.debug(f"Denied {pending} pending confirmations on stop")

    def reset_conversation(self) -> None:
        if self._running:
            raise TurnInProgressError("Cannot reset while a turn is in progress")
        self._messages.clear()
        self._turn = 0
        logger.info("Conversation reset")

    def confirm_response(self, request_id: str, allowed: bool) -> bool:
        """Answer a ConfirmRequest. Returns False if it was unknown or already answered."""
        return self.broker.resolve(request_id, allowed)

    def add_auto_allowed_tool(self, tool_name: str) -> None:
        """
        Stop asking about ``tool_name`` for this session right away and
        persist the choice in the background.
        """
        self.policy.add_auto_allowed_tool(tool_name)
        if self.settings_store is None:
            return
        task = asyncio.get_running_loop().create_task(
            asyncio.to_thread(self.settings_store.add_auto_allowed_tool, tool_name)
        )
        self._background.add(task)
        task.add_done_callback(self._on_persist_done)

    def _on_persist_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Failed to persist auto-allowed tool: {exc}")

    def set_thinking(self, enabled: bool, budget_tokens: int = 2048) -> None:
        self._thinking_budget = budget_tokens if enabled else None

    @property
    def thinking_budget(self) -> Optional[int]:
        return self._thinking_budget

    async def get_context_state(self) -> dict:
        count = await self.context.count_tokens(
            self._messages, self._system_prompt(), self.registry.get_schemas(),
        )
        return {
            "message_count": len(self._messages),
            "tokens": count.tokens,
            "estimated": count.estimated,
            "context_window": self.context.settings.context_window_tokens,
            "auto_compact_limit": self.context.settings.auto_compact_token_limit,
            "is_running": self._running,
        }

    # ── Turn ────────────────────────────────────────────────────

    async def send_message(self, text: str) -> AsyncIterator[AgentEvent]:
        """Run one user turn, yielding events until the loop ends."""
        if self._running:
            raise TurnInProgressError()
        self._running = True
        self._turn += 1
        token = CancellationToken()
        queue: asyncio.Queue = asyncio.Queue()
        self._token = token
        self._queue = queue

        task = asyncio.create_task(self._run_turn(text, token))
        task.add_done_callback(lambda _: queue.put_nowait(_DONE))
        try:
            while True:
                event = await queue.get()
                if event is _DONE:
                    break
                yield event
            await task
        finally:
            if not task.done():
                # consumer went away mid-turn
                token.cancel("Event consumer closed")
                self.broker.cancel_all()
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            self._queue = None
            self._token = None
            self._running = False

    async def _run_turn(self, text: str, token: CancellationToken) -> None:
        bind_log_context(session_id=self.session_id, turn=self._turn)
        self._emit(UserMessage(content=text))
        self._messages.append(Message.user_text(text))

        while not token.is_cancelled:
            try:
                await self._compact_if_needed()
                outcome = await self._call_model(token)
            except CancelledByUser:
                break
            except ProviderError as e:
                logger.error(f"Model call failed ({e.kind.value}): {e}")
                self._emit(ErrorEvent(message=str(e)))
                break

            if outcome is None:
                logger.info("Turn cancelled during streaming")
                break
            assistant, stop_reason = outcome
            self._messages.append(assistant)

            tool_uses = assistant.tool_uses
            if not tool_uses:
                logger.debug(f"Turn finished (stop_reason={stop_reason})")
                break

            results = await self.scheduler.execute_batch(tool_uses, token)
            max_chars = self.scheduler.max_history_result_chars
            self._messages.append(Message(
                role="user", content=[r.to_block(max_chars) for r in results],
            ))

    # ── Model call ──────────────────────────────────────────────

    def _system_prompt(self) -> str:
        return self.prompt_builder.build(self._skills)

    def _build_request(self) -> ModelRequest:
        max_tokens = self.max_tokens
        if self._thinking_budget:
            max_tokens = max(max_tokens, self._thinking_budget + THINKING_HEADROOM_TOKENS)
        return ModelRequest(
            model=self.model,
            messages=list(self._messages),
            system=self._system_prompt(),
            tools=self.registry.get_schemas(),
            max_tokens=max_tokens,
            thinking_budget=self._thinking_budget,
        )

    async def _call_model(self, token: CancellationToken):
        """Stream one response; on context overflow compact hard and retry once."""
        try:
            return await self._stream_response(self._build_request(), token)
        except ContextOverflowError as e:
            logger.warning(f"Context overflow, compacting aggressively and retrying: {e}")
            tokens_before = self.context.estimate_tokens(self._messages)
            if not await self._compact("overflow", tokens_before, aggressive=True):
                raise
        return await self._stream_response(self._build_request(), token)

    async def _stream_response(self, request: ModelRequest, token: CancellationToken):
        """
        Consume the provider stream, emitting events as deltas arrive.

        Returns (assistant message, stop reason), or None if the token was
        cancelled first; then only the partial text is kept in history.
        """
        state = _StreamState()
        consumer = asyncio.ensure_future(self._consume_stream(request, state, token))
        cancelled = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({consumer, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()

        if not consumer.done():
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer

        if token.is_cancelled:
            self._finish_open_blocks(state)
            partial = "".join(
                b.text for _, b in sorted(state.blocks.items()) if b.block_type == "text"
            )
            if partial:
                self._messages.append(Message.assistant_text(partial))
            return None

        try:
            consumer.result()
        except ProviderError:
            raise
        except Exception as e:
            raise classify_provider_error(e) from e
        finally:
            self._finish_open_blocks(state)
        self._emit_usage(state)
        return self._assemble(state), state.stop_reason

    async def _consume_stream(self, request: ModelRequest, state: _StreamState, token: CancellationToken) -> None:
        async for event in self.provider.stream(request):
            if token.is_cancelled:
                return
            if isinstance(event, BlockStart):
                self._on_block_start(event, state)
            elif isinstance(event, BlockDelta):
                self._on_block_delta(event, state)
            elif isinstance(event, BlockStop):
                self._on_block_stop(event.index, state)
            elif isinstance(event, MessageDelta):
                if event.stop_reason:
                    state.stop_reason = event.stop_reason
                for key, value in (event.usage or {}).items():
                    state.usage[key] = int(value or 0)

    def _on_block_start(self, event: BlockStart, state: _StreamState) -> None:
        buffer = _BlockBuffer(
            block_type=event.block_type, id=event.id or "", name=event.name or "", data=event.data,
        )
        state.blocks[event.index] = buffer
        if event.block_type == "text":
            if not state.text_started:
                state.text_started = True
                self._emit(AssistantMessageStart())
        elif event.block_type == "thinking":
            self._emit(AssistantThinkingStart())
        elif event.block_type == "redacted_thinking":
            self._emit(AssistantThinkingStart(redacted=True))
            self._emit(AssistantThinkingDelta(delta=REDACTED_THINKING_TEXT))
        elif event.block_type != "tool_use":
            logger.debug(f"Ignoring unsupported block type {event.block_type}")

    def _on_block_delta(self, event: BlockDelta, state: _StreamState) -> None:
        buffer = state.blocks.get(event.index)
        if buffer is None:
            # delta without a start: treat as text so nothing is lost
            buffer = _BlockBuffer(block_type="text")
            state.blocks[event.index] = buffer
            if not state.text_started:
                state.text_started = True
                self._emit(AssistantMessageStart())

        if event.delta_type == "text":
            buffer.text += event.data
            self._emit(AssistantMessageDelta(delta=event.data))
        elif event.delta_type == "thinking":
            buffer.text += event.data
            self._emit(AssistantThinkingDelta(delta=event.data))
        elif event.delta_type == "signature":
            buffer.signature += event.data
        elif event.delta_type == "input_json":
            # parsed once the block closes
            buffer.text += event.data

    def _on_block_stop(self, index: int, state: _StreamState) -> None:
        buffer = state.blocks.get(index)
        if buffer is None or buffer.closed:
            return
        buffer.closed = True
        if buffer.block_type in ("thinking", "redacted_thinking"):
            self._emit(AssistantThinkingEnd())

    def _finish_open_blocks(self, state: _StreamState) -> None:
        for index in sorted(state.blocks):
            self._on_block_stop(index, state)
        if state.text_started:
            state.text_started = False
            self._emit(AssistantMessageEnd())

    def _emit_usage(self, state: _StreamState) -> None:
        if not state.usage:
            return
        input_tokens = state.usage.get("input_tokens", 0)
        output_tokens = state.usage.get("output_tokens", 0)
        self._emit(TokenUsage(
            input_tokens=input_tokens, output_tokens=output_tokens,
            total=input_tokens + output_tokens,
        ))

    @staticmethod
    def _assemble(state: _StreamState) -> Message:
        content = []
        for _, buffer in sorted(state.blocks.items()):
            if buffer.block_type == "text":
                if buffer.text:
                    content.append(TextBlock(text=buffer.text))
            elif buffer.block_type == "thinking":
                content.append(ThinkingBlock(thinking=buffer.text, signature=buffer.signature or None))
            elif buffer.block_type == "redacted_thinking":
                content.append(RedactedThinkingBlock(data=buffer.data))
            elif buffer.block_type == "tool_use":
                content.append(ToolUseBlock(
                    id=buffer.id, name=buffer.name,
                    input=coerce_tool_input(buffer.text, buffer.name),
                ))
        return Message(role="assistant", content=content)

    # ── Compaction ──────────────────────────────────────────────

    async def _compact_if_needed(self) -> Optional[TokenCount]:
        system = self._system_prompt()
        tools = self.registry.get_schemas()
        count = await self.context.count_tokens(self._messages, system, tools)
        if not self.context.should_compact(count.tokens):
            return count

        if not await self._compact("auto", count.tokens):
            return count
        recount = await self.context.count_tokens(self._messages, system, tools)
        if self.context.should_compact(recount.tokens):
            logger.info(f"Still over budget after compaction ({recount.tokens} tokens), compacting aggressively")
            await self._compact("auto-aggressive", recount.tokens, aggressive=True)
        return recount

    async def _compact(self, reason: str, tokens_before: int, aggressive: bool = False) -> bool:
        try:
            result = await self.context.compact_history(self._messages, reason=reason, aggressive=aggressive)
        except Exception as e:
            logger.warning(f"Context compaction failed ({reason}): {e}")
            return False
        if result is None:
            logger.debug(f"Nothing to compact ({reason})")
            return False
        self._messages = result.messages
        self._emit(ContextCompacted(
            reason=reason,
            removed_message_count=result.removed_message_count,
            tokens_before=tokens_before,
        ))
        return True

    # ── Events ──────────────────────────────────────────────────

    def _emit(self, event: object) -> None:
        if self._queue is not None:
            self._queue.put_nowait(event)
        if self.on_event is not None:
            try:
                self.on_event(event)
            except Exception as e:
                logger.debug(f"on_event callback failed: {e}")
