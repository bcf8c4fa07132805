"""
Tool Execution Scheduler: runs one batch of tool_use blocks.

Concurrency is decided per batch: if every tool in the batch is read-only
the calls run concurrently, otherwise the whole batch runs sequentially so
writes and confirmation prompts never interleave. Either way results come
back in the order of the tool_use blocks.

Nothing in here raises for a failing tool. Unknown tools, safety denials,
rejected confirmations and tool exceptions all become error results whose
content starts with ``Error: `` so the model can react to them.
"""

from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from .cancellation import CancellationToken, CancelledByUser
from .confirmations import ConfirmationBroker
from .events import ConfirmRequest, ToolResultEvent, ToolUse
from .models import SafetyAction, ToolOutput, ToolResultBlock, ToolUseBlock
from .safety import SafetyPolicy
from .tool_registry import ToolRegistry
from ..tools.base import ToolContext

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Error: "


@dataclass
class ToolExecution:
    """Outcome of one tool call. ``content`` is the full, untruncated text."""
    tool_use_id: str
    tool_name: str
    content: str
    is_error: bool = False
    files_changed: list[str] = field(default_factory=list)
    duration_ms: float = 0.0

    def to_block(self, max_chars: int) -> ToolResultBlock:
        return ToolResultBlock(
            tool_use_id=self.tool_use_id,
            content=truncate_middle(self.content, max_chars),
            is_error=self.is_error,
        )


def truncate_middle(content: str, max_chars: int) -> str:
    """Keep the head and tail of ``content``, replacing the middle with a marker."""
    if max_chars <= 0 or len(content) <= max_chars:
        return content
    head = max_chars // 2
    tail = max_chars - head
    omitted = len(content) - head - tail
    return f"{content[:head]}\n\n[... omitted {omitted} chars ...]\n\n{content[-tail:]}"


def normalize_tool_output(raw) -> tuple[str, bool, list[str]]:
    """Reduce whatever a tool returned to (content, is_error, files_changed)."""
    if isinstance(raw, ToolOutput):
        content = raw.content
        if raw.is_error and not content.startswith(ERROR_PREFIX):
            content = ERROR_PREFIX + content
        return content, raw.is_error, list(raw.files_changed)
    if raw is None:
        return "", False, []
    return str(raw), False, []


class ToolScheduler:
    """
    Executes tool_use batches against a registry, gated by a safety policy.

    Usage:
        scheduler = ToolScheduler(registry, policy, broker, emit=events.append,
                                  cwd="/repo", session_id="abc")
        results = await scheduler.execute_batch(tool_use_blocks, token)
    """

    MAX_PARALLEL = 10
    MAX_HISTORY_RESULT_CHARS = 30_000

    def __init__(
        self,
        registry: ToolRegistry,
        policy: SafetyPolicy,
        broker: ConfirmationBroker,
        emit: Callable[[object], None],
        cwd: str,
        session_id: str,
        max_history_result_chars: Optional[int] = None,
    ):
        self.registry = registry
        self.policy = policy
        self.broker = broker
        self.emit = emit
        self.cwd = cwd
        self.session_id = session_id
        self.max_history_result_chars = (
            max_history_result_chars
            if max_history_result_chars is not None
            else self.MAX_HISTORY_RESULT_CHARS
        )

    def is_readonly_batch(self, blocks: list[ToolUseBlock]) -> bool:
        return all(self.registry.is_readonly(b.name) for b in blocks)

    async def execute_batch(
        self,
        blocks: list[ToolUseBlock],
        token: CancellationToken,
    ) -> list[ToolExecution]:
        context = ToolContext(cwd=self.cwd, cancellation_token=token, session_id=self.session_id)

        if not self.is_readonly_batch(blocks):
            results = []
            for block in blocks:
                results.append(await self._run_block(block, context))
            return results

        # Pre-allocated slots keep results in tool_use order
        semaphore = asyncio.Semaphore(self.MAX_PARALLEL)
        slots: list[Optional[ToolExecution]] = [None] * len(blocks)

        async def _limited(idx: int, block: ToolUseBlock) -> None:
            async with semaphore:
                slots[idx] = await self._run_block(block, context)

        await asyncio.gather(*(_limited(i, b) for i, b in enumerate(blocks)))
        return [s for s in slots if s is not None]

    async def _run_block(self, block: ToolUseBlock, context: ToolContext) -> ToolExecution:
        tool = self.registry.get(block.name)
        preview = self._preview(tool, block.input) if tool is not None else None
        self.emit(ToolUse(
            tool_use_id=block.id, tool_name=block.name, input=block.input, preview=preview,
        ))
        # let the UI render the tool_use before the tool starts
        await asyncio.sleep(0)

        t0 = time.monotonic()
        result = await self.execute_tool(block, context, tool=tool, preview=preview)
        result.duration_ms = (time.monotonic() - t0) * 1000

        self.emit(ToolResultEvent(
            tool_use_id=result.tool_use_id,
            tool_name=result.tool_name,
            content=result.content,
            is_error=result.is_error,
            files_changed=result.files_changed,
        ))
        return result

    async def execute_tool(
        self,
        block: ToolUseBlock,
        context: ToolContext,
        tool=None,
        preview: Optional[str] = None,
    ) -> ToolExecution:
        """Run a single tool call through resolution, safety, confirmation and execution."""
        name = block.name

        def _error(message: str) -> ToolExecution:
            return ToolExecution(block.id, name, ERROR_PREFIX + message, is_error=True)

        tool = tool or self.registry.get(name)
        if tool is None:
            return _error(f'Unknown tool "{name}"')

        if context.cancellation_token.is_cancelled:
            return _error(f"Cancelled by user: {name}")

        decision = self.policy.decide(SafetyAction(
            kind="tool", tool_name=name, input=block.input, preview=preview,
        ))
        if not decision.allowed:
            logger.info(f"Tool {name} blocked: {decision.reason}")
            return _error(f"Blocked by safety policy: {decision.reason}")

        if decision.requires_confirm:
            allowed = await self._confirm(name, decision.reason, preview, context.cancellation_token)
            if not allowed:
                return _error(f"Cancelled by user: {name}")

        try:
            raw = await tool.execute(block.input, context)
        except CancelledByUser:
            return _error(f"Cancelled by user: {name}")
        except Exception as e:
            logger.warning(f"Tool {name} raised: {e}")
            return _error(str(e) or type(e).__name__)

        content, is_error, files_changed = normalize_tool_output(raw)
        return ToolExecution(block.id, name, content, is_error=is_error, files_changed=files_changed)

    async def _confirm(
        self,
        tool_name: str,
        reason: str,
        preview: Optional[str],
        token: CancellationToken,
    ) -> bool:
        request, future = self.broker.create(tool_name, reason, preview)
        self.emit(ConfirmRequest(
            id=request.id, tool_name=tool_name, reason=reason, preview=preview,
        ))
        cancel_waiter = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({future, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_waiter.cancel()
        if future.done():
            return future.result()
        self.broker.discard(request.id)
        return False

    @staticmethod
    def _preview(tool, tool_input: dict) -> Optional[str]:
        try:
            return tool.get_preview(tool_input)
        except Exception as e:
            logger.debug(f"Preview failed for {tool.name}: {e}")
            return None
