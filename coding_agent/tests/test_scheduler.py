"""
Tests for ToolScheduler: batch concurrency, safety gating, confirmations,
error normalization and history truncation.
"""

from __future__ import annotations

import asyncio

import pytest

from coding_agent.core.cancellation import CancellationToken
from coding_agent.core.confirmations import ConfirmationBroker
from coding_agent.core.events import ConfirmRequest, ToolResultEvent, ToolUse
from coding_agent.core.models import ToolOutput, ToolUseBlock
from coding_agent.core.safety import SafetyPolicy, SafetySettings
from coding_agent.core.scheduler import ToolScheduler, truncate_middle
from coding_agent.core.tool_registry import ToolRegistry
from coding_agent.tests.helpers import ScriptedTool


def _scheduler(tmp_path, tools, on_event=None, **safety_kwargs):
    registry = ToolRegistry()
    for tool in tools:
        registry.register(tool)
    events = []

    def emit(event):
        events.append(event)
        if on_event is not None:
            on_event(event)

    broker = ConfirmationBroker()
    scheduler = ToolScheduler(
        registry,
        SafetyPolicy(SafetySettings(project_root=str(tmp_path), **safety_kwargs)),
        broker,
        emit=emit,
        cwd=str(tmp_path),
        session_id="test-session",
    )
    return scheduler, broker, events


def _block(tool_id, name, **tool_input):
    return ToolUseBlock(id=tool_id, name=name, input=tool_input)


# ═══════════════════════════════════════════════════════════════════
#  Concurrency
# ═══════════════════════════════════════════════════════════════════


class TestBatchConcurrency:

    @pytest.mark.asyncio
    async def test_readonly_batch_runs_concurrently_in_order(self, tmp_path):
        log = []
        slow = ScriptedTool("read_file", result="slow", readonly=True, delay=0.05, log=log)
        fast = ScriptedTool("grep", result="fast", readonly=True, log=log)
        scheduler, _, _ = _scheduler(tmp_path, [slow, fast])

        results = await scheduler.execute_batch(
            [_block("t1", "read_file"), _block("t2", "grep")], CancellationToken(),
        )

        assert [r.tool_use_id for r in results] == ["t1", "t2"]
        assert [r.content for r in results] == ["slow", "fast"]
        assert log.index(("end", "grep")) < log.index(("end", "read_file"))

    @pytest.mark.asyncio
    async def test_any_mutating_tool_makes_batch_sequential(self, tmp_path):
        log = []
        reader = ScriptedTool("read_file", readonly=True, delay=0.02, log=log)
        writer = ScriptedTool("mutator", log=log)
        scheduler, _, _ = _scheduler(tmp_path, [reader, writer], bypass_all=True)

        await scheduler.execute_batch(
            [_block("t1", "read_file"), _block("t2", "mutator")], CancellationToken(),
        )

        assert log == [
            ("start", "read_file"), ("end", "read_file"),
            ("start", "mutator"), ("end", "mutator"),
        ]

    @pytest.mark.asyncio
    async def test_unknown_tool_forces_sequential(self, tmp_path):
        scheduler, _, _ = _scheduler(tmp_path, [ScriptedTool("read_file", readonly=True)])
        assert not scheduler.is_readonly_batch([_block("t1", "read_file"), _block("t2", "nope")])

    @pytest.mark.asyncio
    async def test_events_emitted_per_call(self, tmp_path):
        tool = ScriptedTool("read_file", result="hello", readonly=True, preview="a.txt")
        scheduler, _, events = _scheduler(tmp_path, [tool])

        await scheduler.execute_batch([_block("t1", "read_file", path="a.txt")], CancellationToken())

        assert isinstance(events[0], ToolUse)
        assert events[0].preview == "a.txt"
        assert events[0].input == {"path": "a.txt"}
        assert isinstance(events[1], ToolResultEvent)
        assert events[1].content == "hello"

    @pytest.mark.asyncio
    async def test_context_carries_cwd_and_session(self, tmp_path):
        tool = ScriptedTool("read_file", readonly=True)
        scheduler, _, _ = _scheduler(tmp_path, [tool])
        await scheduler.execute_batch([_block("t1", "read_file")], CancellationToken())
        _, context = tool.calls[0]
        assert context.cwd == str(tmp_path)
        assert context.session_id == "test-session"


# ═══════════════════════════════════════════════════════════════════
#  Errors and safety
# ═══════════════════════════════════════════════════════════════════


class TestToolErrors:

    @pytest.mark.asyncio
    async def test_unknown_tool_is_error_result(self, tmp_path):
        scheduler, _, _ = _scheduler(tmp_path, [])
        [result] = await scheduler.execute_batch([_block("t1", "missing")], CancellationToken())
        assert result.is_error
        assert result.content == 'Error: Unknown tool "missing"'

    @pytest.mark.asyncio
    async def test_exception_becomes_error_result(self, tmp_path):
        tool = ScriptedTool("read_file", readonly=True, raises=RuntimeError("disk on fire"))
        scheduler, _, _ = _scheduler(tmp_path, [tool])
        [result] = await scheduler.execute_batch([_block("t1", "read_file")], CancellationToken())
        assert result.is_error
        assert result.content == "Error: disk on fire"

    @pytest.mark.asyncio
    async def test_tool_output_error_prefixed(self, tmp_path):
        tool = ScriptedTool("read_file", readonly=True, result=ToolOutput("File not found: x", is_error=True))
        scheduler, _, _ = _scheduler(tmp_path, [tool])
        [result] = await scheduler.execute_batch([_block("t1", "read_file")], CancellationToken())
        assert result.content == "Error: File not found: x"

    @pytest.mark.asyncio
    async def test_files_changed_reported(self, tmp_path):
        tool = ScriptedTool("mutator", result=ToolOutput("wrote", files_changed=["/x/a.py"]))
        scheduler, _, events = _scheduler(tmp_path, [tool], bypass_all=True)
        [result] = await scheduler.execute_batch([_block("t1", "mutator")], CancellationToken())
        assert result.files_changed == ["/x/a.py"]
        assert events[-1].files_changed == ["/x/a.py"]

    @pytest.mark.asyncio
    async def test_safety_denial_skips_execution(self, tmp_path):
        tool = ScriptedTool("write_file")
        scheduler, _, events = _scheduler(tmp_path, [tool])
        [result] = await scheduler.execute_batch(
            [_block("t1", "write_file", path="/etc/passwd")], CancellationToken(),
        )
        assert result.is_error
        assert result.content.startswith("Error: Blocked by safety policy")
        assert tool.calls == []
        assert not any(isinstance(e, ConfirmRequest) for e in events)


# ═══════════════════════════════════════════════════════════════════
#  Confirmations
# ═══════════════════════════════════════════════════════════════════


class TestConfirmations:

    @pytest.mark.asyncio
    async def test_allowed_confirmation_runs_tool(self, tmp_path):
        tool = ScriptedTool("deploy", result="deployed", preview="deploy prod")
        holder = {}

        def on_event(event):
            if isinstance(event, ConfirmRequest):
                holder["request"] = event
                asyncio.get_running_loop().call_soon(holder["broker"].resolve, event.id, True)

        scheduler, broker, _ = _scheduler(tmp_path, [tool], on_event=on_event)
        holder["broker"] = broker
        [result] = await scheduler.execute_batch([_block("t1", "deploy")], CancellationToken())

        assert result.content == "deployed"
        assert holder["request"].tool_name == "deploy"
        assert holder["request"].preview == "deploy prod"

    @pytest.mark.asyncio
    async def test_denied_confirmation_is_error(self, tmp_path):
        tool = ScriptedTool("deploy")
        holder = {}

        def on_event(event):
            if isinstance(event, ConfirmRequest):
                holder["broker"].resolve(event.id, False)

        scheduler, broker, _ = _scheduler(tmp_path, [tool], on_event=on_event)
        holder["broker"] = broker
        [result] = await scheduler.execute_batch([_block("t1", "deploy")], CancellationToken())

        assert result.is_error
        assert result.content == "Error: Cancelled by user: deploy"
        assert tool.calls == []

    @pytest.mark.asyncio
    async def test_cancellation_while_waiting_denies(self, tmp_path):
        token = CancellationToken()

        def on_event(event):
            if isinstance(event, ConfirmRequest):
                asyncio.get_running_loop().call_soon(token.cancel)

        scheduler, broker, _ = _scheduler(tmp_path, [ScriptedTool("deploy")], on_event=on_event)
        [result] = await scheduler.execute_batch([_block("t1", "deploy")], token)

        assert result.content == "Error: Cancelled by user: deploy"
        assert broker.pending_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_batch_skips_remaining_tools(self, tmp_path):
        first = ScriptedTool("a", result="done")
        second = ScriptedTool("b")
        token = CancellationToken()
        scheduler, _, _ = _scheduler(tmp_path, [first, second], bypass_all=True)

        def cancel_after_first(event):
            if isinstance(event, ToolResultEvent) and event.tool_name == "a":
                token.cancel()

        scheduler.emit = lambda event: cancel_after_first(event)
        results = await scheduler.execute_batch([_block("t1", "a"), _block("t2", "b")], token)

        assert results[0].content == "done"
        assert results[1].content == "Error: Cancelled by user: b"
        assert second.calls == []


# ═══════════════════════════════════════════════════════════════════
#  History truncation
# ═══════════════════════════════════════════════════════════════════


class TestTruncation:

    def test_short_content_unchanged(self):
        assert truncate_middle("abc", 10) == "abc"

    def test_head_and_tail_kept(self):
        content = "H" * 50 + "M" * 1000 + "T" * 50
        truncated = truncate_middle(content, 100)
        assert truncated.startswith("H" * 50)
        assert truncated.endswith("T" * 50)
        assert "[... omitted 1000 chars ...]" in truncated

    @pytest.mark.asyncio
    async def test_history_block_truncated_but_event_full(self, tmp_path):
        big = "x" * 500
        tool = ScriptedTool("read_file", result=big, readonly=True)
        scheduler, _, events = _scheduler(tmp_path, [tool])
        scheduler.max_history_result_chars = 100

        [result] = await scheduler.execute_batch([_block("t1", "read_file")], CancellationToken())
        block = result.to_block(scheduler.max_history_result_chars)

        assert events[-1].content == big
        assert "[... omitted 400 chars ...]" in block.content
        assert block.tool_use_id == "t1"
