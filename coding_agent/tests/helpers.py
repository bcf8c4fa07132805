"""
Test helpers: scripted provider, scripted tools, fake MCP clients.

Provides reusable components for tests that exercise the agent loop and the
MCP stack without a real model backend or real MCP servers.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from typing import Any, Callable, Optional, Union

from coding_agent.core.agent import Agent
from coding_agent.core.models import ContextSettings, Message
from coding_agent.core.providers.base import (
    BaseLLMProvider, BlockDelta, BlockStart, BlockStop, MessageDelta, ModelRequest,
)
from coding_agent.core.safety import SafetySettings
from coding_agent.core.tool_registry import ToolRegistry
from coding_agent.mcp.types import McpToolInfo
from coding_agent.tools.base import BaseTool, ToolContext


# ═══════════════════════════════════════════════════════════════════
#  Stream scripts
# ═══════════════════════════════════════════════════════════════════


def text_events(text: str, stop_reason: str = "end_turn", usage: Optional[dict] = None) -> list:
    usage = usage or {"input_tokens": 100, "output_tokens": 20}
    return [
        MessageDelta(usage={"input_tokens": usage["input_tokens"]}),
        BlockStart(index=0, block_type="text"),
        BlockDelta(index=0, delta_type="text", data=text[: len(text) // 2]),
        BlockDelta(index=0, delta_type="text", data=text[len(text) // 2:]),
        BlockStop(index=0),
        MessageDelta(stop_reason=stop_reason, usage={"output_tokens": usage["output_tokens"]}),
    ]


def tool_events(calls: list[tuple[str, str, Union[dict, str]]], text: str = "") -> list:
    """
    Events for a response requesting ``calls`` = [(id, name, input)].

    Dict inputs are serialized and split into several input_json deltas;
    string inputs are sent verbatim (to simulate malformed JSON).
    """
    events: list = [MessageDelta(usage={"input_tokens": 100})]
    index = 0
    if text:
        events += [
            BlockStart(index=0, block_type="text"),
            BlockDelta(index=0, delta_type="text", data=text),
            BlockStop(index=0),
        ]
        index = 1
    for tool_id, name, tool_input in calls:
        raw = tool_input if isinstance(tool_input, str) else json.dumps(tool_input)
        events.append(BlockStart(index=index, block_type="tool_use", id=tool_id, name=name))
        for start in range(0, len(raw), 5):
            events.append(BlockDelta(index=index, delta_type="input_json", data=raw[start:start + 5]))
        events.append(BlockStop(index=index))
        index += 1
    events.append(MessageDelta(stop_reason="tool_use", usage={"output_tokens": 30}))
    return events


class _Hang:
    """Script marker: yield ``prefix`` then block until cancelled."""

    def __init__(self, prefix: list):
        self.prefix = prefix


# ═══════════════════════════════════════════════════════════════════
#  ScriptedProvider
# ═══════════════════════════════════════════════════════════════════


class ScriptedProvider(BaseLLMProvider):
    """
    Provider that replays queued stream scripts.

    Usage::

        provider = ScriptedProvider()
        provider.enqueue_tool_calls([("t1", "list_files", {})])
        provider.enqueue_text("Done.")
    """

    def __init__(self, model: str = "mock-model"):
        super().__init__(model=model)
        self.scripts: list = []
        self.requests: list[ModelRequest] = []
        self.summary_requests: list[ModelRequest] = []
        self.summary = "Summary of earlier work."
        self.summary_error: Optional[Exception] = None
        self.token_count: Optional[Union[int, Callable[[ModelRequest], int]]] = None
        self.closed = False
        self.hanging = asyncio.Event()

    # ── Enqueue helpers ─────────────────────────────────────────

    def enqueue_text(self, text: str, **kwargs) -> None:
        self.scripts.append(text_events(text, **kwargs))

    def enqueue_tool_calls(self, calls, text: str = "") -> None:
        self.scripts.append(tool_events(calls, text=text))

    def enqueue_events(self, events: list) -> None:
        self.scripts.append(list(events))

    def enqueue_error(self, error: Exception) -> None:
        self.scripts.append(error)

    def enqueue_hang(self, prefix: Optional[list] = None) -> None:
        self.scripts.append(_Hang(prefix or []))

    # ── BaseLLMProvider ─────────────────────────────────────────

    async def stream(self, request: ModelRequest):
        self.requests.append(ModelRequest(
            model=request.model,
            messages=list(request.messages),
            system=request.system,
            tools=list(request.tools),
            max_tokens=request.max_tokens,
            thinking_budget=request.thinking_budget,
        ))
        script = self.scripts.pop(0) if self.scripts else text_events("No more responses configured.")
        if isinstance(script, Exception):
            raise script
        if isinstance(script, _Hang):
            for event in script.prefix:
                await asyncio.sleep(0)
                yield event
            self.hanging.set()
            await asyncio.Event().wait()
            return
        for event in script:
            await asyncio.sleep(0)
            yield event

    async def count_tokens(self, request: ModelRequest) -> int:
        if self.token_count is None:
            raise NotImplementedError("no token counting")
        if callable(self.token_count):
            return self.token_count(request)
        return self.token_count

    async def complete(self, request: ModelRequest) -> str:
        self.summary_requests.append(request)
        if self.summary_error is not None:
            raise self.summary_error
        return self.summary

    async def close(self) -> None:
        self.closed = True


# ═══════════════════════════════════════════════════════════════════
#  Scripted tools
# ═══════════════════════════════════════════════════════════════════


class ScriptedTool(BaseTool):
    """Tool returning a fixed result after an optional delay, logging start/end order."""

    def __init__(
        self,
        name: str,
        result: Any = "ok",
        readonly: bool = False,
        delay: float = 0.0,
        raises: Optional[Exception] = None,
        log: Optional[list] = None,
        preview: Optional[str] = None,
    ):
        self.name = name
        self.description = f"Scripted tool {name}"
        self.input_schema = {"type": "object", "properties": {}}
        self.readonly = readonly
        self.result = result
        self.delay = delay
        self.raises = raises
        self.log = log if log is not None else []
        self.calls: list[tuple[dict, ToolContext]] = []
        self._preview = preview

    def get_preview(self, tool_input: dict):
        return self._preview

    async def execute(self, tool_input: dict, context: ToolContext):
        self.calls.append((tool_input, context))
        self.log.append(("start", self.name))
        if self.delay:
            await asyncio.sleep(self.delay)
        self.log.append(("end", self.name))
        if self.raises is not None:
            raise self.raises
        return self.result


# ═══════════════════════════════════════════════════════════════════
#  Fake MCP client
# ═══════════════════════════════════════════════════════════════════


class FakeTransport:
    def __init__(self, config=None):
        self.config = config
        self.is_connected = True

    async def close(self) -> None:
        self.is_connected = False


class FakeMcpClient:
    """Stands in for McpClient: scripted connect failures, a fixed tool list."""

    def __init__(self, transport, server_name: str, factory: "FakeClientFactory"):
        self.transport = transport
        self.server_name = server_name
        self.factory = factory
        self.closed = False
        self.calls: list[tuple[str, dict]] = []

    async def connect(self, timeout: float = 30) -> dict:
        self.factory.connect_attempts += 1
        if self.factory.failures:
            raise self.factory.failures.pop(0)
        return {"serverInfo": {"name": self.server_name}}

    async def list_tools(self, timeout: float = 30) -> list[McpToolInfo]:
        self.factory.list_calls += 1
        if self.factory.list_error is not None:
            raise self.factory.list_error
        return list(self.factory.tools)

    async def call_tool(self, name: str, arguments: dict, timeout: float = 60) -> dict:
        self.calls.append((name, arguments))
        if self.factory.call_delay:
            await asyncio.sleep(self.factory.call_delay)
        return self.factory.call_result

    async def close(self) -> None:
        self.closed = True
        self.factory.closed += 1


class FakeClientFactory:
    """
    Client factory for ConnectionManager(client_factory=...).

    Usage::

        factory = FakeClientFactory(tools=[McpToolInfo("search", "", {})],
                                    failures=[ConnectionError("ECONNREFUSED")])
        manager = ConnectionManager(transport_factory=FakeTransport, client_factory=factory)
    """

    def __init__(self, tools: Optional[list[McpToolInfo]] = None, failures: Optional[list] = None):
        self.tools = tools or []
        self.failures = list(failures or [])
        self.clients: list[FakeMcpClient] = []
        self.connect_attempts = 0
        self.list_calls = 0
        self.list_error: Optional[Exception] = None
        self.closed = 0
        self.call_result: dict = {"content": [{"type": "text", "text": "remote ok"}]}
        self.call_delay = 0.0

    def __call__(self, transport, server_name: str) -> FakeMcpClient:
        client = FakeMcpClient(transport, server_name, self)
        self.clients.append(client)
        return client


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


# ═══════════════════════════════════════════════════════════════════
#  Agent factory
# ═══════════════════════════════════════════════════════════════════


def make_agent(
    provider: Optional[ScriptedProvider] = None,
    tools: Optional[list[BaseTool]] = None,
    cwd: Optional[str] = None,
    safety: Optional[SafetySettings] = None,
    context_settings: Optional[ContextSettings] = None,
    **kwargs,
) -> Agent:
    cwd = cwd or tempfile.mkdtemp(prefix="coding-agent-test-")
    registry = ToolRegistry()
    for tool in tools or []:
        registry.register(tool)
    return Agent(
        provider=provider or ScriptedProvider(),
        registry=registry,
        safety=safety or SafetySettings(project_root=cwd),
        cwd=cwd,
        context_settings=context_settings,
        **kwargs,
    )


async def collect(agent: Agent, text: str, on_confirm: Optional[Callable] = None) -> list:
    """Run one turn, answering confirmations through ``on_confirm(event) -> bool``."""
    from coding_agent.core.events import ConfirmRequest

    events = []
    async for event in agent.send_message(text):
        events.append(event)
        if isinstance(event, ConfirmRequest) and on_confirm is not None:
            agent.confirm_response(event.id, on_confirm(event))
    return events


def event_types(events: list) -> list[str]:
    return [e.type for e in events]


def history_roles(messages: list[Message]) -> list[str]:
    return [m.role for m in messages]


def write_file(root: str, rel: str, content: str) -> str:
    path = os.path.join(root, rel)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return path
