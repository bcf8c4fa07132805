"""
Tests for McpToolLoader and McpTool: filtering, caching, failure isolation,
namespacing and tool-call results.
"""

from __future__ import annotations

import pytest

from coding_agent.core.cancellation import CancellationToken
from coding_agent.core.events import (
    McpCacheHit, McpServerConnectError, McpServerConnectStart, McpServerConnectSuccess,
)
from coding_agent.core.models import ToolOutput
from coding_agent.core.tool_registry import ToolRegistry
from coding_agent.mcp.connection_manager import ConnectionManager
from coding_agent.mcp.loader import McpToolLoader, filter_tools, format_tool_result
from coding_agent.mcp.retry import RetryStrategy
from coding_agent.mcp.tool_cache import ToolCache
from coding_agent.mcp.types import McpServerConfig, McpTimeoutError, McpToolInfo
from coding_agent.tests.helpers import FakeClientFactory, FakeTransport, no_sleep
from coding_agent.tools.base import ToolContext

TOOLS = [
    McpToolInfo("search", "Search issues"),
    McpToolInfo("create_issue", "Open an issue"),
    McpToolInfo("delete_repo", "Delete a repository"),
]


def _loader(factory, events=None, cache=None):
    manager = ConnectionManager(
        on_event=events.append if events is not None else None,
        transport_factory=FakeTransport,
        client_factory=factory,
        strategy_factory=lambda policy: RetryStrategy(policy, sleep=no_sleep),
    )
    return McpToolLoader(
        manager=manager,
        cache=cache or ToolCache(),
        emit=events.append if events is not None else None,
    )


def _config(**kwargs):
    kwargs.setdefault("url", "http://localhost:9000/mcp")
    kwargs.setdefault("health_check_interval_sec", 0)
    kwargs.setdefault("max_retries", 0)
    return McpServerConfig(**kwargs)


def _context():
    return ToolContext(cwd="/tmp", cancellation_token=CancellationToken(), session_id="s")


# ═══════════════════════════════════════════════════════════════════
#  Helpers
# ═══════════════════════════════════════════════════════════════════


class TestFilterTools:

    def test_enabled_then_disabled(self):
        config = _config(enabled_tools=["search", "delete_repo"], disabled_tools=["delete_repo"])
        assert [t.name for t in filter_tools(TOOLS, config)] == ["search"]

    def test_no_filters(self):
        assert len(filter_tools(TOOLS, _config())) == 3


class TestFormatToolResult:

    def test_text_parts_joined(self):
        result = {"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}
        assert format_tool_result(result) == "a\nb"

    def test_non_text_parts_as_json(self):
        result = {"content": [{"type": "image", "data": "xyz", "mimeType": "image/png"}]}
        assert '"mimeType": "image/png"' in format_tool_result(result)

    def test_empty(self):
        assert format_tool_result(None) == ""
        assert format_tool_result({}) == ""


# ═══════════════════════════════════════════════════════════════════
#  Loading
# ═══════════════════════════════════════════════════════════════════


class TestLoad:

    @pytest.mark.asyncio
    async def test_tools_are_namespaced(self):
        events = []
        loader = _loader(FakeClientFactory(tools=TOOLS), events)

        tools = await loader.load({"github": _config(disabled_tools=["delete_repo"])})

        assert [t.name for t in tools] == ["github.search", "github.create_issue"]
        assert tools[0].description == "Search issues"
        assert [type(e) for e in events] == [McpServerConnectStart, McpServerConnectSuccess]
        assert events[-1].tool_count == 2
        await loader.cleanup()

    @pytest.mark.asyncio
    async def test_failed_server_does_not_stop_others(self):
        events = []
        factory = FakeClientFactory(
            tools=TOOLS, failures=[McpTimeoutError("Connection timeout: broken did not start")],
        )
        loader = _loader(factory, events)

        tools = await loader.load({"broken": _config(), "github": _config()})

        assert {t.server_name for t in tools} == {"github"}
        errors = [e for e in events if isinstance(e, McpServerConnectError)]
        assert [e.server_name for e in errors] == ["broken"]
        assert "timeout" in errors[0].error.lower()
        await loader.cleanup()

    @pytest.mark.asyncio
    async def test_disabled_server_skipped(self):
        factory = FakeClientFactory(tools=TOOLS)
        loader = _loader(factory)
        assert await loader.load({"github": _config(enabled=False)}) == []
        assert factory.connect_attempts == 0
        await loader.cleanup()

    @pytest.mark.asyncio
    async def test_cached_catalog_skips_list_call(self):
        events = []
        cache = ToolCache()
        cache.set("github", [McpToolInfo("search")])
        factory = FakeClientFactory(tools=TOOLS)
        loader = _loader(factory, events, cache=cache)

        tools = await loader.load({"github": _config()})

        assert [t.name for t in tools] == ["github.search"]
        assert factory.list_calls == 0
        assert any(isinstance(e, McpCacheHit) for e in events)
        await loader.cleanup()

    @pytest.mark.asyncio
    async def test_cleanup_disconnects(self):
        factory = FakeClientFactory(tools=TOOLS)
        loader = _loader(factory)
        await loader.load({"github": _config()})
        await loader.cleanup()
        assert factory.closed == 1
        assert loader.manager.server_names == []

    @pytest.mark.asyncio
    async def test_reconnect_refreshes_registry_namespace(self):
        factory = FakeClientFactory(tools=TOOLS[:1])
        loader = _loader(factory)
        registry = ToolRegistry()
        for tool in await loader.load({"github": _config()}):
            registry.register(tool)
        loader.attach_registry(registry)

        factory.tools = TOOLS[:2]
        loader.cache.invalidate("github")
        await loader.manager.reconnect("github")

        assert registry.namespace_tools("github") == ["github.search", "github.create_issue"]
        await loader.cleanup()


# ═══════════════════════════════════════════════════════════════════
#  Tool calls
# ═══════════════════════════════════════════════════════════════════


class TestMcpToolCall:

    @pytest.mark.asyncio
    async def test_call_goes_to_live_client(self):
        factory = FakeClientFactory(tools=TOOLS)
        loader = _loader(factory)
        [tool] = await loader.load({"github": _config(enabled_tools=["search"])})

        result = await tool.execute({"q": "bug"}, _context())

        assert result == "remote ok"
        assert factory.clients[-1].calls == [("search", {"q": "bug"})]
        await loader.cleanup()

    @pytest.mark.asyncio
    async def test_is_error_result(self):
        factory = FakeClientFactory(tools=TOOLS)
        factory.call_result = {"content": [{"type": "text", "text": "rate limited"}], "isError": True}
        loader = _loader(factory)
        [tool] = await loader.load({"github": _config(enabled_tools=["search"])})

        result = await tool.execute({}, _context())

        assert isinstance(result, ToolOutput)
        assert result.is_error
        assert result.content == "rate limited"
        await loader.cleanup()

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        factory = FakeClientFactory(tools=TOOLS)
        factory.call_delay = 1.0
        loader = _loader(factory)
        [tool] = await loader.load({"github": _config(enabled_tools=["search"], tool_timeout_sec=0.01)})

        with pytest.raises(McpTimeoutError, match="Tool execution timeout after 10ms"):
            await tool.execute({}, _context())
        await loader.cleanup()

    @pytest.mark.asyncio
    async def test_disconnected_server_is_error(self):
        factory = FakeClientFactory(tools=TOOLS)
        loader = _loader(factory)
        [tool] = await loader.load({"github": _config(enabled_tools=["search"])})
        await loader.manager.disconnect("github")

        result = await tool.execute({}, _context())

        assert result.is_error
        assert "not connected" in result.content
        await loader.cleanup()
