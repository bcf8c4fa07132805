"""
CLI Interface: line-oriented terminal chat with the agent.

Streams assistant text as it arrives, shows tool activity, and asks the
user to approve tool calls (y = yes, n = no, a = always allow this tool).
Commands: /reset, /context, /exit. Ctrl-C during a turn stops the turn.
"""

from __future__ import annotations
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

from ..core.agent import Agent
from ..core.errors import TurnInProgressError
from ..core.events import (
    AssistantMessageDelta, AssistantMessageEnd, AssistantMessageStart,
    AssistantThinkingDelta, AssistantThinkingEnd, AssistantThinkingStart,
    ConfirmRequest, ContextCompacted, ErrorEvent, McpServerConnectError,
    McpServerConnectSuccess, TokenUsage, ToolResultEvent, ToolUse,
)

logger = logging.getLogger(__name__)


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"


class CLI:
    """
    Interactive loop around an Agent.

    Usage:
        cli = CLI(agent)
        await cli.run()
    """

    RESULT_PREVIEW_LINES = 8

    def __init__(self, agent: Agent, show_thinking: bool = True):
        self.agent = agent
        self.show_thinking = show_thinking
        self._running = False

    # ── Input ───────────────────────────────────────────────────

    @staticmethod
    def _blocking_input(prompt: str) -> str:
        return input(prompt).strip()

    async def _ask(self, prompt: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._blocking_input, prompt)

    # ── Main loop ───────────────────────────────────────────────

    async def run(self) -> None:
        self._running = True
        print(f"{Colors.BOLD}coding-agent{Colors.RESET} {Colors.DIM}({self.agent.model}, {self.agent.cwd}){Colors.RESET}")
        print(f"{Colors.DIM}/reset clears history, /context shows usage, /exit quits{Colors.RESET}\n")

        while self._running:
            try:
                user_input = await self._ask(f"{Colors.BOLD}{Colors.BLUE}You ▸ {Colors.RESET}")
            except (EOFError, KeyboardInterrupt):
                print(f"\n{Colors.DIM}Goodbye!{Colors.RESET}")
                break

            if not user_input:
                continue
            if user_input.startswith("/"):
                await self._handle_command(user_input)
                continue

            try:
                await self._run_turn(user_input)
            except TurnInProgressError as e:
                print(f"  {Colors.RED}{e}{Colors.RESET}")

    async def _handle_command(self, command: str) -> None:
        name = command.split()[0].lower()
        if name in ("/exit", "/quit"):
            self._running = False
        elif name == "/reset":
            self.agent.reset_conversation()
            print(f"  {Colors.GREEN}✓ Conversation history cleared.{Colors.RESET}\n")
        elif name == "/context":
            state = await self.agent.get_context_state()
            approx = "~" if state["estimated"] else ""
            pct = 100 * state["tokens"] / max(1, state["context_window"])
            print(
                f"  {state['message_count']} messages, {approx}{state['tokens']} tokens "
                f"({pct:.1f}% of {state['context_window']}, auto-compact at {state['auto_compact_limit']})\n"
            )
        else:
            print(f"  {Colors.DIM}Unknown command: {name}{Colors.RESET}\n")

    async def _run_turn(self, text: str) -> None:
        loop = asyncio.get_running_loop()
        installed = False
        try:
            loop.add_signal_handler(signal.SIGINT, self.agent.stop)
            installed = True
        except (NotImplementedError, RuntimeError):
            pass

        try:
            async for event in self.agent.send_message(text):
                await self._render(event)
        except KeyboardInterrupt:
            self.agent.stop()
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)
        print()

    # ── Rendering ───────────────────────────────────────────────

    async def _render(self, event) -> None:
        if isinstance(event, AssistantMessageStart):
            sys.stdout.write(f"\n{Colors.BOLD}{Colors.GREEN}Agent ▸{Colors.RESET} ")
        elif isinstance(event, AssistantMessageDelta):
            sys.stdout.write(event.delta)
            sys.stdout.flush()
        elif isinstance(event, AssistantMessageEnd):
            sys.stdout.write("\n")
        elif isinstance(event, AssistantThinkingStart) and self.show_thinking:
            sys.stdout.write(f"\n{Colors.DIM}thinking: ")
        elif isinstance(event, AssistantThinkingDelta) and self.show_thinking:
            sys.stdout.write(event.delta)
            sys.stdout.flush()
        elif isinstance(event, AssistantThinkingEnd) and self.show_thinking:
            sys.stdout.write(f"{Colors.RESET}\n")
        elif isinstance(event, ToolUse):
            detail = event.preview or json.dumps(event.input, ensure_ascii=False)[:120]
            print(f"  {Colors.CYAN}⚙ {event.tool_name}{Colors.RESET} {Colors.DIM}{detail}{Colors.RESET}")
        elif isinstance(event, ToolResultEvent):
            self._print_result(event)
        elif isinstance(event, ConfirmRequest):
            await self._confirm(event)
        elif isinstance(event, ContextCompacted):
            print(f"  {Colors.DIM}(context compacted: {event.removed_message_count} messages summarized){Colors.RESET}")
        elif isinstance(event, TokenUsage):
            logger.info(f"Tokens: {event.input_tokens} in, {event.output_tokens} out")
        elif isinstance(event, ErrorEvent):
            print(f"\n  {Colors.RED}Error: {event.message}{Colors.RESET}")
        elif isinstance(event, McpServerConnectSuccess):
            print(f"  {Colors.DIM}MCP {event.server_name}: {event.tool_count} tools{Colors.RESET}")
        elif isinstance(event, McpServerConnectError):
            print(f"  {Colors.YELLOW}MCP {event.server_name} unavailable: {event.error}{Colors.RESET}")

    def _print_result(self, event: ToolResultEvent) -> None:
        color = Colors.RED if event.is_error else Colors.GREEN
        mark = "✗" if event.is_error else "✓"
        lines = event.content.splitlines()
        print(f"  {color}{mark} {event.tool_name}{Colors.RESET}")
        for line in lines[:self.RESULT_PREVIEW_LINES]:
            print(f"    {Colors.DIM}{line[:160]}{Colors.RESET}")
        if len(lines) > self.RESULT_PREVIEW_LINES:
            print(f"    {Colors.DIM}... ({len(lines) - self.RESULT_PREVIEW_LINES} more lines){Colors.RESET}")

    async def _confirm(self, event: ConfirmRequest) -> None:
        print(f"\n  {Colors.YELLOW}? {event.tool_name}{Colors.RESET}: {event.reason}")
        if event.preview:
            print(f"    {Colors.DIM}{event.preview}{Colors.RESET}")
        answer: Optional[str] = None
        while answer not in ("y", "n", "a"):
            try:
                answer = (await self._ask("  Allow? [y]es / [n]o / [a]lways: ")).lower()[:1]
            except (EOFError, KeyboardInterrupt):
                answer = "n"
        if answer == "a":
            self.agent.add_auto_allowed_tool(event.tool_name)
        self.agent.confirm_response(event.id, answer in ("y", "a"))
