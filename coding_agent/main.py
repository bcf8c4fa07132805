"""
coding-agent: entry point.

Loads layered settings, builds the provider, tool registry and Agent,
connects MCP servers and starts the terminal REPL.
"""

from __future__ import annotations
import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

from .config.settings import (
    Config, SettingsStore, load_config, resolve_context_settings,
    resolve_mcp_servers, resolve_safety_settings,
)
from .core.agent import Agent
from .core.errors import AgentError
from .core.events import EventCallback
from .core.providers import ProviderFactory
from .core.skills import SkillRegistry
from .core.structured_logger import setup_structured_logging
from .core.tool_registry import ToolRegistry
from .interfaces.cli import CLI
from .tools import create_builtin_tools

logger = logging.getLogger(__name__)


def setup_logging(verbosity: int = 0, config: Optional[Config] = None) -> None:
    """-v → INFO, -vv → DEBUG, otherwise the configured level (WARNING by default)."""
    if verbosity >= 2:
        level = "DEBUG"
    elif verbosity == 1:
        level = "INFO"
    else:
        level = config.get("logging.level", "WARNING") if config else "WARNING"
    setup_structured_logging(
        level=level,
        json_format=bool(config.get("logging.json", False)) if config else False,
        log_file=config.get("logging.file") if config else None,
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="coding-agent",
        description="Terminal coding agent with tools, safety gating and MCP servers",
    )
    parser.add_argument("-c", "--config", help="Path to an extra settings YAML file", default=None)
    parser.add_argument("-m", "--model", help="Model name to use", default=None)
    parser.add_argument("--cwd", help="Project directory (default: current directory)", default=None)
    parser.add_argument("--yolo", action="store_true", help="Skip every safety confirmation")
    parser.add_argument("--no-mcp", action="store_true", help="Do not connect MCP servers")
    parser.add_argument("--thinking", action="store_true", help="Enable extended thinking")
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for INFO, -vv for DEBUG)",
    )
    return parser.parse_args(argv)


def build_agent(
    config: Config,
    cwd: str,
    enable_mcp: bool = True,
    on_event: Optional[EventCallback] = None,
) -> Agent:
    """Assemble an Agent from resolved configuration."""
    provider = ProviderFactory.create(config.raw)

    skill_registry = None
    if config.get("skills.enabled", True):
        user_dir = config.get("skills.user_dir")
        skill_registry = SkillRegistry(os.path.expanduser(user_dir) if user_dir else None)

    registry = ToolRegistry()
    for tool in create_builtin_tools(skill_registry):
        registry.register(tool)

    mcp_servers = resolve_mcp_servers(config) if enable_mcp and config.get("mcp.enabled", True) else {}

    agent = Agent(
        provider=provider,
        registry=registry,
        safety=resolve_safety_settings(config, cwd),
        cwd=cwd,
        context_settings=resolve_context_settings(config),
        skill_registry=skill_registry,
        mcp_servers=mcp_servers,
        settings_store=SettingsStore(cwd),
        on_event=on_event,
        system_prompt_extra=config.get("agent.system_prompt_extra", ""),
        max_tokens=int(config.get("llm.max_tokens", 4096)),
        max_history_result_chars=config.get("agent.max_history_result_chars"),
    )
    if config.get("agent.thinking.enabled", False):
        agent.set_thinking(True, int(config.get("agent.thinking.budget_tokens", 2048)))
    return agent


async def _run(agent: Agent) -> None:
    try:
        await agent.init()
        await CLI(agent).run()
    finally:
        await agent.close()


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    cwd = os.path.abspath(args.cwd or os.getcwd())
    if not os.path.isdir(cwd):
        print(f"Not a directory: {cwd}", file=sys.stderr)
        sys.exit(2)

    try:
        config = load_config(args.config, project_root=cwd)
    except AgentError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.model:
        config.set("llm.model", args.model)
    if args.yolo:
        config.set("safety.yolo", True)
    if args.thinking:
        config.set("agent.thinking.enabled", True)

    setup_logging(args.verbose, config)
    logger.info(f"Project: {cwd}")

    try:
        agent = build_agent(config, cwd, enable_mcp=not args.no_mcp)
    except (AgentError, ValueError) as e:
        print(f"Error creating agent: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(_run(agent))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
