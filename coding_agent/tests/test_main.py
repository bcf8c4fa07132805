"""
Tests for the command-line entry point: argument parsing and agent assembly.
"""

from __future__ import annotations

import os

import pytest

from coding_agent.config.settings import load_config
from coding_agent.core.providers.anthropic_provider import AnthropicProvider
from coding_agent.main import build_agent, main, parse_args


def _config(tmp_path, extra: str = ""):
    if extra:
        (tmp_path / "extra.yaml").write_text(extra)
    return load_config(
        str(tmp_path / "extra.yaml") if extra else None,
        project_root=str(tmp_path),
        home_dir=str(tmp_path / "home"),
        environ={},
    )


class TestParseArgs:

    def test_defaults(self):
        args = parse_args([])
        assert args.config is None
        assert args.yolo is False
        assert args.no_mcp is False
        assert args.verbose == 0

    def test_flags(self):
        args = parse_args(["-m", "claude-x", "--yolo", "--no-mcp", "--thinking", "-vv", "--cwd", "/tmp"])
        assert args.model == "claude-x"
        assert args.yolo and args.no_mcp and args.thinking
        assert args.verbose == 2
        assert args.cwd == "/tmp"


class TestBuildAgent:

    def test_builtin_tools_and_settings(self, tmp_path):
        agent = build_agent(_config(tmp_path), str(tmp_path))
        for name in ("read_file", "list_files", "glob", "grep", "write_file", "edit_file", "bash", "skills"):
            assert name in agent.registry
        assert isinstance(agent.provider, AnthropicProvider)
        assert agent.policy.settings.project_root == os.path.abspath(str(tmp_path))
        assert agent.thinking_budget is None

    def test_skills_disabled_drops_skills_tool(self, tmp_path):
        agent = build_agent(_config(tmp_path, "skills:\n  enabled: false\n"), str(tmp_path))
        assert "skills" not in agent.registry
        assert agent.skill_registry is None

    def test_thinking_from_config(self, tmp_path):
        config = _config(tmp_path, "agent:\n  thinking:\n    enabled: true\n    budget_tokens: 4000\n")
        assert build_agent(config, str(tmp_path)).thinking_budget == 4000

    def test_mcp_servers_resolved(self, tmp_path):
        config = _config(tmp_path, "mcp:\n  servers:\n    files:\n      command: echo\n")
        assert set(build_agent(config, str(tmp_path)).mcp_servers) == {"files"}
        assert build_agent(config, str(tmp_path), enable_mcp=False).mcp_servers == {}


class TestMain:

    def test_missing_directory_exits(self, tmp_path):
        with pytest.raises(SystemExit) as info:
            main(["--cwd", str(tmp_path / "nope")])
        assert info.value.code == 2

    def test_missing_config_file_exits(self, tmp_path):
        with pytest.raises(SystemExit) as info:
            main(["--cwd", str(tmp_path), "--config", str(tmp_path / "missing.yaml")])
        assert info.value.code == 2
