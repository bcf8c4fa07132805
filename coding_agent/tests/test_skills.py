"""
Tests for skill discovery, MCP dependency merging and the system prompt.
"""

from __future__ import annotations

import pytest

from coding_agent.core.prompt_builder import PromptBuilder
from coding_agent.core.skills import (
    MAX_SKILL_SIZE, SkillMetadata, SkillRegistry, SkillToolDependency,
    merge_skill_mcp_dependencies, split_front_matter, validate_skill_dependencies,
)
from coding_agent.mcp.types import McpServerConfig
from coding_agent.tests.helpers import write_file

TRIAGE_SKILL = """---
name: github-triage
description: Triage GitHub issues
short-description: issue triage
dependencies:
  tools:
    - type: mcp
      value: github
      url: https://api.example.com/mcp
    - type: mcp
      value: tracker
      command: tracker-mcp
      required: false
---
# Triage

Label every open issue.
"""


def _skill(name, *deps):
    return SkillMetadata(name=name, description=name, path="/x", dependencies=list(deps))


@pytest.fixture
def layout(tmp_path):
    repo = tmp_path / "repo"
    user = tmp_path / "user-skills"
    repo.mkdir()
    user.mkdir()
    return str(repo), str(user)


# ═══════════════════════════════════════════════════════════════════
#  Discovery
# ═══════════════════════════════════════════════════════════════════


class TestSkillDiscovery:

    def test_parses_front_matter(self, layout):
        repo, user = layout
        write_file(repo, ".coding-agent/skills/triage/SKILL.md", TRIAGE_SKILL)

        outcome = SkillRegistry(user).get_skills_for_cwd(repo)

        assert outcome.errors == []
        [skill] = outcome.skills
        assert skill.name == "github-triage"
        assert skill.short_description == "issue triage"
        assert skill.scope == "repo"
        assert skill.body.startswith("# Triage")
        assert [(d.value, d.required) for d in skill.mcp_dependencies] == [
            ("github", True), ("tracker", False),
        ]

    def test_repo_skill_shadows_user_skill(self, layout):
        repo, user = layout
        write_file(repo, ".coding-agent/skills/a/SKILL.md", "---\nname: shared\ndescription: repo\n---\nx")
        write_file(user, "b/SKILL.md", "---\nname: shared\ndescription: user\n---\nx")
        write_file(user, "c/SKILL.md", "---\nname: only-user\n---\nDo the thing.\n")

        outcome = SkillRegistry(user).get_skills_for_cwd(repo)

        assert [(s.name, s.description, s.scope) for s in outcome.skills] == [
            ("shared", "repo", "repo"),
            ("only-user", "Do the thing.", "user"),
        ]

    def test_name_defaults_to_directory(self, layout):
        repo, user = layout
        write_file(repo, ".coding-agent/skills/lint-fix/SKILL.md", "Run the linter and fix issues.\n")
        [skill] = SkillRegistry(user).get_skills_for_cwd(repo).skills
        assert skill.name == "lint-fix"
        assert skill.description == "Run the linter and fix issues."

    def test_errors_collected_not_raised(self, layout):
        repo, user = layout
        write_file(repo, ".coding-agent/skills/bad/SKILL.md", "---\nname: [oops\n---\nbody")
        write_file(repo, ".coding-agent/skills/dep/SKILL.md",
                   "---\nname: dep\ndependencies:\n  tools:\n    - type: mcp\n---\nbody")
        write_file(repo, ".coding-agent/skills/huge/SKILL.md", "x" * (MAX_SKILL_SIZE + 1))
        write_file(repo, ".coding-agent/skills/good/SKILL.md", "---\nname: good\n---\nbody")

        outcome = SkillRegistry(user).get_skills_for_cwd(repo)

        assert [s.name for s in outcome.skills] == ["good"]
        assert len(outcome.errors) == 3

    def test_results_cached_until_forced(self, layout):
        repo, user = layout
        registry = SkillRegistry(user)
        assert registry.get_skills_for_cwd(repo).skills == []
        write_file(repo, ".coding-agent/skills/new/SKILL.md", "---\nname: new\n---\nbody")
        assert registry.get_skills_for_cwd(repo).skills == []
        assert [s.name for s in registry.get_skills_for_cwd(repo, force_reload=True).skills] == ["new"]

    def test_lookup_is_case_insensitive(self, layout):
        repo, user = layout
        write_file(repo, ".coding-agent/skills/t/SKILL.md", TRIAGE_SKILL)
        outcome = SkillRegistry(user).get_skills_for_cwd(repo)
        assert outcome.get(" GitHub-Triage ").name == "github-triage"
        assert outcome.get("nope") is None

    def test_split_without_front_matter(self):
        assert split_front_matter("plain body") == ({}, "plain body")


# ═══════════════════════════════════════════════════════════════════
#  Dependency merge
# ═══════════════════════════════════════════════════════════════════


class TestDependencyMerge:

    def test_adds_missing_servers(self):
        skill = _skill("triage", SkillToolDependency("mcp", "github", url="https://a/mcp"))
        merged, warnings = merge_skill_mcp_dependencies({}, [skill])
        assert merged["github"].url == "https://a/mcp"
        assert warnings == []

    def test_settings_win_with_warning(self):
        servers = {"github": McpServerConfig(url="https://configured/mcp")}
        skill = _skill("triage", SkillToolDependency("mcp", "github", url="https://other/mcp"))

        merged, warnings = merge_skill_mcp_dependencies(servers, [skill])

        assert merged["github"].url == "https://configured/mcp"
        assert warnings == [
            'MCP server "github" already configured by settings, skipping dependency from skill "triage"'
        ]

    def test_first_skill_wins_with_warning(self):
        first = _skill("a", SkillToolDependency("mcp", "tracker", command="tracker-a"))
        second = _skill("b", SkillToolDependency("mcp", "tracker", command="tracker-b"))

        merged, warnings = merge_skill_mcp_dependencies({}, [first, second])

        assert merged["tracker"].command == "tracker-a"
        assert warnings == [
            'MCP server "tracker" already configured by skill "a", skipping dependency from skill "b"'
        ]

    def test_same_definition_is_silent(self):
        servers = {"github": McpServerConfig(url="https://a/mcp")}
        skill = _skill("triage", SkillToolDependency("mcp", "github", url="https://a/mcp"))
        assert merge_skill_mcp_dependencies(servers, [skill])[1] == []

    def test_non_mcp_and_configless_deps_ignored(self):
        skill = _skill(
            "x",
            SkillToolDependency("env", "GITHUB_TOKEN"),
            SkillToolDependency("mcp", "github"),
        )
        merged, _ = merge_skill_mcp_dependencies({}, [skill])
        assert merged == {}

    def test_validate_reports_required_only(self):
        skill = _skill(
            "triage",
            SkillToolDependency("mcp", "github"),
            SkillToolDependency("mcp", "tracker", required=False),
            SkillToolDependency("mcp", "present"),
        )
        missing = validate_skill_dependencies([skill], {"present": McpServerConfig(command="p")})
        assert missing == [("triage", "github")]


# ═══════════════════════════════════════════════════════════════════
#  Prompt
# ═══════════════════════════════════════════════════════════════════


class TestPromptBuilder:

    def test_sections(self):
        builder = PromptBuilder(model="test-model", cwd="/work/repo", extra_instructions="Be brief.")
        skill = SkillMetadata("github-triage", "Triage issues", "/x", short_description="triage")

        prompt = builder.build([skill])

        assert prompt.startswith("<coding_assistant>")
        assert "Working directory: /work/repo" in prompt
        assert "Model: test-model" in prompt
        assert "- github-triage: Triage issues (triage)" in prompt
        assert prompt.endswith("<system-reminder>\nBe brief.\n</system-reminder>")

    def test_no_skills_section_without_skills(self):
        prompt = PromptBuilder(model="m", cwd="/w").build([])
        assert "<skills>" not in prompt
        assert "<system-reminder>" not in prompt
