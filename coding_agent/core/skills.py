"""
Skill discovery and the skill → MCP dependency merge.

Skills are directories containing a SKILL.md file whose YAML front matter
describes the skill:

    ---
    name: github-triage
    description: Triage GitHub issues
    short-description: issue triage
    dependencies:
      tools:
        - type: mcp
          value: github
          url: https://api.example.com/mcp
          required: true
    ---
    (instructions in markdown)

Discovery locations (earlier wins on name clashes):
  1. <cwd>/.coding-agent/skills/    (project skills)
  2. ~/.coding-agent/skills/        (user skills)
"""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

import yaml

from ..mcp.types import McpConfigError, McpServerConfig

logger = logging.getLogger(__name__)

# Max SKILL.md size to keep prompt injection bounded
MAX_SKILL_SIZE = 50_000


@dataclass
class SkillToolDependency:
    type: str
    value: str
    description: str = ""
    required: bool = True
    url: Optional[str] = None
    command: Optional[str] = None
    args: list[str] = field(default_factory=list)
    config: Optional[dict] = None

    def server_config(self) -> Optional[McpServerConfig]:
        """The MCP server config this dependency declares, if it declares one."""
        if self.config:
            return McpServerConfig.from_dict(self.config)
        if self.url:
            return McpServerConfig(url=self.url)
        if self.command:
            return McpServerConfig(command=self.command, args=list(self.args))
        return None


@dataclass
class SkillMetadata:
    name: str
    description: str
    path: str
    scope: str = "repo"  # repo | user
    short_description: str = ""
    dependencies: list[SkillToolDependency] = field(default_factory=list)
    body: str = ""

    @property
    def mcp_dependencies(self) -> list[SkillToolDependency]:
        return [d for d in self.dependencies if d.type == "mcp"]


@dataclass
class SkillLoadResult:
    skills: list[SkillMetadata] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def get(self, name: str) -> Optional[SkillMetadata]:
        needle = name.strip().lower()
        for skill in self.skills:
            if skill.name.lower() == needle:
                return skill
        return None


def split_front_matter(content: str) -> tuple[dict, str]:
    """Split ``---`` delimited YAML front matter from the markdown body."""
    if not content.startswith("---"):
        return {}, content
    parts = content.split("\n---", 1)
    if len(parts) != 2:
        return {}, content
    header = parts[0][3:]
    body = parts[1].lstrip("-").lstrip("\n")
    data = yaml.safe_load(header) or {}
    if not isinstance(data, dict):
        raise ValueError("front matter must be a mapping")
    return data, body


class SkillRegistry:
    """
    Discovers SKILL.md files for a working directory.

    Usage:
        registry = SkillRegistry()
        outcome = registry.get_skills_for_cwd("/path/to/repo")
        for skill in outcome.skills: ...
        for error in outcome.errors: ...
    """

    def __init__(self, user_skills_dir: Optional[str] = None):
        self.user_skills_dir = user_skills_dir or os.path.expanduser("~/.coding-agent/skills")
        self._cache: dict[str, SkillLoadResult] = {}

    def get_skills_for_cwd(self, cwd: str, force_reload: bool = False) -> SkillLoadResult:
        key = os.path.abspath(cwd)
        if not force_reload and key in self._cache:
            return self._cache[key]

        result = SkillLoadResult()
        seen: set[str] = set()
        for base_dir, scope in (
            (os.path.join(key, ".coding-agent", "skills"), "repo"),
            (self.user_skills_dir, "user"),
        ):
            self._scan_directory(base_dir, scope, result, seen)

        logger.info(f"Discovered {len(result.skills)} skills for {key}")
        self._cache[key] = result
        return result

    def _scan_directory(self, base_dir: str, scope: str, result: SkillLoadResult, seen: set[str]) -> None:
        if not os.path.isdir(base_dir):
            return
        for entry in sorted(os.listdir(base_dir)):
            skill_md = os.path.join(base_dir, entry, "SKILL.md")
            if not os.path.isfile(skill_md):
                continue
            try:
                skill = self._load_skill(entry, skill_md, scope)
            except (OSError, ValueError, yaml.YAMLError, McpConfigError) as e:
                result.errors.append(f"{skill_md}: {e}")
                logger.warning(f"Failed to load skill from {skill_md}: {e}")
                continue
            if skill is None or skill.name in seen:
                continue
            seen.add(skill.name)
            result.skills.append(skill)

    def _load_skill(self, dir_name: str, skill_md: str, scope: str) -> Optional[SkillMetadata]:
        size = os.path.getsize(skill_md)
        if size > MAX_SKILL_SIZE:
            raise ValueError(f"SKILL.md is too large ({size} bytes, max {MAX_SKILL_SIZE})")

        with open(skill_md, "r", encoding="utf-8") as f:
            content = f.read()
        if not content.strip():
            return None

        meta, body = split_front_matter(content)
        dependencies = [
            self._parse_dependency(d)
            for d in ((meta.get("dependencies") or {}).get("tools") or [])
        ]
        return SkillMetadata(
            name=str(meta.get("name") or dir_name),
            description=str(meta.get("description") or self._first_line(body)),
            path=os.path.dirname(skill_md),
            scope=scope,
            short_description=str(meta.get("short-description") or meta.get("short_description") or ""),
            dependencies=dependencies,
            body=body,
        )

    @staticmethod
    def _parse_dependency(data: dict) -> SkillToolDependency:
        if not isinstance(data, dict) or "type" not in data or "value" not in data:
            raise ValueError(f"invalid tool dependency: {data!r}")
        dep = SkillToolDependency(
            type=str(data["type"]),
            value=str(data["value"]),
            description=str(data.get("description") or ""),
            required=data.get("required", True) is not False,
            url=data.get("url"),
            command=data.get("command"),
            args=list(data.get("args") or []),
            config=data.get("config"),
        )
        # surface bad server configs at load time
        dep.server_config()
        return dep

    @staticmethod
    def _first_line(body: str) -> str:
        for line in body.split("\n"):
            line = line.strip()
            if line and not line.startswith("#"):
                return line[:200]
        return "No description available."


# ── MCP dependency merge ───────────────────────────────────────────

def merge_skill_mcp_dependencies(
    servers: dict[str, McpServerConfig],
    skills: list[SkillMetadata],
) -> tuple[dict[str, McpServerConfig], list[str]]:
    """
    Add MCP servers declared by skills to ``servers``.

    Configured servers always win; a warning is produced when a skill
    declares the same server name with a different url or command.
    """
    merged = dict(servers)
    warnings: list[str] = []
    declared_by: dict[str, str] = {}

    for skill in skills:
        for dep in skill.mcp_dependencies:
            config = dep.server_config()
            if config is None:
                continue
            existing = merged.get(dep.value)
            if existing is None:
                merged[dep.value] = config
                declared_by[dep.value] = skill.name
                continue
            if (existing.url and config.url and existing.url != config.url) or (
                existing.command and config.command and existing.command != config.command
            ):
                owner = declared_by.get(dep.value)
                source = f'skill "{owner}"' if owner else "settings"
                warnings.append(
                    f'MCP server "{dep.value}" already configured by {source}, '
                    f'skipping dependency from skill "{skill.name}"'
                )
    return merged, warnings


def validate_skill_dependencies(
    skills: list[SkillMetadata],
    servers: dict[str, McpServerConfig],
) -> list[tuple[str, str]]:
    """(skill, server) pairs for required MCP dependencies that are not configured."""
    missing = []
    for skill in skills:
        for dep in skill.mcp_dependencies:
            if dep.required and dep.value not in servers:
                missing.append((skill.name, dep.value))
    return missing
