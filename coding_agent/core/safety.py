"""
Safety Policy: decides whether a proposed action may run.

Pure decision function over two action kinds, ``bash`` and ``tool``.
Rules in priority order:
  1. Bypass ("YOLO") mode allows everything.
  2. Tools approved "always allow" for this session run without asking.
  3. Known read-only tools are auto-allowed.
  4. Write tools are allowed only inside the configured write roots;
     outside is a hard denial.
  5. Bash commands whose leading tokens match an allow-listed prefix run
     without asking.
  6. Everything else requires confirmation.
"""

from __future__ import annotations
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Optional

from .models import SafetyAction, SafetyDecision

logger = logging.getLogger(__name__)


DEFAULT_BASH_PREFIXES: list[str] = [
    "rg", "cat", "ls", "pwd", "git status", "git diff", "git log",
]
DEFAULT_READ_ONLY_TOOLS: list[str] = ["read_file", "list_files", "glob", "grep", "skills"]
DEFAULT_WRITE_TOOLS: list[str] = ["write_file", "edit_file"]
DEFAULT_NETWORK_TOOLS: list[str] = ["fetch"]

# Compound commands never match a prefix: `ls; rm -rf x` must be confirmed.
_CHAINING = re.compile(r"[;&|`\n]|\$\(|>|<")


@dataclass
class SafetySettings:
    """Resolved safety configuration for one session."""
    project_root: str
    allowed_write_roots: list[str] = field(default_factory=list)
    auto_allowed_bash_prefixes: list[str] = field(default_factory=lambda: list(DEFAULT_BASH_PREFIXES))
    auto_allowed_tools: list[str] = field(default_factory=list)
    bypass_all: bool = False
    read_only_tools: list[str] = field(default_factory=lambda: list(DEFAULT_READ_ONLY_TOOLS))
    write_tools: list[str] = field(default_factory=lambda: list(DEFAULT_WRITE_TOOLS))
    network_tools: list[str] = field(default_factory=lambda: list(DEFAULT_NETWORK_TOOLS))

    @property
    def write_roots(self) -> list[str]:
        return self.allowed_write_roots or [self.project_root]


def is_within_roots(target_path: str, roots: list[str]) -> bool:
    """True if ``target_path`` resolves to a root or somewhere beneath one."""
    resolved_target = os.path.abspath(target_path)
    for root in roots:
        resolved_root = os.path.abspath(root)
        try:
            rel = os.path.relpath(resolved_target, resolved_root)
        except ValueError:
            # different drives on Windows
            continue
        if rel == os.curdir:
            return True
        if not rel.startswith(os.pardir) and not os.path.isabs(rel):
            return True
    return False


def bash_prefix(command: str) -> str:
    """The first two whitespace-separated tokens of a command."""
    return " ".join(command.strip().split()[:2])


class SafetyPolicy:
    """
    Stateless apart from the per-session "always allow" set.

    Usage:
        policy = SafetyPolicy(SafetySettings(project_root="/repo"))
        decision = policy.decide(SafetyAction(kind="bash", command="git status"))
        if not decision.allowed: ...
        elif decision.requires_confirm: ...
    """

    def __init__(self, settings: SafetySettings):
        self.settings = settings
        self._auto_allowed: set[str] = set(settings.auto_allowed_tools)

    def add_auto_allowed_tool(self, tool_name: str) -> None:
        """Allow ``tool_name`` without confirmation for the rest of this session."""
        self._auto_allowed.add(tool_name)
        logger.info(f"Tool auto-allowed for this session: {tool_name}")

    def is_auto_allowed(self, tool_name: str) -> bool:
        return tool_name in self._auto_allowed

    @property
    def auto_allowed_tools(self) -> list[str]:
        return sorted(self._auto_allowed)

    def decide(self, action: SafetyAction) -> SafetyDecision:
        if self.settings.bypass_all:
            return SafetyDecision(True, False, "YOLO mode: all permissions granted")

        if action.kind == "bash":
            return self._decide_bash(action.command)
        if action.kind == "tool":
            return self._decide_tool(action)
        return SafetyDecision(True, True, "Unknown action requires confirmation")

    # ── Rules ───────────────────────────────────────────────────

    def _decide_bash(self, command: str) -> SafetyDecision:
        stripped = command.strip()
        prefix = bash_prefix(stripped)
        if stripped and not _CHAINING.search(stripped):
            for allowed in self.settings.auto_allowed_bash_prefixes:
                if prefix == allowed or stripped.startswith(allowed + " "):
                    return SafetyDecision(True, False, f"Auto-allowed command: {prefix}")
        return SafetyDecision(True, True, "Command execution requires confirmation")

    def _decide_tool(self, action: SafetyAction) -> SafetyDecision:
        name = action.tool_name

        # Containment holds even for allow-listed write tools
        if name in self.settings.write_tools:
            target = self._write_target(action.input)
            if target:
                resolved = os.path.join(self.settings.project_root, os.path.expanduser(target))
                if not is_within_roots(resolved, self.settings.write_roots):
                    return SafetyDecision(
                        False, False, f"Write path is outside allowed roots: {target}",
                    )

        if name in self._auto_allowed:
            return SafetyDecision(True, False, f"Auto-allowed tool: {name}")

        if name in self.settings.read_only_tools:
            return SafetyDecision(True, False, "Read-only tool")

        if name in self.settings.write_tools:
            return SafetyDecision(True, True, "File write requires confirmation")

        if name in self.settings.network_tools:
            return SafetyDecision(True, True, "Network access requires confirmation")

        if name == "bash":
            command = action.input.get("command", "")
            return self._decide_bash(command if isinstance(command, str) else "")

        return SafetyDecision(True, True, f"Tool requires confirmation: {name}")

    @staticmethod
    def _write_target(tool_input: dict) -> Optional[str]:
        for key in ("path", "file_path"):
            value = tool_input.get(key)
            if isinstance(value, str) and value:
                return value
        return None
