"""
System prompt builder: composes the system prompt from XML-tagged sections.

Layout:
    <coding_assistant> ... </coding_assistant>
    <env> ... </env>
    <skills> ... </skills>            (only when skills were discovered)
    <system-reminder> ... </system-reminder>   (optional extra instructions)

Tool definitions travel natively with each model request, so they are not
repeated here.
"""

from __future__ import annotations
import platform
from datetime import datetime
from typing import Optional

from .skills import SkillMetadata

BASE_INSTRUCTIONS = """<coding_assistant>
You are a helpful coding assistant working inside the user's project.
Use the available tools to inspect and change files and to run commands.
Prefer reading before editing, keep edits minimal, and report what you changed.
Some tool calls need the user's approval; if a call is rejected or blocked, adapt instead of retrying it unchanged.
</coding_assistant>"""


class PromptBuilder:
    """
    Build the system prompt for one model request.

    Usage:
        builder = PromptBuilder(model="claude-sonnet-4-5", cwd="/repo")
        system = builder.build(skills=outcome.skills)
    """

    def __init__(self, model: str, cwd: str, extra_instructions: str = ""):
        self.model = model
        self.cwd = cwd
        self.extra_instructions = extra_instructions

    def build(self, skills: Optional[list[SkillMetadata]] = None) -> str:
        sections = [BASE_INSTRUCTIONS, self._section_env()]

        skills_section = self._section_skills(skills or [])
        if skills_section:
            sections.append(skills_section)

        if self.extra_instructions.strip():
            sections.append(
                "<system-reminder>\n" + self.extra_instructions.strip() + "\n</system-reminder>"
            )
        return "\n\n".join(sections)

    def _section_env(self) -> str:
        now = datetime.now()
        return "\n".join([
            "<env>",
            f"Today's date: {now.strftime('%A, %B %d, %Y')}",
            f"Working directory: {self.cwd}",
            f"Platform: {platform.system()}",
            f"Model: {self.model}",
            "</env>",
        ])

    @staticmethod
    def _section_skills(skills: list[SkillMetadata]) -> str:
        """Skills index; full instructions are fetched with the skills tool."""
        if not skills:
            return ""
        lines = [
            "<skills>",
            "Skills are task-specific instructions. When a request matches a skill, "
            'load it first with the skills tool (action "get").',
        ]
        for skill in skills:
            entry = f"- {skill.name}: {skill.description}"
            if skill.short_description:
                entry += f" ({skill.short_description})"
            lines.append(entry)
        lines.append("</skills>")
        return "\n".join(lines)
