"""
Skills Tool: list discovered skills or load one skill's instructions.
"""

from __future__ import annotations

from .base import BaseTool, ToolContext
from ..core.skills import SkillRegistry


class SkillsTool(BaseTool):
    name = "skills"
    readonly = True
    description = (
        "Access task-specific skills. action='list' shows every available skill; "
        "action='get' with a name returns that skill's full instructions. "
        "Load a matching skill before starting work it covers."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "action": {"type": "string", "enum": ["list", "get"], "description": "list or get"},
            "name": {"type": "string", "description": "Skill name (required for get)"},
        },
        "required": ["action"],
    }

    def __init__(self, registry: SkillRegistry):
        self._registry = registry

    def get_preview(self, tool_input: dict):
        if tool_input.get("action") == "get":
            return f"Load skill {tool_input.get('name', '')}"
        return "List skills"

    async def execute(self, tool_input: dict, context: ToolContext):
        outcome = self._registry.get_skills_for_cwd(context.cwd)
        action = tool_input.get("action") or "list"

        if action == "list":
            if not outcome.skills:
                return "No skills available."
            return "\n".join(f"{s.name}: {s.description}" for s in outcome.skills)

        if action == "get":
            name = tool_input.get("name") or ""
            skill = outcome.get(name)
            if skill is None:
                available = ", ".join(s.name for s in outcome.skills) or "none"
                return self._error(f'Skill "{name}" not found. Available: {available}')
            return f"# Skill: {skill.name}\nPath: {skill.path}\n\n{skill.body}"

        return self._error(f"Unknown action: {action}")
