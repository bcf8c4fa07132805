"""Built-in tools available to every session."""

from __future__ import annotations
from typing import Optional

from .base import BaseTool
from .bash import BashTool
from .edit import EditFileTool
from .glob_tool import GlobTool
from .grep_tool import GrepTool
from .list_files import ListFilesTool
from .read import ReadFileTool
from .skills_tool import SkillsTool
from .write import WriteFileTool
from ..core.skills import SkillRegistry


def create_builtin_tools(skill_registry: Optional[SkillRegistry] = None) -> list[BaseTool]:
    tools: list[BaseTool] = [
        ReadFileTool(),
        ListFilesTool(),
        GlobTool(),
        GrepTool(),
        WriteFileTool(),
        EditFileTool(),
        BashTool(),
    ]
    if skill_registry is not None:
        tools.append(SkillsTool(skill_registry))
    return tools
