"""
Skills（SKILL.md 解析、加载、执行方式协商与工具包装）。
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from anycowork_runtime.skills.loader import (
    detect_file_type,
    list_marketplace_skills,
    load_skill_from_dir,
    load_skill_from_zip,
    load_skills_from_roots,
    should_include_file,
)
from anycowork_runtime.skills.models import (
    LoadedSkill,
    MarketplaceSkillInfo,
    ParsedSkill,
    SkillFile,
    SkillSandboxConfig,
)
from anycowork_runtime.skills.parser import parse_skill_md
from anycowork_runtime.skills.resolver import ExecutionDecision, resolve_execution
from anycowork_runtime.skills.tool import SkillTool
from anycowork_runtime.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def register_skill_tools(
    registry: ToolRegistry, skills: Iterable[LoadedSkill], *, override: bool = False
) -> List[str]:
    """
    为每个 skill 注册一个同名 `SkillTool`。

    说明：
    - 与已注册工具（内置工具或先注册的 skill）同名时跳过并记 warning；`override=True` 时覆盖。

    返回：
    - 实际注册的 skill 名称（按输入顺序）
    """

    registered: List[str] = []
    for skill in skills:
        name = skill.name
        if name in registry and not override:
            logger.warning("skipping skill %s: a tool with the same name is already registered", name)
            continue
        registry.register(SkillTool(skill), override=override)
        registered.append(name)
    return registered


__all__ = [
    "ExecutionDecision",
    "LoadedSkill",
    "MarketplaceSkillInfo",
    "ParsedSkill",
    "SkillFile",
    "SkillSandboxConfig",
    "SkillTool",
    "detect_file_type",
    "list_marketplace_skills",
    "load_skill_from_dir",
    "load_skill_from_zip",
    "load_skills_from_roots",
    "parse_skill_md",
    "register_skill_tools",
    "resolve_execution",
    "should_include_file",
]
