"""
Skills 数据模型。

说明：
- `ParsedSkill`：SKILL.md frontmatter + 正文的解析结果；
- `LoadedSkill`：ParsedSkill + 随包文件（相对路径 → 内容）；
- 加载后不可变，随 agent session 结束而丢弃。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from anycowork_runtime.sandbox.base import SandboxConfig


@dataclass(frozen=True)
class SkillSandboxConfig:
    """
    SKILL.md 中 `sandbox_config:` 块（字段均可缺省）。

    说明：
    - 缺省字段在转换为 `SandboxConfig` 时取 SandboxConfig 默认值。
    """

    image: Optional[str] = None
    memory_limit: Optional[str] = None
    cpu_limit: Optional[float] = None
    timeout_seconds: Optional[int] = None
    network_enabled: Optional[bool] = None

    def to_sandbox_config(self, base: Optional[SandboxConfig] = None) -> SandboxConfig:
        """以 base（默认 `SandboxConfig()`）为底，覆盖本块中出现的字段。"""

        cfg = base if base is not None else SandboxConfig()
        return SandboxConfig(
            image=self.image if self.image is not None else cfg.image,
            memory_limit=self.memory_limit if self.memory_limit is not None else cfg.memory_limit,
            cpu_limit=self.cpu_limit if self.cpu_limit is not None else cfg.cpu_limit,
            timeout_seconds=self.timeout_seconds if self.timeout_seconds is not None else cfg.timeout_seconds,
            network_enabled=self.network_enabled if self.network_enabled is not None else cfg.network_enabled,
        )


@dataclass(frozen=True)
class ParsedSkill:
    """
    SKILL.md 解析结果。

    字段：
    - name/description：必填
    - license/category/triggers：可选元信息
    - requires_sandbox：skill 是否要求隔离执行
    - sandbox_config：可选资源限制
    - execution_mode：skill 偏好的执行方式（sandbox/direct/flexible；缺省为 None）
    - body：frontmatter 之后的 markdown 正文
    """

    name: str
    description: str
    body: str
    license: Optional[str] = None
    category: Optional[str] = None
    triggers: Optional[List[str]] = None
    requires_sandbox: bool = False
    sandbox_config: Optional[SkillSandboxConfig] = None
    execution_mode: Optional[str] = None


@dataclass(frozen=True)
class SkillFile:
    """随包文件（文本内容 + 类型标签，如 python/shell/markdown）。"""

    content: str
    file_type: str


@dataclass(frozen=True)
class LoadedSkill:
    """已加载的 skill（解析结果 + 随包文件）。"""

    skill: ParsedSkill
    files: Dict[str, SkillFile] = field(default_factory=dict)

    @property
    def name(self) -> str:
        """skill 名称。"""

        return self.skill.name


@dataclass(frozen=True)
class MarketplaceSkillInfo:
    """skills 目录中一个可加载 skill 的概要信息。"""

    name: str
    display_title: str
    description: str
    category: Optional[str]
    dir_name: str
    dir_path: str
