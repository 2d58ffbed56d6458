"""
配置加载器（YAML）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）；
- 内置默认配置：`anycowork_runtime/assets/default.yaml`（总是作为第一层）；
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from anycowork_runtime.sandbox.base import SandboxConfig

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "assets" / "default.yaml"


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(overlay_value, Mapping)
        ):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class CoworkLlmConfig(BaseModel):
    """LLM 连接配置（最小集合）。"""

    model_config = ConfigDict(extra="forbid")

    provider: str = Field(default="openai")
    model: str = Field(default="gpt-4o")
    # classifier 使用的快速模型；缺省时回退到 model
    fast_model: Optional[str] = None
    base_url: str = Field(default="https://api.openai.com/v1")
    api_key_env: str = Field(default="OPENAI_API_KEY")
    timeout_sec: int = Field(default=60, ge=1)
    preamble: Optional[str] = None


class CoworkRunConfig(BaseModel):
    """
    运行参数。

    说明：
    - `execution_mode`：agent 级执行策略（sandbox/direct/flexible），与 skill 自身要求协商；
    - `mode=fast` 跳过分类与规划，直接进入 agent loop。
    """

    model_config = ConfigDict(extra="forbid")

    max_steps: int = Field(default=10, ge=1)
    execution_mode: Literal["sandbox", "direct", "flexible"] = Field(default="flexible")
    mode: Literal["smart", "fast"] = Field(default="smart")


class CoworkPlannerConfig(BaseModel):
    """Planner 重试策略。"""

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=3, ge=1)
    base_delay_ms: int = Field(default=1000, ge=0)


class CoworkHistoryConfig(BaseModel):
    """对话历史滑窗与 tool 输出截断配置。"""

    model_config = ConfigDict(extra="forbid")

    max_messages: int = Field(default=40, ge=1)
    max_chars: int = Field(default=120_000, ge=1)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    max_tool_result_chars: int = Field(default=8_000, ge=100)


class CoworkSandboxSettings(BaseModel):
    """sandbox 默认参数（每次调用可覆盖）。"""

    model_config = ConfigDict(extra="forbid")

    image: str = Field(default="debian:stable-slim")
    memory_limit: str = Field(default="256m")
    cpu_limit: float = Field(default=0.5, gt=0)
    timeout_seconds: int = Field(default=300, ge=1)
    network_enabled: bool = False
    docker_binary: str = Field(default="docker")

    def to_sandbox_config(self) -> SandboxConfig:
        """转换为不可变的 `SandboxConfig`。"""

        return SandboxConfig(
            image=self.image,
            memory_limit=self.memory_limit,
            cpu_limit=self.cpu_limit,
            timeout_seconds=self.timeout_seconds,
            network_enabled=self.network_enabled,
        )


class CoworkPermissionsConfig(BaseModel):
    """
    权限配置。

    说明：
    - `ask`：请求挂起直到外部 resolve（人类审批）；
    - `auto`：无人值守，全部自动放行。
    """

    model_config = ConfigDict(extra="forbid")

    mode: Literal["ask", "auto"] = Field(default="ask")


class CoworkToolsConfig(BaseModel):
    """工具派发参数（超时/重试/结果缓存）。"""

    model_config = ConfigDict(extra="forbid")

    timeout_sec: Optional[float] = Field(default=None, gt=0)
    # 默认不自动重试：失败结果交回模型决定
    max_retries: int = Field(default=0, ge=0)
    cache_ttl_sec: float = Field(default=300.0, gt=0)
    cache_max_entries: int = Field(default=256, ge=1)


class CoworkSkillsConfig(BaseModel):
    """Skills 目录配置。"""

    model_config = ConfigDict(extra="forbid")

    roots: List[str] = Field(default_factory=list)


class CoworkConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    llm: CoworkLlmConfig = Field(default_factory=CoworkLlmConfig)
    run: CoworkRunConfig = Field(default_factory=CoworkRunConfig)
    planner: CoworkPlannerConfig = Field(default_factory=CoworkPlannerConfig)
    history: CoworkHistoryConfig = Field(default_factory=CoworkHistoryConfig)
    sandbox: CoworkSandboxSettings = Field(default_factory=CoworkSandboxSettings)
    permissions: CoworkPermissionsConfig = Field(default_factory=CoworkPermissionsConfig)
    tools: CoworkToolsConfig = Field(default_factory=CoworkToolsConfig)
    skills: CoworkSkillsConfig = Field(default_factory=CoworkSkillsConfig)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"配置文件不存在：{path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"配置文件根节点必须为 mapping(dict)：{path}")
    return data


def load_default_config_dict() -> Dict[str, Any]:
    """读取内置默认配置（assets/default.yaml）。"""

    return _load_yaml_file(DEFAULT_CONFIG_PATH)


def load_config_dicts(config_dicts: list[Dict[str, Any]], *, include_defaults: bool = True) -> CoworkConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `CoworkConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    - include_defaults：是否以内置 default.yaml 作为第一层
    """

    merged: Dict[str, Any] = load_default_config_dict() if include_defaults else {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return CoworkConfig.model_validate(merged)


def load_config(config_paths: list[Path]) -> CoworkConfig:
    """
    加载并合并多个配置文件，返回校验后的 `CoworkConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: list[Dict[str, Any]] = []
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_config_dicts(overlays)
