"""
Bootstrap Layer（配置发现 + 组件装配）。

设计目标：
- 保持核心无隐式 I/O：AgentLoop/Coordinator 不读取环境与磁盘配置；
- 提供可选装配入口：宿主只需给出 workspace 与 observer，即可得到可运行的 Coordinator。
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from anycowork_runtime.config.loader import CoworkConfig, load_config
from anycowork_runtime.core.agent_loop import AgentLoop
from anycowork_runtime.core.contracts import EventEmitter, Observer
from anycowork_runtime.core.coordinator import Coordinator
from anycowork_runtime.core.utils import new_id
from anycowork_runtime.llm.openai_chat import OpenAIChatProvider
from anycowork_runtime.llm.protocol import CompletionProvider
from anycowork_runtime.permissions.broker import PermissionGate, create_permission_broker
from anycowork_runtime.sandbox import create_sandbox
from anycowork_runtime.sandbox.docker import DockerSandbox
from anycowork_runtime.sandbox.native import NativeSandbox
from anycowork_runtime.skills import load_skills_from_roots, register_skill_tools
from anycowork_runtime.storage.store import KeyedStore
from anycowork_runtime.tools.builtin import register_builtin_tools
from anycowork_runtime.tools.cache import ToolResultCache
from anycowork_runtime.tools.registry import ToolExecutionContext, ToolRegistry

CONFIG_PATHS_ENV = "ANYCOWORK_CONFIG_PATHS"


def _split_paths(raw: str) -> list[str]:
    """将逗号/分号分隔的路径串切分为片段列表（保序、去空）。"""

    parts: list[str] = []
    for chunk in raw.replace(";", ",").split(","):
        s = chunk.strip()
        if s:
            parts.append(s)
    return parts


def discover_overlay_paths(*, workspace_root: Path, env: Optional[Mapping[str, str]] = None) -> list[Path]:
    """
    overlay 路径发现规则（固定，顺序稳定）：
    1) `<workspace_root>/config/runtime.yaml`（存在时）
    2) `ANYCOWORK_CONFIG_PATHS`（逗号/分号分隔；相对路径按 workspace 解析）
    """

    ws = Path(workspace_root).resolve()
    overlays: list[Path] = []

    default_overlay = ws / "config" / "runtime.yaml"
    if default_overlay.exists():
        overlays.append(default_overlay.resolve())

    raw = (env if env is not None else os.environ).get(CONFIG_PATHS_ENV) or ""
    for p in _split_paths(raw):
        pp = Path(p).expanduser()
        overlays.append(pp.resolve() if pp.is_absolute() else (ws / pp).resolve())

    seen: set[Path] = set()
    uniq: list[Path] = []
    for p in overlays:
        if p in seen:
            continue
        seen.add(p)
        uniq.append(p)
    return uniq


@dataclass
class CoworkSession:
    """
    装配结果（一个 session 的运行时组件）。

    字段：
    - coordinator：入口（`await session.coordinator.run(message)`）
    - loop/registry/permissions：便于宿主直接访问（例如 resolve 权限请求）
    - config：生效配置
    """

    coordinator: Coordinator
    loop: AgentLoop
    registry: ToolRegistry
    permissions: PermissionGate
    config: CoworkConfig


def build_session(
    *,
    workspace_root: Path,
    config: Optional[CoworkConfig] = None,
    session_id: Optional[str] = None,
    provider: Optional[CompletionProvider] = None,
    observer: Optional[Observer] = None,
    permissions: Optional[PermissionGate] = None,
    store: Optional[KeyedStore] = None,
    api_key: Optional[str] = None,
) -> CoworkSession:
    """
    按配置装配一个 session。

    参数：
    - workspace_root：工作区根目录（工具的相对路径基准）
    - config：可选；缺省按 `discover_overlay_paths` 加载
    - session_id：可选；缺省随机生成
    - provider：可选；缺省使用 OpenAI-compatible provider
    - observer：可选事件接收方
    - permissions：可选权限门；缺省按 `permissions.mode` 创建
    - store：可选 keyed store（持久化 job 快照）
    - api_key：可选显式凭据（不落盘）

    异常：
    - SandboxUnavailableError：`run.execution_mode=sandbox` 但 docker 不可用
    """

    ws = Path(workspace_root).resolve()
    cfg = config or load_config(discover_overlay_paths(workspace_root=ws))
    sid = session_id or new_id()
    emitter = EventEmitter(observer, session_id=sid)
    gate = permissions or create_permission_broker(cfg.permissions.mode, observer=observer)

    docker = DockerSandbox(docker_binary=cfg.sandbox.docker_binary)
    ctx = ToolExecutionContext(
        workspace_root=ws,
        session_id=sid,
        permissions=gate,
        sandbox=create_sandbox(cfg.run.execution_mode, docker=docker),
        execution_mode=cfg.run.execution_mode,
        isolated_sandbox=docker,
        direct_sandbox=NativeSandbox(),
        emitter=emitter,
        sandbox_defaults=cfg.sandbox.to_sandbox_config(),
    )
    registry = ToolRegistry(
        ctx=ctx,
        cache=ToolResultCache(ttl_sec=cfg.tools.cache_ttl_sec, max_entries=cfg.tools.cache_max_entries),
        timeout_sec=cfg.tools.timeout_sec,
        max_retries=cfg.tools.max_retries,
    )
    register_builtin_tools(registry)
    if cfg.skills.roots:
        roots = [Path(r) if Path(r).is_absolute() else ws / r for r in cfg.skills.roots]
        register_skill_tools(registry, load_skills_from_roots(roots))

    chosen = provider or OpenAIChatProvider(cfg.llm, api_key=api_key)
    loop = AgentLoop(provider=chosen, registry=registry, config=cfg, emitter=emitter, api_key=api_key)
    coordinator = Coordinator(loop=loop, provider=chosen, config=cfg, store=store, api_key=api_key)
    return CoworkSession(coordinator=coordinator, loop=loop, registry=registry, permissions=gate, config=cfg)
