"""
AnyCowork Runtime（Python）。

说明：
- LLM 驱动的 agent 执行核心：分类 → 规划 → tool-calling 循环；
- 特权动作经 PermissionBroker 审批，命令在宿主或容器 sandbox 中执行；
- Skills 以 SKILL.md + 随包文件的形式加载为工具。
"""

from __future__ import annotations

from anycowork_runtime.bootstrap import CoworkSession, build_session
from anycowork_runtime.config.loader import CoworkConfig, load_config
from anycowork_runtime.core.agent_loop import AgentLoop, LoopResult
from anycowork_runtime.core.contracts import AgentEvent, EventCollector, Job, Plan, Step
from anycowork_runtime.core.coordinator import Coordinator

__all__ = [
    "AgentEvent",
    "AgentLoop",
    "Coordinator",
    "CoworkConfig",
    "CoworkSession",
    "EventCollector",
    "Job",
    "LoopResult",
    "Plan",
    "Step",
    "__version__",
    "build_session",
    "load_config",
]

__version__ = "0.1.0"
