"""
执行方式协商：agent 级执行模式 × skill 自身要求 → 是否使用隔离 backend。

决策表（纯函数：相同输入总是得到相同输出）：

| agent     | skill 偏好 | requires_sandbox | docker 可用 | 结果                       |
|-----------|-----------|------------------|-------------|----------------------------|
| sandbox   | *         | *                | 否          | SandboxUnavailableError    |
| sandbox   | *         | *                | 是          | isolated                   |
| direct    | *         | 是               | *           | PolicyConflictError        |
| direct    | *         | 否               | *           | direct                     |
| flexible  | sandbox   | *                | 否          | SandboxUnavailableError    |
| flexible  | sandbox   | *                | 是          | isolated                   |
| flexible  | direct    | *                | *           | direct                     |
| flexible  | 未设置     | 是               | 否          | SandboxUnavailableError    |
| flexible  | 未设置     | *                | 是/否       | isolated if 可用 else direct |
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from anycowork_runtime.core.errors import PolicyConflictError, SandboxUnavailableError
from anycowork_runtime.sandbox import SANDBOX_MODE_UNAVAILABLE_MESSAGE

DIRECT_CONFLICT_MESSAGE = "Skill requires sandbox but Agent is in 'direct' execution mode."
SKILL_SANDBOX_UNAVAILABLE_MESSAGE = "Skill requires sandbox but Docker is not available."

EXECUTION_MODES = ("sandbox", "direct", "flexible")


@dataclass(frozen=True)
class ExecutionDecision:
    """协商结果。"""

    use_sandbox: bool
    reason: str


def _normalize_mode(mode: Optional[str]) -> Optional[str]:
    """小写去空白；空串视为未设置。"""

    value = str(mode or "").strip().lower()
    return value or None


def resolve_execution(
    agent_mode: str,
    *,
    requires_sandbox: bool,
    preferred_mode: Optional[str],
    isolated_available: bool,
) -> ExecutionDecision:
    """
    协商一次 skill 调用的执行方式。

    参数：
    - agent_mode：agent 级执行模式（sandbox/direct/flexible）
    - requires_sandbox：skill 是否要求隔离
    - preferred_mode：skill 的 `execution_mode`（sandbox/direct/flexible 或 None）
    - isolated_available：容器 backend 是否可用

    异常：
    - SandboxUnavailableError：策略要求隔离但容器不可用
    - PolicyConflictError：agent 为 direct 但 skill 要求隔离
    - ValueError：未知的 agent_mode
    """

    agent = _normalize_mode(agent_mode)
    preferred = _normalize_mode(preferred_mode)

    if agent == "sandbox":
        if not isolated_available:
            raise SandboxUnavailableError(SANDBOX_MODE_UNAVAILABLE_MESSAGE, details={"agent_mode": agent})
        return ExecutionDecision(use_sandbox=True, reason="agent_sandbox")

    if agent == "direct":
        if requires_sandbox:
            raise PolicyConflictError(
                DIRECT_CONFLICT_MESSAGE,
                details={"agent_mode": agent, "requires_sandbox": True},
            )
        return ExecutionDecision(use_sandbox=False, reason="agent_direct")

    if agent != "flexible":
        raise ValueError(f"Unknown execution mode: {agent_mode}")

    if preferred == "sandbox":
        if not isolated_available:
            raise SandboxUnavailableError(SKILL_SANDBOX_UNAVAILABLE_MESSAGE, details={"preferred_mode": preferred})
        return ExecutionDecision(use_sandbox=True, reason="skill_prefers_sandbox")
    if preferred == "direct":
        return ExecutionDecision(use_sandbox=False, reason="skill_prefers_direct")

    if requires_sandbox and not isolated_available:
        raise SandboxUnavailableError(SKILL_SANDBOX_UNAVAILABLE_MESSAGE, details={"requires_sandbox": True})
    if isolated_available:
        return ExecutionDecision(use_sandbox=True, reason="isolated_available")
    return ExecutionDecision(use_sandbox=False, reason="isolated_unavailable")
