from __future__ import annotations

from typing import Optional

import pytest

from anycowork_runtime.core.errors import PolicyConflictError, SandboxUnavailableError
from anycowork_runtime.sandbox import SANDBOX_MODE_UNAVAILABLE_MESSAGE
from anycowork_runtime.skills.resolver import (
    DIRECT_CONFLICT_MESSAGE,
    SKILL_SANDBOX_UNAVAILABLE_MESSAGE,
    resolve_execution,
)


@pytest.mark.parametrize(
    ("agent", "preferred", "requires", "available", "use_sandbox"),
    [
        ("sandbox", None, False, True, True),
        ("sandbox", "direct", False, True, True),
        ("direct", None, False, True, False),
        ("direct", "sandbox", False, True, False),
        ("flexible", "sandbox", False, True, True),
        ("flexible", "direct", True, True, False),
        ("flexible", "direct", True, False, False),
        ("flexible", None, False, True, True),
        ("flexible", None, False, False, False),
        ("flexible", None, True, True, True),
        ("flexible", "flexible", False, False, False),
        ("FLEXIBLE", "", False, True, True),
    ],
)
def test_resolution_table(agent: str, preferred: Optional[str], requires: bool, available: bool, use_sandbox: bool) -> None:
    decision = resolve_execution(agent, requires_sandbox=requires, preferred_mode=preferred, isolated_available=available)
    assert decision.use_sandbox is use_sandbox
    assert decision.reason


def test_agent_sandbox_without_docker_fails() -> None:
    with pytest.raises(SandboxUnavailableError) as ei:
        resolve_execution("sandbox", requires_sandbox=False, preferred_mode=None, isolated_available=False)
    assert str(ei.value) == SANDBOX_MODE_UNAVAILABLE_MESSAGE


def test_agent_direct_conflicts_with_required_sandbox() -> None:
    with pytest.raises(PolicyConflictError) as ei:
        resolve_execution("direct", requires_sandbox=True, preferred_mode=None, isolated_available=True)
    assert str(ei.value) == DIRECT_CONFLICT_MESSAGE


@pytest.mark.parametrize(("preferred", "requires"), [("sandbox", False), (None, True)])
def test_flexible_cannot_satisfy_sandbox_need(preferred: Optional[str], requires: bool) -> None:
    with pytest.raises(SandboxUnavailableError) as ei:
        resolve_execution("flexible", requires_sandbox=requires, preferred_mode=preferred, isolated_available=False)
    assert str(ei.value) == SKILL_SANDBOX_UNAVAILABLE_MESSAGE


def test_unknown_agent_mode() -> None:
    with pytest.raises(ValueError):
        resolve_execution("yolo", requires_sandbox=False, preferred_mode=None, isolated_available=True)


def test_resolution_is_deterministic() -> None:
    a = resolve_execution("flexible", requires_sandbox=False, preferred_mode=None, isolated_available=True)
    b = resolve_execution("flexible", requires_sandbox=False, preferred_mode=None, isolated_available=True)
    assert a == b
