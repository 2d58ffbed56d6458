from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, List

import pytest

from anycowork_runtime.core.errors import (
    PermissionDeniedError,
    PolicyConflictError,
    SandboxUnavailableError,
    ToolError,
    UserError,
)
from anycowork_runtime.permissions.broker import AutoApprovePermissionBroker, DenyAllPermissionBroker
from anycowork_runtime.permissions.types import PermissionType
from anycowork_runtime.tools.cache import ToolResultCache, cache_key
from anycowork_runtime.tools.protocol import BaseTool, ToolCall, ToolResult, ToolSpec
from anycowork_runtime.tools.registry import INVALID_PATH_MESSAGE, ToolExecutionContext, ToolRegistry


class _ScriptedTool(BaseTool):
    """按脚本依次返回结果或抛出异常的测试工具。"""

    def __init__(self, name: str, outcomes: List[Any], *, cacheable: bool = False) -> None:
        self.SPEC = ToolSpec(name=name, description=f"{name} tool", cacheable=cacheable)
        self._outcomes = list(outcomes)
        self.calls = 0

    async def execute(self, call: ToolCall, ctx: ToolExecutionContext) -> ToolResult:
        self.calls += 1
        outcome = self._outcomes.pop(0) if self._outcomes else ToolResult.ok_text("default")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class _SlowTool(BaseTool):
    SPEC = ToolSpec(name="slow", description="sleeps")

    async def execute(self, call: ToolCall, ctx: ToolExecutionContext) -> ToolResult:
        await asyncio.sleep(5)
        return ToolResult.ok_text("late")


def _ctx(tmp_path: Path, permissions: Any = None) -> ToolExecutionContext:
    return ToolExecutionContext(
        workspace_root=tmp_path,
        session_id="s1",
        permissions=permissions or AutoApprovePermissionBroker(),
    )


def _call(name: str, args: Dict[str, Any] | None = None) -> ToolCall:
    return ToolCall(call_id="c1", name=name, args=args or {})


def test_register_rejects_duplicates_unless_override(tmp_path: Path) -> None:
    reg = ToolRegistry(ctx=_ctx(tmp_path))
    reg.register(_ScriptedTool("echo", []))
    with pytest.raises(UserError):
        reg.register(_ScriptedTool("echo", []))

    replacement = _ScriptedTool("echo", [ToolResult.ok_text("v2")])
    reg.register(replacement, override=True)
    assert reg.get("echo") is replacement
    assert len(reg) == 1
    assert "echo" in reg


def test_list_specs_keeps_registration_order(tmp_path: Path) -> None:
    reg = ToolRegistry(ctx=_ctx(tmp_path))
    for name in ("b", "a", "c"):
        reg.register(_ScriptedTool(name, []))
    assert [s.name for s in reg.list_specs()] == ["b", "a", "c"]
    assert reg.get_spec("a").description == "a tool"
    with pytest.raises(UserError):
        reg.get_spec("zzz")


def test_dispatch_unknown_tool_returns_not_found(tmp_path: Path) -> None:
    reg = ToolRegistry(ctx=_ctx(tmp_path))
    result = asyncio.run(reg.dispatch(_call("missing")))
    assert result.ok is False
    assert result.error_kind == "not_found"
    assert result.content == "Tool not found: missing"


def test_tool_errors_become_failed_results(tmp_path: Path) -> None:
    reg = ToolRegistry(ctx=_ctx(tmp_path))
    reg.register(
        _ScriptedTool(
            "t",
            [
                ToolError.validation_failed("bad args"),
                UserError("nope"),
                RuntimeError("kaboom"),
            ],
        )
    )

    r1 = asyncio.run(reg.dispatch(_call("t")))
    r2 = asyncio.run(reg.dispatch(_call("t")))
    r3 = asyncio.run(reg.dispatch(_call("t")))

    assert (r1.ok, r1.error_kind, r1.content) == (False, "validation", "Validation failed: bad args")
    assert (r2.error_kind, r2.content) == ("validation", "Validation failed: nope")
    assert (r3.error_kind, r3.content) == ("unknown", "Execution failed: kaboom")


@pytest.mark.parametrize(
    "exc",
    [
        PermissionDeniedError(),
        SandboxUnavailableError("Docker is not available"),
        PolicyConflictError("conflict"),
    ],
)
def test_fatal_errors_propagate(tmp_path: Path, exc: Exception) -> None:
    reg = ToolRegistry(ctx=_ctx(tmp_path), max_retries=3)
    tool = _ScriptedTool("t", [exc])
    reg.register(tool)
    with pytest.raises(type(exc)):
        asyncio.run(reg.dispatch(_call("t")))
    assert tool.calls == 1


def test_timeout_returns_timeout_result(tmp_path: Path) -> None:
    reg = ToolRegistry(ctx=_ctx(tmp_path), timeout_sec=0.05)
    reg.register(_SlowTool())
    result = asyncio.run(reg.dispatch(_call("slow")))
    assert result.ok is False
    assert result.error_kind == "timeout"
    assert result.content == "Execution failed: Tool execution timed out"


def test_retries_with_exponential_backoff(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    delays: List[float] = []

    async def _fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    import anycowork_runtime.tools.registry as registry_mod

    monkeypatch.setattr(registry_mod.asyncio, "sleep", _fake_sleep)

    reg = ToolRegistry(ctx=_ctx(tmp_path), max_retries=2, retry_base_delay_ms=100)
    tool = _ScriptedTool(
        "flaky",
        [
            ToolResult.error_text(error_kind="execution", message="first"),
            ToolError.execution_failed("second"),
            ToolResult.ok_text("third time"),
        ],
    )
    reg.register(tool)

    result = asyncio.run(reg.dispatch(_call("flaky")))
    assert result.ok is True
    assert result.content == "third time"
    assert tool.calls == 3
    assert delays == [0.1, 0.2]


def test_no_retry_by_default(tmp_path: Path) -> None:
    reg = ToolRegistry(ctx=_ctx(tmp_path))
    tool = _ScriptedTool("t", [ToolResult.error_text(error_kind="execution", message="nope")])
    reg.register(tool)
    result = asyncio.run(reg.dispatch(_call("t")))
    assert result.content == "nope"
    assert tool.calls == 1


def test_cacheable_results_are_reused(tmp_path: Path) -> None:
    reg = ToolRegistry(ctx=_ctx(tmp_path), cache=ToolResultCache(ttl_sec=60))
    tool = _ScriptedTool("grep", [ToolResult.ok_text("hit-1"), ToolResult.ok_text("hit-2")], cacheable=True)
    reg.register(tool)

    a = asyncio.run(reg.dispatch(_call("grep", {"query": "x", "path": "."})))
    b = asyncio.run(reg.dispatch(_call("grep", {"path": ".", "query": "x"})))
    c = asyncio.run(reg.dispatch(_call("grep", {"query": "y"})))

    assert a.content == b.content == "hit-1"
    assert c.content == "hit-2"
    assert tool.calls == 2


def test_failed_results_are_not_cached(tmp_path: Path) -> None:
    reg = ToolRegistry(ctx=_ctx(tmp_path), cache=ToolResultCache(ttl_sec=60))
    tool = _ScriptedTool(
        "grep",
        [ToolResult.error_text(error_kind="execution", message="err"), ToolResult.ok_text("ok")],
        cacheable=True,
    )
    reg.register(tool)
    asyncio.run(reg.dispatch(_call("grep")))
    assert asyncio.run(reg.dispatch(_call("grep"))).content == "ok"


def test_cache_ttl_and_capacity() -> None:
    now = [0.0]
    cache = ToolResultCache(ttl_sec=10, max_entries=2, clock=lambda: now[0])

    cache.set("t", {"a": 1}, ToolResult.ok_text("1"))
    cache.set("t", {"a": 2}, ToolResult.ok_text("2"))
    cache.set("t", {"a": 3}, ToolResult.ok_text("3"))
    assert cache.get("t", {"a": 1}) is None
    assert cache.stats().size == 2

    now[0] = 10.0
    assert cache.get("t", {"a": 3}) is None
    assert cache.stats().size == 1

    cache.clear()
    assert cache.stats().size == 0


def test_cache_key_is_order_insensitive() -> None:
    assert cache_key("t", {"a": 1, "b": 2}) == cache_key("t", {"b": 2, "a": 1})
    assert cache_key("t", {"a": 1}) != cache_key("u", {"a": 1})


@pytest.mark.parametrize("bad", ["", "/etc/passwd", "../x", "a/../../b"])
def test_resolve_path_rejects_escapes(tmp_path: Path, bad: str) -> None:
    with pytest.raises(ToolError) as ei:
        _ctx(tmp_path).resolve_path(bad)
    assert INVALID_PATH_MESSAGE in str(ei.value)


def test_resolve_path_inside_workspace(tmp_path: Path) -> None:
    assert _ctx(tmp_path).resolve_path("a/b.txt") == (tmp_path / "a" / "b.txt").resolve()


def test_resolve_path_rejects_symlink_escape(tmp_path: Path) -> None:
    outside = tmp_path / "outside"
    outside.mkdir()
    ws = tmp_path / "ws"
    ws.mkdir()
    (ws / "link").symlink_to(outside, target_is_directory=True)
    with pytest.raises(ToolError):
        _ctx(ws).resolve_path("link/secret.txt")


def test_request_permission_denied_raises(tmp_path: Path) -> None:
    ctx = _ctx(tmp_path, permissions=DenyAllPermissionBroker())
    with pytest.raises(PermissionDeniedError):
        asyncio.run(ctx.request_permission(PermissionType.NETWORK, "Agent wants network"))
