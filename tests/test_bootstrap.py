from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pytest

from anycowork_runtime import EventCollector, build_session
from anycowork_runtime.bootstrap import CONFIG_PATHS_ENV, discover_overlay_paths
from anycowork_runtime.config.loader import load_config_dicts
from anycowork_runtime.core.contracts import JobStatus
from anycowork_runtime.core.errors import SandboxUnavailableError
from anycowork_runtime.llm.fake import FakeCompletionProvider
from anycowork_runtime.permissions.broker import AutoApprovePermissionBroker, PermissionBroker
from anycowork_runtime.sandbox.native import NativeSandbox
from anycowork_runtime.skills.tool import SkillTool
from anycowork_runtime.storage.store import InMemoryStore


def test_discover_overlay_paths_order_and_dedup(tmp_path: Path) -> None:
    (tmp_path / "config").mkdir()
    runtime = tmp_path / "config" / "runtime.yaml"
    runtime.write_text("run:\n  max_steps: 4\n", encoding="utf-8")
    absolute = tmp_path / "elsewhere" / "b.yaml"

    env = {CONFIG_PATHS_ENV: f"a.yaml; {absolute} ,config/runtime.yaml,,"}
    paths = discover_overlay_paths(workspace_root=tmp_path, env=env)

    assert paths == [runtime.resolve(), (tmp_path / "a.yaml").resolve(), absolute.resolve()]


def test_discover_overlay_paths_empty(tmp_path: Path) -> None:
    assert discover_overlay_paths(workspace_root=tmp_path, env={}) == []


def test_build_session_direct_mode_runs_simple_query(tmp_path: Path) -> None:
    cfg = load_config_dicts([{"run": {"execution_mode": "direct"}, "permissions": {"mode": "auto"}}])
    collector = EventCollector()
    store = InMemoryStore()
    session = build_session(
        workspace_root=tmp_path,
        config=cfg,
        session_id="sess-1",
        provider=FakeCompletionProvider(["Hello!"]),
        observer=collector,
        store=store,
    )

    assert isinstance(session.permissions, AutoApprovePermissionBroker)
    assert isinstance(session.registry.ctx.sandbox, NativeSandbox)
    assert [s.name for s in session.registry.list_specs()] == ["filesystem", "bash", "search_files"]

    job = asyncio.run(session.coordinator.run("hello"))
    assert job.status == JobStatus.COMPLETED
    assert {c for c, _e in collector.items} == {"session:sess-1"}
    assert store.list_keys("job:") == [f"job:{job.id}"]


def test_build_session_registers_skills_from_workspace_roots(tmp_path: Path) -> None:
    skill_dir = tmp_path / "skills" / "greeter"
    skill_dir.mkdir(parents=True)
    (skill_dir / "SKILL.md").write_text("---\nname: greeter\ndescription: Greets\n---\nSay hi.\n", encoding="utf-8")
    cfg = load_config_dicts([{"run": {"execution_mode": "direct"}, "skills": {"roots": ["skills"]}}])

    session = build_session(workspace_root=tmp_path, config=cfg, provider=FakeCompletionProvider([]))

    assert "greeter" in session.registry
    assert isinstance(session.permissions, PermissionBroker)


def test_build_session_loads_overlays_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    overlay = tmp_path / "custom.yaml"
    overlay.write_text("run:\n  execution_mode: direct\n  max_steps: 3\n", encoding="utf-8")
    monkeypatch.setenv(CONFIG_PATHS_ENV, "custom.yaml")

    session = build_session(workspace_root=tmp_path, provider=FakeCompletionProvider([]))
    assert session.config.run.max_steps == 3
    assert session.config.run.execution_mode == "direct"


def test_build_session_sandbox_mode_requires_docker(tmp_path: Path) -> None:
    cfg = load_config_dicts([{"run": {"execution_mode": "sandbox"}, "sandbox": {"docker_binary": "no-such-docker-binary"}}])
    with pytest.raises(SandboxUnavailableError):
        build_session(workspace_root=tmp_path, config=cfg, provider=FakeCompletionProvider([]))


def test_build_session_skips_skills_named_like_builtins(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    for name in ("bash", "greeter"):
        skill_dir = tmp_path / "skills" / name
        skill_dir.mkdir(parents=True)
        (skill_dir / "SKILL.md").write_text(f"---\nname: {name}\ndescription: Demo\n---\nBody.\n", encoding="utf-8")
    cfg = load_config_dicts([{"run": {"execution_mode": "direct"}, "skills": {"roots": ["skills"]}}])

    with caplog.at_level(logging.WARNING, logger="anycowork_runtime.skills"):
        session = build_session(workspace_root=tmp_path, config=cfg, provider=FakeCompletionProvider([]))

    assert [s.name for s in session.registry.list_specs()] == ["filesystem", "bash", "search_files", "greeter"]
    assert not isinstance(session.registry.get("bash"), SkillTool)
    assert "skipping skill bash" in caplog.text
