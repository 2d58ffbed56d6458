from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from anycowork_runtime.config.loader import CoworkConfig, load_config_dicts
from anycowork_runtime.core.agent_loop import AgentLoop, LoopResult, parse_tool_call
from anycowork_runtime.core.contracts import EventCollector, EventEmitter, Job, StepStatus
from anycowork_runtime.core.errors import LlmError, MissingCredentialsError
from anycowork_runtime.llm.fake import FakeCompletionProvider, ScriptedReply
from anycowork_runtime.permissions.broker import AutoApprovePermissionBroker, DenyAllPermissionBroker
from anycowork_runtime.sandbox.native import NativeSandbox
from anycowork_runtime.tools.builtin import register_builtin_tools
from anycowork_runtime.tools.registry import ToolExecutionContext, ToolRegistry


def _tool_call(name: str, args: Dict[str, Any]) -> str:
    return json.dumps({"tool": name, "args": args})


def _loop(
    tmp_path: Path,
    replies: List[ScriptedReply],
    *,
    overlay: Optional[Dict[str, Any]] = None,
    permissions: Any = None,
) -> tuple[AgentLoop, FakeCompletionProvider, EventCollector]:
    cfg: CoworkConfig = load_config_dicts([overlay or {}])
    collector = EventCollector()
    emitter = EventEmitter(collector, session_id="s1")
    ctx = ToolExecutionContext(
        workspace_root=tmp_path,
        session_id="s1",
        permissions=permissions or AutoApprovePermissionBroker(),
        sandbox=NativeSandbox(),
        emitter=emitter,
    )
    registry = ToolRegistry(ctx=ctx)
    register_builtin_tools(registry)
    provider = FakeCompletionProvider(replies)
    return AgentLoop(provider=provider, registry=registry, config=cfg, emitter=emitter), provider, collector


def _run(loop: AgentLoop, task: str) -> tuple[LoopResult, Job]:
    job = Job(session_id="s1", query=task)
    return asyncio.run(loop.run(task, job)), job


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ('{"tool": "bash", "args": {"command": "ls"}}', ("bash", {"command": "ls"})),
        ('I will list files.\n```json\n{"tool": "bash", "args": {"command": "ls"}}\n```', ("bash", {"command": "ls"})),
        ('{"note": 1} then {"tool": "filesystem"}', ("filesystem", {})),
        ('{"tool": "my-skill", "args": "read"}', ("my-skill", {"args": "read"})),
        ("Plain final answer.", None),
        ('{"answer": 42}', None),
        ('{"tool": "", "args": {}}', None),
        ("", None),
    ],
)
def test_parse_tool_call(text: str, expected: Any) -> None:
    assert parse_tool_call(text) == expected


def test_plain_reply_completes(tmp_path: Path) -> None:
    loop, provider, collector = _loop(tmp_path, ["  The answer is 42.  "])
    result, job = _run(loop, "What is six times seven?")

    assert result.ok is True
    assert result.final_output == "The answer is 42."
    assert result.steps == []
    assert "".join(e.payload["content"] for e in collector.of_type("token")) == "  The answer is 42.  "
    assert loop.history == [
        {"role": "user", "content": "What is six times seven?"},
        {"role": "assistant", "content": "  The answer is 42.  "},
    ]
    req = provider.requests[0]
    assert req.message == ""
    assert req.history[-1] == {"role": "user", "content": "What is six times seven?"}
    assert "- filesystem:" in req.preamble


def test_tool_call_then_final_answer(tmp_path: Path) -> None:
    call = _tool_call("filesystem", {"operation": "write_file", "path": "notes.txt", "content": "hi"})
    loop, provider, collector = _loop(tmp_path, [call, "Wrote notes.txt."])
    result, job = _run(loop, "write a note")

    assert result.ok is True
    assert result.final_output == "Wrote notes.txt."
    assert (tmp_path / "notes.txt").read_text(encoding="utf-8") == "hi"

    assert len(job.steps) == 1
    step = job.steps[0]
    assert step.tool_name == "filesystem"
    assert step.status == StepStatus.COMPLETED
    assert step.result == "File written successfully"
    assert step.requires_approval is True
    assert result.steps == [step]

    step_types = [t for t in collector.types() if t != "token"]
    assert step_types == ["step_started", "approval_required", "step_completed"]
    started = collector.of_type("step_started")[0]
    assert started.payload["step"]["id"] == step.id
    assert started.payload["step"]["status"] == "executing"
    assert collector.of_type("step_completed")[0].payload["step"]["status"] == "completed"

    second = provider.requests[1]
    assert second.history[-1] == {"role": "tool", "name": "filesystem", "content": "File written successfully"}


def test_tool_failure_is_folded_back(tmp_path: Path) -> None:
    loop, provider, _ = _loop(tmp_path, [_tool_call("no_such_tool", {}), "Sorry, cannot do that."])
    result, job = _run(loop, "do something odd")

    assert result.ok is True
    assert job.steps[0].status == StepStatus.FAILED
    assert job.steps[0].result == "Tool not found: no_such_tool"
    assert job.steps[0].requires_approval is False
    assert provider.requests[1].history[-1]["content"] == "Tool not found: no_such_tool"


def test_step_budget_exhaustion(tmp_path: Path) -> None:
    call = _tool_call("filesystem", {"operation": "list_dir", "path": "."})
    loop, _, _ = _loop(tmp_path, [call, call], overlay={"run": {"max_steps": 2}})
    result, job = _run(loop, "loop forever")

    assert result.ok is False
    assert result.final_output == "Reached maximum steps (2) without a final answer."
    assert len(job.steps) == 2


def test_permission_denied_fails_the_run(tmp_path: Path) -> None:
    call = _tool_call("bash", {"command": "rm -rf build"})
    loop, provider, collector = _loop(tmp_path, [call, "unused"], permissions=DenyAllPermissionBroker())
    result, job = _run(loop, "clean up")

    assert result.ok is False
    assert result.final_output == "User denied permission"
    assert job.steps[0].status == StepStatus.FAILED
    assert loop.history[-1] == {"role": "tool", "name": "bash", "content": "Error: User denied permission"}
    assert collector.types()[-1] == "step_completed"
    assert provider.remaining == 1


def test_provider_error_fails_the_run(tmp_path: Path) -> None:
    loop, _, _ = _loop(tmp_path, [LlmError("connection reset")])
    result, _job = _run(loop, "hi")
    assert result.ok is False
    assert result.final_output == "Error: connection reset"


def test_missing_credentials_message_is_verbatim(tmp_path: Path) -> None:
    loop, _, _ = _loop(tmp_path, [MissingCredentialsError("Error: OPENAI_API_KEY not set (env or settings)")])
    result, _job = _run(loop, "hi")
    assert result.final_output == "Error: OPENAI_API_KEY not set (env or settings)"


def test_think_blocks_become_thinking_events(tmp_path: Path) -> None:
    loop, _, collector = _loop(tmp_path, [["<thi", "nk>let me see</think>", "Final."]])
    result, _job = _run(loop, "question")

    assert result.final_output == "Final."
    assert "".join(e.payload["message"] for e in collector.of_type("thinking")) == "let me see"
    assert loop.history[-1] == {"role": "assistant", "content": "Final."}


def test_long_read_results_are_truncated(tmp_path: Path) -> None:
    (tmp_path / "big.txt").write_text("x" * 1000, encoding="utf-8")
    call = _tool_call("filesystem", {"operation": "read_file", "path": "big.txt"})
    loop, _, _ = _loop(tmp_path, [call, "ok"], overlay={"history": {"max_tool_result_chars": 100}})
    _result, job = _run(loop, "read it")

    stored = job.steps[0].result or ""
    assert "[... 950 chars truncated ...]" in stored
    assert stored.startswith("x" * 25)


def test_history_window_is_applied(tmp_path: Path) -> None:
    loop, provider, _ = _loop(tmp_path, ["one", "two"], overlay={"history": {"max_messages": 2}})
    _run(loop, "first")
    _run(loop, "second")

    assert len(loop.history) == 4
    assert provider.requests[1].history == [
        {"role": "assistant", "content": "one"},
        {"role": "user", "content": "second"},
    ]


def test_run_job_emits_lifecycle(tmp_path: Path) -> None:
    loop, _, collector = _loop(tmp_path, ["done"])
    result = asyncio.run(loop.run_job("hello"))

    assert result.ok is True
    types = collector.types()
    assert types[0] == "job_started"
    assert types[-1] == "job_completed"
    completed = collector.of_type("job_completed")[0]
    assert completed.payload["job"]["status"] == "completed"
    assert completed.payload["message"] == "done"


def test_oversized_task_is_truncated_not_dropped(tmp_path: Path) -> None:
    task = "a" * 2500 + "b" * 2500
    loop, provider, _ = _loop(tmp_path, ["ok"], overlay={"history": {"max_chars": 1000}})
    result, _job = _run(loop, task)

    assert result.ok is True
    sent = provider.requests[0].history
    assert len(sent) == 1
    assert sent[0]["role"] == "user"
    assert sent[0]["content"].startswith("a" * 500)
    assert sent[0]["content"].endswith("b" * 500)
    assert "[... 4000 chars truncated ...]" in sent[0]["content"]
    assert loop.history[0]["content"] == task
