"""
AgentLoop：单个 task 的迭代式 tool-calling 循环。

每一轮：
1) 裁剪历史（条数/字符/可选 token 预算）并调用 provider（流式；`<think>` 段落转为 thinking 事件）；
2) 回复是（或内嵌）`{"tool": name, "args": {...}}` → 创建 Step、派发、截断结果后以 tool 回合回注，继续；
3) 否则回复即最终答案，结束。

终止条件：
- 得到纯文本回复（completed）；
- 步数耗尽（failed："Reached maximum steps (N) without a final answer."）；
- 致命错误（failed）：provider 错误（含缺少凭据）、权限拒绝、sandbox 不可用、策略冲突。

说明：
- 同一 run 内 step 严格串行；历史由 loop 独占（coordinator 在多个 task 间复用同一个 loop 以保留上下文）。
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from anycowork_runtime.config.loader import CoworkConfig
from anycowork_runtime.core.contracts import EventEmitter, EventType, Job, Step
from anycowork_runtime.core.errors import MissingCredentialsError
from anycowork_runtime.llm.protocol import CompletionProvider, CompletionRequest
from anycowork_runtime.llm.stream_processor import StreamProcessor
from anycowork_runtime.prompts.history import (
    assistant_turn,
    tool_turn,
    trim_history,
    trim_history_by_tokens,
    truncate_middle,
    user_turn,
)
from anycowork_runtime.prompts.templates import render_agent_preamble
from anycowork_runtime.tools.protocol import ToolCall
from anycowork_runtime.tools.registry import FATAL_TOOL_ERRORS, ToolRegistry

logger = logging.getLogger(__name__)


def _as_tool_call(obj: Any) -> Optional[Tuple[str, Dict[str, Any]]]:
    """若 obj 为 `{"tool": str, "args": ...}` 形状则返回 (name, args)。"""

    if not isinstance(obj, dict):
        return None
    name = obj.get("tool")
    if not isinstance(name, str) or not name.strip():
        return None
    args = obj.get("args")
    if isinstance(args, dict):
        return name.strip(), args
    if args is None:
        return name.strip(), {}
    # skill 工具允许 `"args": "read"` 这种简写
    return name.strip(), {"args": args if isinstance(args, str) else json.dumps(args, ensure_ascii=False)}


def parse_tool_call(text: str) -> Optional[Tuple[str, Dict[str, Any]]]:
    """
    从模型回复中解析工具调用。

    规则：
    - 整段回复是 JSON 对象且带字符串 `tool` 字段 → 该调用；
    - 否则从左到右扫描内嵌的 JSON 对象，取第一个带 `tool` 字段的（每轮只执行一个调用）；
    - 都没有 → None（回复为最终答案）。
    """

    stripped = text.strip()
    if not stripped:
        return None
    try:
        hit = _as_tool_call(json.loads(stripped))
    except json.JSONDecodeError:
        hit = None
    if hit is not None:
        return hit

    decoder = json.JSONDecoder()
    idx = stripped.find("{")
    while idx != -1:
        try:
            obj, _end = decoder.raw_decode(stripped, idx)
        except json.JSONDecodeError:
            obj = None
        hit = _as_tool_call(obj)
        if hit is not None:
            return hit
        idx = stripped.find("{", idx + 1)
    return None


@dataclass(frozen=True)
class LoopResult:
    """
    AgentLoop.run 的返回结构。

    字段：
    - status：completed|failed
    - final_output：最终答案，或失败时的可读信息
    - steps：本次 run 产生的 steps（按创建顺序）
    """

    status: str
    final_output: str
    steps: List[Step] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """是否成功结束。"""

        return self.status == "completed"


class AgentLoop:
    """单 session 的执行循环。"""

    def __init__(
        self,
        *,
        provider: CompletionProvider,
        registry: ToolRegistry,
        config: CoworkConfig,
        emitter: EventEmitter,
        api_key: Optional[str] = None,
        history: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        """
        参数：
        - provider：completion provider
        - registry：可用工具
        - config：运行配置（max_steps、history、llm）
        - emitter：事件发射器（绑定 session）
        - api_key：可选的显式凭据
        - history：可选的初始历史（就地追加）
        """

        self._provider = provider
        self._registry = registry
        self._config = config
        self._emitter = emitter
        self._api_key = api_key
        self._history: List[Dict[str, Any]] = history if history is not None else []

    @property
    def history(self) -> List[Dict[str, Any]]:
        """对话历史（只追加；发送给模型前按配置裁剪）。"""

        return self._history

    @property
    def emitter(self) -> EventEmitter:
        """事件发射器。"""

        return self._emitter

    def _windowed_history(self) -> List[Dict[str, Any]]:
        """按配置裁剪出本轮发送给模型的历史。"""

        hc = self._config.history
        kept, dropped = trim_history(self._history, max_messages=hc.max_messages, max_chars=hc.max_chars)
        if hc.max_tokens is not None:
            kept, more = trim_history_by_tokens(kept, max_tokens=hc.max_tokens)
            dropped += more
        if dropped:
            logger.debug("history trimmed: dropped %d messages", dropped)
        return kept

    def _request(self) -> CompletionRequest:
        """构造本轮请求（本轮用户输入已在历史中）。"""

        llm = self._config.llm
        return CompletionRequest(
            model=llm.model,
            provider=llm.provider,
            api_key=self._api_key,
            preamble=render_agent_preamble(self._registry.list_specs(), preamble=llm.preamble),
            history=self._windowed_history(),
        )

    async def _complete_turn(self, job: Job) -> str:
        """流式调用 provider；token/thinking 分别发事件，返回非 thinking 的回复文本。"""

        processor = StreamProcessor()
        parts: List[str] = []

        def _route(segments: List[Tuple[str, str]]) -> None:
            """把拆分后的片段发到对应事件。"""

            for kind, text in segments:
                if kind == "thinking":
                    self._emitter.thinking(text, job_id=job.id)
                else:
                    parts.append(text)
                    self._emitter.token(text, job_id=job.id)

        async for chunk in self._provider.stream(self._request()):
            _route(processor.process(chunk))
        _route(processor.flush())
        return "".join(parts)

    async def run(self, task: str, job: Job) -> LoopResult:
        """
        执行一个 task。

        参数：
        - task：本轮 user 输入（task 描述或用户消息）
        - job：当前 job（steps 追加到其中）

        返回：
        - LoopResult（不抛异常；失败以 status=failed 表达）
        """

        max_steps = int(self._config.run.max_steps)
        max_result_chars = int(self._config.history.max_tool_result_chars)
        steps: List[Step] = []
        self._history.append(user_turn(task))

        for _ in range(max_steps):
            try:
                reply = await self._complete_turn(job)
            except Exception as e:
                logger.warning("completion failed for job %s", job.id, exc_info=True)
                message = str(e) if isinstance(e, MissingCredentialsError) else f"Error: {e}"
                return LoopResult(status="failed", final_output=message, steps=steps)

            self._history.append(assistant_turn(reply))
            parsed = parse_tool_call(reply)
            if parsed is None:
                return LoopResult(status="completed", final_output=reply.strip(), steps=steps)

            name, args = parsed
            tool = self._registry.get(name)
            step = Step(
                tool_name=name,
                tool_args=args,
                requires_approval=bool(tool.requires_approval(args)) if tool is not None else False,
            )
            job.add_step(step)
            steps.append(step)
            self._emitter.step_event(EventType.STEP_STARTED, job, step)
            if step.requires_approval:
                self._emitter.step_event(EventType.APPROVAL_REQUIRED, job, step)

            try:
                result = await self._registry.dispatch(ToolCall(call_id=step.id, name=name, args=args))
            except FATAL_TOOL_ERRORS as e:
                message = str(e)
                step.finish(ok=False, result=message)
                self._history.append(tool_turn(name, f"Error: {message}"))
                self._emitter.step_event(EventType.STEP_COMPLETED, job, step)
                return LoopResult(status="failed", final_output=message, steps=steps)

            budget = max_result_chars
            if tool is not None and tool.needs_summarization(args, result):
                # 体量大的读取类结果只保留一半预算
                budget = max(1, max_result_chars // 2)
            content = truncate_middle(result.content, budget)
            self._history.append(tool_turn(name, content))
            step.finish(ok=result.ok, result=content)
            self._emitter.step_event(EventType.STEP_COMPLETED, job, step)

        return LoopResult(
            status="failed",
            final_output=f"Reached maximum steps ({max_steps}) without a final answer.",
            steps=steps,
        )

    async def run_job(self, query: str) -> LoopResult:
        """
        以独立 job 执行一条用户消息（fast 模式入口）。

        事件：job_started → …step 事件… → job_completed（completed/failed）
        """

        job = Job(session_id=self._emitter.session_id, query=query)
        self._emitter.job_started(job)
        result = await self.run(query, job)
        if result.ok:
            job.complete()
        else:
            job.fail()
        self._emitter.job_completed(job, result.final_output)
        return result
