"""
Coordinator：分类 →（直接回答 | 规划 → 逐 task 执行），并报告 job 生命周期事件。

事件顺序（smart 模式）：
- job_started → thinking "Analyzing query..."
- SIMPLE：thinking "Responding..." → token* → job_completed(completed|failed)
- COMPLEX：thinking "Analyzing request and creating a plan..." → thinking*（planner 输出）
  → plan_update → 每个 task：plan_update(running) + thinking "Starting Task: …" + loop 事件 + plan_update(completed)
  → job_completed "All tasks executed."

fast 模式：job_started → thinking "Fast Mode: Executing directly..." → loop → job_completed。
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from anycowork_runtime.config.loader import CoworkConfig
from anycowork_runtime.core.agent_loop import AgentLoop, LoopResult
from anycowork_runtime.core.classifier import QueryClassifier, QueryType
from anycowork_runtime.core.contracts import EventEmitter, Job, Plan, TaskStatus
from anycowork_runtime.core.planner import Planner
from anycowork_runtime.core.utils import new_id
from anycowork_runtime.llm.protocol import CompletionProvider, CompletionRequest
from anycowork_runtime.llm.stream_processor import StreamProcessor
from anycowork_runtime.prompts.history import assistant_turn, trim_history, user_turn
from anycowork_runtime.prompts.templates import DEFAULT_AGENT_PREAMBLE
from anycowork_runtime.storage.store import KeyedStore

logger = logging.getLogger(__name__)

ALL_TASKS_DONE_MESSAGE = "All tasks executed."

# planner 上下文最多携带的历史条数
_PLANNER_CONTEXT_MESSAGES = 10


class Coordinator:
    """
    一个 session 的顶层调度器。

    说明：
    - 同一 session 的多个 task 复用同一个 AgentLoop（共享对话历史）；
    - 分类失败不会冒泡（classifier 自身回退到 COMPLEX）；
    - 规划失败与 loop 的失败都会把 job 置为 failed，已完成的 task 保留状态。
    """

    def __init__(
        self,
        *,
        loop: AgentLoop,
        provider: CompletionProvider,
        config: CoworkConfig,
        classifier: Optional[QueryClassifier] = None,
        planner: Optional[Planner] = None,
        store: Optional[KeyedStore] = None,
        api_key: Optional[str] = None,
    ) -> None:
        """
        参数：
        - loop：执行循环（持有 session 历史与 emitter）
        - provider：直接回答所用的 completion provider
        - config：运行配置（mode、llm、planner）
        - classifier/planner：可选注入；缺省按 config 创建
        - store：可选；job 快照写入 `job:<id>`
        - api_key：可选的显式凭据
        """

        llm = config.llm
        self._loop = loop
        self._provider = provider
        self._config = config
        self._store = store
        self._api_key = api_key
        self._classifier = classifier or QueryClassifier(
            provider,
            model=llm.fast_model or llm.model,
            provider_name=llm.provider,
            api_key=api_key,
        )
        self._planner = planner or Planner(
            provider,
            model=llm.model,
            provider_name=llm.provider,
            api_key=api_key,
            max_attempts=config.planner.max_attempts,
            base_delay_ms=config.planner.base_delay_ms,
        )

    @property
    def emitter(self) -> EventEmitter:
        """session 事件发射器。"""

        return self._loop.emitter

    @property
    def loop(self) -> AgentLoop:
        """底层执行循环。"""

        return self._loop

    def _save(self, job: Job) -> None:
        """持久化 job 快照（未配置 store 时跳过）。"""

        if self._store is None:
            return
        self._store.put(f"job:{job.id}", job.snapshot())

    def _finish(self, job: Job, *, ok: bool, message: str) -> Job:
        """设置终态、持久化并发送 job_completed。"""

        if ok:
            job.complete()
        else:
            job.fail()
        self._save(job)
        self.emitter.job_completed(job, message)
        return job

    async def run(self, user_message: str) -> Job:
        """
        处理一条用户消息。

        返回：
        - 终态 Job（completed/failed）
        """

        emitter = self.emitter
        job = Job(session_id=emitter.session_id, query=user_message)
        self._save(job)
        emitter.job_started(job)

        if self._config.run.mode == "fast":
            emitter.thinking("Fast Mode: Executing directly...", job_id=job.id)
            result = await self._loop.run(user_message, job)
            return self._finish(job, ok=result.ok, message=result.final_output)

        emitter.thinking("Analyzing query...", job_id=job.id)
        query_type = await self._classifier.classify(user_message)
        logger.info("query classified as %s", query_type.value)

        if query_type == QueryType.SIMPLE:
            return await self._respond_directly(job, user_message)
        return await self._plan_and_execute(job, user_message)

    async def _respond_directly(self, job: Job, user_message: str) -> Job:
        """SIMPLE 路径：不带工具的流式对话。"""

        emitter = self.emitter
        emitter.thinking("Responding...", job_id=job.id)
        llm = self._config.llm
        hc = self._config.history
        window, _dropped = trim_history(self._loop.history, max_messages=hc.max_messages, max_chars=hc.max_chars)
        request = CompletionRequest(
            model=llm.model,
            provider=llm.provider,
            api_key=self._api_key,
            preamble=llm.preamble or DEFAULT_AGENT_PREAMBLE,
            history=window,
            message=user_message,
        )

        processor = StreamProcessor()
        parts: List[str] = []

        def _route(segments: List[Tuple[str, str]]) -> None:
            """thinking 片段发 thinking 事件，其余作为回复 token。"""

            for kind, text in segments:
                if kind == "thinking":
                    emitter.thinking(text, job_id=job.id)
                else:
                    parts.append(text)
                    emitter.token(text, job_id=job.id)

        try:
            async for chunk in self._provider.stream(request):
                _route(processor.process(chunk))
            _route(processor.flush())
        except Exception as e:
            logger.warning("direct response failed for job %s", job.id, exc_info=True)
            message = f"Error: {e}"
            emitter.token(message, job_id=job.id)
            return self._finish(job, ok=False, message=message)

        response = "".join(parts)
        self._loop.history.append(user_turn(user_message))
        self._loop.history.append(assistant_turn(response))
        return self._finish(job, ok=True, message=response)

    def _planner_context(self) -> str:
        """把最近的对话历史渲染为 planner 上下文文本。"""

        recent = self._loop.history[-_PLANNER_CONTEXT_MESSAGES:]
        return "\n".join(f"{m.get('role', 'user')}: {m.get('content', '')}" for m in recent)

    async def _plan_and_execute(self, job: Job, user_message: str) -> Job:
        """COMPLEX 路径：生成计划并逐个 task 执行。"""

        emitter = self.emitter
        emitter.thinking("Analyzing request and creating a plan...", job_id=job.id)
        try:
            plan = await self._planner.generate(
                user_message,
                context=self._planner_context(),
                on_token=lambda t: emitter.thinking(t, job_id=job.id),
            )
        except Exception as e:
            message = f"Planning failed: {e}"
            emitter.token(message, job_id=job.id)
            return self._finish(job, ok=False, message=message)

        plan_id = new_id()
        results: Dict[int, str] = {}
        self._publish_plan(plan, plan_id, results, job)

        for i, task in enumerate(plan.tasks):
            task.advance(TaskStatus.RUNNING)
            self._publish_plan(plan, plan_id, results, job)
            emitter.thinking(f"Starting Task: {task.description}", job_id=job.id)

            result: LoopResult = await self._loop.run(task.description, job)
            self._save(job)
            if not result.ok:
                logger.warning("task %d failed: %s", i + 1, result.final_output)
                return self._finish(job, ok=False, message=result.final_output)

            results[i] = result.final_output
            task.advance(TaskStatus.COMPLETED)
            self._publish_plan(plan, plan_id, results, job)

        return self._finish(job, ok=True, message=ALL_TASKS_DONE_MESSAGE)

    def _publish_plan(self, plan: Plan, plan_id: str, results: Dict[int, str], job: Job) -> None:
        """发送当前计划快照（附带已完成 task 的结果）。"""

        update = plan.to_update(plan_id)
        for i, state in enumerate(update.tasks):
            if i in results:
                state.result = results[i]
        self.emitter.plan_update(update, job_id=job.id)
