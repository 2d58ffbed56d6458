"""
核心契约（Core Contracts）：事件、Job/Step、Plan/Task 与 Observer。

说明：
- 事件统一为 `AgentEvent`（type + payload），通过 `Observer.emit(channel, event)` 向上层（UI/遥测）推送；
- Job/Step/Plan 由创建它们的 run 独占，不跨 session 共享；
- 不变量：Job.steps 只追加；Task 状态只允许 pending→running→completed。
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from anycowork_runtime.core.errors import StateError
from anycowork_runtime.core.utils import new_id, now_rfc3339

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """事件类型（wire 值为 snake_case）。"""

    TOKEN = "token"
    JOB_STARTED = "job_started"
    JOB_COMPLETED = "job_completed"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    APPROVAL_REQUIRED = "approval_required"
    THINKING = "thinking"
    ERROR = "error"
    PLAN_UPDATE = "plan_update"
    PERMISSION_REQUESTED = "permission_requested"


class AgentEvent(BaseModel):
    """
    AgentEvent：统一事件流条目。

    字段：
    - type：事件类型（见 `EventType`）
    - timestamp：RFC3339 时间字符串
    - session_id：会话标识（channel 由它派生）
    - job_id：可选；关联的 job
    - payload：JSON object（dict），承载事件专用字段
    """

    model_config = ConfigDict(extra="forbid")

    type: str
    timestamp: str = Field(default_factory=now_rfc3339)
    session_id: str
    job_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """序列化为 JSON 字符串。"""

        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, raw_json: str) -> "AgentEvent":
        """从 JSON 字符串反序列化为 `AgentEvent`。"""

        return cls.model_validate_json(raw_json)


class StepStatus(str, Enum):
    """Step 状态。"""

    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(str, Enum):
    """Job 状态。"""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(str, Enum):
    """Task 状态（只允许前进）。"""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"


class Step(BaseModel):
    """
    一次 tool 调用及其结果。

    字段：
    - tool_name/tool_args：调用的工具与参数
    - status：executing → completed|failed
    - result：工具输出（已截断的文本）
    - requires_approval：UI 提示位（是否会触发审批）
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_id)
    tool_name: str
    tool_args: Dict[str, Any] = Field(default_factory=dict)
    status: StepStatus = StepStatus.EXECUTING
    result: Optional[str] = None
    requires_approval: bool = False
    created_at: str = Field(default_factory=now_rfc3339)

    def finish(self, *, ok: bool, result: str) -> None:
        """把 step 置为终态（completed/failed）并记录结果。"""

        if self.status != StepStatus.EXECUTING:
            raise StateError(f"step {self.id} already finished ({self.status.value})")
        self.status = StepStatus.COMPLETED if ok else StepStatus.FAILED
        self.result = result


class Job(BaseModel):
    """一次用户消息的端到端处理（包含有序 steps）。"""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_id)
    session_id: str
    status: JobStatus = JobStatus.RUNNING
    query: str
    steps: List[Step] = Field(default_factory=list)
    current_step_index: int = 0
    created_at: str = Field(default_factory=now_rfc3339)

    def add_step(self, step: Step) -> Step:
        """追加 step（只追加，不允许插入/删除）。"""

        self.steps.append(step)
        self.current_step_index = len(self.steps) - 1
        return step

    def complete(self) -> None:
        """标记 job 完成。"""

        self.status = JobStatus.COMPLETED

    def fail(self) -> None:
        """标记 job 失败（已完成的 steps 保留各自状态，不回滚）。"""

        self.status = JobStatus.FAILED

    def snapshot(self) -> Dict[str, Any]:
        """返回可放入事件 payload 的 JSON dict。"""

        return self.model_dump(mode="json")


_TASK_TRANSITIONS = {
    (TaskStatus.PENDING, TaskStatus.RUNNING),
    (TaskStatus.RUNNING, TaskStatus.COMPLETED),
}


class Task(BaseModel):
    """计划中的一个子任务。"""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    description: str
    status: TaskStatus = TaskStatus.PENDING

    def advance(self, status: TaskStatus) -> None:
        """
        推进 task 状态。

        约束：
        - 只允许 pending→running→completed；同状态重复设置为 no-op；
        - 其它流转抛 `StateError`。
        """

        status = TaskStatus(status)
        if status == self.status:
            return
        if (self.status, status) not in _TASK_TRANSITIONS:
            raise StateError(f"illegal task transition: {self.status.value} -> {status.value}")
        self.status = status


class TaskState(BaseModel):
    """`plan_update` 事件中的 task 视图。"""

    model_config = ConfigDict(extra="forbid")

    task_id: str
    description: str
    status: str
    result: Optional[str] = None


class PlanUpdate(BaseModel):
    """`plan_update` 事件 payload。"""

    model_config = ConfigDict(extra="forbid")

    plan_id: str
    tasks: List[TaskState] = Field(default_factory=list)


class Plan(BaseModel):
    """
    计划：有序 task 列表（Planner 产出一次，随后由执行阶段原地推进状态）。

    说明：
    - 该模型的 JSON Schema 会嵌入 planner prompt，约束模型输出形状；
    - 未知字段被忽略（模型输出常带额外说明字段）。
    """

    model_config = ConfigDict(extra="ignore")

    objective: Optional[str] = None
    tasks: List[Task] = Field(min_length=1)

    def to_update(self, plan_id: str) -> PlanUpdate:
        """生成当前状态的 `PlanUpdate` 快照。"""

        return PlanUpdate(
            plan_id=plan_id,
            tasks=[
                TaskState(
                    task_id=str(t.id if t.id is not None else i + 1),
                    description=t.description,
                    status=t.status.value,
                )
                for i, t in enumerate(self.tasks)
            ],
        )


@runtime_checkable
class Observer(Protocol):
    """
    事件观察者（UI/遥测适配层）。

    约束：
    - `channel` 形如 `session:<session_id>`；
    - 实现不应阻塞（只做转发/入队）。
    """

    def emit(self, channel: str, event: AgentEvent) -> None:
        """接收一条事件。"""

        ...


class EventCollector:
    """进程内事件收集器（测试与嵌入场景）。"""

    def __init__(self) -> None:
        """创建空的收集器。"""

        self.items: List[Tuple[str, AgentEvent]] = []

    def emit(self, channel: str, event: AgentEvent) -> None:
        """记录一条事件。"""

        self.items.append((channel, event))

    @property
    def events(self) -> List[AgentEvent]:
        """按发出顺序返回全部事件。"""

        return [e for _c, e in self.items]

    def types(self) -> List[str]:
        """按发出顺序返回事件类型列表。"""

        return [e.type for _c, e in self.items]

    def of_type(self, type_: str) -> List[AgentEvent]:
        """过滤出某一类型的事件。"""

        return [e for _c, e in self.items if e.type == type_]


class EventEmitter:
    """
    绑定 session 的事件发射器。

    说明：
    - observer 为 None 时所有 emit 为 no-op；
    - observer 抛出的异常只记录日志，不影响 run 进度。
    """

    def __init__(self, observer: Optional[Observer], *, session_id: str) -> None:
        """
        参数：
        - observer：事件接收方（可选）
        - session_id：会话 id（决定 channel）
        """

        self._observer = observer
        self.session_id = session_id

    @property
    def channel(self) -> str:
        """事件 channel 名。"""

        return f"session:{self.session_id}"

    def emit(self, type_: EventType | str, payload: Dict[str, Any] | None = None, *, job_id: Optional[str] = None) -> None:
        """构造并发送一条事件。"""

        if self._observer is None:
            return
        event = AgentEvent(
            type=EventType(type_).value,
            session_id=self.session_id,
            job_id=job_id,
            payload=dict(payload or {}),
        )
        try:
            self._observer.emit(self.channel, event)
        except Exception:
            logger.warning("observer failed to handle event %s", event.type, exc_info=True)

    def thinking(self, message: str, *, job_id: Optional[str] = None) -> None:
        """发送 `thinking` 事件。"""

        self.emit(EventType.THINKING, {"message": message}, job_id=job_id)

    def token(self, content: str, *, job_id: Optional[str] = None) -> None:
        """发送 `token` 事件。"""

        self.emit(EventType.TOKEN, {"content": content}, job_id=job_id)

    def job_started(self, job: Job) -> None:
        """发送 `job_started` 事件。"""

        self.emit(EventType.JOB_STARTED, {"job": job.snapshot()}, job_id=job.id)

    def job_completed(self, job: Job, message: str) -> None:
        """发送 `job_completed` 事件（job.status 决定 completed/failed）。"""

        self.emit(EventType.JOB_COMPLETED, {"job": job.snapshot(), "message": message}, job_id=job.id)

    def step_event(self, type_: EventType, job: Job, step: Step) -> None:
        """发送 step 级事件（started/completed/approval_required）。"""

        self.emit(type_, {"job": job.snapshot(), "step": step.model_dump(mode="json")}, job_id=job.id)

    def plan_update(self, update: PlanUpdate, *, job_id: Optional[str] = None) -> None:
        """发送 `plan_update` 事件。"""

        self.emit(EventType.PLAN_UPDATE, {"plan": update.model_dump(mode="json")}, job_id=job_id)
