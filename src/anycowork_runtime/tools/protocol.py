"""
Tool 协议（ToolSpec / ToolCall / ToolResult / Tool）。

本模块只定义“可实现级”的最小协议：
- ToolSpec：注册表条目（名称、说明、JSON Schema 参数、审批/缓存提示）
- ToolCall：执行输入（call_id/name/args）
- ToolResult：执行输出（ok/content/error_kind/data）；content 是回注给模型的文本
- Tool：能力接口（spec + execute + requires_approval + needs_summarization）
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:  # pragma: no cover
    from anycowork_runtime.tools.registry import ToolExecutionContext


class ToolSpec(BaseModel):
    """
    Tool 注册信息。

    字段：
    - name：工具名（全局唯一，稳定；模型通过 `{"tool": name}` 引用）
    - description：工具说明（写入 system prompt）
    - parameters：JSON Schema（object schema）
    - requires_approval：UI 提示位：该工具通常会触发权限请求
    - cacheable：结果是否可在 TTL 内复用（只读、幂等的工具才应开启）
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    requires_approval: bool = False
    cacheable: bool = False

    def prompt_line(self) -> str:
        """渲染为 system prompt 中的一行工具说明。"""

        schema = json.dumps(self.parameters, ensure_ascii=False, sort_keys=True)
        return f"- {self.name}: {self.description}\n  args schema: {schema}"


class ToolCall(BaseModel):
    """
    Tool 调用（内部表示）。

    字段：
    - call_id：本次调用的唯一 id（与 Step.id 对齐）
    - name：工具名
    - args：参数 dict
    """

    model_config = ConfigDict(extra="forbid")

    call_id: str
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """
    Tool 执行结果（统一 envelope）。

    字段：
    - ok：是否成功
    - content：回注给模型的文本（失败时为可读错误信息）
    - error_kind：错误分类（validation/not_found/execution/timeout/unknown）
    - data：结构化结果（可选；供事件与测试断言）
    """

    model_config = ConfigDict(extra="forbid")

    ok: bool
    content: str
    error_kind: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    @classmethod
    def ok_text(cls, content: str, *, data: Optional[Dict[str, Any]] = None) -> "ToolResult":
        """便捷构造：成功结果。"""

        return cls(ok=True, content=str(content), data=data)

    @classmethod
    def ok_json(cls, value: Any, *, data: Optional[Dict[str, Any]] = None) -> "ToolResult":
        """便捷构造：以 JSON 文本作为 content 的成功结果。"""

        return cls(ok=True, content=json.dumps(value, ensure_ascii=False), data=data)

    @classmethod
    def error_text(cls, *, error_kind: str, message: str, data: Optional[Dict[str, Any]] = None) -> "ToolResult":
        """便捷构造：失败结果（message 即回注文本）。"""

        return cls(ok=False, content=str(message), error_kind=error_kind, data=data)


@runtime_checkable
class Tool(Protocol):
    """
    工具能力接口（按名称派发，不做逐工具硬编码分支）。

    方法：
    - `spec`：注册信息
    - `authorize(call, ctx)`：派发前的权限检查（先于结果缓存查询，缓存命中也必须经过）
    - `execute(call, ctx)`：执行；可恢复失败返回 ok=False 或抛 `ToolError`
    - `requires_approval(args)`：执行前的 UI 提示（真正的权限检查在 authorize/execute 中通过 ctx 发起）
    - `needs_summarization(args, result)`：结果是否建议先摘要再回注
    """

    @property
    def spec(self) -> ToolSpec:
        """工具注册信息。"""

        ...

    async def authorize(self, call: ToolCall, ctx: "ToolExecutionContext") -> None:
        """派发前的权限检查；拒绝时抛 `PermissionDeniedError`。"""

        ...

    async def execute(self, call: ToolCall, ctx: "ToolExecutionContext") -> ToolResult:
        """执行一次调用。"""

        ...

    def requires_approval(self, args: Dict[str, Any]) -> bool:
        """本次调用是否会请求审批。"""

        ...

    def needs_summarization(self, args: Dict[str, Any], result: ToolResult) -> bool:
        """结果是否需要摘要。"""

        ...


class BaseTool:
    """
    Tool 的便捷基类。

    说明：
    - 子类提供类属性 `SPEC` 并实现 `execute`；
    - `requires_approval` 默认取 `SPEC.requires_approval`；`needs_summarization` 默认 False。
    """

    SPEC: ToolSpec

    @property
    def spec(self) -> ToolSpec:
        """返回类级 `SPEC`。"""

        return self.SPEC

    async def authorize(self, call: ToolCall, ctx: "ToolExecutionContext") -> None:
        """默认无额外检查（权限在 `execute` 内按需发起）。"""

        return None

    async def execute(self, call: ToolCall, ctx: "ToolExecutionContext") -> ToolResult:
        """子类实现。"""

        raise NotImplementedError

    def requires_approval(self, args: Dict[str, Any]) -> bool:
        """默认沿用 spec 上的提示位。"""

        return bool(self.spec.requires_approval)

    def needs_summarization(self, args: Dict[str, Any], result: ToolResult) -> bool:
        """默认不需要摘要。"""

        return False
