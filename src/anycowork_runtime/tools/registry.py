"""
ToolRegistry：工具注册表与派发（dispatch）。

本模块提供：
- 执行上下文：`ToolExecutionContext`（workspace、权限门、sandbox、事件）
- 注册：`register/get/get_spec/list_specs`
- 执行：`dispatch(ToolCall) -> ToolResult`

错误口径：
- 未注册工具 → `error_kind=not_found` 的结果；
- `ToolError`/`UserError`/其它异常 → 失败结果（文本回注给模型，由模型决定下一步）；
- `PermissionDeniedError`、`SandboxUnavailableError`、`PolicyConflictError` 原样上抛（中止当前 step）。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Dict, List, Optional

from anycowork_runtime.core.contracts import EventEmitter
from anycowork_runtime.core.errors import (
    PermissionDeniedError,
    PolicyConflictError,
    SandboxUnavailableError,
    ToolError,
    UserError,
)
from anycowork_runtime.permissions.broker import PermissionGate
from anycowork_runtime.permissions.types import PermissionRequest, PermissionType
from anycowork_runtime.sandbox.base import SandboxBackend, SandboxConfig
from anycowork_runtime.sandbox.native import NativeSandbox
from anycowork_runtime.tools.cache import ToolResultCache
from anycowork_runtime.tools.protocol import Tool, ToolCall, ToolResult, ToolSpec

logger = logging.getLogger(__name__)

INVALID_PATH_MESSAGE = "Paths must be relative and cannot contain '..'"

# 派发期必须中止当前 step 的异常（其余异常都折叠为失败结果）
FATAL_TOOL_ERRORS = (PermissionDeniedError, SandboxUnavailableError, PolicyConflictError)


@dataclass
class ToolExecutionContext:
    """
    Tool 执行上下文（派发层注入）。

    字段：
    - workspace_root：相对路径解析基准目录
    - session_id：写入权限请求 metadata（参与 "allow always" 缓存 key）
    - permissions：权限门（PermissionBroker / AutoApprove / DenyAll）
    - sandbox：bash/search 等通用命令使用的 backend
    - execution_mode：agent 级执行策略（sandbox/direct/flexible），skill 执行时参与协商
    - isolated_sandbox：可选；容器 backend（skill 协商结果为 sandbox 时使用）
    - direct_sandbox：宿主 backend（skill 协商结果为 direct 时使用）
    - emitter：可选；工具执行期的旁路事件
    - sandbox_defaults：命令默认资源限制
    """

    workspace_root: Path
    session_id: str
    permissions: PermissionGate
    sandbox: SandboxBackend = field(default_factory=NativeSandbox)
    execution_mode: str = "flexible"
    isolated_sandbox: Optional[SandboxBackend] = None
    direct_sandbox: SandboxBackend = field(default_factory=NativeSandbox)
    emitter: Optional[EventEmitter] = None
    sandbox_defaults: SandboxConfig = field(default_factory=SandboxConfig)

    async def isolated_available(self) -> bool:
        """容器 backend 是否已配置且可用（探测可能启动子进程，放到线程里执行）。"""

        if self.isolated_sandbox is None:
            return False
        return await asyncio.to_thread(self.isolated_sandbox.is_available)

    def resolve_path(self, path: str) -> Path:
        """
        将模型提供的相对路径解析为 workspace 下的绝对路径。

        约束：
        - 拒绝绝对路径与任何包含 `..` 的路径；
        - 解析（含符号链接）后仍必须位于 workspace_root 之下。

        异常：
        - ToolError(kind=validation)：路径非法或逃逸 workspace
        """

        raw = str(path or "").strip()
        if not raw or ".." in raw or raw.startswith("/") or Path(raw).is_absolute():
            raise ToolError.validation_failed(INVALID_PATH_MESSAGE)
        root = Path(self.workspace_root).resolve()
        p = (root / raw).resolve()
        if not p.is_relative_to(root):
            raise ToolError.validation_failed(f"Path escapes workspace: {raw}")
        return p

    async def request_permission(
        self,
        permission_type: PermissionType,
        message: str,
        *,
        resource: Optional[str] = None,
        **metadata: str,
    ) -> None:
        """
        发起权限请求并等待决策。

        异常：
        - PermissionDeniedError：被拒绝
        """

        req = PermissionRequest(permission_type=permission_type, message=message).with_session_id(self.session_id)
        if resource is not None:
            req.with_resource(resource)
        for k, v in metadata.items():
            req.with_metadata(k, v)
        allowed = await self.permissions.request(req)
        if not allowed:
            raise PermissionDeniedError("User denied permission", request_id=req.id)


class ToolRegistry:
    """工具注册表（按名称派发）。"""

    def __init__(
        self,
        *,
        ctx: ToolExecutionContext,
        cache: Optional[ToolResultCache] = None,
        timeout_sec: Optional[float] = None,
        max_retries: int = 0,
        retry_base_delay_ms: int = 100,
    ) -> None:
        """
        创建注册表并绑定执行上下文。

        参数：
        - ctx：执行上下文
        - cache：可选；`cacheable` 工具的结果缓存
        - timeout_sec：可选；单次执行超时
        - max_retries：失败后的自动重试次数（默认 0：失败结果直接交回模型）
        - retry_base_delay_ms：第 n 次重试前等待 `base * 2^(n-1)` 毫秒
        """

        self._ctx = ctx
        self._cache = cache
        self._timeout_sec = timeout_sec
        self._max_retries = max(0, int(max_retries))
        self._retry_base_delay_ms = int(retry_base_delay_ms)
        self._tools: Dict[str, Tool] = {}

    @property
    def ctx(self) -> ToolExecutionContext:
        """当前绑定的执行上下文。"""

        return self._ctx

    def register(self, tool: Tool, *, override: bool = False) -> None:
        """
        注册工具。

        参数：
        - tool：实现 `Tool` 协议的对象
        - override：是否允许覆盖同名工具；默认 False（重复注册抛 UserError）
        """

        name = tool.spec.name
        if name in self._tools and not override:
            raise UserError(f"Tool already registered: {name}")
        self._tools[name] = tool

    def get(self, name: str) -> Optional[Tool]:
        """按名称查找工具；不存在返回 None。"""

        return self._tools.get(name)

    def get_spec(self, name: str) -> ToolSpec:
        """获取工具规格；不存在则抛 `UserError`。"""

        tool = self._tools.get(name)
        if tool is None:
            raise UserError(f"Tool not found: {name}")
        return tool.spec

    def list_specs(self) -> List[ToolSpec]:
        """按注册顺序返回所有工具规格。"""

        return [t.spec for t in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        """支持 `name in registry`。"""

        return name in self._tools

    def __len__(self) -> int:
        """已注册工具数。"""

        return len(self._tools)

    async def dispatch(self, call: ToolCall) -> ToolResult:
        """
        派发执行一个 ToolCall。

        流程：
        1) 未注册 → not_found 结果；
        2) `tool.authorize` 权限检查（缓存命中同样需要经过）；
        3) cacheable 且缓存命中 → 直接返回缓存结果；
        4) 执行（可选超时）；失败按 `max_retries` 退避重试；
        5) 成功结果写入缓存；非 cacheable 工具成功后清空缓存（其副作用可能让已缓存结果过时）。
        """

        tool = self._tools.get(call.name)
        if tool is None:
            return ToolResult.error_text(
                error_kind="not_found",
                message=f"Tool not found: {call.name}",
                data={"tool": call.name},
            )

        denied = await self._guard(call, tool.authorize(call, self._ctx))
        if denied is not None:
            return denied

        cacheable = bool(tool.spec.cacheable) and self._cache is not None
        if cacheable:
            cached = self._cache.get(call.name, call.args)  # type: ignore[union-attr]
            if cached is not None:
                return cached

        result = ToolResult.error_text(error_kind="unknown", message="Execution failed: tool did not run")
        for attempt in range(self._max_retries + 1):
            if attempt > 0:
                delay_ms = self._retry_base_delay_ms * (2 ** (attempt - 1))
                logger.info("retrying tool %s (attempt %d) in %dms", call.name, attempt + 1, delay_ms)
                await asyncio.sleep(delay_ms / 1000.0)
            result = await self._execute_once(tool, call)
            if result.ok:
                if cacheable:
                    self._cache.set(call.name, call.args, result)  # type: ignore[union-attr]
                elif self._cache is not None:
                    self._cache.clear()
                return result
        return result

    async def _execute_once(self, tool: Tool, call: ToolCall) -> ToolResult:
        """执行一次（可选超时）并把可恢复异常折叠为失败结果。"""

        return await self._guard(call, tool.execute(call, self._ctx), timeout_sec=self._timeout_sec)

    async def _guard(self, call: ToolCall, step: Awaitable[Any], *, timeout_sec: Optional[float] = None) -> Any:
        """
        等待工具的某个阶段（authorize/execute）。

        返回：
        - 正常：该阶段的返回值
        - 可恢复异常：折叠后的失败 `ToolResult`

        说明：
        - `FATAL_TOOL_ERRORS` 原样上抛；
        - authorize 阶段不设超时（权限请求可能一直等待用户决定）。
        """

        try:
            if timeout_sec is not None:
                return await asyncio.wait_for(step, timeout=timeout_sec)
            return await step
        except FATAL_TOOL_ERRORS:
            raise
        except asyncio.TimeoutError:
            return ToolResult.error_text(error_kind="timeout", message="Execution failed: Tool execution timed out")
        except ToolError as e:
            return ToolResult.error_text(error_kind=e.kind, message=str(e))
        except UserError as e:
            return ToolResult.error_text(error_kind="validation", message=f"Validation failed: {e.message}")
        except Exception as e:
            logger.warning("tool %s raised unexpectedly", call.name, exc_info=True)
            return ToolResult.error_text(error_kind="unknown", message=f"Execution failed: {e}")
