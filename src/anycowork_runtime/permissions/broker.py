"""
权限仲裁（PermissionBroker）。

职责：
- 把工具发起的权限请求挂起为一次性 Future，等待外部（UI/人类）resolve；
- 维护 "allow always" 缓存：同一 cache_key 的后续请求不再挂起；
- 提供无人值守（AutoApprove）与全部拒绝（DenyAll）两个替身实现。

线程模型：
- `request()` 运行在 agent 的事件循环内；
- `resolve()` 可以从任意线程调用（通过 `loop.call_soon_threadsafe` 回到所属 loop 完成 Future）；
- pending 表与缓存由同一把 `threading.Lock` 保护。
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Set, runtime_checkable

from anycowork_runtime.core.contracts import EventEmitter, EventType, Observer
from anycowork_runtime.permissions.types import PermissionRequest

logger = logging.getLogger(__name__)


@runtime_checkable
class PermissionGate(Protocol):
    """
    权限门（工具只依赖该接口）。

    约束：
    - 返回 True 表示放行；False 表示拒绝（调用方负责转换为 `PermissionDeniedError`）。
    """

    async def request(self, req: PermissionRequest) -> bool:
        """请求一次权限决策。"""

        ...


class _AllowCache:
    """按 cache_key 记录 "allow always" 决策（线程安全）。"""

    def __init__(self) -> None:
        """创建空缓存。"""

        self._lock = threading.Lock()
        self._keys: Set[str] = set()

    def contains(self, key: str) -> bool:
        """key 是否已被放行。"""

        with self._lock:
            return key in self._keys

    def pre_approve(self, cache_key: str) -> None:
        """预先放行某个 cache_key（例如来自持久化的用户偏好）。"""

        with self._lock:
            self._keys.add(str(cache_key))

    def clear_cache(self) -> None:
        """清空全部缓存。"""

        with self._lock:
            self._keys.clear()

    def clear_session_cache(self, session_id: str) -> None:
        """清除某个 session 的缓存（key 以 `<session_id>:` 开头）。"""

        prefix = f"{session_id}:"
        with self._lock:
            self._keys = {k for k in self._keys if not k.startswith(prefix)}

    def cache_size(self) -> int:
        """当前缓存条目数。"""

        with self._lock:
            return len(self._keys)


@dataclass(frozen=True)
class PendingPermission:
    """
    一次挂起中的权限请求。

    字段：
    - request：原始请求
    - loop：Future 所属事件循环（resolve 时回到该 loop）
    - future：一次性结果（True/False）
    - created_at_monotonic：挂起时刻（用于排序与展示等待时长）
    """

    request: PermissionRequest
    loop: asyncio.AbstractEventLoop
    future: "asyncio.Future[bool]"
    created_at_monotonic: float


class PermissionBroker(_AllowCache):
    """
    交互式权限仲裁：请求挂起直到 `resolve()`。

    说明：
    - 未被 resolve 的请求会无限期挂起（不做超时/取消）；
    - 已 resolve 或未知的 id 再次 resolve 为 no-op（返回 False）。
    """

    def __init__(self, *, observer: Optional[Observer] = None) -> None:
        """
        参数：
        - observer：可选；每次真正挂起前发送 `permission_requested` 事件
        """

        super().__init__()
        self._observer = observer
        self._pending_lock = threading.Lock()
        self._pending: Dict[str, PendingPermission] = {}

    async def request(self, req: PermissionRequest) -> bool:
        """
        请求权限。

        流程：
        1) cache_key 命中 "allow always" → 直接返回 True（不挂起、不发事件）；
        2) 注册 Future 并发送 `permission_requested`；
        3) 等待 resolve 结果。
        """

        if self.contains(req.cache_key()):
            return True

        loop = asyncio.get_running_loop()
        fut: asyncio.Future[bool] = loop.create_future()
        pending = PendingPermission(request=req, loop=loop, future=fut, created_at_monotonic=time.monotonic())
        with self._pending_lock:
            self._pending[req.id] = pending

        if self._observer is not None:
            emitter = EventEmitter(self._observer, session_id=req.metadata.get("session_id", ""))
            emitter.emit(EventType.PERMISSION_REQUESTED, {"request": req.model_dump(mode="json")})

        return await fut

    def resolve(self, request_id: str, allowed: bool, *, remember: bool = False) -> bool:
        """
        写入决策（可从任意线程调用）。

        参数：
        - request_id：PermissionRequest.id
        - allowed：是否放行
        - remember：放行时是否写入 "allow always" 缓存

        返回：
        - True：找到 pending 并已调度 resolve
        - False：未知 id / 已 resolve / 所属 loop 已关闭
        """

        with self._pending_lock:
            pending = self._pending.pop(str(request_id), None)
        if pending is None:
            return False

        if allowed and remember:
            self.pre_approve(pending.request.cache_key())

        def _set() -> None:
            """在所属 loop 内完成 Future。"""

            if not pending.future.done():
                pending.future.set_result(bool(allowed))

        try:
            pending.loop.call_soon_threadsafe(_set)
        except RuntimeError:
            logger.warning("permission %s resolved after its loop closed", request_id)
            return False
        return True

    def list_pending(self) -> List[str]:
        """按挂起先后返回所有 pending 请求 id。"""

        with self._pending_lock:
            items = sorted(self._pending.values(), key=lambda p: p.created_at_monotonic)
        return [p.request.id for p in items]

    def get_pending(self, request_id: str) -> Optional[PermissionRequest]:
        """查询某个 pending 请求（不存在返回 None）。"""

        with self._pending_lock:
            pending = self._pending.get(str(request_id))
        return pending.request if pending is not None else None


class AutoApprovePermissionBroker(_AllowCache):
    """无人值守：所有请求立即放行，从不挂起。"""

    async def request(self, req: PermissionRequest) -> bool:
        """直接放行。"""

        return True

    def list_pending(self) -> List[str]:
        """永远没有 pending。"""

        return []


class DenyAllPermissionBroker(_AllowCache):
    """全部拒绝（锁定环境与测试）；预先放行的 cache_key 仍然有效。"""

    async def request(self, req: PermissionRequest) -> bool:
        """除预放行的 key 外一律拒绝。"""

        return self.contains(req.cache_key())

    def list_pending(self) -> List[str]:
        """永远没有 pending。"""

        return []


def create_permission_broker(mode: str, *, observer: Optional[Observer] = None) -> PermissionGate:
    """按配置 `permissions.mode` 构造仲裁器（`ask` → PermissionBroker，`auto` → AutoApprove）。"""

    if str(mode).strip().lower() == "auto":
        return AutoApprovePermissionBroker()
    return PermissionBroker(observer=observer)
