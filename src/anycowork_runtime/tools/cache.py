"""
ToolResultCache：只读工具结果的进程内 TTL 缓存。

说明：
- key = sha256(tool_name + canonical JSON(args))；
- 过期条目在读取时惰性清理；超过容量时淘汰最早写入的条目；
- 跨 run 共享，所有访问由 `threading.Lock` 保护。
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from anycowork_runtime.tools.protocol import ToolResult


def cache_key(tool_name: str, args: Dict[str, Any]) -> str:
    """计算缓存 key（参数按 key 排序后序列化，保证等价参数命中同一条目）。"""

    raw = json.dumps(args, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)
    h = hashlib.sha256()
    h.update(str(tool_name).encode("utf-8"))
    h.update(raw.encode("utf-8"))
    return h.hexdigest()


@dataclass(frozen=True)
class CacheStats:
    """缓存统计。"""

    size: int
    capacity: int


class ToolResultCache:
    """有界 TTL 缓存。"""

    def __init__(
        self,
        *,
        ttl_sec: float = 300.0,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        参数：
        - ttl_sec：条目存活时间（秒）
        - max_entries：最大条目数
        - clock：单调时钟（测试可注入）
        """

        if ttl_sec <= 0:
            raise ValueError("ttl_sec must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._ttl = float(ttl_sec)
        self._max = int(max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        self._items: "OrderedDict[str, Tuple[ToolResult, float]]" = OrderedDict()

    def get(self, tool_name: str, args: Dict[str, Any]) -> Optional[ToolResult]:
        """读取未过期的结果；过期则删除并返回 None。"""

        key = cache_key(tool_name, args)
        now = self._clock()
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return None
            result, stored_at = entry
            if now - stored_at >= self._ttl:
                del self._items[key]
                return None
            return result

    def set(self, tool_name: str, args: Dict[str, Any], result: ToolResult) -> None:
        """写入结果（覆盖同 key 的旧值）。"""

        key = cache_key(tool_name, args)
        with self._lock:
            self._items.pop(key, None)
            self._items[key] = (result, self._clock())
            while len(self._items) > self._max:
                self._items.popitem(last=False)

    def clear(self) -> None:
        """清空缓存。"""

        with self._lock:
            self._items.clear()

    def stats(self) -> CacheStats:
        """返回当前条目数与容量。"""

        with self._lock:
            return CacheStats(size=len(self._items), capacity=self._max)
