"""
Keyed store 协议（KeyedStore）与两种实现（内存 / 目录下 JSON 文件）。

设计目标：
- coordinator 只依赖最小的 key→JSON dict CRUD，持久化形式由宿主决定；
- key 约定：`job:<id>`、`session:<id>` 等（前缀用于 `list_keys`）。
"""

from __future__ import annotations

import copy
import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
from urllib.parse import quote, unquote


@runtime_checkable
class KeyedStore(Protocol):
    """
    Keyed store 协议（最小集合）。

    约束：
    - value MUST 是可 JSON 序列化的 dict；
    - `get` 返回副本（调用方修改不影响已存数据）；
    - `list_keys` 按字典序返回。
    """

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """读取；不存在返回 None。"""

        ...

    def put(self, key: str, value: Dict[str, Any]) -> None:
        """写入（覆盖）。"""

        ...

    def delete(self, key: str) -> bool:
        """删除；返回是否存在过。"""

        ...

    def list_keys(self, prefix: str = "") -> List[str]:
        """列出带指定前缀的 key。"""

        ...


@dataclass
class InMemoryStore:
    """
    内存实现（用于嵌入/测试）。

    约束：
    - 读写线程安全（锁保护）；
    - 写入时做一次 JSON 往返，保证只存可序列化数据。
    """

    _data: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """读取副本。"""

        with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value) if value is not None else None

    def put(self, key: str, value: Dict[str, Any]) -> None:
        """写入（JSON 往返后存储）。"""

        normalized = json.loads(json.dumps(value, ensure_ascii=False))
        with self._lock:
            self._data[key] = normalized

    def delete(self, key: str) -> bool:
        """删除。"""

        with self._lock:
            return self._data.pop(key, None) is not None

    def list_keys(self, prefix: str = "") -> List[str]:
        """按前缀列出 key。"""

        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))


class JsonDirStore:
    """
    目录实现：每个 key 一个 `<quoted-key>.json` 文件。

    说明：
    - key 经 URL quote 转为文件名（`:`/`/` 等被转义）；
    - 写入先落临时文件再 replace，避免读到半截内容。
    """

    def __init__(self, root: Path) -> None:
        """创建（必要时建立）存储目录。"""

        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        """key → 文件路径。"""

        return self._root / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """读取；不存在返回 None。"""

        p = self._path(key)
        with self._lock:
            if not p.exists():
                return None
            return json.loads(p.read_text(encoding="utf-8"))

    def put(self, key: str, value: Dict[str, Any]) -> None:
        """写入（覆盖）。"""

        text = json.dumps(value, ensure_ascii=False)
        p = self._path(key)
        tmp = p.with_suffix(".json.tmp")
        with self._lock:
            tmp.write_text(text, encoding="utf-8")
            tmp.replace(p)

    def delete(self, key: str) -> bool:
        """删除。"""

        p = self._path(key)
        with self._lock:
            if not p.exists():
                return False
            p.unlink()
            return True

    def list_keys(self, prefix: str = "") -> List[str]:
        """按前缀列出 key。"""

        with self._lock:
            keys = [unquote(p.name[: -len(".json")]) for p in self._root.glob("*.json")]
        return sorted(k for k in keys if k.startswith(prefix))
