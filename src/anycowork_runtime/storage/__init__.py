"""Keyed store（job/session 等记录的最小持久化接口）。"""

from __future__ import annotations

from anycowork_runtime.storage.store import InMemoryStore, JsonDirStore, KeyedStore

__all__ = ["InMemoryStore", "JsonDirStore", "KeyedStore"]
