"""
权限请求类型（PermissionType / PermissionRequest）。

说明：
- `PermissionType` 的 wire 值为 snake_case（filesystem_read/filesystem_write/shell_execute/network/unknown）；
- `PermissionRequest.metadata` 中的 `session_id`、`resource` 两个键参与缓存 key 计算。
"""

from __future__ import annotations

from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field

from anycowork_runtime.core.utils import new_id


class PermissionType(str, Enum):
    """可请求的权限类型。"""

    FILESYSTEM_READ = "filesystem_read"
    FILESYSTEM_WRITE = "filesystem_write"
    SHELL_EXECUTE = "shell_execute"
    NETWORK = "network"
    UNKNOWN = "unknown"


class PermissionRequest(BaseModel):
    """
    一次权限请求（面向 UI/人类）。

    字段：
    - id：请求唯一标识（resolve 时使用）
    - permission_type：权限类型
    - message：人类可读描述（例如 "Agent wants to run command: ls"）
    - metadata：字符串键值（约定键：session_id、resource）
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_id)
    permission_type: PermissionType
    message: str
    metadata: Dict[str, str] = Field(default_factory=dict)

    def with_metadata(self, key: str, value: str) -> "PermissionRequest":
        """追加一个 metadata 键值并返回自身（链式构造）。"""

        self.metadata[str(key)] = str(value)
        return self

    def with_session_id(self, session_id: str) -> "PermissionRequest":
        """写入 `session_id`。"""

        return self.with_metadata("session_id", session_id)

    def with_resource(self, resource: str) -> "PermissionRequest":
        """写入 `resource`（路径、命令等）。"""

        return self.with_metadata("resource", resource)

    def cache_key(self) -> str:
        """
        计算缓存 key：`"<session_id>:" + type + ":" + (resource or "global")`。

        说明：
        - 无 session_id 时省略前缀。
        """

        session = self.metadata.get("session_id")
        prefix = f"{session}:" if session else ""
        resource = self.metadata.get("resource") or "global"
        return f"{prefix}{self.permission_type.value}:{resource}"
