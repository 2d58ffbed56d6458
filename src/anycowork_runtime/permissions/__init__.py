"""
Permissions（权限请求与仲裁）模块。
"""

from __future__ import annotations

from anycowork_runtime.permissions.broker import (
    AutoApprovePermissionBroker,
    DenyAllPermissionBroker,
    PendingPermission,
    PermissionBroker,
    PermissionGate,
    create_permission_broker,
)
from anycowork_runtime.permissions.types import PermissionRequest, PermissionType

__all__ = [
    "AutoApprovePermissionBroker",
    "DenyAllPermissionBroker",
    "PendingPermission",
    "PermissionBroker",
    "PermissionGate",
    "PermissionRequest",
    "PermissionType",
    "create_permission_broker",
]
