"""Tool System（协议 + 注册表 + 结果缓存 + 内置工具）。"""

from __future__ import annotations

from anycowork_runtime.tools.cache import ToolResultCache
from anycowork_runtime.tools.protocol import BaseTool, Tool, ToolCall, ToolResult, ToolSpec
from anycowork_runtime.tools.registry import ToolExecutionContext, ToolRegistry

__all__ = [
    "BaseTool",
    "Tool",
    "ToolCall",
    "ToolExecutionContext",
    "ToolRegistry",
    "ToolResult",
    "ToolResultCache",
    "ToolSpec",
]
