"""
内置工具（builtin tools）。

本包提供：
- filesystem：read_file/write_file/list_dir/make_dir/delete_file
- bash：经 sandbox backend 执行命令
- search_files：递归 grep
"""

from __future__ import annotations

from anycowork_runtime.tools.builtin.bash import BASH_SPEC, BashTool
from anycowork_runtime.tools.builtin.filesystem import FILESYSTEM_SPEC, FilesystemTool
from anycowork_runtime.tools.builtin.search import SEARCH_SPEC, SearchTool
from anycowork_runtime.tools.registry import ToolRegistry

__all__ = ["BASH_SPEC", "FILESYSTEM_SPEC", "SEARCH_SPEC", "BashTool", "FilesystemTool", "SearchTool", "register_builtin_tools"]

_BUILTIN_TOOLS = [FilesystemTool, BashTool, SearchTool]


def register_builtin_tools(registry: ToolRegistry, *, override: bool = False) -> None:
    """
    注册全部内置工具。

    参数：
    - registry：工具注册表
    - override：是否允许覆盖同名工具（默认 False）
    """

    for tool_cls in _BUILTIN_TOOLS:
        registry.register(tool_cls(), override=override)
