"""
内置工具：search_files（在 workspace 内递归 grep）。
"""

from __future__ import annotations

import shlex
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from anycowork_runtime.core.errors import ToolError
from anycowork_runtime.permissions.types import PermissionType
from anycowork_runtime.tools.protocol import BaseTool, ToolCall, ToolResult, ToolSpec
from anycowork_runtime.tools.registry import ToolExecutionContext

SEARCH_TIMEOUT_SECONDS = 60
NO_MATCHES = "No matches found."


class _SearchArgs(BaseModel):
    """search_files 输入参数。"""

    model_config = ConfigDict(extra="forbid")

    query: str = Field(min_length=1)
    path: str = "."


SEARCH_SPEC = ToolSpec(
    name="search_files",
    description="Search for text patterns in files within the workspace. Uses grep recursively.",
    parameters={
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Pattern to search for"},
            "path": {"type": "string", "description": "Relative directory to search (default '.')"},
        },
        "required": ["query"],
        "additionalProperties": False,
    },
    requires_approval=True,
    cacheable=True,
)


def _parse_args(call: ToolCall) -> _SearchArgs:
    """校验输入参数；不合法时抛 `ToolError`。"""

    try:
        return _SearchArgs.model_validate(call.args)
    except ValidationError as e:
        raise ToolError.validation_failed(str(e)) from e


def build_grep_command(query: str, path: str) -> str:
    """构造 `grep -r -n <query> <path>`（参数已做 shell 转义）。"""

    return f"grep -r -n {shlex.quote(query)} {shlex.quote(path)}"


class SearchTool(BaseTool):
    """只读搜索（结果可缓存）。"""

    SPEC = SEARCH_SPEC

    async def authorize(self, call: ToolCall, ctx: ToolExecutionContext) -> None:
        """每次派发都请求 `filesystem_read`（包括缓存命中的重复搜索）。"""

        args = _parse_args(call)
        ctx.resolve_path(args.path)
        await ctx.request_permission(
            PermissionType.FILESYSTEM_READ,
            f"Agent wants to search files in {args.path}",
            resource=args.path,
            operation="search",
        )

    async def execute(self, call: ToolCall, ctx: ToolExecutionContext) -> ToolResult:
        """执行 grep；grep 退出码 1 且无 stderr 视为“无匹配”。权限已由 `authorize` 在派发时取得。"""

        args = _parse_args(call)
        ctx.resolve_path(args.path)
        config = ctx.sandbox_defaults.with_timeout(SEARCH_TIMEOUT_SECONDS)
        result = await ctx.sandbox.execute(build_grep_command(args.query, args.path), ctx.workspace_root, config)

        if result.exit_code == 1 and not result.stderr:
            return ToolResult.ok_text(NO_MATCHES, data={"matches": 0})
        if not result.success:
            raise ToolError.execution_failed(f"grep failed: {result.stderr}")
        if not result.stdout:
            return ToolResult.ok_text(NO_MATCHES, data={"matches": 0})
        return ToolResult.ok_text(result.stdout, data={"matches": len(result.stdout.splitlines())})

    def needs_summarization(self, args: Dict[str, Any], result: ToolResult) -> bool:
        """匹配很多时建议摘要。"""

        return bool(result.data) and int((result.data or {}).get("matches", 0)) > 50
