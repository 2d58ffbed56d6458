"""
内置工具：bash（通过 sandbox backend 执行 shell 命令）。
"""

from __future__ import annotations

import json

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from anycowork_runtime.core.errors import ToolError
from anycowork_runtime.permissions.types import PermissionType
from anycowork_runtime.tools.protocol import BaseTool, ToolCall, ToolResult, ToolSpec
from anycowork_runtime.tools.registry import ToolExecutionContext

BASH_TIMEOUT_SECONDS = 300


class _BashArgs(BaseModel):
    """bash 输入参数。"""

    model_config = ConfigDict(extra="forbid")

    command: str = Field(min_length=1)


BASH_SPEC = ToolSpec(
    name="bash",
    description="Execute a bash command. Use this to run shell commands.",
    parameters={
        "type": "object",
        "properties": {"command": {"type": "string", "description": "Shell command to run in the workspace"}},
        "required": ["command"],
        "additionalProperties": False,
    },
    requires_approval=True,
)


class BashTool(BaseTool):
    """在 workspace 下执行命令（允许网络，300s 超时）。"""

    SPEC = BASH_SPEC

    async def execute(self, call: ToolCall, ctx: ToolExecutionContext) -> ToolResult:
        """
        执行命令。

        返回：
        - content 为 `{"stdout", "stderr", "exit_code"}` JSON；
        - 非零退出码/超时 → ok=False（文本仍回注给模型）。
        """

        try:
            args = _BashArgs.model_validate(call.args)
        except ValidationError as e:
            raise ToolError.validation_failed(str(e)) from e

        await ctx.request_permission(
            PermissionType.SHELL_EXECUTE,
            f"Agent wants to run command: {args.command}",
            resource=args.command,
        )

        config = ctx.sandbox_defaults.with_network(True).with_timeout(BASH_TIMEOUT_SECONDS)
        result = await ctx.sandbox.execute(args.command, ctx.workspace_root, config)

        payload = {"stdout": result.stdout, "stderr": result.stderr, "exit_code": result.exit_code}
        if result.timed_out:
            payload["timed_out"] = True
        error_kind = None
        if not result.success:
            error_kind = "timeout" if result.timed_out else "execution"
        return ToolResult(
            ok=result.success,
            content=json.dumps(payload, ensure_ascii=False),
            error_kind=error_kind,
            data={"backend": ctx.sandbox.name, **payload},
        )
