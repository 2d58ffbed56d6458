"""
内置工具：filesystem（读写/列目录/建目录/删文件）。

说明：
- 所有路径必须是 workspace 下的相对路径（拒绝绝对路径与 `..`）；
- 读操作（read_file/list_dir）请求 `filesystem_read`，变更操作请求 `filesystem_write`；
- read_file 的结果建议先摘要再回注（`needs_summarization`）。
"""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from anycowork_runtime.core.errors import ToolError
from anycowork_runtime.permissions.types import PermissionType
from anycowork_runtime.tools.protocol import BaseTool, ToolCall, ToolResult, ToolSpec
from anycowork_runtime.tools.registry import ToolExecutionContext

Operation = Literal["read_file", "write_file", "list_dir", "make_dir", "delete_file"]

_READ_OPS = {"read_file", "list_dir"}


class _FilesystemArgs(BaseModel):
    """filesystem 输入参数（按 operation 区分）。"""

    model_config = ConfigDict(extra="forbid")

    operation: Operation
    path: str
    content: Optional[str] = None


FILESYSTEM_SPEC = ToolSpec(
    name="filesystem",
    description="Read, write, list files and directories. Path must be relative to workspace root.",
    parameters={
        "type": "object",
        "properties": {
            "operation": {
                "type": "string",
                "enum": ["read_file", "write_file", "list_dir", "make_dir", "delete_file"],
            },
            "path": {"type": "string", "description": "Path relative to the workspace root"},
            "content": {"type": "string", "description": "File content (write_file only)"},
        },
        "required": ["operation", "path"],
        "additionalProperties": False,
    },
    requires_approval=True,
)


def _permission_for(operation: str) -> tuple[PermissionType, str]:
    """返回 (权限类型, 消息动词)。"""

    if operation in _READ_OPS:
        return PermissionType.FILESYSTEM_READ, "read"
    return PermissionType.FILESYSTEM_WRITE, "modify"


class FilesystemTool(BaseTool):
    """workspace 内的文件系统操作。"""

    SPEC = FILESYSTEM_SPEC

    async def execute(self, call: ToolCall, ctx: ToolExecutionContext) -> ToolResult:
        """
        执行 filesystem 操作。

        返回：
        - read_file：文件文本
        - write_file/make_dir/delete_file：简短确认文本
        - list_dir：`[{"name": ..., "type": "file|directory"}]` 的 JSON
        """

        try:
            args = _FilesystemArgs.model_validate(call.args)
        except ValidationError as e:
            raise ToolError.validation_failed(str(e)) from e

        target = ctx.resolve_path(args.path)
        permission_type, verb = _permission_for(args.operation)
        noun = "directory" if args.operation == "list_dir" else "file"
        await ctx.request_permission(
            permission_type,
            f"Agent wants to {verb} {noun} at {args.path}",
            resource=args.path,
            operation=args.operation,
        )

        try:
            if args.operation == "read_file":
                return ToolResult.ok_text(target.read_text(encoding="utf-8"), data={"path": args.path})
            if args.operation == "write_file":
                if args.content is None:
                    raise ToolError.validation_failed("write_file requires 'content'")
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(args.content, encoding="utf-8")
                return ToolResult.ok_text("File written successfully", data={"path": args.path})
            if args.operation == "list_dir":
                items = [
                    {"name": entry.name, "type": "directory" if entry.is_dir() else "file"}
                    for entry in sorted(target.iterdir(), key=lambda p: p.name)
                ]
                return ToolResult.ok_json(items, data={"path": args.path, "count": len(items)})
            if args.operation == "make_dir":
                target.mkdir(parents=True, exist_ok=True)
                return ToolResult.ok_text("Directory created", data={"path": args.path})
            target.unlink()
            return ToolResult.ok_text("File deleted", data={"path": args.path})
        except (OSError, UnicodeDecodeError) as e:
            raise ToolError.execution_failed(str(e)) from e

    def needs_summarization(self, args: Dict[str, Any], result: ToolResult) -> bool:
        """读取文件内容可能很长，建议摘要。"""

        return args.get("operation") == "read_file"
