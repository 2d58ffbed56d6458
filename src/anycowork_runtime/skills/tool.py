"""
SkillTool：把一个 LoadedSkill 暴露为以 skill 名命名的工具。

调用约定：
- `{"args": "read"}`（大小写不敏感）：返回 skill 正文作为使用说明，不执行任何命令；
- 其它 `args`：视为 shell 命令；随包文件先写入临时目录，再按协商结果在隔离 backend（挂载到 `/skill`）
  或宿主 backend（通过 `SKILL_FILES_PATH` 暴露）中执行。
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path, PurePosixPath
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, ValidationError

from anycowork_runtime.core.errors import SandboxUnavailableError, ToolError
from anycowork_runtime.permissions.types import PermissionType
from anycowork_runtime.sandbox.base import SandboxConfig
from anycowork_runtime.skills.models import LoadedSkill
from anycowork_runtime.skills.resolver import resolve_execution
from anycowork_runtime.tools.protocol import BaseTool, ToolCall, ToolResult, ToolSpec
from anycowork_runtime.tools.registry import ToolExecutionContext

logger = logging.getLogger(__name__)

READ_ARG = "read"

# skill 未声明 sandbox_config 时的隔离执行默认值
DEFAULT_SKILL_SANDBOX = SandboxConfig(image="alpine:latest", memory_limit="128m", timeout_seconds=60)
DIRECT_SKILL_TIMEOUT_SECONDS = 60

_ARGS_DESCRIPTION = (
    "Either 'read' to get the full skill guide with code examples, or a shell command to execute. "
    "ALWAYS use 'read' first to learn how to use this skill properly."
)


class _SkillArgs(BaseModel):
    """skill 调用参数。"""

    model_config = ConfigDict(extra="forbid")

    args: str


def _is_read(args: Dict[str, Any]) -> bool:
    """是否为 `read` 伪参数。"""

    return str(args.get("args", "")).strip().lower() == READ_ARG


def build_skill_description(description: str) -> str:
    """在 skill 描述后追加“先 read”的使用提示。"""

    return (
        f"{description.rstrip('.')}. IMPORTANT: Before using this skill, call it with args='read' "
        "to get detailed instructions and code examples."
    )


def write_skill_files(skill: LoadedSkill, target_dir: Path) -> None:
    """把随包文件写入 target_dir（保持相对路径）。"""

    for rel, file in skill.files.items():
        rel_path = PurePosixPath(rel)
        if rel_path.is_absolute() or ".." in rel_path.parts:
            raise ToolError.execution_failed(f"Refusing to write skill file outside bundle: {rel}")
        dest = Path(target_dir).joinpath(*rel_path.parts)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_text(file.content, encoding="utf-8")
        except OSError as e:
            raise ToolError.execution_failed(f"Failed to write file {rel}: {e}") from e


class SkillTool(BaseTool):
    """以 skill 名注册的工具。"""

    def __init__(self, skill: LoadedSkill) -> None:
        """
        参数：
        - skill：已加载的 skill
        """

        self._skill = skill
        self._spec = ToolSpec(
            name=skill.skill.name,
            description=build_skill_description(skill.skill.description),
            parameters={
                "type": "object",
                "properties": {"args": {"type": "string", "description": _ARGS_DESCRIPTION}},
                "required": ["args"],
                "additionalProperties": False,
            },
            requires_approval=True,
        )

    @property
    def spec(self) -> ToolSpec:
        """按 skill 动态生成的 spec。"""

        return self._spec

    @property
    def skill(self) -> LoadedSkill:
        """被包装的 skill。"""

        return self._skill

    def requires_approval(self, args: Dict[str, Any]) -> bool:
        """`read` 不需要审批；执行命令需要。"""

        return not _is_read(args)

    async def execute(self, call: ToolCall, ctx: ToolExecutionContext) -> ToolResult:
        """
        执行 skill。

        异常：
        - SandboxUnavailableError/PolicyConflictError：执行方式协商失败（上抛，中止 step）
        - ToolError：执行失败（非零退出码等；文本回注给模型）
        """

        try:
            args = _SkillArgs.model_validate(call.args)
        except ValidationError as e:
            raise ToolError.validation_failed(str(e)) from e

        parsed = self._skill.skill
        if _is_read(call.args):
            return ToolResult.ok_text(parsed.body, data={"skill": parsed.name, "mode": READ_ARG})

        decision = resolve_execution(
            ctx.execution_mode,
            requires_sandbox=parsed.requires_sandbox,
            preferred_mode=parsed.execution_mode,
            isolated_available=await ctx.isolated_available(),
        )

        command = args.args
        await ctx.request_permission(
            PermissionType.SHELL_EXECUTE,
            f"Agent wants to run skill {parsed.name}: {command}",
            resource=f"skill:{parsed.name}",
        )

        with tempfile.TemporaryDirectory(prefix=f"skill-{parsed.name}-") as tmp:
            files_dir = Path(tmp)
            write_skill_files(self._skill, files_dir)

            if decision.use_sandbox:
                backend = ctx.isolated_sandbox
                if backend is None:
                    raise SandboxUnavailableError(
                        "Skill requires sandbox but no isolated backend is configured.",
                        details={"skill": parsed.name},
                    )
                config = (
                    parsed.sandbox_config.to_sandbox_config()
                    if parsed.sandbox_config is not None
                    else DEFAULT_SKILL_SANDBOX
                )
                label = "Skill execution failed"
                logger.info("executing skill %s via %s backend", parsed.name, backend.name)
            else:
                backend = ctx.direct_sandbox
                config = ctx.sandbox_defaults.with_timeout(DIRECT_SKILL_TIMEOUT_SECONDS)
                label = "Local execution failed"
                logger.info("executing skill %s locally in %s", parsed.name, ctx.workspace_root)

            result = await backend.execute_with_files(command, ctx.workspace_root, files_dir, config)

        if not result.success:
            raise ToolError(f"{label}: {result.stdout}\nStderr: {result.stderr}", kind="timeout" if result.timed_out else "execution")
        return ToolResult.ok_json(
            {"stdout": result.stdout, "stderr": result.stderr},
            data={"skill": parsed.name, "backend": backend.name, "reason": decision.reason},
        )
