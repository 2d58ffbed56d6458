"""
NativeSandbox：宿主机直接执行（无隔离）。

说明：
- 通过 `bash -c` 在 workspace 目录下执行命令，并用 OS `timeout` 工具包装；
- 额外文件目录（skill 文件）通过环境变量 `SKILL_FILES_PATH` 传递，不做挂载隔离；
- 若宿主没有 `timeout` 工具（例如 macOS 默认环境），退化为宿主侧兜底超时。
"""

from __future__ import annotations

import logging
import shlex
import shutil
from pathlib import Path
from typing import Dict, Optional

from anycowork_runtime.sandbox.base import ExecutionResult, SandboxConfig, run_process

logger = logging.getLogger(__name__)

SKILL_FILES_ENV = "SKILL_FILES_PATH"

# 宿主侧兜底：比命令侧 timeout 多等一段时间，避免与 `timeout` 的 124 竞争
_HOST_GRACE_SEC = 5.0


def build_native_argv(command: str, timeout_seconds: int, *, has_timeout_util: bool = True) -> list[str]:
    """构造 `bash -c "timeout N bash -c <command>"` 形式的 argv。"""

    if has_timeout_util:
        script = f"timeout {int(timeout_seconds)} bash -c {shlex.quote(command)}"
    else:
        script = command
    return ["bash", "-c", script]


class NativeSandbox:
    """宿主进程 backend（总是可用）。"""

    name = "native"

    def __init__(self, *, shell_path: str = "bash") -> None:
        """
        参数：
        - shell_path：shell 可执行文件（默认 `bash`，从 PATH 查找）
        """

        self._shell_path = shell_path

    def is_available(self) -> bool:
        """宿主执行总是可用。"""

        return True

    async def execute(self, command: str, workspace_dir: Path, config: SandboxConfig) -> ExecutionResult:
        """在 workspace 下执行命令。"""

        return await self._run(command, Path(workspace_dir), config, env=None)

    async def execute_with_files(
        self,
        command: str,
        workspace_dir: Path,
        extra_files_dir: Optional[Path],
        config: SandboxConfig,
    ) -> ExecutionResult:
        """执行命令；额外文件目录通过 `SKILL_FILES_PATH` 暴露给命令。"""

        env: Optional[Dict[str, str]] = None
        if extra_files_dir is not None:
            env = {SKILL_FILES_ENV: str(Path(extra_files_dir).resolve())}
        return await self._run(command, Path(workspace_dir), config, env=env)

    async def _run(
        self,
        command: str,
        workspace_dir: Path,
        config: SandboxConfig,
        *,
        env: Optional[Dict[str, str]],
    ) -> ExecutionResult:
        """执行并把进程输出映射为 `ExecutionResult`。"""

        if not workspace_dir.is_dir():
            return ExecutionResult(success=False, stderr=f"Workspace directory does not exist: {workspace_dir}", exit_code=-1)

        has_timeout = shutil.which("timeout") is not None
        argv = build_native_argv(command, config.timeout_seconds, has_timeout_util=has_timeout)
        argv[0] = self._shell_path
        try:
            out = await run_process(
                argv,
                cwd=workspace_dir,
                env=env,
                host_timeout_sec=float(config.timeout_seconds) + _HOST_GRACE_SEC,
            )
        except OSError as e:
            logger.warning("native sandbox failed to spawn %s", self._shell_path, exc_info=True)
            return ExecutionResult(success=False, stderr=f"Failed to execute command: {e}", exit_code=-1)

        if out.killed:
            return ExecutionResult.timeout(stdout=out.stdout)
        return ExecutionResult.from_exit(out.exit_code, stdout=out.stdout, stderr=out.stderr, truncated=out.truncated)
