"""
DockerSandbox：容器隔离执行。

容器约束（每次调用一个一次性容器）：
- `--rm`，显式 `--memory/--cpus`（默认 256m / 0.5）；
- 默认 `--network=none`，仅当 `network_enabled=True` 时放开；
- 只读根文件系统 + 有界 `/tmp` tmpfs；
- workspace 以读写方式挂载到 `/workspace`，额外文件以只读方式挂载到 `/skill`；
- 工作目录为 `/workspace`，命令在容器内由 `timeout <N>` 包装（退出码 124 表示超时）。
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from anycowork_runtime.core.errors import SandboxUnavailableError
from anycowork_runtime.sandbox.base import ExecutionResult, SandboxConfig, run_process

logger = logging.getLogger(__name__)

WORKSPACE_MOUNT = "/workspace"
SKILL_MOUNT = "/skill"

_IMAGE_ALIASES = {
    "python": "python:3.11-slim",
    "python311": "python:3.11-slim",
    "python:3.11": "python:3.11-slim",
    "python:3.11-slim": "python:3.11-slim",
    "node": "node:20-slim",
    "node20": "node:20-slim",
    "node:20": "node:20-slim",
    "node:20-slim": "node:20-slim",
    "anycowork": "anycowork/skill-runner:latest",
    "anycowork/skill-runner": "anycowork/skill-runner:latest",
}


def resolve_image(image: str) -> str:
    """把镜像别名（python/node/anycowork）展开为完整镜像名；未知值原样返回。"""

    key = str(image or "").strip()
    return _IMAGE_ALIASES.get(key.lower(), key)


def build_docker_run_args(
    command: str,
    *,
    workspace_dir: Path,
    extra_files_dir: Optional[Path],
    config: SandboxConfig,
) -> list[str]:
    """
    构造 `docker run` 参数（不含 docker 可执行文件本身）。

    说明：
    - workspace/extra 路径会被 resolve 成绝对路径（docker -v 要求绝对路径）；
    - 命令以 `/bin/sh -c "timeout N sh -c <command>"` 执行，保证管道/复合命令整体受超时约束。
    """

    args: list[str] = ["run", "--rm"]
    args.append(f"--memory={config.memory_limit}")
    args.append(f"--cpus={config.cpu_limit}")
    if not config.network_enabled:
        args.append("--network=none")
    args.append("--read-only")
    args.append("--tmpfs=/tmp:size=64m")

    args.extend(["-v", f"{Path(workspace_dir).resolve()}:{WORKSPACE_MOUNT}:rw"])
    if extra_files_dir is not None:
        args.extend(["-v", f"{Path(extra_files_dir).resolve()}:{SKILL_MOUNT}:ro"])

    args.extend(["-w", WORKSPACE_MOUNT])
    args.append(resolve_image(config.image))
    args.extend(["/bin/sh", "-c", f"timeout {int(config.timeout_seconds)} sh -c {shlex.quote(command)}"])
    return args


class DockerSandbox:
    """容器隔离 backend（需要宿主存在可用的 docker CLI）。"""

    name = "docker"

    def __init__(self, *, docker_binary: str = "docker") -> None:
        """
        参数：
        - docker_binary：docker CLI 路径（默认从 PATH 查找）
        """

        self._docker = docker_binary
        self._available: Optional[bool] = None

    def is_available(self) -> bool:
        """
        检查 docker 是否可用（`docker --version` 成功即可用）。

        说明：
        - 结果按实例缓存；需要重新探测时调用 `refresh_availability()`。
        """

        if self._available is None:
            self._available = self._probe()
        return self._available

    def refresh_availability(self) -> bool:
        """丢弃缓存并重新探测。"""

        self._available = None
        return self.is_available()

    def _probe(self) -> bool:
        """执行 `docker --version` 探测。"""

        if shutil.which(self._docker) is None and not Path(self._docker).is_absolute():
            return False
        try:
            proc = subprocess.run(
                [self._docker, "--version"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=10,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return proc.returncode == 0

    async def _require_available(self) -> None:
        """不可用时抛 `SandboxUnavailableError`（首次探测放到线程里执行，不阻塞事件循环）。"""

        if not await asyncio.to_thread(self.is_available):
            raise SandboxUnavailableError("Docker is not available", details={"docker_binary": self._docker})

    async def execute(self, command: str, workspace_dir: Path, config: SandboxConfig) -> ExecutionResult:
        """在一次性容器中执行命令。"""

        return await self.execute_with_files(command, workspace_dir, None, config)

    async def execute_with_files(
        self,
        command: str,
        workspace_dir: Path,
        extra_files_dir: Optional[Path],
        config: SandboxConfig,
    ) -> ExecutionResult:
        """在一次性容器中执行命令，并把额外文件目录只读挂载到 `/skill`。"""

        await self._require_available()
        ws = Path(workspace_dir)
        if not ws.is_dir():
            return ExecutionResult(success=False, stderr=f"Invalid workspace path: {ws}", exit_code=-1)
        if extra_files_dir is not None and not Path(extra_files_dir).is_dir():
            return ExecutionResult(success=False, stderr=f"Invalid extra files path: {extra_files_dir}", exit_code=-1)

        args = build_docker_run_args(command, workspace_dir=ws, extra_files_dir=extra_files_dir, config=config)
        logger.debug("running docker with args: %s", args)
        try:
            out = await run_process(
                [self._docker, *args],
                # 拉取镜像可能很慢：宿主侧只做宽松兜底，真正的超时由容器内 timeout 负责
                host_timeout_sec=float(config.timeout_seconds) + 120.0,
            )
        except OSError as e:
            return ExecutionResult(success=False, stderr=f"Failed to execute Docker: {e}", exit_code=-1)

        if out.killed:
            return ExecutionResult.timeout(stdout=out.stdout)
        return ExecutionResult.from_exit(out.exit_code, stdout=out.stdout, stderr=out.stderr, truncated=out.truncated)

    async def pull_image(self, image: str) -> None:
        """
        拉取镜像。

        异常：
        - SandboxUnavailableError：docker 不可用
        - RuntimeError：拉取失败（附 stderr）
        """

        await self._require_available()
        out = await run_process([self._docker, "pull", resolve_image(image)])
        if out.exit_code != 0:
            raise RuntimeError(f"Failed to pull image: {out.stderr.strip()}")

    async def execute_python(
        self,
        script_path: str,
        workspace_dir: Path,
        skill_files: Optional[Path],
        config: SandboxConfig,
    ) -> ExecutionResult:
        """以 `python3 /skill/<script_path>` 执行 skill 内的 Python 脚本。"""

        return await self.execute_with_files(
            f"python3 {SKILL_MOUNT}/{script_path}", workspace_dir, skill_files, config
        )

    async def execute_shell(
        self,
        script_path: str,
        workspace_dir: Path,
        skill_files: Optional[Path],
        config: SandboxConfig,
    ) -> ExecutionResult:
        """以 `sh /skill/<script_path>` 执行 skill 内的 shell 脚本。"""

        return await self.execute_with_files(f"sh {SKILL_MOUNT}/{script_path}", workspace_dir, skill_files, config)

    async def execute_node(
        self,
        script_path: str,
        workspace_dir: Path,
        skill_files: Optional[Path],
        config: SandboxConfig,
    ) -> ExecutionResult:
        """以 `node /skill/<script_path>` 执行 skill 内的 JS 脚本（默认镜像不含 node 时切换到 node:20-slim）。"""

        if "node" not in resolve_image(config.image):
            config = config.with_image("node:20-slim")
        return await self.execute_with_files(f"node {SKILL_MOUNT}/{script_path}", workspace_dir, skill_files, config)
