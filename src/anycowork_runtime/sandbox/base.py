"""
Sandbox 公共契约：SandboxConfig / ExecutionResult / SandboxBackend。

说明：
- 两个可互换实现：`NativeSandbox`（宿主进程直跑）与 `DockerSandbox`（容器隔离）；
- 命令超时由命令侧 `timeout <N>` 执行，约定退出码 124 表示超时；
- 子进程以 asyncio 方式等待（每个子进程一个挂起点），输出按尾部保留做有界截断。
"""

from __future__ import annotations

import asyncio
import contextlib
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class SandboxConfig:
    """
    单次执行的资源限制（不可变）。

    字段：
    - image：容器镜像（仅 DockerSandbox 使用；支持别名，见 `resolve_image`）
    - memory_limit：内存上限（docker 语法，例如 `256m`）
    - cpu_limit：CPU 配额（例如 0.5）
    - timeout_seconds：命令超时（秒）
    - network_enabled：是否允许网络（默认禁用）
    """

    image: str = "debian:stable-slim"
    memory_limit: str = "256m"
    cpu_limit: float = 0.5
    timeout_seconds: int = 300
    network_enabled: bool = False

    def with_image(self, image: str) -> "SandboxConfig":
        """返回替换镜像后的副本。"""

        return replace(self, image=image)

    def with_memory_limit(self, memory_limit: str) -> "SandboxConfig":
        """返回替换内存上限后的副本。"""

        return replace(self, memory_limit=memory_limit)

    def with_timeout(self, timeout_seconds: int) -> "SandboxConfig":
        """返回替换超时后的副本。"""

        return replace(self, timeout_seconds=int(timeout_seconds))

    def with_network(self, enabled: bool) -> "SandboxConfig":
        """返回替换网络开关后的副本。"""

        return replace(self, network_enabled=bool(enabled))


class ExecutionResult(BaseModel):
    """
    命令执行结果（结构化）。

    字段：
    - success：exit_code == 0 且未超时
    - stdout/stderr：捕获到的输出（可能被截断）
    - exit_code：进程退出码
    - timed_out：是否因超时被终止（退出码 124）
    - truncated：stdout/stderr 是否发生截断
    """

    model_config = ConfigDict(extra="forbid")

    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    timed_out: bool = False
    truncated: bool = False

    @classmethod
    def timeout(cls, *, stdout: str = "") -> "ExecutionResult":
        """构造超时结果（exit_code=124）。"""

        return cls(success=False, stdout=stdout, stderr="Command timed out", exit_code=TIMEOUT_EXIT_CODE, timed_out=True)

    @classmethod
    def from_exit(cls, exit_code: int, *, stdout: str, stderr: str, truncated: bool = False) -> "ExecutionResult":
        """按退出码构造结果（124 视为超时）。"""

        if exit_code == TIMEOUT_EXIT_CODE:
            return cls(
                success=False,
                stdout=stdout,
                stderr=stderr or "Command timed out",
                exit_code=exit_code,
                timed_out=True,
                truncated=truncated,
            )
        return cls(success=exit_code == 0, stdout=stdout, stderr=stderr, exit_code=exit_code, truncated=truncated)

    def combined_output(self) -> str:
        """拼接 stdout/stderr（供回注模型使用）。"""

        parts = []
        if self.stdout:
            parts.append(self.stdout)
        if self.stderr:
            parts.append(f"stderr:\n{self.stderr}")
        return "\n".join(parts)


@runtime_checkable
class SandboxBackend(Protocol):
    """
    Sandbox backend 抽象接口。

    方法：
    - `is_available()`：backend 当前是否可用
    - `execute(...)`：在 workspace 下执行 shell 命令
    - `execute_with_files(...)`：额外挂载只读代码目录（skill 文件）后执行
    """

    name: str

    def is_available(self) -> bool:
        """返回 backend 是否可用。"""

        ...

    async def execute(self, command: str, workspace_dir: Path, config: SandboxConfig) -> ExecutionResult:
        """执行命令。"""

        ...

    async def execute_with_files(
        self,
        command: str,
        workspace_dir: Path,
        extra_files_dir: Optional[Path],
        config: SandboxConfig,
    ) -> ExecutionResult:
        """挂载额外只读文件目录后执行命令。"""

        ...


class _TailBuffer:
    """保留尾部的有界字节缓冲（用于截断策略）。"""

    def __init__(self, max_bytes: int) -> None:
        """
        参数：
        - `max_bytes`：允许保留的最大字节数（必须 >= 0）
        """

        if max_bytes < 0:
            raise ValueError("max_bytes 必须 >= 0")
        self._max_bytes = max_bytes
        self._buf = bytearray()
        self.truncated = False

    def append(self, chunk: bytes) -> None:
        """追加字节；超出上限时丢弃头部，保留尾部。"""

        if not chunk:
            return
        if self._max_bytes == 0:
            self.truncated = True
            return
        if len(chunk) >= self._max_bytes:
            self._buf[:] = chunk[-self._max_bytes :]
            self.truncated = True
            return
        overflow = len(self._buf) + len(chunk) - self._max_bytes
        if overflow > 0:
            del self._buf[:overflow]
            self.truncated = True
        self._buf.extend(chunk)

    def text(self) -> str:
        """以 UTF-8 解码当前内容（非法字节替换）。"""

        return bytes(self._buf).decode("utf-8", errors="replace")


async def _pump(stream: Optional[asyncio.StreamReader], buf: _TailBuffer) -> None:
    """把子进程输出流持续读入缓冲区直到 EOF。"""

    if stream is None:
        return
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            return
        buf.append(chunk)


@dataclass(frozen=True)
class ProcessOutput:
    """`run_process` 的原始输出。"""

    exit_code: int
    stdout: str
    stderr: str
    truncated: bool
    killed: bool


async def run_process(
    argv: list[str],
    *,
    cwd: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    host_timeout_sec: Optional[float] = None,
    max_output_bytes: int = 256 * 1024,
) -> ProcessOutput:
    """
    启动子进程并等待其退出（asyncio）。

    参数：
    - argv：命令 argv
    - cwd：工作目录
    - env：追加/覆盖的环境变量（基于 os.environ）
    - host_timeout_sec：宿主侧兜底超时；到期后 kill 子进程并标记 killed
    - max_output_bytes：stdout/stderr 各自保留的最大字节数（尾部）

    异常：
    - FileNotFoundError/PermissionError：可执行文件不存在或不可执行
    """

    full_env = None
    if env:
        full_env = dict(os.environ)
        full_env.update({str(k): str(v) for k, v in env.items()})

    proc = await asyncio.create_subprocess_exec(
        *argv,
        cwd=str(cwd) if cwd is not None else None,
        env=full_env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    out_buf = _TailBuffer(max_output_bytes)
    err_buf = _TailBuffer(max_output_bytes)
    pumps = asyncio.gather(_pump(proc.stdout, out_buf), _pump(proc.stderr, err_buf))

    killed = False
    try:
        await asyncio.wait_for(asyncio.shield(pumps), timeout=host_timeout_sec)
        exit_code = await proc.wait()
    except asyncio.TimeoutError:
        killed = True
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        exit_code = await proc.wait()
        with contextlib.suppress(Exception):
            await asyncio.wait_for(pumps, timeout=1.0)

    return ProcessOutput(
        exit_code=int(exit_code if exit_code is not None else -1),
        stdout=out_buf.text(),
        stderr=err_buf.text(),
        truncated=out_buf.truncated or err_buf.truncated,
        killed=killed,
    )
