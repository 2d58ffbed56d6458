"""
Sandbox backends（直连宿主 / 容器隔离）。

`create_sandbox` 根据 agent 级执行模式选择 backend：
- sandbox：必须使用 docker；不可用则 fail-fast
- direct：宿主执行
- flexible：docker 可用则用 docker，否则宿主执行
"""

from __future__ import annotations

from anycowork_runtime.core.errors import SandboxUnavailableError
from anycowork_runtime.sandbox.base import ExecutionResult, SandboxBackend, SandboxConfig, TIMEOUT_EXIT_CODE
from anycowork_runtime.sandbox.docker import DockerSandbox, resolve_image
from anycowork_runtime.sandbox.native import NativeSandbox

SANDBOX_MODE_UNAVAILABLE_MESSAGE = (
    "Security Policy Enforcement: Sandbox mode is enabled but Docker is not available."
)


def create_sandbox(execution_mode: str, *, docker: DockerSandbox | None = None) -> SandboxBackend:
    """
    为 agent 级执行模式选择默认 backend。

    参数：
    - execution_mode：`sandbox|direct|flexible`
    - docker：可注入的 DockerSandbox（测试/自定义 docker 路径）

    异常：
    - SandboxUnavailableError：sandbox 模式但 docker 不可用
    - ValueError：未知模式
    """

    mode = str(execution_mode or "").strip().lower()
    if mode == "direct":
        return NativeSandbox()
    dock = docker if docker is not None else DockerSandbox()
    if mode == "sandbox":
        if not dock.is_available():
            raise SandboxUnavailableError(SANDBOX_MODE_UNAVAILABLE_MESSAGE)
        return dock
    if mode == "flexible":
        return dock if dock.is_available() else NativeSandbox()
    raise ValueError(f"Unknown execution mode: {execution_mode}")


__all__ = [
    "DockerSandbox",
    "ExecutionResult",
    "NativeSandbox",
    "SandboxBackend",
    "SandboxConfig",
    "TIMEOUT_EXIT_CODE",
    "create_sandbox",
    "resolve_image",
]
