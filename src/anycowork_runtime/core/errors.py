"""
Runtime 内部错误分类（异常类型）。

说明：
- 异常用于模块间传递“错误层级”语义：哪些失败可以回注给模型继续（ToolError），
  哪些失败必须中止当前 step/job（PermissionDeniedError、SandboxUnavailableError、PolicyConflictError）。
- 对外工具返回建议使用 `ToolResult.error_kind`，异常仅用于内部控制流与测试断言。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


class CoworkError(Exception):
    """Runtime 内部错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """框架结构化问题对象（可用于报告中的 errors/warnings）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(CoworkError):
    """框架层结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建框架错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class UserError(FrameworkError):
    """用户输入/配置导致的错误。"""

    def __init__(self, message: str, *, code: str = "USER_ERROR", details: Dict[str, Any] | None = None) -> None:
        """
        创建 `UserError`。

        参数：
        - `message`：可读错误信息
        - `code`：错误码（默认 `USER_ERROR`）
        - `details`：结构化补充信息
        """

        super().__init__(code=code, message=message, details=details or {})


class ToolError(CoworkError):
    """工具执行失败（可恢复：错误文本会回注给模型，由模型决定下一步）。"""

    def __init__(self, message: str, *, kind: str = "execution") -> None:
        """
        参数：
        - `message`：回注给模型的错误文本
        - `kind`：映射到 `ToolResult.error_kind`（validation/execution/not_found/...）
        """

        super().__init__(message)
        self.kind = kind

    @classmethod
    def validation_failed(cls, reason: str) -> "ToolError":
        """参数校验失败。"""

        return cls(f"Validation failed: {reason}", kind="validation")

    @classmethod
    def execution_failed(cls, reason: str) -> "ToolError":
        """执行期失败（IO、子进程等）。"""

        return cls(f"Execution failed: {reason}", kind="execution")


class PermissionDeniedError(CoworkError):
    """权限请求被拒绝（硬失败：中止当前 step）。"""

    def __init__(self, message: str = "User denied permission", *, request_id: Optional[str] = None) -> None:
        """
        创建权限拒绝错误。

        参数：
        - `message`：面向用户的拒绝说明
        - `request_id`：对应的 PermissionRequest.id（可选）
        """

        super().__init__(message)
        self.request_id = request_id


class SandboxUnavailableError(FrameworkError):
    """隔离 sandbox（容器运行时）不可用，但策略要求使用它。"""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        """创建 `SandboxUnavailableError`（code 固定为 `SANDBOX_UNAVAILABLE`）。"""

        super().__init__(code="SANDBOX_UNAVAILABLE", message=message, details=details)

    def __str__(self) -> str:
        """只返回 message（该消息会直接展示给用户）。"""

        return self.message


class PolicyConflictError(FrameworkError):
    """Agent 级执行模式与 skill 自身要求冲突。"""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        """创建 `PolicyConflictError`（code 固定为 `POLICY_CONFLICT`）。"""

        super().__init__(code="POLICY_CONFLICT", message=message, details=details)

    def __str__(self) -> str:
        """只返回 message（该消息会直接展示给用户）。"""

        return self.message


class PlanGenerationError(CoworkError):
    """
    计划生成失败（重试耗尽）。

    字段：
    - last_response：最后一次模型原始输出（用于诊断；可能为空）
    """

    def __init__(self, message: str, *, last_response: str = "") -> None:
        """创建计划生成错误并保留最后一次原始输出。"""

        super().__init__(message)
        self.last_response = last_response


class StateError(CoworkError):
    """状态流转非法（例如 task 状态回退）。"""


class LlmError(CoworkError):
    """LLM 通信/协议错误（网络、限流、wire 解析等）。"""


class MissingCredentialsError(LlmError):
    """缺少 provider 凭据（API key 未配置）。"""


class SkillParseError(UserError):
    """SKILL.md 解析/校验失败。"""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        """创建 `SkillParseError`（code 固定为 `SKILL_PARSE_ERROR`）。"""

        super().__init__(message, code="SKILL_PARSE_ERROR", details=details)

    def __str__(self) -> str:
        """只返回 message。"""

        return self.message


class SkillLoadError(UserError):
    """skill 目录/压缩包加载失败（缺少 SKILL.md、路径穿越等）。"""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        """创建 `SkillLoadError`（code 固定为 `SKILL_LOAD_ERROR`）。"""

        super().__init__(message, code="SKILL_LOAD_ERROR", details=details)

    def __str__(self) -> str:
        """只返回 message。"""

        return self.message
