"""
LLM 协议：CompletionRequest / CompletionProvider。

设计目标：
- 用单一参数对象承载请求信息（model/provider/credentials/preamble/history/message）；
- provider 被视为黑盒：给定请求，返回完整文本或 token 流；
- 允许通过 `extra` 承载 provider 特有选项（保持协议签名稳定）。
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

# 分类/标题等轻量调用使用的快速模型（按 provider）
FAST_MODELS: Dict[str, str] = {
    "openai": "gpt-4o-mini",
    "gemini": "gemini-2.0-flash",
    "anthropic": "claude-3-haiku-20240307",
}

# provider → 默认 API key 环境变量
API_KEY_ENVS: Dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


def fast_model_for(provider: str) -> str:
    """返回 provider 的快速模型；未知 provider 回退到 `gpt-4o-mini`。"""

    return FAST_MODELS.get(str(provider or "").strip().lower(), "gpt-4o-mini")


@dataclass(frozen=True)
class CompletionRequest:
    """
    CompletionRequest：LLM 请求参数包。

    字段：
    - model/provider：模型与 provider 名
    - api_key：可选；显式凭据（优先于环境变量）
    - preamble：system prompt
    - history：既往对话（`{"role","content","name"?}` 列表；不含本次 message）
    - message：本次用户输入
    - temperature：可选推理参数
    - extra：provider 特有扩展字段
    """

    model: str
    provider: str = "openai"
    api_key: Optional[str] = None
    preamble: str = ""
    history: List[Dict[str, Any]] = field(default_factory=list)
    message: str = ""
    temperature: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def with_message(self, message: str) -> "CompletionRequest":
        """返回替换 message 的副本。"""

        return replace(self, message=message)


@runtime_checkable
class CompletionProvider(Protocol):
    """
    completion provider 抽象。

    方法：
    - `prompt`：无历史的单轮调用（只用 preamble + message）
    - `chat`：带历史的非流式调用
    - `stream`：带历史的流式调用（逐段产出文本）

    异常约定：
    - 缺少凭据 → `MissingCredentialsError`
    - 网络/协议错误 → `LlmError`
    """

    async def prompt(self, request: CompletionRequest) -> str:
        """单轮调用，返回完整文本。"""

        ...

    async def chat(self, request: CompletionRequest) -> str:
        """带历史调用，返回完整文本。"""

        ...

    def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """带历史流式调用，逐段产出文本。"""

        ...
