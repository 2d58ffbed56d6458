"""
Fake completion provider（离线回归夹具）。

用途：
- 在不依赖真实模型/外网的情况下，回归分类、规划与 agent loop 的编排逻辑。
"""

from __future__ import annotations

from typing import AsyncIterator, List, Sequence, Union

from anycowork_runtime.llm.protocol import CompletionRequest

ScriptedReply = Union[str, BaseException, Sequence[str]]


class FakeCompletionProvider:
    """
    用脚本化回复模拟 LLM。

    说明：
    - 每次 prompt/chat/stream 调用按顺序消耗一个条目；
    - 条目为 str：完整回复（stream 时按 `chunk_size` 切片产出）；
    - 条目为 str 序列：stream 时逐个产出（用于模拟跨 chunk 的标签）；
    - 条目为异常实例：调用时抛出（stream 时在产出已有分片之后抛出）；
    - 所有请求记录在 `requests` 中。
    """

    def __init__(self, replies: Sequence[ScriptedReply], *, chunk_size: int = 8) -> None:
        """
        参数：
        - replies：预设的回复序列
        - chunk_size：str 回复在 stream 时的切片长度
        """

        self._replies: List[ScriptedReply] = list(replies)
        self._idx = 0
        self._chunk_size = max(1, int(chunk_size))
        self.requests: List[CompletionRequest] = []

    @property
    def remaining(self) -> int:
        """尚未消耗的条目数。"""

        return len(self._replies) - self._idx

    def _next(self, request: CompletionRequest) -> ScriptedReply:
        """记录请求并取下一个条目。"""

        self.requests.append(request)
        if self._idx >= len(self._replies):
            raise AssertionError("FakeCompletionProvider replies exhausted")
        reply = self._replies[self._idx]
        self._idx += 1
        return reply

    async def prompt(self, request: CompletionRequest) -> str:
        """返回下一个条目（异常条目直接抛出）。"""

        return self._as_text(self._next(request))

    async def chat(self, request: CompletionRequest) -> str:
        """同 `prompt`。"""

        return self._as_text(self._next(request))

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """按切片产出下一个条目。"""

        reply = self._next(request)
        if isinstance(reply, BaseException):
            raise reply
        chunks = [reply[i : i + self._chunk_size] for i in range(0, len(reply), self._chunk_size)] if isinstance(reply, str) else list(reply)
        for chunk in chunks:
            yield chunk

    @staticmethod
    def _as_text(reply: ScriptedReply) -> str:
        """把条目转为完整文本。"""

        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, str):
            return reply
        return "".join(reply)
