"""
StreamProcessor：把流式文本按 `<think>...</think>` 拆分为 token / thinking 两类片段。

说明：
- 标签可能被切分在相邻 chunk 之间（例如 `"<thi"` + `"nk>"`）：可能构成标签前缀的尾部会暂存到下一次；
- thinking 片段在到达时即时产出（不等待闭合标签）。
"""

from __future__ import annotations

from typing import List, Tuple

OPEN_TAG = "<think>"
CLOSE_TAG = "</think>"

Segment = Tuple[str, str]


def _partial_tag_suffix(text: str, tag: str) -> int:
    """返回 text 尾部与 tag 前缀重叠的最大长度（不含完整 tag）。"""

    for n in range(min(len(tag) - 1, len(text)), 0, -1):
        if text.endswith(tag[:n]):
            return n
    return 0


class StreamProcessor:
    """`<think>` 标签状态机。"""

    def __init__(self) -> None:
        """初始为非 thinking 状态。"""

        self.in_thinking = False
        self._buffer = ""

    def process(self, chunk: str) -> List[Segment]:
        """
        处理一个 chunk，返回 `[("token"|"thinking", text), ...]`。
        """

        self._buffer += chunk
        out: List[Segment] = []
        while self._buffer:
            tag = CLOSE_TAG if self.in_thinking else OPEN_TAG
            kind = "thinking" if self.in_thinking else "token"
            idx = self._buffer.find(tag)
            if idx >= 0:
                if idx > 0:
                    out.append((kind, self._buffer[:idx]))
                self._buffer = self._buffer[idx + len(tag) :]
                self.in_thinking = not self.in_thinking
                continue
            keep = _partial_tag_suffix(self._buffer, tag)
            emit = self._buffer[: len(self._buffer) - keep]
            if emit:
                out.append((kind, emit))
            self._buffer = self._buffer[len(self._buffer) - keep :]
            break
        return out

    def flush(self) -> List[Segment]:
        """流结束：把暂存的尾部按当前状态产出。"""

        if not self._buffer:
            return []
        kind = "thinking" if self.in_thinking else "token"
        text, self._buffer = self._buffer, ""
        return [(kind, text)]
