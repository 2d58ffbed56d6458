"""
Chat Completions Streaming SSE 解析器。

实现边界：
- 支持终止哨兵：`[DONE]` 与 `DONE`
- 只处理 `choices[].delta.content` 文本增量（工具调用走文本 JSON 协议，不使用 function calling）
"""

from __future__ import annotations

import json
from typing import List

from anycowork_runtime.core.errors import LlmError


class ChatCompletionsSseParser:
    """
    OpenAI-compatible chat.completions SSE parser（仅处理 `data:` 的 payload）。

    用法：
    - 每收到一条 `data: ...`，调用 `feed_data(data)` 获取 0..N 个文本增量；
    - `done` 为 True 后应停止读取。
    """

    def __init__(self) -> None:
        """初始化完成标记。"""

        self.done = False

    def feed_line(self, line: str) -> List[str]:
        """处理一行原始 SSE 文本（忽略非 `data:` 行）。"""

        if not line or not line.startswith("data:"):
            return []
        return self.feed_data(line[len("data:") :].strip())

    def feed_data(self, data: str) -> List[str]:
        """
        处理单条 data 字符串。

        异常：
        - LlmError：payload 不是 JSON，或 provider 在流内返回 error 对象
        """

        if self.done:
            return []
        if data in ("[DONE]", "DONE"):
            self.done = True
            return []
        if not data:
            return []
        try:
            obj = json.loads(data)
        except json.JSONDecodeError as e:
            raise LlmError(f"Invalid SSE payload: {data[:200]}") from e
        if not isinstance(obj, dict):
            return []
        if isinstance(obj.get("error"), dict):
            raise LlmError(str(obj["error"].get("message") or obj["error"]))

        out: List[str] = []
        for choice in obj.get("choices") or []:
            if not isinstance(choice, dict):
                continue
            delta = choice.get("delta") or {}
            content = delta.get("content") if isinstance(delta, dict) else None
            if isinstance(content, str) and content:
                out.append(content)
        return out
