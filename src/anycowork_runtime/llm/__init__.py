"""LLM（completion provider 协议、OpenAI-compatible 实现、离线 fake 与流式拆分）。"""

from __future__ import annotations

from anycowork_runtime.llm.fake import FakeCompletionProvider
from anycowork_runtime.llm.openai_chat import OpenAIChatProvider
from anycowork_runtime.llm.protocol import CompletionProvider, CompletionRequest, fast_model_for
from anycowork_runtime.llm.stream_processor import StreamProcessor

__all__ = [
    "CompletionProvider",
    "CompletionRequest",
    "FakeCompletionProvider",
    "OpenAIChatProvider",
    "StreamProcessor",
    "fast_model_for",
]
