"""
Query classifier（router）：决定一条用户消息走直接回答还是“规划 + 执行”。

规则：
1) 小写后做子串匹配：先查 complex 标记（命中即 COMPLEX），再查 simple 标记；
2) 都未命中：调用一次 LLM，要求回答 SIMPLE/COMPLEX；
3) LLM 失败或回复不含 "SIMPLE" → COMPLEX（倾向能力更强的路径）。
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Tuple

from anycowork_runtime.llm.protocol import CompletionProvider, CompletionRequest
from anycowork_runtime.prompts.templates import CLASSIFIER_PREAMBLE

logger = logging.getLogger(__name__)

COMPLEX_MARKERS: Tuple[str, ...] = (
    "create",
    "write",
    "make",
    "build",
    "generate",
    "implement",
    "edit",
    "modify",
    "change",
    "update",
    "fix",
    "refactor",
    "delete",
    "remove",
    "run",
    "execute",
    "install",
    "file",
    "folder",
    "directory",
    "code",
    "script",
    "search for",
    "find",
    "list files",
    "read file",
    "commit",
    "push",
    "pull",
    "deploy",
    "test",
    "debug",
    "compile",
    "lint",
)

SIMPLE_MARKERS: Tuple[str, ...] = (
    "hello",
    "hi",
    "hey",
    "good morning",
    "good afternoon",
    "good evening",
    "how are you",
    "what's up",
    "thanks",
    "thank you",
    "bye",
    "goodbye",
    "what is",
    "what are",
    "who is",
    "who are",
    "why is",
    "why are",
    "explain",
    "tell me about",
    "describe",
    "define",
    "can you help",
    "help me understand",
)


class QueryType(str, Enum):
    """分类结果。"""

    SIMPLE = "simple"
    COMPLEX = "complex"


def classify_fast(query: str) -> Optional[QueryType]:
    """
    仅用关键字做快速分类。

    返回：
    - QueryType：命中标记时
    - None：两类标记都未命中（需要 LLM 兜底）
    """

    text = query.lower()
    if any(marker in text for marker in COMPLEX_MARKERS):
        return QueryType.COMPLEX
    if any(marker in text for marker in SIMPLE_MARKERS):
        return QueryType.SIMPLE
    return None


def parse_classifier_reply(reply: str) -> QueryType:
    """把 LLM 回复映射为分类（含 "SIMPLE" 即 SIMPLE，其余一律 COMPLEX）。"""

    return QueryType.SIMPLE if "SIMPLE" in reply.upper() else QueryType.COMPLEX


class QueryClassifier:
    """带 LLM 兜底的分类器。"""

    def __init__(
        self,
        provider: CompletionProvider,
        *,
        model: str,
        provider_name: str = "openai",
        api_key: Optional[str] = None,
    ) -> None:
        """
        参数：
        - provider：completion provider
        - model：兜底调用使用的模型（通常为 fast model）
        - provider_name/api_key：透传到请求
        """

        self._provider = provider
        self._model = model
        self._provider_name = provider_name
        self._api_key = api_key

    async def classify(self, query: str) -> QueryType:
        """分类一条查询（从不抛异常）。"""

        fast = classify_fast(query)
        if fast is not None:
            logger.info("query classified by markers: %s", fast.value)
            return fast

        request = CompletionRequest(
            model=self._model,
            provider=self._provider_name,
            api_key=self._api_key,
            preamble=CLASSIFIER_PREAMBLE,
            message=query,
        )
        try:
            reply = await self._provider.prompt(request)
        except Exception:
            logger.warning("classifier call failed; defaulting to complex", exc_info=True)
            return QueryType.COMPLEX
        result = parse_classifier_reply(reply)
        logger.info("query classified by model: %s", result.value)
        return result
