"""
Planner：把复杂目标拆为有序 task 列表（schema 约束 + 重试）。

流程（每次尝试）：
1) 以嵌入 Plan JSON Schema 与上下文的 preamble 发起流式调用，token 转发到调用方 sink；
2) 从原始文本中提取最外层 `{...}` 并按 `Plan` 校验；
3) 失败则按 `base_delay_ms * 2^(k-1)` 退避后重试；最后一次失败不再等待，直接抛 `PlanGenerationError`。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from pydantic import ValidationError

from anycowork_runtime.core.contracts import Plan, TaskStatus
from anycowork_runtime.core.errors import PlanGenerationError
from anycowork_runtime.llm.protocol import CompletionProvider, CompletionRequest
from anycowork_runtime.prompts.templates import render_planner_preamble

logger = logging.getLogger(__name__)

TokenSink = Callable[[str], None]


def extract_json(text: str) -> str:
    """
    提取第一个 `{` 到最后一个 `}` 之间的文本（含两端）。

    说明：
    - 容忍 markdown 代码块与前后说明文字；
    - 找不到成对大括号时返回 `text.strip()`；
    - 幂等：对结果再次提取得到相同文本。
    """

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start : end + 1]
    return text.strip()


def _excerpt(text: str, limit: int = 200) -> str:
    """截取前 limit 个字符（被截断时追加 `...`）。"""

    return f"{text[:limit]}..." if len(text) > limit else text


class _PlanParseFailure(Exception):
    """
    单次尝试的失败（内部使用）。

    字段：
    - response：本次原始输出
    - standalone：最终失败时 message 是否原样作为错误信息（不加 "Planning failed after" 前缀）
    """

    def __init__(self, message: str, *, response: str = "", standalone: bool = False) -> None:
        """记录失败信息与原始输出。"""

        super().__init__(message)
        self.response = response
        self.standalone = standalone


class Planner:
    """计划生成器。"""

    def __init__(
        self,
        provider: CompletionProvider,
        *,
        model: str,
        provider_name: str = "openai",
        api_key: Optional[str] = None,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
    ) -> None:
        """
        参数：
        - provider：completion provider
        - model/provider_name/api_key：透传到请求
        - max_attempts：最多尝试次数（≥1）
        - base_delay_ms：退避基数（毫秒）
        """

        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._provider = provider
        self._model = model
        self._provider_name = provider_name
        self._api_key = api_key
        self._max_attempts = int(max_attempts)
        self._base_delay_ms = int(base_delay_ms)

    def delay_ms_for(self, attempt: int) -> int:
        """第 attempt 次失败后的等待时长（毫秒）。"""

        return self._base_delay_ms * (2 ** (attempt - 1))

    async def generate(self, objective: str, *, context: str = "", on_token: Optional[TokenSink] = None) -> Plan:
        """
        生成计划。

        参数：
        - objective：目标文本（作为本次 user message）
        - context：既往对话的文本摘要（嵌入 preamble）
        - on_token：流式 token 与重试提示的接收方

        返回：
        - Plan（至少 1 个 task）

        异常：
        - PlanGenerationError：所有尝试均失败
        """

        sink: TokenSink = on_token or (lambda _t: None)
        request = CompletionRequest(
            model=self._model,
            provider=self._provider_name,
            api_key=self._api_key,
            preamble=render_planner_preamble(context),
            message=objective,
        )

        failure = _PlanParseFailure("no attempt made")
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._attempt(request, sink)
            except _PlanParseFailure as e:
                failure = e
            except Exception as e:
                failure = _PlanParseFailure(str(e) or type(e).__name__)

            if attempt < self._max_attempts:
                delay_ms = self.delay_ms_for(attempt)
                logger.warning("planning attempt %d failed: %s", attempt, failure)
                sink(f"\n⚠️ Attempt {attempt} failed. Retrying in {delay_ms / 1000:g}s...\n")
                await asyncio.sleep(delay_ms / 1000.0)

        message = str(failure) if failure.standalone else f"Planning failed after {self._max_attempts} attempts: {failure}"
        raise PlanGenerationError(message, last_response=failure.response)

    async def _attempt(self, request: CompletionRequest, sink: TokenSink) -> Plan:
        """单次尝试：流式读取并解析。"""

        chunks = []
        async for chunk in self._provider.stream(request):
            chunks.append(chunk)
            sink(chunk)
        response = "".join(chunks)
        if not response.strip():
            raise _PlanParseFailure("Empty response")

        try:
            plan = Plan.model_validate_json(extract_json(response))
        except ValidationError as e:
            msg = f"Failed to parse generated plan: {_first_error(e)}. Response start: '{_excerpt(response)}'"
            raise _PlanParseFailure(msg, response=response, standalone=True) from e

        # 模型可能按 schema 填写 status；新计划一律从 pending 开始
        for task in plan.tasks:
            task.status = TaskStatus.PENDING
        return plan


def _first_error(e: ValidationError) -> str:
    """取 pydantic 校验错误中的第一条可读说明。"""

    errors = e.errors()
    if not errors:
        return str(e)
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
