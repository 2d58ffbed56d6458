"""
OpenAI-compatible `/chat/completions` provider（httpx）。

说明：
- 对话历史中的 `tool` 回合以 user 消息回注（工具协议是文本 JSON，不依赖 function calling）；
- 凭据优先级：request.api_key > 构造参数 api_key > 环境变量 `cfg.api_key_env`。
"""

from __future__ import annotations

import os
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from anycowork_runtime.config.loader import CoworkLlmConfig
from anycowork_runtime.core.errors import LlmError, MissingCredentialsError
from anycowork_runtime.llm.chat_sse import ChatCompletionsSseParser
from anycowork_runtime.llm.protocol import CompletionRequest


def to_openai_messages(request: CompletionRequest, *, include_history: bool = True) -> List[Dict[str, str]]:
    """
    把 CompletionRequest 组装为 chat.completions 的 messages。

    规则：
    - preamble → system
    - user/assistant 原样；tool → user（带 `Tool result (<name>):` 前缀）
    - message 为空时不追加最后一条 user
    """

    messages: List[Dict[str, str]] = []
    if request.preamble:
        messages.append({"role": "system", "content": request.preamble})
    if include_history:
        for item in request.history:
            role = str(item.get("role") or "user")
            content = str(item.get("content") or "")
            if role == "tool":
                name = item.get("name") or "tool"
                messages.append({"role": "user", "content": f"Tool result ({name}):\n{content}"})
            elif role in ("user", "assistant", "system"):
                messages.append({"role": role, "content": content})
    if request.message:
        messages.append({"role": "user", "content": request.message})
    return messages


class OpenAIChatProvider:
    """OpenAI-compatible chat.completions 实现（网络层）。"""

    def __init__(
        self,
        cfg: CoworkLlmConfig,
        *,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        参数：
        - cfg：LLM 配置（base_url、api_key_env、timeout 等）
        - api_key：可选的 API key 覆盖（仅内存；优先于环境变量）
        - transport：可选 httpx transport（测试注入 MockTransport）
        """

        self._cfg = cfg
        self._api_key_override = api_key
        self._transport = transport

    def _endpoint(self) -> str:
        """返回 `/chat/completions` 的完整 URL。"""

        return f"{self._cfg.base_url.rstrip('/')}/chat/completions"

    def _headers(self, request: CompletionRequest) -> Dict[str, str]:
        """
        构造请求头。

        异常：
        - MissingCredentialsError：request/override/env 均无 API key
        """

        key = request.api_key or self._api_key_override or os.environ.get(self._cfg.api_key_env, "")
        if not key:
            raise MissingCredentialsError(f"Error: {self._cfg.api_key_env} not set (env or settings)")
        return {"Content-Type": "application/json", "Authorization": f"Bearer {key}"}

    def _client(self) -> httpx.AsyncClient:
        """创建一次性 AsyncClient。"""

        return httpx.AsyncClient(timeout=httpx.Timeout(self._cfg.timeout_sec), transport=self._transport)

    def _payload(self, request: CompletionRequest, *, include_history: bool, stream: bool) -> Dict[str, Any]:
        """构造请求体。"""

        payload: Dict[str, Any] = {
            "model": request.model or self._cfg.model,
            "messages": to_openai_messages(request, include_history=include_history),
            "stream": stream,
        }
        if request.temperature is not None:
            payload["temperature"] = float(request.temperature)
        for k, v in request.extra.items():
            payload.setdefault(k, v)
        return payload

    async def _complete(self, request: CompletionRequest, *, include_history: bool) -> str:
        """非流式调用并取 `choices[0].message.content`。"""

        headers = self._headers(request)
        payload = self._payload(request, include_history=include_history, stream=False)
        try:
            async with self._client() as client:
                resp = await client.post(self._endpoint(), json=payload, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            raise LlmError(f"HTTP {e.response.status_code}: {e.response.text[:500]}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise LlmError(str(e)) from e

        try:
            return str(data["choices"][0]["message"]["content"] or "")
        except (KeyError, IndexError, TypeError) as e:
            raise LlmError(f"Unexpected completion response: {str(data)[:200]}") from e

    async def prompt(self, request: CompletionRequest) -> str:
        """单轮调用（忽略 history）。"""

        return await self._complete(request, include_history=False)

    async def chat(self, request: CompletionRequest) -> str:
        """带历史调用。"""

        return await self._complete(request, include_history=True)

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """
        发起 streaming 请求，并逐段产出 `delta.content`。

        异常：
        - MissingCredentialsError：缺少凭据（在发出请求前抛出）
        - LlmError：HTTP 非 2xx、网络错误或流内错误
        """

        headers = self._headers(request)
        payload = self._payload(request, include_history=True, stream=True)
        parser = ChatCompletionsSseParser()
        try:
            async with self._client() as client:
                async with client.stream("POST", self._endpoint(), json=payload, headers=headers) as resp:
                    if resp.status_code >= 400:
                        body = await resp.aread()
                        raise LlmError(f"HTTP {resp.status_code}: {body[:500].decode('utf-8', errors='replace')}")
                    async for line in resp.aiter_lines():
                        for text in parser.feed_line(line):
                            yield text
                        if parser.done:
                            return
        except httpx.HTTPError as e:
            raise LlmError(str(e)) from e
