from __future__ import annotations

import json

import pytest

from anycowork_runtime.core.errors import LlmError
from anycowork_runtime.llm.chat_sse import ChatCompletionsSseParser


def _delta(text: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]})


def test_text_deltas_and_done() -> None:
    p = ChatCompletionsSseParser()
    out = []
    for line in [": keep-alive", "", _delta("Hel"), _delta("lo"), "data: [DONE]", _delta("ignored")]:
        out.extend(p.feed_line(line))
    assert out == ["Hel", "lo"]
    assert p.done is True


def test_bare_done_sentinel() -> None:
    p = ChatCompletionsSseParser()
    assert p.feed_data("DONE") == []
    assert p.done is True


def test_role_only_and_empty_deltas_are_skipped() -> None:
    p = ChatCompletionsSseParser()
    assert p.feed_data(json.dumps({"choices": [{"delta": {"role": "assistant"}}]})) == []
    assert p.feed_data(json.dumps({"choices": [{"delta": {"content": ""}, "finish_reason": "stop"}]})) == []
    assert p.feed_data(json.dumps({"choices": []})) == []


def test_invalid_json_raises() -> None:
    with pytest.raises(LlmError):
        ChatCompletionsSseParser().feed_data("{not json")


def test_in_stream_error_raises_with_message() -> None:
    with pytest.raises(LlmError) as ei:
        ChatCompletionsSseParser().feed_data(json.dumps({"error": {"message": "rate limited"}}))
    assert str(ei.value) == "rate limited"
