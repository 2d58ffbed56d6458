"""
对话历史管理：滑动窗口 + 单条超长内容的中段截断。

说明：
- 历史条目为 `{"role": "user"|"assistant"|"tool", "content": str, "name"?: str}`；
- 裁剪总是从头部（最旧）丢弃，保留尾部；
- token 数按“约 4 字符 / token”粗估，不引入 tokenizer 依赖。
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

CHARS_PER_TOKEN = 4


def _message_char_len(msg: Dict[str, Any]) -> int:
    """估算单条 message 的字符长度（非字符串 content 回退到 `str(content)`）。"""

    content = msg.get("content")
    if content is None:
        return 0
    if isinstance(content, str):
        return len(content)
    return len(str(content))


def estimate_tokens(text: str) -> int:
    """粗估 token 数（len/4，向上取整）。"""

    if not text:
        return 0
    return (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN


def trim_history(
    history: List[Dict[str, Any]],
    *,
    max_messages: int,
    max_chars: int,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    裁剪对话历史（优先保留最近消息）。

    说明：
    - 最新一条永不丢弃；它单独超出 `max_chars` 时按 `truncate_middle` 截断。

    参数：
    - history：历史条目列表
    - max_messages：最多保留条数
    - max_chars：最多保留字符数（粗估）

    返回：
    - kept：保留的历史（按原顺序）
    - dropped：丢弃条数
    """

    if max_messages < 0 or max_chars < 0:
        raise ValueError("max_messages/max_chars must be >= 0")

    if not history:
        return [], 0

    # 先按条数（保留尾部）
    kept = history[-max_messages:] if max_messages > 0 else []
    dropped = len(history) - len(kept)

    if max_chars == 0:
        return [], len(history)

    total = sum(_message_char_len(m) for m in kept)
    while len(kept) > 1 and total > max_chars:
        first = kept.pop(0)
        total -= _message_char_len(first)
        dropped += 1

    return _fit_newest(kept, max_chars), dropped


def trim_history_by_tokens(history: List[Dict[str, Any]], *, max_tokens: int) -> Tuple[List[Dict[str, Any]], int]:
    """
    按粗估 token 预算裁剪（从头部丢弃；最新一条保留，必要时中段截断）。

    返回：
    - (kept, dropped)
    """

    if max_tokens < 0:
        raise ValueError("max_tokens must be >= 0")
    if max_tokens == 0:
        return [], len(history)
    kept = list(history)
    dropped = 0
    total = sum(estimate_tokens(str(m.get("content") or "")) for m in kept)
    while len(kept) > 1 and total > max_tokens:
        first = kept.pop(0)
        total -= estimate_tokens(str(first.get("content") or ""))
        dropped += 1
    return _fit_newest(kept, max_tokens * CHARS_PER_TOKEN), dropped


def _fit_newest(kept: List[Dict[str, Any]], max_chars: int) -> List[Dict[str, Any]]:
    """最新一条总是保留；它单独超出预算时改为中段截断后的副本（不修改原条目）。"""

    if not kept:
        return kept
    last = kept[-1]
    content = last.get("content")
    if isinstance(content, str) and len(kept) == 1 and len(content) > max_chars:
        kept[-1] = {**last, "content": truncate_middle(content, max_chars)}
    return kept


def truncate_middle(text: str, max_chars: int) -> str:
    """
    中段截断：保留前缀与后缀，中间替换为 `[... N chars truncated ...]`。

    约束：
    - `len(text) <= max_chars` 时原样返回；
    - 结果长度 ≤ max_chars + 标记长度；前缀取预算的一半（向上取整），后缀取剩余部分。
    """

    if max_chars <= 0:
        raise ValueError("max_chars must be > 0")
    if len(text) <= max_chars:
        return text

    head = (max_chars + 1) // 2
    tail = max_chars - head
    omitted = len(text) - head - tail
    marker = f"\n[... {omitted} chars truncated ...]\n"
    suffix = text[-tail:] if tail > 0 else ""
    return text[:head] + marker + suffix


def user_turn(content: str) -> Dict[str, Any]:
    """构造 user 历史条目。"""

    return {"role": "user", "content": content}


def assistant_turn(content: str) -> Dict[str, Any]:
    """构造 assistant 历史条目。"""

    return {"role": "assistant", "content": content}


def tool_turn(name: str, content: str) -> Dict[str, Any]:
    """构造 tool 结果历史条目。"""

    return {"role": "tool", "name": name, "content": content}
