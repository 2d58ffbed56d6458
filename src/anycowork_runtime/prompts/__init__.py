"""Prompt 模板与对话历史管理。"""

from __future__ import annotations

from anycowork_runtime.prompts.history import (
    estimate_tokens,
    trim_history,
    trim_history_by_tokens,
    truncate_middle,
)
from anycowork_runtime.prompts.templates import (
    CLASSIFIER_PREAMBLE,
    render_agent_preamble,
    render_planner_preamble,
    render_template,
)

__all__ = [
    "CLASSIFIER_PREAMBLE",
    "estimate_tokens",
    "render_agent_preamble",
    "render_planner_preamble",
    "render_template",
    "trim_history",
    "trim_history_by_tokens",
    "truncate_middle",
]
