"""
内置 prompt 模板（classifier / planner / agent loop）。

说明：
- 渲染只替换 `{{var}}`，不引入模板引擎；
- planner 模板嵌入 `Plan` 的 JSON Schema，约束模型输出形状。
"""

from __future__ import annotations

import json
from typing import Dict, Iterable, Optional

from anycowork_runtime.core.contracts import Plan
from anycowork_runtime.tools.protocol import ToolSpec

CLASSIFIER_PREAMBLE = (
    "You are a query classifier. Decide whether the user's message can be answered directly "
    "(SIMPLE) or needs tools, files, code execution or multi-step work (COMPLEX).\n"
    "Answer with exactly one word: SIMPLE or COMPLEX."
)

PLANNER_TEMPLATE = """You are a planning agent. Break the user's objective into a short, ordered list of concrete tasks.
Each task must be a self-contained instruction that an executor with tools (filesystem, shell, search, skills) can carry out.

Respond with a single JSON object that matches this JSON Schema, and nothing else:

{{schema}}

Conversation so far:
{{context}}
"""

AGENT_TEMPLATE = """{{preamble}}

You can use the following tools:
{{tools}}

To call a tool, reply with ONLY a JSON object of the form:
{"tool": "<tool name>", "args": { ... }}

Call at most one tool per reply. After each tool call you will receive its result.
When the task is done, reply with the final answer in plain text (no JSON).
"""

DEFAULT_AGENT_PREAMBLE = "You are a capable assistant that completes tasks on the user's workspace."


def render_template(template: str, *, variables: Dict[str, str]) -> str:
    """轻量模板渲染：替换 `{{var}}`。"""

    out = template
    for k, v in variables.items():
        out = out.replace(f"{{{{{k}}}}}", v)
    return out


def plan_schema_json() -> str:
    """返回 `Plan` 的 JSON Schema（缩进格式）。"""

    return json.dumps(Plan.model_json_schema(), ensure_ascii=False, indent=2)


def render_planner_preamble(context: str) -> str:
    """渲染 planner 的 system prompt。"""

    return render_template(
        PLANNER_TEMPLATE,
        variables={"schema": plan_schema_json(), "context": context.strip() or "(none)"},
    )


def render_agent_preamble(tools: Iterable[ToolSpec], *, preamble: Optional[str] = None) -> str:
    """渲染 agent loop 的 system prompt（包含工具清单与调用格式）。"""

    lines = [spec.prompt_line() for spec in tools]
    return render_template(
        AGENT_TEMPLATE,
        variables={
            "preamble": (preamble or DEFAULT_AGENT_PREAMBLE).strip(),
            "tools": "\n".join(lines) if lines else "(no tools available)",
        },
    )
