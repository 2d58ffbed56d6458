"""
SKILL.md 解析器（行式 frontmatter，不依赖通用 YAML）。

接受的语法：

    ---
    name: skill-name
    description: Skill description
    license: MIT
    category: Data
    triggers:
      - csv
      - spreadsheet
    requires_sandbox: true
    sandbox_config:
      image: python:3.11
      memory_limit: 256m
      cpu_limit: 0.5
      timeout_seconds: 300
      network_enabled: false
    execution_mode: sandbox
    ---
    # Markdown body...

约束：
- 只识别上述键；顶层 `key: value`、一个 `triggers:` 列表（`- item`）、一个嵌套 `sandbox_config:` 块；
- 其它行被忽略（与通用 YAML 不同：不支持多行字符串/锚点/流式集合）。
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from anycowork_runtime.core.errors import SkillParseError
from anycowork_runtime.skills.models import ParsedSkill, SkillSandboxConfig

MAX_NAME_LEN = 64
MAX_DESCRIPTION_LEN = 1024

_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_SANDBOX_KEYS = ("image", "memory_limit", "cpu_limit", "timeout_seconds", "network_enabled")


def _extract_value(line: str, key: str) -> str:
    """取 `key:` 之后的值并去掉成对引号。"""

    value = line[len(key) :].strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _to_float(raw: str) -> Optional[float]:
    """解析失败返回 None。"""

    try:
        return float(raw)
    except ValueError:
        return None


def _to_int(raw: str) -> Optional[int]:
    """只接受非负整数文本。"""

    return int(raw) if raw.isdigit() else None


def _build_sandbox_config(values: Dict[str, str]) -> Optional[SkillSandboxConfig]:
    """
    把收集到的 sandbox_config 子键转换为 `SkillSandboxConfig`。

    说明：
    - 只有出现 image/memory_limit/timeout_seconds 之一时才认为该块有效。
    """

    if not any(k in values for k in ("image", "memory_limit", "timeout_seconds")):
        return None
    network = values.get("network_enabled")
    return SkillSandboxConfig(
        image=values.get("image"),
        memory_limit=values.get("memory_limit"),
        cpu_limit=_to_float(values["cpu_limit"]) if "cpu_limit" in values else None,
        timeout_seconds=_to_int(values["timeout_seconds"]) if "timeout_seconds" in values else None,
        network_enabled=(network in ("true", "yes")) if network is not None else None,
    )


def parse_skill_md(content: str) -> ParsedSkill:
    """
    解析 SKILL.md 文本。

    参数：
    - content：文件全文

    返回：
    - ParsedSkill

    异常：
    - SkillParseError：缺少 frontmatter、缺少必填字段或字段不合法
    """

    if not content.startswith("---"):
        raise SkillParseError("SKILL.md must start with YAML frontmatter (---)")

    rest = content[3:]
    end = rest.find("\n---")
    if end < 0:
        raise SkillParseError("Could not find end of YAML frontmatter")
    frontmatter = rest[:end].strip()
    body = rest[end + 4 :].strip()

    fields: Dict[str, str] = {}
    triggers: Optional[List[str]] = None
    current_triggers: List[str] = []
    sandbox_values: Dict[str, str] = {}
    in_triggers = False
    in_sandbox = False

    for line in frontmatter.splitlines():
        trimmed = line.strip()

        if in_triggers:
            if trimmed.startswith("- "):
                current_triggers.append(trimmed[2:].strip())
                continue
            if trimmed:
                in_triggers = False
                triggers = list(current_triggers)

        if in_sandbox:
            key = next((k for k in _SANDBOX_KEYS if trimmed.startswith(f"{k}:")), None)
            if key is not None:
                sandbox_values[key] = _extract_value(trimmed, f"{key}:")
                continue
            if trimmed:
                in_sandbox = False

        if trimmed.startswith("triggers:"):
            in_triggers = True
            current_triggers = []
        elif trimmed.startswith("sandbox_config:"):
            in_sandbox = True
        else:
            for key in ("name", "description", "license", "category", "requires_sandbox", "execution_mode"):
                if trimmed.startswith(f"{key}:"):
                    fields[key] = _extract_value(trimmed, f"{key}:")
                    break

    if in_triggers and current_triggers:
        triggers = list(current_triggers)

    name = fields.get("name", "")
    description = fields.get("description", "")
    if not name:
        raise SkillParseError("SKILL.md must have a 'name' field in frontmatter")
    if not description:
        raise SkillParseError("SKILL.md must have a 'description' field in frontmatter")
    if len(name) > MAX_NAME_LEN:
        raise SkillParseError("Skill name must be 64 characters or less")
    if not _NAME_RE.match(name):
        raise SkillParseError("Skill name must only contain alphanumeric characters, hyphens, and underscores")
    if len(description) > MAX_DESCRIPTION_LEN:
        raise SkillParseError("Skill description must be 1024 characters or less")

    return ParsedSkill(
        name=name,
        description=description,
        body=body,
        license=fields.get("license"),
        category=fields.get("category"),
        triggers=triggers,
        requires_sandbox=fields.get("requires_sandbox", "") in ("true", "yes", "1"),
        sandbox_config=_build_sandbox_config(sandbox_values),
        execution_mode=fields.get("execution_mode") or None,
    )
