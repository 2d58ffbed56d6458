from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from anycowork_runtime.config.loader import (
    DEFAULT_CONFIG_PATH,
    load_config,
    load_config_dicts,
    load_default_config_dict,
)


def test_default_yaml_ships_with_package() -> None:
    assert DEFAULT_CONFIG_PATH.exists()
    raw = load_default_config_dict()
    assert raw["config_version"] == 1
    assert raw["run"]["max_steps"] == 10


def test_defaults_match_documented_values() -> None:
    cfg = load_config([])

    assert cfg.run.max_steps == 10
    assert cfg.run.execution_mode == "flexible"
    assert cfg.run.mode == "smart"
    assert cfg.planner.max_attempts == 3
    assert cfg.planner.base_delay_ms == 1000
    assert cfg.history.max_messages == 40
    assert cfg.history.max_chars == 120000
    assert cfg.history.max_tokens is None
    assert cfg.history.max_tool_result_chars == 8000
    assert cfg.permissions.mode == "ask"
    assert cfg.tools.max_retries == 0
    assert cfg.sandbox.network_enabled is False


def test_load_config_default_plus_overlay(tmp_path: Path) -> None:
    overlay = tmp_path / "overlay.yaml"
    overlay.write_text(
        "\n".join(
            [
                "run:",
                "  max_steps: 7",
                "  mode: fast",
                "llm:",
                '  base_url: "http://example.test/v1"',
                "sandbox:",
                "  memory_limit: 512m",
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    cfg = load_config([overlay])

    assert cfg.run.max_steps == 7
    assert cfg.run.mode == "fast"
    # 未覆盖的同级字段保持默认
    assert cfg.run.execution_mode == "flexible"
    assert cfg.llm.base_url == "http://example.test/v1"
    assert cfg.llm.model == "gpt-4o"
    assert cfg.sandbox.memory_limit == "512m"
    assert cfg.sandbox.cpu_limit == 0.5


def test_later_overlay_wins(tmp_path: Path) -> None:
    a = tmp_path / "a.yaml"
    b = tmp_path / "b.yaml"
    a.write_text("run:\n  max_steps: 3\n", encoding="utf-8")
    b.write_text("run:\n  max_steps: 5\n", encoding="utf-8")

    assert load_config([a, b]).run.max_steps == 5
    assert load_config([b, a]).run.max_steps == 3


def test_lists_are_replaced_not_merged() -> None:
    cfg = load_config_dicts([{"skills": {"roots": ["a"]}}, {"skills": {"roots": ["b", "c"]}}])
    assert cfg.skills.roots == ["b", "c"]


def test_unknown_keys_are_rejected() -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([{"run": {"max_step": 3}}])


def test_invalid_execution_mode_is_rejected() -> None:
    with pytest.raises(ValidationError):
        load_config_dicts([{"run": {"execution_mode": "container"}}])


def test_empty_overlay_file_is_ignored(tmp_path: Path) -> None:
    empty = tmp_path / "empty.yaml"
    empty.write_text("", encoding="utf-8")
    assert load_config([empty]).run.max_steps == 10


def test_missing_overlay_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config([tmp_path / "nope.yaml"])


def test_non_mapping_root_raises(tmp_path: Path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config([bad])


def test_sandbox_settings_convert_to_frozen_config() -> None:
    cfg = load_config_dicts([{"sandbox": {"image": "python", "timeout_seconds": 30}}])
    sc = cfg.sandbox.to_sandbox_config()
    assert sc.image == "python"
    assert sc.timeout_seconds == 30
    assert sc.memory_limit == "256m"
    with pytest.raises(Exception):
        sc.image = "x"  # type: ignore[misc]
