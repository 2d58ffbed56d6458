"""配置加载（YAML overlay + pydantic 校验）。"""

from __future__ import annotations

from anycowork_runtime.config.loader import CoworkConfig, load_config, load_config_dicts, load_default_config_dict

__all__ = ["CoworkConfig", "load_config", "load_config_dicts", "load_default_config_dict"]
