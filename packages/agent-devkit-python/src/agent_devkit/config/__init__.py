"""配置：内置默认值 + YAML overlays（pydantic 校验）。"""

from agent_devkit.config.defaults import load_default_config_dict
from agent_devkit.config.loader import DevkitConfig, load_config, load_config_dicts

__all__ = ["DevkitConfig", "load_config", "load_config_dicts", "load_default_config_dict"]
