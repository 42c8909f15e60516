"""
配置加载器（YAML）。

设计目标：
- 内置默认配置 + 多个 YAML overlay，按顺序做深度合并（后者覆盖前者）；
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误被静默吞掉）。

使用方：
- `logging` / `conformance`：`agent-devkit` CLI；
- `context_filter` / `debug_logging`：宿主 agent 的进程（plugin 挂在 agent web server 一侧，CLI 不使用），
  通过 `ContextFilterPlugin.from_config(cfg.context_filter)` / `DebugLoggingPlugin.from_config(cfg.debug_logging)`
  构造；CLI 同样会校验这两段，便于两边共用一份 overlay。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Iterable, Literal, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from agent_devkit.config.defaults import load_default_config_dict


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型（含 list）：overlay 直接覆盖
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class LoggingConfig(BaseModel):
    """CLI 日志级别。"""

    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


class ContextFilterConfig(BaseModel):
    """ContextFilterPlugin 参数。"""

    model_config = ConfigDict(extra="forbid")

    num_invocations_to_keep: Optional[int] = Field(default=None, ge=0)


class ConformanceConfig(BaseModel):
    """
    conformance record/test 参数。

    说明：
    - 文件名字段只影响 test case 目录内的文件名，不影响目录结构约定。
    """

    model_config = ConfigDict(extra="forbid")

    base_url: str = "http://127.0.0.1:8000"
    timeout_sec: float = Field(default=30, ge=1)
    user_id: str = "adk_conformance_test_user"
    recordings_file: str = "generated-recordings.yaml"
    session_file: str = "generated-session.yaml"
    spec_file: str = "spec.yaml"


class DebugLoggingConfig(BaseModel):
    """DebugLoggingPlugin 参数。"""

    model_config = ConfigDict(extra="forbid")

    output_path: str = "adk_debug.yaml"
    include_session_state: bool = True
    include_system_instruction: bool = True


class DevkitConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    context_filter: ContextFilterConfig = Field(default_factory=ContextFilterConfig)
    conformance: ConformanceConfig = Field(default_factory=ConformanceConfig)
    debug_logging: DebugLoggingConfig = Field(default_factory=DebugLoggingConfig)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"配置文件不存在：{path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"配置文件根节点必须为 mapping(dict)：{path}")
    return data


def load_config_dicts(config_dicts: Iterable[Optional[Dict[str, Any]]]) -> DevkitConfig:
    """
    合并多个 dict 配置并校验，返回 `DevkitConfig`。

    参数：
    - config_dicts：按顺序深度合并（后者覆盖前者）；不自动包含内置默认配置
    """

    merged: Dict[str, Any] = {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return DevkitConfig.model_validate(merged)


def load_config(config_paths: Iterable[Path] = ()) -> DevkitConfig:
    """
    加载内置默认配置 + 配置文件 overlays，返回校验后的 `DevkitConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays = [load_default_config_dict()]
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_config_dicts(overlays)
