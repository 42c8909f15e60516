"""
State：带 pending delta 的会话 state 视图。

说明：
- 读取时 delta 优先；写入时同时更新 value 与 delta；
- delta 通常就是 `EventActions.state_delta`，由 runner 在事件落地时提交。
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class State:
    """会话 state 的可变视图（current value + 未提交 delta）。"""

    APP_PREFIX = "app:"
    USER_PREFIX = "user:"
    TEMP_PREFIX = "temp:"

    def __init__(self, value: Optional[Dict[str, Any]] = None, delta: Optional[Dict[str, Any]] = None) -> None:
        """
        参数：
        - value：当前 state（通常为 `session.state`，就地修改）
        - delta：待提交的变更（通常为 `event_actions.state_delta`，就地修改）
        """

        self._value: Dict[str, Any] = value if value is not None else {}
        self._delta: Dict[str, Any] = delta if delta is not None else {}

    def __getitem__(self, key: str) -> Any:
        if key in self._delta:
            return self._delta[key]
        return self._value[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __contains__(self, key: object) -> bool:
        return key in self._value or key in self._delta

    def get(self, key: str, default: Any = None) -> Any:
        """返回 key 对应的值（delta 优先）；不存在时返回 default。"""

        if key in self._delta:
            return self._delta[key]
        return self._value.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._value[key] = value
        self._delta[key] = value

    def setdefault(self, key: str, default: Any = None) -> Any:
        """key 已存在则返回现值，否则写入 default 并返回。"""

        if key in self:
            return self.get(key)
        self.set(key, default)
        return default

    def has_delta(self) -> bool:
        return bool(self._delta)

    def update(self, delta: Dict[str, Any]) -> None:
        self._value.update(delta)
        self._delta.update(delta)

    def to_dict(self) -> Dict[str, Any]:
        """返回合并后的 state 快照（浅拷贝）。"""

        merged = dict(self._value)
        merged.update(self._delta)
        return merged
