"""
PluginManager：按注册顺序分发回调，首个非 None 结果短路。

约束：
- plugin name 必须唯一（重复注册 fail-fast）；
- plugin 回调异常会记录 plugin 名与回调名后原样抛出，不做吞掉（replay 校验失败必须中止 run）。
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from agent_devkit.plugins.base import BasePlugin

logger = logging.getLogger(__name__)


class PluginManager:
    """管理一组 plugin 并按固定顺序调用其回调。"""

    def __init__(self, plugins: Optional[Iterable[BasePlugin]] = None) -> None:
        self.plugins: List[BasePlugin] = []
        for plugin in plugins or ():
            self.register_plugin(plugin)

    def register_plugin(self, plugin: BasePlugin) -> None:
        if any(p.name == plugin.name for p in self.plugins):
            raise ValueError(f"Plugin with name '{plugin.name}' already registered.")
        self.plugins.append(plugin)

    def get_plugin(self, name: str) -> Optional[BasePlugin]:
        for p in self.plugins:
            if p.name == name:
                return p
        return None

    async def _run_callbacks(self, callback_name: str, **kwargs: Any) -> Any:
        """依次调用各 plugin 的同名回调；返回首个非 None 结果。"""

        for plugin in self.plugins:
            callback = getattr(plugin, callback_name)
            try:
                result = await callback(**kwargs)
            except Exception:
                logger.error("Error in plugin '%s' during '%s' callback", plugin.name, callback_name)
                raise
            if result is not None:
                logger.debug("Plugin '%s' returned a value for '%s'; exiting early", plugin.name, callback_name)
                return result
        return None

    async def run_on_user_message(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("on_user_message", **kwargs)

    async def run_before_run(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("before_run", **kwargs)

    async def run_on_event(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("on_event", **kwargs)

    async def run_after_run(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("after_run", **kwargs)

    async def run_before_model(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("before_model", **kwargs)

    async def run_after_model(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("after_model", **kwargs)

    async def run_on_model_error(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("on_model_error", **kwargs)

    async def run_before_tool(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("before_tool", **kwargs)

    async def run_after_tool(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("after_tool", **kwargs)

    async def run_on_tool_error(self, **kwargs: Any) -> Any:
        return await self._run_callbacks("on_tool_error", **kwargs)
