"""Plugin 体系（BasePlugin/PluginManager）与内置 plugins。"""

from __future__ import annotations

from agent_devkit.plugins.base import BasePlugin
from agent_devkit.plugins.context_filter import ContextFilterPlugin
from agent_devkit.plugins.debug_logging import DebugLoggingPlugin
from agent_devkit.plugins.manager import PluginManager

__all__ = ["BasePlugin", "ContextFilterPlugin", "DebugLoggingPlugin", "PluginManager"]
