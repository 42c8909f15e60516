"""
Agent devkit（Python）。

说明：
- 会话契约（Content/Event/Session/LlmRequest…）与 plugin 回调体系；
- ContextFilterPlugin：按 invocation 数裁剪对话历史；
- conformance：录制（RecordingsPlugin）与严格回放校验（ReplayPlugin），以及 record/test CLI；
- InMemoryRunner：本地 LLM/tool 循环，驱动 plugin 回调。
"""

from __future__ import annotations

from agent_devkit.plugins.context_filter import ContextFilterPlugin
from agent_devkit.conformance.recordings_plugin import RecordingsPlugin
from agent_devkit.conformance.replay_plugin import ReplayPlugin
from agent_devkit.runtime.runner import InMemoryRunner

__all__ = ["ContextFilterPlugin", "InMemoryRunner", "RecordingsPlugin", "ReplayPlugin", "__version__"]

__version__ = "0.1.0"
