"""工具抽象（BaseTool/FunctionTool）。"""

from __future__ import annotations

from agent_devkit.tools.base_tool import BaseTool, FunctionTool

__all__ = ["BaseTool", "FunctionTool"]
