"""
BaseTool / FunctionTool：runner 可调用的工具抽象。

说明：
- 工具只需要稳定的 `name`（replay 按 name + args 严格匹配）与 `run(args, tool_context)`；
- 工具返回 dict；非 dict 结果由 FunctionTool 包装为 `{"result": value}`。
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Dict, Optional

from agent_devkit.core.contexts import ToolContext


class BaseTool:
    """工具基类（子类实现 `run`）。"""

    def __init__(self, *, name: str, description: str = "") -> None:
        if not name:
            raise ValueError("tool name must be non-empty")
        self.name = name
        self.description = description

    async def run(self, args: Dict[str, Any], tool_context: ToolContext) -> Dict[str, Any]:
        raise NotImplementedError


class FunctionTool(BaseTool):
    """
    把一个 Python 函数（同步或 async）包装为工具。

    约束：
    - 函数参数按关键字传入（来自 function call 的 args）；
    - 若函数签名包含 `tool_context` 参数，则注入当前 ToolContext。
    """

    def __init__(self, func: Callable[..., Any], *, name: Optional[str] = None, description: Optional[str] = None) -> None:
        super().__init__(
            name=name or func.__name__,
            description=description or (func.__doc__ or "").strip(),
        )
        self._func = func
        self._wants_context = "tool_context" in inspect.signature(func).parameters

    async def run(self, args: Dict[str, Any], tool_context: ToolContext) -> Dict[str, Any]:
        kwargs = dict(args)
        if self._wants_context:
            kwargs["tool_context"] = tool_context
        out = self._func(**kwargs)
        if inspect.isawaitable(out):
            out = await out
        if isinstance(out, dict):
            return out
        return {"result": out}
