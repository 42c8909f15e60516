"""
BasePlugin：runner 生命周期回调的统一抽象。

回调语义：
- 所有回调默认 no-op（返回 None）；
- 返回非 None 表示“短路”：例如 `before_model` 返回 LlmResponse 即跳过真实模型调用，
  `before_tool` 返回 dict 即跳过真实工具执行；
- 回调抛出的异常会中止当前 run（replay 校验依赖这一点）。
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

from agent_devkit.core.contexts import CallbackContext, InvocationContext, ToolContext
from agent_devkit.core.contracts import Content, Event, LlmRequest, LlmResponse

if TYPE_CHECKING:
    from agent_devkit.tools.base_tool import BaseTool


class BasePlugin:
    """plugin 基类；子类按需覆盖回调。"""

    def __init__(self, name: str) -> None:
        if not name:
            raise ValueError("plugin name must be non-empty")
        self.name = name

    async def on_user_message(
        self, *, invocation_context: InvocationContext, user_message: Content
    ) -> Optional[Content]:
        return None

    async def before_run(self, *, invocation_context: InvocationContext) -> Optional[Content]:
        return None

    async def on_event(self, *, invocation_context: InvocationContext, event: Event) -> Optional[Event]:
        return None

    async def after_run(self, *, invocation_context: InvocationContext) -> None:
        return None

    async def before_model(
        self, *, callback_context: CallbackContext, llm_request: LlmRequest
    ) -> Optional[LlmResponse]:
        return None

    async def after_model(
        self, *, callback_context: CallbackContext, llm_response: LlmResponse
    ) -> Optional[LlmResponse]:
        return None

    async def on_model_error(
        self, *, callback_context: CallbackContext, llm_request: LlmRequest, error: Exception
    ) -> Optional[LlmResponse]:
        return None

    async def before_tool(
        self, *, tool: "BaseTool", tool_args: Dict[str, Any], tool_context: ToolContext
    ) -> Optional[Dict[str, Any]]:
        return None

    async def after_tool(
        self, *, tool: "BaseTool", tool_args: Dict[str, Any], tool_context: ToolContext, result: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        return None

    async def on_tool_error(
        self, *, tool: "BaseTool", tool_args: Dict[str, Any], tool_context: ToolContext, error: Exception
    ) -> Optional[Dict[str, Any]]:
        return None
