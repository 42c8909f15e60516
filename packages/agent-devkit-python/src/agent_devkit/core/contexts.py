"""
回调上下文：InvocationContext / CallbackContext / ToolContext。

说明：
- InvocationContext 描述一次 invocation（一条 user message 触发的一次 run）；
- plugin 的 per-invocation 状态都以 `invocation_id` 为 key 隔离，互不共享。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from agent_devkit.core.contracts import EventActions, Session
from agent_devkit.core.state import State


@dataclass
class InvocationContext:
    """一次 invocation 的只读元信息 + 当前会话。"""

    invocation_id: str
    session: Session
    app_name: str
    user_id: str
    agent_name: str
    branch: Optional[str] = None


class CallbackContext:
    """
    before/after model、run 等回调使用的上下文。

    说明：
    - `state` 是 delta 感知的视图：写入会同时落到 `session.state` 与 `event_actions.state_delta`。
    """

    def __init__(self, invocation_context: InvocationContext, event_actions: Optional[EventActions] = None) -> None:
        self.invocation_context = invocation_context
        self.event_actions = event_actions or EventActions()
        self._state = State(invocation_context.session.state, self.event_actions.state_delta)

    @property
    def state(self) -> State:
        return self._state

    @property
    def invocation_id(self) -> str:
        return self.invocation_context.invocation_id

    @property
    def agent_name(self) -> str:
        return self.invocation_context.agent_name

    @property
    def session(self) -> Session:
        return self.invocation_context.session


class ToolContext(CallbackContext):
    """工具回调上下文（附带触发该工具的 function_call_id）。"""

    def __init__(
        self,
        invocation_context: InvocationContext,
        *,
        function_call_id: Optional[str] = None,
        event_actions: Optional[EventActions] = None,
    ) -> None:
        super().__init__(invocation_context, event_actions)
        self.function_call_id = function_call_id
