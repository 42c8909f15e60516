"""
InMemoryRunner：单 agent 的 LLM/tool 循环 + plugin 回调（会话保存在内存中）。

一次 `run_async`（= 一个 invocation）的顺序：
1) `on_user_message`（可替换 user message）
2) user event 落地（state_delta 合并进 session.state）
3) `before_run`（返回 Content 则直接产出该内容并结束）
4) 循环：构造 LlmRequest → `before_model`（可短路）/ 模型（失败走 `on_model_error`）→ `after_model`
   → model event；若包含 function calls，逐个执行 `before_tool` / 工具 / `after_tool` → function response event
5) 模型不再返回 function call 时结束；`after_run`（异常或提前关闭时同样执行）

约束：
- 每个产出的 event 先落地到 session，再经 `on_event`；
- 客户端生成的 function call id（`adk-` 前缀）不会出现在发往模型的 contents 中，
  保证 record 与 replay 两次运行的请求内容一致。
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from agent_devkit.core.contexts import CallbackContext, InvocationContext, ToolContext
from agent_devkit.core.contracts import (
    Content,
    Event,
    EventActions,
    FunctionCall,
    FunctionResponse,
    LlmRequest,
    LlmResponse,
    Part,
    Session,
)
from agent_devkit.core.errors import FrameworkError, UserError
from agent_devkit.core.state import State
from agent_devkit.core.utils import new_id
from agent_devkit.plugins.base import BasePlugin
from agent_devkit.plugins.manager import PluginManager
from agent_devkit.tools.base_tool import BaseTool

logger = logging.getLogger(__name__)

ModelFn = Callable[[LlmRequest], Awaitable[LlmResponse]]

CLIENT_FUNCTION_CALL_ID_PREFIX = "adk-"


def _generate_client_function_call_id() -> str:
    return f"{CLIENT_FUNCTION_CALL_ID_PREFIX}{new_id()}"


def _strip_client_function_call_ids(content: Content) -> Content:
    """返回去掉客户端生成 id 的 content 副本。"""

    out = content.model_copy(deep=True)
    for part in out.parts:
        if part.function_call is not None and (part.function_call.id or "").startswith(CLIENT_FUNCTION_CALL_ID_PREFIX):
            part.function_call.id = None
        if part.function_response is not None and (part.function_response.id or "").startswith(
            CLIENT_FUNCTION_CALL_ID_PREFIX
        ):
            part.function_response.id = None
    return out


class InMemoryRunner:
    """
    内存版 runner（测试与本地开发使用）。

    参数：
    - app_name / agent_name：写入 InvocationContext；plugin 按 agent_name 区分录制
    - model：`async (LlmRequest) -> LlmResponse`
    - model_name：写入 `LlmRequest.model`
    - tools：可调用的工具（按 name 查找）
    - plugins：按注册顺序执行
    - max_llm_calls：单次 invocation 的模型调用上限（防止 tool 循环失控）
    """

    def __init__(
        self,
        *,
        app_name: str,
        agent_name: str,
        model: ModelFn,
        model_name: str = "default",
        tools: Iterable[BaseTool] = (),
        plugins: Iterable[BasePlugin] = (),
        system_instruction: Optional[str] = None,
        max_llm_calls: int = 20,
    ) -> None:
        if max_llm_calls <= 0:
            raise ValueError("max_llm_calls must be > 0")
        self.app_name = app_name
        self.agent_name = agent_name
        self.model = model
        self.model_name = model_name
        self.system_instruction = system_instruction
        self.max_llm_calls = max_llm_calls
        self.tools: Dict[str, BaseTool] = {}
        for tool in tools:
            if tool.name in self.tools:
                raise ValueError(f"duplicate tool name: {tool.name}")
            self.tools[tool.name] = tool
        self.plugin_manager = PluginManager(plugins)
        self._sessions: Dict[Tuple[str, str], Session] = {}

    # ------------------------------------------------------------------ sessions

    def create_session(
        self, *, user_id: str, state: Optional[Dict[str, Any]] = None, session_id: Optional[str] = None
    ) -> Session:
        session = Session(
            id=session_id or new_id(),
            app_name=self.app_name,
            user_id=user_id,
            state=dict(state or {}),
        )
        key = (user_id, session.id)
        if key in self._sessions:
            raise UserError(f"Session already exists: {session.id}", details={"session_id": session.id})
        self._sessions[key] = session
        return session

    def get_session(self, *, user_id: str, session_id: str) -> Optional[Session]:
        return self._sessions.get((user_id, session_id))

    def delete_session(self, *, user_id: str, session_id: str) -> None:
        self._sessions.pop((user_id, session_id), None)

    @staticmethod
    def _append_event(session: Session, event: Event) -> None:
        """事件落地：合并 state_delta（`temp:` 前缀不持久化）并追加到 session.events。"""

        for key, value in event.actions.state_delta.items():
            if key.startswith(State.TEMP_PREFIX):
                continue
            session.state[key] = value
        session.events.append(event)
        session.last_update_time = event.timestamp

    async def _emit(self, ctx: InvocationContext, event: Event) -> Event:
        if not event.partial:
            self._append_event(ctx.session, event)
        modified = await self.plugin_manager.run_on_event(invocation_context=ctx, event=event)
        return modified if modified is not None else event

    # ------------------------------------------------------------------ run

    async def run_async(
        self,
        *,
        user_id: str,
        session_id: str,
        new_message: Content,
        state_delta: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[Event]:
        """
        执行一次 invocation，按顺序产出 events。

        异常：
        - UserError：session 不存在
        - plugin / 模型 / 工具抛出的异常原样上抛（replay 校验失败即中止本次 run）

        说明：
        - 无论正常结束、异常、调用方提前关闭生成器还是任务被取消，`after_run` 都会执行。
        """

        session = self.get_session(user_id=user_id, session_id=session_id)
        if session is None:
            raise UserError(f"Session not found: {session_id}", details={"session_id": session_id})

        ctx = InvocationContext(
            invocation_id=f"e-{new_id()}",
            session=session,
            app_name=self.app_name,
            user_id=user_id,
            agent_name=self.agent_name,
        )
        pm = self.plugin_manager

        modified_message = await pm.run_on_user_message(invocation_context=ctx, user_message=new_message)
        if modified_message is not None:
            new_message = modified_message

        user_event = Event(
            invocation_id=ctx.invocation_id,
            author="user",
            content=new_message,
            actions=EventActions(state_delta=dict(state_delta or {})),
        )
        self._append_event(session, user_event)

        try:
            early_exit = await pm.run_before_run(invocation_context=ctx)
            if early_exit is not None:
                yield await self._emit(
                    ctx, Event(invocation_id=ctx.invocation_id, author="model", content=early_exit)
                )
            else:
                async for event in self._run_loop(ctx):
                    yield event
        except BaseException:
            # 异常、提前 aclose（GeneratorExit）与取消（CancelledError）都要让 plugin 清理
            # per-invocation 状态；原异常优先
            try:
                await pm.run_after_run(invocation_context=ctx)
            except Exception:
                logger.error("after_run failed while handling an aborted invocation", exc_info=True)
            raise

        await pm.run_after_run(invocation_context=ctx)

    async def _run_loop(self, ctx: InvocationContext) -> AsyncIterator[Event]:
        llm_calls = 0
        while True:
            if llm_calls >= self.max_llm_calls:
                raise FrameworkError(
                    code="LLM_CALLS_LIMIT_EXCEEDED",
                    message=f"Max number of llm calls limit of {self.max_llm_calls} exceeded",
                    details={"invocation_id": ctx.invocation_id},
                )
            llm_calls += 1

            model_event = await self._call_model(ctx)
            yield await self._emit(ctx, model_event)

            calls = model_event.get_function_calls()
            if not calls:
                return
            yield await self._emit(ctx, await self._call_tools(ctx, calls))

    def _build_request(self, session: Session) -> LlmRequest:
        contents: List[Content] = []
        for event in session.events:
            if event.content is None or event.partial or not event.content.parts:
                continue
            content = _strip_client_function_call_ids(event.content)
            if content.role is None:
                content.role = "user" if event.author == "user" else "model"
            contents.append(content)
        config: Dict[str, Any] = {}
        if self.system_instruction:
            config["system_instruction"] = self.system_instruction
        return LlmRequest(model=self.model_name, contents=contents, config=config, tools_dict=dict(self.tools))

    async def _call_model(self, ctx: InvocationContext) -> Event:
        pm = self.plugin_manager
        request = self._build_request(ctx.session)
        callback_context = CallbackContext(ctx)

        response = await pm.run_before_model(callback_context=callback_context, llm_request=request)
        if response is None:
            try:
                response = await self.model(request)
            except Exception as exc:
                response = await pm.run_on_model_error(
                    callback_context=callback_context, llm_request=request, error=exc
                )
                if response is None:
                    raise

        altered = await pm.run_after_model(callback_context=callback_context, llm_response=response)
        if altered is not None:
            response = altered

        content = response.content.model_copy(deep=True) if response.content is not None else None
        if content is not None:
            for part in content.parts:
                if part.function_call is not None and not part.function_call.id:
                    part.function_call.id = _generate_client_function_call_id()
        return Event(
            invocation_id=ctx.invocation_id,
            author=ctx.agent_name,
            content=content,
            actions=callback_context.event_actions,
            partial=response.partial,
            turn_complete=response.turn_complete,
            error_code=response.error_code,
            error_message=response.error_message,
        )

    async def _call_tools(self, ctx: InvocationContext, calls: List[FunctionCall]) -> Event:
        pm = self.plugin_manager
        actions = EventActions()
        parts: List[Part] = []
        for call in calls:
            tool = self.tools.get(call.name or "")
            if tool is None:
                raise FrameworkError(
                    code="TOOL_NOT_FOUND",
                    message=f"Function {call.name} is not found in the tools_dict.",
                    details={"tool_name": call.name},
                )
            tool_context = ToolContext(ctx, function_call_id=call.id)
            args = dict(call.args or {})

            result = await pm.run_before_tool(tool=tool, tool_args=args, tool_context=tool_context)
            if result is None:
                try:
                    result = await tool.run(args, tool_context)
                except Exception as exc:
                    result = await pm.run_on_tool_error(
                        tool=tool, tool_args=args, tool_context=tool_context, error=exc
                    )
                    if result is None:
                        raise

            altered = await pm.run_after_tool(tool=tool, tool_args=args, tool_context=tool_context, result=result)
            if altered is not None:
                result = altered

            actions.state_delta.update(tool_context.event_actions.state_delta)
            parts.append(Part(function_response=FunctionResponse(id=call.id, name=call.name, response=result)))

        return Event(
            invocation_id=ctx.invocation_id,
            author=ctx.agent_name,
            content=Content(role="user", parts=parts),
            actions=actions,
        )
