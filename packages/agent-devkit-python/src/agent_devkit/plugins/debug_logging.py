"""
DebugLoggingPlugin：把一次 invocation 的完整调试信息写入 YAML 文件。

记录内容（entry_type）：
- user_message / invocation_start / invocation_end
- event（作者、内容、actions 摘要、错误信息）
- llm_request / llm_response / llm_error
- tool_call / tool_response / tool_error
- session_state_snapshot（可关闭）

输出：
- 每个 invocation 一个 YAML document，以 `---` 分隔，追加写入 `output_path`；
- 内联二进制数据只记录 mime type 与长度，不落盘原始内容。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import yaml
from pydantic import BaseModel

from agent_devkit.core.contexts import CallbackContext, InvocationContext, ToolContext
from agent_devkit.core.contracts import Content, Event, LlmRequest, LlmResponse, Part
from agent_devkit.core.utils import now_rfc3339
from agent_devkit.plugins.base import BasePlugin

if TYPE_CHECKING:
    from agent_devkit.tools.base_tool import BaseTool

logger = logging.getLogger(__name__)

_CONFIG_KEYS = ("temperature", "top_p", "top_k", "max_output_tokens", "response_mime_type")


@dataclass
class DebugEntry:
    timestamp: str
    entry_type: str
    invocation_id: str
    agent_name: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


@dataclass
class InvocationDebugState:
    invocation_id: str
    session_id: str
    app_name: str
    user_id: Optional[str]
    start_time: str
    entries: List[DebugEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invocation_id": self.invocation_id,
            "session_id": self.session_id,
            "app_name": self.app_name,
            "user_id": self.user_id,
            "start_time": self.start_time,
            "entries": [
                {
                    "timestamp": e.timestamp,
                    "entry_type": e.entry_type,
                    "invocation_id": e.invocation_id,
                    "agent_name": e.agent_name,
                    "data": e.data,
                }
                for e in self.entries
            ],
        }


def safe_serialize(obj: Any) -> Any:
    """把任意对象转为 YAML 可写的基础类型（bytes 只保留长度）。"""

    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if isinstance(obj, (bytes, bytearray)):
        return f"<bytes: {len(obj)} bytes>"
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, BaseModel):
        return safe_serialize(obj.model_dump(mode="json", by_alias=True, exclude_none=True))
    if isinstance(obj, dict):
        return {str(k): safe_serialize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [safe_serialize(v) for v in obj]
    return str(obj)


def _serialize_part(part: Part) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if part.text is not None:
        data["text"] = part.text
    if part.function_call is not None:
        data["function_call"] = {
            "id": part.function_call.id,
            "name": part.function_call.name,
            "args": safe_serialize(part.function_call.args),
        }
    if part.function_response is not None:
        data["function_response"] = {
            "id": part.function_response.id,
            "name": part.function_response.name,
            "response": safe_serialize(part.function_response.response),
        }
    if part.inline_data is not None:
        blob = part.inline_data
        data["inline_data"] = {
            "mime_type": blob.mime_type,
            "data_length": f"<{len(blob.data)}>" if blob.data else None,
        }
    if part.file_data is not None:
        data["file_data"] = {"file_uri": part.file_data.file_uri, "mime_type": part.file_data.mime_type}
    if part.thought is not None:
        data["thought"] = part.thought
    return data


def serialize_content(content: Optional[Content]) -> Optional[Dict[str, Any]]:
    if content is None:
        return None
    parts = [d for d in (_serialize_part(p) for p in content.parts) if d]
    return {"role": content.role, "parts": parts or None}


def _usage(usage: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not usage:
        return None
    keys = ("promptTokenCount", "candidatesTokenCount", "totalTokenCount")
    return {k: usage.get(k) for k in keys}


class DebugLoggingPlugin(BasePlugin):
    """
    调试日志 plugin（开发期使用）。

    参数：
    - output_path：输出 YAML 路径（追加写）
    - include_session_state：invocation 结束时是否写入 session state 快照
    - include_system_instruction：是否写入完整 system instruction（否则只记录长度/存在性）
    """

    def __init__(
        self,
        *,
        output_path: str | Path = "adk_debug.yaml",
        include_session_state: bool = True,
        include_system_instruction: bool = True,
        name: str = "debug_logging_plugin",
    ) -> None:
        super().__init__(name)
        self.output_path = Path(output_path)
        self.include_session_state = include_session_state
        self.include_system_instruction = include_system_instruction
        self._invocation_states: Dict[str, InvocationDebugState] = {}

    @classmethod
    def from_config(cls, cfg: Any) -> "DebugLoggingPlugin":
        """从 `DevkitConfig.debug_logging` 构造。"""

        return cls(
            output_path=cfg.output_path,
            include_session_state=cfg.include_session_state,
            include_system_instruction=cfg.include_system_instruction,
        )

    # ------------------------------------------------------------------ run lifecycle

    async def on_user_message(
        self, *, invocation_context: InvocationContext, user_message: Content
    ) -> Optional[Content]:
        self._ensure_state(invocation_context)
        self._add_entry(
            invocation_context.invocation_id, "user_message", data={"content": serialize_content(user_message)}
        )
        return None

    async def before_run(self, *, invocation_context: InvocationContext) -> Optional[Content]:
        self._ensure_state(invocation_context)
        self._add_entry(
            invocation_context.invocation_id,
            "invocation_start",
            data={"root_agent": invocation_context.agent_name, "branch": invocation_context.branch},
        )
        return None

    async def on_event(self, *, invocation_context: InvocationContext, event: Event) -> Optional[Event]:
        data: Dict[str, Any] = {
            "event_id": event.id,
            "author": event.author,
            "content": serialize_content(event.content),
            "is_final_response": event.is_final_response(),
            "partial": event.partial,
            "turn_complete": event.turn_complete,
            "branch": event.branch,
        }
        actions = event.actions
        actions_data: Dict[str, Any] = {}
        if actions.state_delta:
            actions_data["state_delta"] = safe_serialize(actions.state_delta)
        if actions.artifact_delta:
            actions_data["artifact_delta"] = safe_serialize(actions.artifact_delta)
        if actions.transfer_to_agent:
            actions_data["transfer_to_agent"] = actions.transfer_to_agent
        if actions.escalate:
            actions_data["escalate"] = actions.escalate
        if actions.requested_auth_configs:
            actions_data["requested_auth_configs"] = list(actions.requested_auth_configs)
        if actions.requested_tool_confirmations:
            actions_data["requested_tool_confirmations"] = list(actions.requested_tool_confirmations)
        if actions_data:
            data["actions"] = actions_data
        if event.error_code:
            data["error_code"] = event.error_code
            data["error_message"] = event.error_message
        if event.long_running_tool_ids:
            data["long_running_tool_ids"] = list(event.long_running_tool_ids)

        self._add_entry(invocation_context.invocation_id, "event", event.author, data)
        return None

    async def after_run(self, *, invocation_context: InvocationContext) -> None:
        invocation_id = invocation_context.invocation_id
        state = self._invocation_states.get(invocation_id)
        if state is None:
            logger.warning("[%s] No debug state found for invocation %s", self.name, invocation_id)
            return None

        session = invocation_context.session
        if self.include_session_state:
            self._add_entry(
                invocation_id,
                "session_state_snapshot",
                data={"state": safe_serialize(session.state), "event_count": len(session.events)},
            )
        self._add_entry(invocation_id, "invocation_end", data={"final_agent": invocation_context.agent_name})

        try:
            text = yaml.safe_dump(state.to_dict(), sort_keys=False, allow_unicode=True, width=120)
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            with self.output_path.open("a", encoding="utf-8") as f:
                f.write("---\n" + text)
            logger.debug("[%s] Debug data written to %s", self.name, self.output_path)
        except (OSError, yaml.YAMLError):
            logger.error("[%s] Error writing debug data", self.name, exc_info=True)
        finally:
            self._invocation_states.pop(invocation_id, None)
        return None

    # ------------------------------------------------------------------ model

    async def before_model(
        self, *, callback_context: CallbackContext, llm_request: LlmRequest
    ) -> Optional[LlmResponse]:
        data: Dict[str, Any] = {
            "model": llm_request.model or "default",
            "contents": [serialize_content(c) for c in llm_request.contents],
        }
        config = llm_request.config or {}
        system_instruction = config.get("system_instruction")
        if system_instruction:
            if self.include_system_instruction:
                data["system_instruction"] = safe_serialize(system_instruction)
            elif isinstance(system_instruction, str):
                data["system_instruction_length"] = len(system_instruction)
            else:
                data["has_system_instruction"] = True
        if llm_request.tools_dict:
            data["tools"] = list(llm_request.tools_dict)
        config_data = {k: config[k] for k in _CONFIG_KEYS if config.get(k) is not None}
        if config.get("response_schema"):
            config_data["has_response_schema"] = True
        if config_data:
            data["config"] = safe_serialize(config_data)

        self._add_entry(callback_context.invocation_id, "llm_request", callback_context.agent_name, data)
        return None

    async def after_model(
        self, *, callback_context: CallbackContext, llm_response: LlmResponse
    ) -> Optional[LlmResponse]:
        data: Dict[str, Any] = {
            "content": serialize_content(llm_response.content),
            "partial": llm_response.partial,
            "turn_complete": llm_response.turn_complete,
        }
        usage = _usage(llm_response.usage_metadata)
        if usage:
            data["usage_metadata"] = usage
        if llm_response.error_code:
            data["error_code"] = llm_response.error_code
            data["error_message"] = llm_response.error_message
        self._add_entry(callback_context.invocation_id, "llm_response", callback_context.agent_name, data)
        return None

    async def on_model_error(
        self, *, callback_context: CallbackContext, llm_request: LlmRequest, error: Exception
    ) -> Optional[LlmResponse]:
        self._add_entry(
            callback_context.invocation_id,
            "llm_error",
            callback_context.agent_name,
            {
                "model": llm_request.model or "default",
                "error_name": type(error).__name__,
                "error_message": str(error),
            },
        )
        return None

    # ------------------------------------------------------------------ tool

    async def before_tool(
        self, *, tool: "BaseTool", tool_args: Dict[str, Any], tool_context: ToolContext
    ) -> Optional[Dict[str, Any]]:
        self._add_entry(
            tool_context.invocation_id,
            "tool_call",
            tool_context.agent_name,
            {"tool_name": tool.name, "function_call_id": tool_context.function_call_id, "args": tool_args},
        )
        return None

    async def after_tool(
        self, *, tool: "BaseTool", tool_args: Dict[str, Any], tool_context: ToolContext, result: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        self._add_entry(
            tool_context.invocation_id,
            "tool_response",
            tool_context.agent_name,
            {"tool_name": tool.name, "function_call_id": tool_context.function_call_id, "result": result},
        )
        return None

    async def on_tool_error(
        self, *, tool: "BaseTool", tool_args: Dict[str, Any], tool_context: ToolContext, error: Exception
    ) -> Optional[Dict[str, Any]]:
        self._add_entry(
            tool_context.invocation_id,
            "tool_error",
            tool_context.agent_name,
            {
                "tool_name": tool.name,
                "function_call_id": tool_context.function_call_id,
                "args": tool_args,
                "error_name": type(error).__name__,
                "error_message": str(error),
            },
        )
        return None

    # ------------------------------------------------------------------ helpers

    def _ensure_state(self, invocation_context: InvocationContext) -> InvocationDebugState:
        invocation_id = invocation_context.invocation_id
        state = self._invocation_states.get(invocation_id)
        if state is None:
            state = InvocationDebugState(
                invocation_id=invocation_id,
                session_id=invocation_context.session.id,
                app_name=invocation_context.app_name,
                user_id=invocation_context.user_id,
                start_time=now_rfc3339(),
            )
            self._invocation_states[invocation_id] = state
        return state

    def _add_entry(
        self,
        invocation_id: str,
        entry_type: str,
        agent_name: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        state = self._invocation_states.get(invocation_id)
        if state is None:
            logger.warning(
                "[%s] No debug state for invocation %s, skipping entry: %s", self.name, invocation_id, entry_type
            )
            return
        state.entries.append(
            DebugEntry(
                timestamp=now_rfc3339(),
                entry_type=entry_type,
                invocation_id=invocation_id,
                agent_name=agent_name,
                data=safe_serialize(data) if data is not None else None,
            )
        )
