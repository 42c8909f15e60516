"""
RecordingsPlugin：录制 LLM 请求/响应与工具调用/结果，写入 `generated-recordings.yaml`。

说明：
- 是否录制由 session state 的 `_adk_recordings_config` 决定（`dir` + `user_message_index`）；
- 录制状态按 invocation_id 隔离；before_* 创建 pending 录制，after_* 补全；
- `after_run` 按请求发生顺序追加已补全的录制（未补全的跳过并告警），写盘后清理状态。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from agent_devkit.conformance.recordings_schema import (
    RECORDINGS_CONFIG_KEY,
    RECORDINGS_FILENAME,
    LlmRecording,
    Recording,
    Recordings,
    ToolRecording,
    dump_recordings,
    load_recordings,
)
from agent_devkit.core.contexts import CallbackContext, InvocationContext, ToolContext
from agent_devkit.core.contracts import Content, FunctionCall, FunctionResponse, LlmRequest, LlmResponse, to_wire
from agent_devkit.core.errors import RecordingStateError
from agent_devkit.plugins.base import BasePlugin

if TYPE_CHECKING:
    from agent_devkit.tools.base_tool import BaseTool

logger = logging.getLogger(__name__)


@dataclass
class InvocationRecordingState:
    """单个 invocation 的录制状态。"""

    test_case_path: str
    user_message_index: int
    records: Recordings
    # agent_name -> 等待响应的 LLM 录制
    pending_llm_recordings: Dict[str, Recording] = field(default_factory=dict)
    # function_call_id -> 等待结果的 tool 录制
    pending_tool_recordings: Dict[str, Recording] = field(default_factory=dict)
    # 按请求发生顺序排列的全部 pending 录制
    pending_recordings_order: List[Recording] = field(default_factory=list)


class RecordingsPlugin(BasePlugin):
    """conformance record plugin。"""

    def __init__(self, name: str = "adk_recordings", *, recordings_file: str = RECORDINGS_FILENAME) -> None:
        super().__init__(name)
        self.recordings_file = recordings_file
        self._invocation_states: Dict[str, InvocationRecordingState] = {}

    async def before_run(self, *, invocation_context: InvocationContext) -> Optional[Content]:
        ctx = CallbackContext(invocation_context)
        if self._is_record_mode_on(ctx):
            self._create_invocation_state(ctx)
        return None

    async def before_model(
        self, *, callback_context: CallbackContext, llm_request: LlmRequest
    ) -> Optional[LlmResponse]:
        if not self._is_record_mode_on(callback_context):
            return None
        state = self._require_state(callback_context)

        # 快照：后续 plugin/runner 对 request 的修改不影响录制内容
        snapshot = LlmRequest.model_validate(to_wire(llm_request))
        pending = Recording(
            user_message_index=state.user_message_index,
            agent_name=callback_context.agent_name,
            llm_recording=LlmRecording(llm_request=snapshot),
        )
        state.pending_llm_recordings[callback_context.agent_name] = pending
        state.pending_recordings_order.append(pending)
        return None

    async def after_model(
        self, *, callback_context: CallbackContext, llm_response: LlmResponse
    ) -> Optional[LlmResponse]:
        if not self._is_record_mode_on(callback_context):
            return None
        state = self._require_state(callback_context)

        pending = state.pending_llm_recordings.pop(callback_context.agent_name, None)
        if pending is not None and pending.llm_recording is not None:
            pending.llm_recording.llm_response = LlmResponse.model_validate(to_wire(llm_response))
        return None

    async def before_tool(
        self, *, tool: "BaseTool", tool_args: Dict[str, Any], tool_context: ToolContext
    ) -> Optional[Dict[str, Any]]:
        if not self._is_record_mode_on(tool_context):
            return None
        function_call_id = tool_context.function_call_id
        if not function_call_id:
            logger.warning("No function_call_id provided for tool %s, skipping recording", tool.name)
            return None
        state = self._require_state(tool_context)

        pending = Recording(
            user_message_index=state.user_message_index,
            agent_name=tool_context.agent_name,
            tool_recording=ToolRecording(
                tool_call=FunctionCall(id=function_call_id, name=tool.name, args=dict(tool_args or {})),
            ),
        )
        state.pending_tool_recordings[function_call_id] = pending
        state.pending_recordings_order.append(pending)
        return None

    async def after_tool(
        self, *, tool: "BaseTool", tool_args: Dict[str, Any], tool_context: ToolContext, result: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        if not self._is_record_mode_on(tool_context):
            return None
        function_call_id = tool_context.function_call_id
        if not function_call_id:
            logger.warning("No function_call_id provided for tool %s result, skipping completion", tool.name)
            return None
        state = self._require_state(tool_context)

        pending = state.pending_tool_recordings.pop(function_call_id, None)
        if pending is not None and pending.tool_recording is not None:
            response = dict(result) if isinstance(result, dict) else {"result": result}
            pending.tool_recording.tool_response = FunctionResponse(
                id=function_call_id, name=tool.name, response=response
            )
        return None

    async def on_tool_error(
        self, *, tool: "BaseTool", tool_args: Dict[str, Any], tool_context: ToolContext, error: Exception
    ) -> Optional[Dict[str, Any]]:
        if not self._is_record_mode_on(tool_context):
            return None
        self._require_state(tool_context)
        # recordings 暂不记录工具错误；pending 录制在 after_run 中按未补全跳过
        logger.debug(
            "Tool error occurred for agent %s: tool=%s, id=%s, error=%s",
            tool_context.agent_name,
            tool.name,
            tool_context.function_call_id,
            error,
        )
        return None

    async def after_run(self, *, invocation_context: InvocationContext) -> None:
        ctx = CallbackContext(invocation_context)
        if not self._is_record_mode_on(ctx):
            return None
        state = self._require_state(ctx)

        try:
            for pending in state.pending_recordings_order:
                if pending.llm_recording is not None and pending.llm_recording.llm_response is None:
                    logger.warning("Incomplete LLM recording for agent %s, skipping", pending.agent_name)
                    continue
                if pending.tool_recording is not None and pending.tool_recording.tool_response is None:
                    logger.warning("Incomplete tool recording for agent %s, skipping", pending.agent_name)
                    continue
                state.records.recordings.append(pending)

            recordings_file = Path(state.test_case_path) / self.recordings_file
            dump_recordings(state.records, recordings_file)
            logger.info("Saved %d recordings to %s", len(state.records.recordings), recordings_file)
        except OSError:
            logger.error("Failed to save interactions", exc_info=True)
        finally:
            self._invocation_states.pop(ctx.invocation_id, None)
        return None

    # ------------------------------------------------------------------ state

    def _is_record_mode_on(self, callback_context: CallbackContext) -> bool:
        config = callback_context.state.get(RECORDINGS_CONFIG_KEY)
        if not isinstance(config, dict):
            return False
        return bool(config.get("dir")) and config.get("user_message_index") is not None

    def _require_state(self, callback_context: CallbackContext) -> InvocationRecordingState:
        state = self._invocation_states.get(callback_context.invocation_id)
        if state is None:
            raise RecordingStateError(
                "Recording state not initialized. Ensure before_run created it.",
                details={"invocation_id": callback_context.invocation_id},
            )
        return state

    def _create_invocation_state(self, callback_context: CallbackContext) -> InvocationRecordingState:
        config = callback_context.state.get(RECORDINGS_CONFIG_KEY) or {}
        case_dir = config.get("dir")
        msg_index = config.get("user_message_index")
        if not case_dir or msg_index is None:
            raise RecordingStateError("Recording parameters are missing from session state")

        recordings_file = Path(case_dir) / self.recordings_file
        records = Recordings()
        if recordings_file.exists():
            try:
                records = load_recordings(recordings_file)
            except Exception:
                logger.error("Failed to load recordings from %s; starting empty", recordings_file, exc_info=True)
                records = Recordings()

        state = InvocationRecordingState(
            test_case_path=str(case_dir),
            user_message_index=int(msg_index),
            records=records,
        )
        self._invocation_states[callback_context.invocation_id] = state
        return state
