"""
ReplayPlugin：用录制结果替代真实 LLM/tool 调用，并严格校验请求顺序与内容。

状态机（每个 invocation 独立）：
- 每个 agent 一个游标，指向该 agent 在当前 user message 下的录制列表；
- 每个请求（LLM 或 tool）必须与游标处的录制严格相等：
  - LLM：model 名 + contents 的规范化 JSON；
  - tool：tool 名 + args 的规范化 JSON；
- 匹配成功后游标 +1，并返回录制的响应（短路真实调用）；
- 以下情况直接抛 `ReplayVerificationError` 中止 run（不重试）：
  请求数超过录制数、内容不一致、录制类型不匹配（LLM 录制被 tool 调用消费或反之）。

并发：
- 状态按 invocation_id 存放在 map 中，`after_run` 时清理；不同 invocation 互不影响。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from agent_devkit.conformance.recordings_schema import (
    RECORDINGS_FILENAME,
    REPLAY_CONFIG_KEY,
    LlmRecording,
    Recording,
    Recordings,
    ToolRecording,
    load_recordings,
)
from agent_devkit.core.contexts import CallbackContext, InvocationContext, ToolContext
from agent_devkit.core.contracts import Content, FunctionCall, LlmRequest, LlmResponse, to_wire
from agent_devkit.core.errors import ReplayConfigError, ReplayVerificationError
from agent_devkit.core.utils import canonical_json
from agent_devkit.plugins.base import BasePlugin

if TYPE_CHECKING:
    from agent_devkit.tools.base_tool import BaseTool

logger = logging.getLogger(__name__)


@dataclass
class InvocationReplayState:
    """单个 invocation 的 replay 状态。"""

    test_case_path: str
    user_message_index: int
    recordings: Recordings
    # agent_name -> 已消费的录制条数（即下一条录制的下标）
    agent_replay_indices: Dict[str, int] = field(default_factory=dict)


def _replay_config(callback_context: CallbackContext) -> Optional[Dict[str, Any]]:
    config = callback_context.state.get(REPLAY_CONFIG_KEY)
    if not isinstance(config, dict):
        return None
    return config


def _contents_json(contents: List[Content]) -> str:
    return canonical_json([to_wire(c) for c in contents])


class ReplayPlugin(BasePlugin):
    """
    conformance replay plugin。

    参数：
    - require_all_consumed：为 True 时，`after_run` 检查是否有未被消费的录制，有则抛 `ReplayVerificationError`
    - recordings_file：test case 目录下的录制文件名
    """

    def __init__(
        self,
        name: str = "adk_replay",
        *,
        require_all_consumed: bool = False,
        recordings_file: str = RECORDINGS_FILENAME,
    ) -> None:
        super().__init__(name)
        self.require_all_consumed = require_all_consumed
        self.recordings_file = recordings_file
        self._invocation_states: Dict[str, InvocationReplayState] = {}

    # ------------------------------------------------------------------ callbacks

    async def before_run(self, *, invocation_context: InvocationContext) -> Optional[Content]:
        ctx = CallbackContext(invocation_context)
        if self._is_replay_mode_on(ctx):
            self._load_invocation_state(ctx)
        return None

    async def before_model(
        self, *, callback_context: CallbackContext, llm_request: LlmRequest
    ) -> Optional[LlmResponse]:
        if not self._is_replay_mode_on(callback_context):
            return None
        state = self._require_state(callback_context)
        recording = self._verify_and_get_next_llm_recording(state, callback_context.agent_name, llm_request)
        if recording.llm_response is None:
            raise ReplayVerificationError(
                f"No recorded LLM response for agent '{callback_context.agent_name}'",
                details={"agent_name": callback_context.agent_name},
            )
        return recording.llm_response.model_copy(deep=True)

    async def before_tool(
        self, *, tool: "BaseTool", tool_args: Dict[str, Any], tool_context: ToolContext
    ) -> Optional[Dict[str, Any]]:
        if not self._is_replay_mode_on(tool_context):
            return None
        state = self._require_state(tool_context)
        recording = self._verify_and_get_next_tool_recording(state, tool_context.agent_name, tool.name, tool_args)
        response = recording.tool_response.response if recording.tool_response is not None else None
        return dict(response or {})

    async def after_run(self, *, invocation_context: InvocationContext) -> None:
        ctx = CallbackContext(invocation_context)
        if not self._is_replay_mode_on(ctx):
            return None
        try:
            if self.require_all_consumed and ctx.invocation_id in self._invocation_states:
                self.verify_all_consumed(ctx.invocation_id)
        finally:
            self._invocation_states.pop(ctx.invocation_id, None)
        return None

    # ------------------------------------------------------------------ progress

    def get_replay_progress(self, invocation_id: str) -> Dict[str, Tuple[int, int]]:
        """
        返回当前 invocation 各 agent 的消费进度：agent_name -> (已消费, 录制总数)。

        说明：
        - 只包含当前 user message 下有录制、或已经发起过请求的 agent。
        """

        state = self._invocation_states.get(invocation_id)
        if state is None:
            raise ReplayConfigError(
                "Replay state not initialized for invocation.", details={"invocation_id": invocation_id}
            )
        expected: Dict[str, int] = {}
        for r in state.recordings.recordings:
            if r.user_message_index == state.user_message_index:
                expected[r.agent_name] = expected.get(r.agent_name, 0) + 1
        progress: Dict[str, Tuple[int, int]] = {}
        for agent_name in list(expected) + [a for a in state.agent_replay_indices if a not in expected]:
            progress[agent_name] = (state.agent_replay_indices.get(agent_name, 0), expected.get(agent_name, 0))
        return progress

    def verify_all_consumed(self, invocation_id: str) -> None:
        """检查所有录制均已被消费；存在剩余录制时抛 `ReplayVerificationError`。"""

        leftovers = {
            agent: (consumed, expected)
            for agent, (consumed, expected) in self.get_replay_progress(invocation_id).items()
            if consumed < expected
        }
        if leftovers:
            summary = ", ".join(f"'{a}' consumed {c} of {e}" for a, (c, e) in sorted(leftovers.items()))
            raise ReplayVerificationError(
                f"Runtime sent fewer requests than recorded: {summary}",
                details={"invocation_id": invocation_id, "leftovers": leftovers},
            )

    # ------------------------------------------------------------------ state

    def _is_replay_mode_on(self, callback_context: CallbackContext) -> bool:
        config = _replay_config(callback_context)
        if config is None:
            return False
        return bool(config.get("dir")) and config.get("user_message_index") is not None

    def _require_state(self, callback_context: CallbackContext) -> InvocationReplayState:
        state = self._invocation_states.get(callback_context.invocation_id)
        if state is None:
            raise ReplayConfigError("Replay state not initialized. Ensure before_run created it.")
        return state

    def _load_invocation_state(self, callback_context: CallbackContext) -> InvocationReplayState:
        config = _replay_config(callback_context) or {}
        case_dir = config.get("dir")
        msg_index = config.get("user_message_index")
        if not case_dir or msg_index is None:
            raise ReplayConfigError("Replay parameters are missing from session state")

        recordings_file = Path(case_dir) / self.recordings_file
        if not recordings_file.exists():
            raise ReplayConfigError(
                f"Recordings file not found: {recordings_file}", details={"path": str(recordings_file)}
            )
        try:
            recordings = load_recordings(recordings_file)
        except Exception as exc:
            raise ReplayConfigError(
                f"Failed to load recordings from {recordings_file}: {exc}", details={"path": str(recordings_file)}
            ) from exc

        state = InvocationReplayState(
            test_case_path=str(case_dir),
            user_message_index=int(msg_index),
            recordings=recordings,
        )
        self._invocation_states[callback_context.invocation_id] = state
        logger.debug(
            "Loaded %d recordings from %s for invocation %s",
            len(recordings.recordings),
            recordings_file,
            callback_context.invocation_id,
        )
        return state

    # ------------------------------------------------------------------ verification

    def _get_next_recording_for_agent(self, state: InvocationReplayState, agent_name: str) -> Recording:
        """取出该 agent 的下一条录制并推进游标（严格顺序）。"""

        current_index = state.agent_replay_indices.get(agent_name, 0)
        agent_recordings = state.recordings.for_agent(agent_name, state.user_message_index)
        if current_index >= len(agent_recordings):
            raise ReplayVerificationError(
                f"Runtime sent more requests than expected for agent '{agent_name}' "
                f"at user_message_index {state.user_message_index}. Expected "
                f"{len(agent_recordings)}, but got request at index {current_index}",
                details={"agent_name": agent_name, "index": current_index},
            )
        state.agent_replay_indices[agent_name] = current_index + 1
        return agent_recordings[current_index]

    def _verify_and_get_next_llm_recording(
        self, state: InvocationReplayState, agent_name: str, llm_request: LlmRequest
    ) -> LlmRecording:
        current_index = state.agent_replay_indices.get(agent_name, 0)
        expected = self._get_next_recording_for_agent(state, agent_name)
        if expected.llm_recording is None:
            raise ReplayVerificationError(
                f"Expected LLM recording for agent '{agent_name}' at index {current_index}, but found tool recording",
                details={"agent_name": agent_name, "index": current_index},
            )
        self._verify_llm_request_match(expected.llm_recording.llm_request, llm_request, agent_name, current_index)
        return expected.llm_recording

    def _verify_and_get_next_tool_recording(
        self, state: InvocationReplayState, agent_name: str, tool_name: str, tool_args: Dict[str, Any]
    ) -> ToolRecording:
        current_index = state.agent_replay_indices.get(agent_name, 0)
        expected = self._get_next_recording_for_agent(state, agent_name)
        if expected.tool_recording is None:
            raise ReplayVerificationError(
                f"Expected tool recording for agent '{agent_name}' at index {current_index}, but found LLM recording",
                details={"agent_name": agent_name, "index": current_index},
            )
        self._verify_tool_call_match(expected.tool_recording.tool_call, tool_name, tool_args, agent_name, current_index)
        return expected.tool_recording

    def _verify_llm_request_match(
        self,
        recorded: Optional[LlmRequest],
        current: LlmRequest,
        agent_name: str,
        agent_index: int,
    ) -> None:
        details = {"agent_name": agent_name, "index": agent_index}
        if recorded is None:
            raise ReplayVerificationError(
                f"No recorded LLM request for agent '{agent_name}' at index {agent_index}", details=details
            )
        if recorded.model != current.model:
            raise ReplayVerificationError(
                f"LLM model mismatch for agent '{agent_name}' (index {agent_index}):\n"
                f"recorded: {recorded.model}\n"
                f"current: {current.model}",
                details=details,
            )
        recorded_contents = _contents_json(recorded.contents)
        current_contents = _contents_json(current.contents)
        if recorded_contents != current_contents:
            raise ReplayVerificationError(
                f"LLM contents mismatch for agent '{agent_name}' (index {agent_index}):\n"
                f"recorded: {recorded_contents}\n"
                f"current: {current_contents}",
                details=details,
            )

    def _verify_tool_call_match(
        self,
        recorded_call: Optional[FunctionCall],
        tool_name: str,
        tool_args: Dict[str, Any],
        agent_name: str,
        agent_index: int,
    ) -> None:
        details = {"agent_name": agent_name, "index": agent_index}
        if recorded_call is None:
            raise ReplayVerificationError(
                f"No recorded tool call for agent '{agent_name}' at index {agent_index}", details=details
            )
        if recorded_call.name != tool_name:
            raise ReplayVerificationError(
                f"Tool name mismatch for agent '{agent_name}' at index {agent_index}:\n"
                f"recorded: '{recorded_call.name}'\n"
                f"current: '{tool_name}'",
                details=details,
            )
        recorded_args = canonical_json(recorded_call.args or {})
        current_args = canonical_json(tool_args or {})
        if recorded_args != current_args:
            raise ReplayVerificationError(
                f"Tool args mismatch for agent '{agent_name}' at index {agent_index}:\n"
                f"recorded: {recorded_args}\n"
                f"current: {current_args}",
                details=details,
            )
