"""
Conformance recordings schema（YAML 持久化）。

文件形态（`generated-recordings.yaml`）：

    recordings:
      - user_message_index: 0
        agent_name: root_agent
        llm_recording:
          llm_request: {...}
          llm_response: {...}
      - user_message_index: 0
        agent_name: root_agent
        tool_recording:
          tool_call: {id, name, args}
          tool_response: {id, name, response}

说明：
- 外层 key 为 snake_case；内嵌的 LlmRequest/LlmResponse 等契约对象沿用 wire（camelCase）形态；
- recordings 按请求发生的时间顺序排列；replay 按 agent 过滤后严格按该顺序消费。
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from agent_devkit.core.contracts import FunctionCall, FunctionResponse, LlmRequest, LlmResponse

RECORDINGS_FILENAME = "generated-recordings.yaml"
SESSION_FILENAME = "generated-session.yaml"
SPEC_FILENAME = "spec.yaml"

# session state 中承载 record/replay 参数的 key：{"dir": <test case dir>, "user_message_index": <int>}
RECORDINGS_CONFIG_KEY = "_adk_recordings_config"
REPLAY_CONFIG_KEY = "_adk_replay_config"


class LlmRecording(BaseModel):
    """一次 LLM 请求与响应。"""

    model_config = ConfigDict(extra="forbid")

    llm_request: Optional[LlmRequest] = None
    llm_response: Optional[LlmResponse] = None


class ToolRecording(BaseModel):
    """一次工具调用与结果。"""

    model_config = ConfigDict(extra="forbid")

    tool_call: Optional[FunctionCall] = None
    tool_response: Optional[FunctionResponse] = None


class Recording(BaseModel):
    """单条交互录制（LLM 或 tool 二选一）。"""

    model_config = ConfigDict(extra="forbid")

    user_message_index: int = Field(ge=0)
    agent_name: str
    llm_recording: Optional[LlmRecording] = None
    tool_recording: Optional[ToolRecording] = None

    @model_validator(mode="after")
    def _exactly_one_payload(self) -> "Recording":
        if (self.llm_recording is None) == (self.tool_recording is None):
            raise ValueError("recording must contain exactly one of llm_recording / tool_recording")
        return self


class Recordings(BaseModel):
    """全部录制（时间顺序）。"""

    model_config = ConfigDict(extra="forbid")

    recordings: List[Recording] = Field(default_factory=list)

    def for_agent(self, agent_name: str, user_message_index: int) -> List[Recording]:
        """返回指定 agent 在指定 user message 下的录制（保持原顺序）。"""

        return [
            r
            for r in self.recordings
            if r.agent_name == agent_name and r.user_message_index == user_message_index
        ]


def recordings_to_dict(recordings: Recordings) -> Dict[str, Any]:
    """序列化为 YAML 友好的 dict。"""

    return recordings.model_dump(mode="json", by_alias=True, exclude_none=True)


def recordings_from_dict(data: Optional[Dict[str, Any]]) -> Recordings:
    """从 YAML 解析结果构造 Recordings；缺少 `recordings` key 视为空。"""

    if not data:
        return Recordings()
    if not isinstance(data, dict):
        raise ValueError(f"recordings root must be a mapping, got {type(data).__name__}")
    return Recordings.model_validate({"recordings": data.get("recordings") or []})


def load_recordings(path: Path) -> Recordings:
    """读取 recordings YAML 文件（文件不存在时抛 FileNotFoundError）。"""

    text = Path(path).read_text(encoding="utf-8")
    return recordings_from_dict(yaml.safe_load(text))


def dump_recordings(recordings: Recordings, path: Path) -> None:
    """写入 recordings YAML 文件（覆盖写）。"""

    text = yaml.safe_dump(recordings_to_dict(recordings), sort_keys=False, allow_unicode=True)
    Path(path).write_text(text, encoding="utf-8")
