"""
核心契约（Core Contracts）：对话内容、LLM 请求/响应、事件与会话。

说明：
- wire 形态使用 camelCase（与 agent web server 的 JSON 对齐），Python 侧使用 snake_case 字段名；
  两种 key 都可用于构造（`populate_by_name=True`）。
- `extra="allow"`：provider 特有字段（例如 grounding metadata）可以原样透传，不因 schema 收敛而丢失。
- 序列化统一走 `to_wire()`，保证 recordings/session YAML 与 HTTP payload 口径一致。
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agent_devkit.core.utils import new_id


class _WireModel(BaseModel):
    """wire 模型基类：camelCase alias + 允许未知字段。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class FunctionCall(_WireModel):
    """模型发起的函数调用（id 用于与 FunctionResponse 配对）。"""

    id: Optional[str] = None
    name: Optional[str] = None
    args: Optional[Dict[str, Any]] = None


class FunctionResponse(_WireModel):
    """函数调用结果（必须与同 id 的 FunctionCall 成对出现）。"""

    id: Optional[str] = None
    name: Optional[str] = None
    response: Optional[Dict[str, Any]] = None


class Blob(_WireModel):
    """内联二进制数据（data 为 base64 字符串）。"""

    mime_type: Optional[str] = None
    data: Optional[str] = None


class FileData(_WireModel):
    """文件引用（URI）。"""

    mime_type: Optional[str] = None
    file_uri: Optional[str] = None


class Part(_WireModel):
    """Content 中的单个分片：text / function_call / function_response / inline_data / file_data 之一。"""

    text: Optional[str] = None
    function_call: Optional[FunctionCall] = None
    function_response: Optional[FunctionResponse] = None
    inline_data: Optional[Blob] = None
    file_data: Optional[FileData] = None
    thought: Optional[bool] = None
    thought_signature: Optional[str] = None


class Content(_WireModel):
    """对话中的一个 turn（role 为 user/model）。"""

    role: Optional[str] = None
    parts: List[Part] = Field(default_factory=list)


class LlmRequest(_WireModel):
    """
    发往模型的请求。

    字段：
    - model：模型名（replay 校验的一部分）
    - contents：对话历史（replay 校验的一部分；context filter 的裁剪对象）
    - config：生成参数（system_instruction/temperature 等）
    - tools_dict：name → tool 对象；运行期使用，不参与序列化
    """

    model: Optional[str] = None
    contents: List[Content] = Field(default_factory=list)
    config: Dict[str, Any] = Field(default_factory=dict)
    tools_dict: Dict[str, Any] = Field(default_factory=dict, exclude=True)


class LlmResponse(_WireModel):
    """模型响应（或由 plugin 注入的替代响应）。"""

    content: Optional[Content] = None
    partial: Optional[bool] = None
    turn_complete: Optional[bool] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    usage_metadata: Optional[Dict[str, Any]] = None


class EventActions(_WireModel):
    """事件附带的副作用（state/artifact delta、transfer、escalate 等）。"""

    state_delta: Dict[str, Any] = Field(default_factory=dict)
    artifact_delta: Dict[str, Any] = Field(default_factory=dict)
    transfer_to_agent: Optional[str] = None
    escalate: Optional[bool] = None
    requested_auth_configs: Dict[str, Any] = Field(default_factory=dict)
    requested_tool_confirmations: Dict[str, Any] = Field(default_factory=dict)


class Event(_WireModel):
    """会话事件（user 输入、模型输出、工具结果）。"""

    id: str = Field(default_factory=new_id)
    invocation_id: str = ""
    author: str = ""
    timestamp: float = Field(default_factory=time.time)
    content: Optional[Content] = None
    actions: EventActions = Field(default_factory=EventActions)
    partial: Optional[bool] = None
    turn_complete: Optional[bool] = None
    long_running_tool_ids: Optional[List[str]] = None
    branch: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def get_function_calls(self) -> List[FunctionCall]:
        """返回事件内容中的全部 function call（按 parts 顺序）。"""

        if self.content is None:
            return []
        return [p.function_call for p in self.content.parts if p.function_call is not None]

    def get_function_responses(self) -> List[FunctionResponse]:
        """返回事件内容中的全部 function response（按 parts 顺序）。"""

        if self.content is None:
            return []
        return [p.function_response for p in self.content.parts if p.function_response is not None]

    def is_final_response(self) -> bool:
        """是否为本次 run 的最终回复（非 partial，且不含 function call/response）。"""

        if self.long_running_tool_ids:
            return True
        return not self.get_function_calls() and not self.get_function_responses() and not self.partial


class Session(_WireModel):
    """会话：state + 事件列表。"""

    id: str = Field(default_factory=new_id)
    app_name: str = ""
    user_id: str = ""
    state: Dict[str, Any] = Field(default_factory=dict)
    events: List[Event] = Field(default_factory=list)
    last_update_time: float = 0.0


def to_wire(model: BaseModel) -> Dict[str, Any]:
    """把契约模型序列化为 JSON 兼容 dict（camelCase key，省略 None）。"""

    return model.model_dump(mode="json", by_alias=True, exclude_none=True)
