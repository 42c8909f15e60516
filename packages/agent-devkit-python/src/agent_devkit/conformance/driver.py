"""
record/test 共用的执行步骤：逐条发送 user messages，以及 session YAML 的读写。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from agent_devkit.conformance.client import AdkWebServerClient, RunAgentRequest
from agent_devkit.conformance.recordings_schema import RECORDINGS_CONFIG_KEY
from agent_devkit.conformance.test_case import TestCase
from agent_devkit.core.contracts import Session, to_wire

logger = logging.getLogger(__name__)


async def run_user_messages(
    client: AdkWebServerClient,
    test_case: TestCase,
    *,
    session_id: str,
    user_id: str,
    mode: str,
) -> None:
    """
    按顺序发送 test case 的全部 user messages（每条一次 run）。

    说明：
    - 每次 run 产出的 function call 会记入 name -> id 映射，
      供后续以 function response 开头的 user message 改写 id。
    """

    function_call_ids: Dict[str, str] = {}
    spec = test_case.test_spec
    for index, user_message in enumerate(spec.user_messages):
        request = RunAgentRequest(
            app_name=spec.agent,
            user_id=user_id,
            session_id=session_id,
            new_message=user_message.to_content(function_call_ids),
            state_delta=dict(user_message.state_delta) if user_message.state_delta else None,
        )
        async for event in client.run_agent(
            request, mode=mode, test_case_dir=str(test_case.dir), user_message_index=index
        ):
            for call in event.get_function_calls():
                if call.name and call.id:
                    function_call_ids[call.name] = call.id


def session_to_yaml_dict(session: Session) -> Dict[str, Any]:
    """
    session 转为 YAML dict（外层 snake_case，events 为 wire 形态）。

    说明：
    - 去掉 state 与 event state_delta 中的 `_adk_recordings_config`；过滤后为空的 state_delta 省略。
    """

    state = {k: v for k, v in session.state.items() if k != RECORDINGS_CONFIG_KEY}
    events = []
    for event in session.events:
        data = to_wire(event)
        actions = data.get("actions")
        if isinstance(actions, dict) and isinstance(actions.get("stateDelta"), dict):
            delta = {k: v for k, v in actions["stateDelta"].items() if k != RECORDINGS_CONFIG_KEY}
            if delta:
                actions["stateDelta"] = delta
            else:
                actions.pop("stateDelta")
        events.append(data)
    return {
        "id": session.id,
        "app_name": session.app_name,
        "user_id": session.user_id,
        "state": state,
        "events": events,
        "last_update_time": session.last_update_time,
    }


def save_session(session: Session, path: Path) -> None:
    text = yaml.safe_dump(session_to_yaml_dict(session), sort_keys=False, allow_unicode=True)
    Path(path).write_text(text, encoding="utf-8")


def load_recorded_session(path: Path) -> Optional[Session]:
    """读取录制的 session；文件不存在、为空或无法解析时返回 None（解析失败记录 warning）。"""

    path = Path(path)
    if not path.exists():
        return None
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not data:
            return None
        return Session.model_validate(data)
    except (yaml.YAMLError, ValueError):
        logger.warning("Failed to parse session data: %s", path, exc_info=True)
        return None
