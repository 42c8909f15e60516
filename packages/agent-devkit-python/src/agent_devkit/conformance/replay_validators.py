"""
replay 结果校验：对比实际 events/session 与录制的 session 文件。

说明：
- 对比前去掉每次运行都会变化的字段（event id、timestamp、invocation id、function call id、
  thought signature、record/replay 配置 key 等）；
- 对比基于排序后的 JSON；失败时返回 unified diff，便于在 CLI 输出中定位差异。
"""

from __future__ import annotations

import difflib
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from agent_devkit.conformance.recordings_schema import RECORDINGS_CONFIG_KEY, REPLAY_CONFIG_KEY
from agent_devkit.core.contracts import Event, Session, to_wire

EVENT_EXCLUDED_FIELDS = frozenset({"id", "timestamp", "invocationId", "longRunningToolIds"})
SESSION_STATE_EXCLUDED_FIELDS = frozenset({RECORDINGS_CONFIG_KEY, REPLAY_CONFIG_KEY})


@dataclass(frozen=True)
class ComparisonResult:
    """一次对比的结果。"""

    success: bool
    error_message: Optional[str] = None


def _dumps(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False, default=str)


def _mismatch_message(context: str, actual: str, recorded: str) -> str:
    return f"{context} mismatch - \nActual: \n{actual} \nRecorded: \n{recorded}"


def _diff_message(context: str, actual: Dict[str, Any], recorded: Dict[str, Any]) -> str:
    actual_json = _dumps(actual)
    recorded_json = _dumps(recorded)
    diff = list(
        difflib.unified_diff(
            recorded_json.splitlines(),
            actual_json.splitlines(),
            fromfile=f"recorded {context}",
            tofile=f"actual {context}",
            lineterm="",
        )
    )
    if diff:
        return f"{context} mismatch:\n" + "\n".join(diff)
    return _mismatch_message(context, actual_json, recorded_json)


def _prepare_content(content: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(content)
    parts = result.get("parts")
    if isinstance(parts, list):
        clean_parts: List[Any] = []
        for part in parts:
            if not isinstance(part, dict):
                clean_parts.append(part)
                continue
            clean = dict(part)
            for key in ("functionCall", "functionResponse"):
                if isinstance(clean.get(key), dict):
                    fc = dict(clean[key])
                    fc.pop("id", None)
                    clean[key] = fc
            clean.pop("thoughtSignature", None)
            clean_parts.append(clean)
        result["parts"] = clean_parts
    return result


def _prepare_actions(actions: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(actions)
    state_delta = result.get("stateDelta")
    if isinstance(state_delta, dict):
        filtered = {k: v for k, v in state_delta.items() if k not in SESSION_STATE_EXCLUDED_FIELDS}
        if filtered:
            result["stateDelta"] = filtered
        else:
            result.pop("stateDelta", None)
    result.pop("requestedAuthConfigs", None)
    result.pop("requestedToolConfirmations", None)
    return result


def prepare_event_for_comparison(event: Event) -> Dict[str, Any]:
    """把 event 转为去除易变字段后的 wire dict。"""

    result: Dict[str, Any] = {}
    for key, value in to_wire(event).items():
        if key in EVENT_EXCLUDED_FIELDS or value is None:
            continue
        if key == "content" and isinstance(value, dict):
            result[key] = _prepare_content(value)
        elif key == "actions" and isinstance(value, dict):
            result[key] = _prepare_actions(value)
        else:
            result[key] = value
    return result


def prepare_session_for_comparison(session: Session) -> Dict[str, Any]:
    """session 只比较 appName/userId/state（events 单独比较）。"""

    result: Dict[str, Any] = {"appName": session.app_name, "userId": session.user_id}
    state = {k: v for k, v in (session.state or {}).items() if k not in SESSION_STATE_EXCLUDED_FIELDS}
    if state:
        result["state"] = state
    return result


def compare_event(actual_event: Event, recorded_event: Event, index: int) -> ComparisonResult:
    actual = prepare_event_for_comparison(actual_event)
    recorded = prepare_event_for_comparison(recorded_event)
    if _dumps(actual) != _dumps(recorded):
        return ComparisonResult(success=False, error_message=_diff_message(f"event {index}", actual, recorded))
    return ComparisonResult(success=True)


def compare_events(actual_events: List[Event], recorded_events: List[Event]) -> ComparisonResult:
    """
    逐条对比 events。

    说明：
    - 先比较数量；数量一致时返回第一条不一致 event 的 diff。
    """

    if len(actual_events) != len(recorded_events):
        return ComparisonResult(
            success=False,
            error_message=_mismatch_message("Event count", str(len(actual_events)), str(len(recorded_events))),
        )
    for i, (actual, recorded) in enumerate(zip(actual_events, recorded_events)):
        result = compare_event(actual, recorded, i)
        if not result.success:
            return result
    return ComparisonResult(success=True)


def compare_session(actual_session: Session, recorded_session: Session) -> ComparisonResult:
    actual = prepare_session_for_comparison(actual_session)
    recorded = prepare_session_for_comparison(recorded_session)
    if _dumps(actual) != _dumps(recorded):
        return ComparisonResult(success=False, error_message=_diff_message("session", actual, recorded))
    return ComparisonResult(success=True)
