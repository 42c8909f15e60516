from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from agent_devkit.conformance.recordings_schema import (
    LlmRecording,
    Recording,
    Recordings,
    ToolRecording,
    dump_recordings,
    load_recordings,
    recordings_from_dict,
)
from agent_devkit.core.contracts import Content, FunctionCall, FunctionResponse, LlmRequest, LlmResponse, Part


def _llm(agent: str, index: int, text: str) -> Recording:
    return Recording(
        user_message_index=index,
        agent_name=agent,
        llm_recording=LlmRecording(
            llm_request=LlmRequest(model="m", contents=[Content(role="user", parts=[Part(text=text)])]),
            llm_response=LlmResponse(content=Content(role="model", parts=[Part(text=f"re: {text}")])),
        ),
    )


def test_recording_requires_exactly_one_payload() -> None:
    with pytest.raises(ValidationError):
        Recording(user_message_index=0, agent_name="a")
    with pytest.raises(ValidationError):
        Recording(
            user_message_index=0,
            agent_name="a",
            llm_recording=LlmRecording(),
            tool_recording=ToolRecording(),
        )


def test_for_agent_filters_and_keeps_order() -> None:
    recs = Recordings(recordings=[_llm("a", 0, "1"), _llm("b", 0, "2"), _llm("a", 0, "3"), _llm("a", 1, "4")])
    picked = recs.for_agent("a", 0)
    assert [r.llm_recording.llm_request.contents[0].parts[0].text for r in picked] == ["1", "3"]  # type: ignore[union-attr]
    assert recs.for_agent("c", 0) == []


def test_yaml_file_uses_snake_case_outer_keys_and_wire_inner_keys(tmp_path: Path) -> None:
    tool = Recording(
        user_message_index=0,
        agent_name="a",
        tool_recording=ToolRecording(
            tool_call=FunctionCall(id="adk-1", name="lookup", args={"q": "x"}),
            tool_response=FunctionResponse(id="adk-1", name="lookup", response={"result": 1}),
        ),
    )
    path = tmp_path / "generated-recordings.yaml"
    dump_recordings(Recordings(recordings=[_llm("a", 0, "hi"), tool]), path)

    text = path.read_text(encoding="utf-8")
    assert "user_message_index: 0" in text
    assert "llm_recording:" in text
    assert "tool_recording:" in text

    loaded = load_recordings(path)
    assert len(loaded.recordings) == 2
    assert loaded.recordings[1].tool_recording.tool_response.response == {"result": 1}  # type: ignore[union-attr]


def test_recordings_from_dict_edge_cases() -> None:
    assert recordings_from_dict(None).recordings == []
    assert recordings_from_dict({"recordings": None}).recordings == []
    with pytest.raises(ValueError):
        recordings_from_dict(["not", "a", "mapping"])  # type: ignore[arg-type]
    with pytest.raises(ValidationError):
        recordings_from_dict({"recordings": [{"user_message_index": 0, "agent_name": "a", "bogus": 1}]})


def test_load_recordings_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_recordings(tmp_path / "nope.yaml")
