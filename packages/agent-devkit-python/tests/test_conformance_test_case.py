from __future__ import annotations

from pathlib import Path

import pytest

from agent_devkit.conformance.test_case import UserMessage, discover_test_cases, load_test_spec
from agent_devkit.core.errors import UserError


def _write_spec(root: Path, category: str, name: str, text: str) -> Path:
    case_dir = root / category / name
    case_dir.mkdir(parents=True)
    (case_dir / "spec.yaml").write_text(text, encoding="utf-8")
    return case_dir


_SPEC = "description: greets\nagent: hello_agent\nuser_messages:\n  - text: hi\n"


def test_discovers_cases_sorted_by_category_and_name(tmp_path: Path) -> None:
    _write_spec(tmp_path, "tools", "b_case", _SPEC)
    _write_spec(tmp_path, "basic", "z_case", _SPEC)
    _write_spec(tmp_path, "basic", "a_case", _SPEC)

    cases = discover_test_cases([tmp_path])

    assert [c.label for c in cases] == ["basic/a_case", "basic/z_case", "tools/b_case"]
    assert cases[0].test_spec.agent == "hello_agent"
    assert cases[0].test_spec.initial_state == {}
    assert cases[0].dir == tmp_path / "basic" / "a_case"


def test_overlapping_paths_do_not_duplicate_cases(tmp_path: Path) -> None:
    _write_spec(tmp_path, "basic", "one", _SPEC)
    cases = discover_test_cases([tmp_path, tmp_path / "basic"])
    assert len(cases) == 1


def test_invalid_paths_are_skipped(tmp_path: Path, caplog) -> None:  # type: ignore[no-untyped-def]
    assert discover_test_cases([tmp_path / "missing"]) == []
    assert "Invalid path" in caplog.text


def test_require_recordings_skips_unrecorded_cases(tmp_path: Path) -> None:
    recorded = _write_spec(tmp_path, "basic", "recorded", _SPEC)
    _write_spec(tmp_path, "basic", "fresh", _SPEC)
    (recorded / "generated-recordings.yaml").write_text("recordings: []\n", encoding="utf-8")

    cases = discover_test_cases([tmp_path], require_recordings=True)
    assert [c.name for c in cases] == ["recorded"]


def test_invalid_spec_raises_or_is_skipped(tmp_path: Path) -> None:
    _write_spec(tmp_path, "basic", "ok", _SPEC)
    _write_spec(tmp_path, "basic", "broken", "description: x\n")

    with pytest.raises(UserError, match="Invalid test spec"):
        discover_test_cases([tmp_path])
    assert [c.name for c in discover_test_cases([tmp_path], skip_invalid=True)] == ["ok"]


def test_load_test_spec_errors(tmp_path: Path) -> None:
    with pytest.raises(UserError, match="Failed to read"):
        load_test_spec(tmp_path)

    (tmp_path / "spec.yaml").write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(UserError, match="must be a mapping") as exc_info:
        load_test_spec(tmp_path)
    assert exc_info.value.details["path"].endswith("spec.yaml")

    (tmp_path / "spec.yaml").write_text("description: [unclosed\n", encoding="utf-8")
    with pytest.raises(UserError, match="Invalid YAML"):
        load_test_spec(tmp_path)


def test_user_message_requires_text_or_content() -> None:
    with pytest.raises(ValueError):
        UserMessage()
    with pytest.raises(ValueError):
        UserMessage.model_validate({"text": "hi", "content": {"role": "user", "parts": [{"text": "hi"}]}})


def test_text_user_message_to_content() -> None:
    content = UserMessage(text="hi").to_content()
    assert content.role == "user"
    assert content.parts[0].text == "hi"


def test_function_response_id_is_rewritten_from_pending_calls() -> None:
    msg = UserMessage.model_validate(
        {
            "content": {
                "role": "user",
                "parts": [{"functionResponse": {"name": "approve", "response": {"ok": True}}}],
            },
            "state_delta": {"approved": True},
        }
    )

    content = msg.to_content({"approve": "adk-123"})

    assert content.parts[0].function_response.id == "adk-123"  # type: ignore[union-attr]
    assert msg.content.parts[0].function_response.id is None  # type: ignore[union-attr]
    with pytest.raises(UserError, match="does not match any pending function call"):
        msg.to_content({})
