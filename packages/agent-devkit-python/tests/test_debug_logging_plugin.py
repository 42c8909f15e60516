from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, List

import yaml

from agent_devkit.config.loader import DebugLoggingConfig
from agent_devkit.core.contracts import Blob, Content, FunctionCall, LlmResponse, Part
from agent_devkit.plugins.debug_logging import DebugLoggingPlugin, safe_serialize, serialize_content
from agent_devkit.runtime.fake_model import FakeModel
from agent_devkit.runtime.runner import InMemoryRunner
from agent_devkit.tools.base_tool import FunctionTool


def _run_once(runner: InMemoryRunner, text: str) -> None:
    session = runner.create_session(user_id="u1", state={"plan": "basic"})

    async def _run() -> None:
        async for _ in runner.run_async(
            user_id="u1", session_id=session.id, new_message=Content(role="user", parts=[Part(text=text)])
        ):
            pass

    asyncio.run(_run())


def _documents(path: Path) -> List[Dict[str, Any]]:
    return [d for d in yaml.safe_load_all(path.read_text(encoding="utf-8")) if d]


def test_writes_one_document_per_invocation(tmp_path: Path) -> None:
    out = tmp_path / "logs" / "debug.yaml"
    model = FakeModel(
        [
            LlmResponse(content=Content(role="model", parts=[Part(function_call=FunctionCall(name="add", args={"a": 1, "b": 2}))])),
            LlmResponse(
                content=Content(role="model", parts=[Part(text="3")]),
                usage_metadata={"promptTokenCount": 5, "candidatesTokenCount": 1, "totalTokenCount": 6},
            ),
            LlmResponse(content=Content(role="model", parts=[Part(text="again")])),
        ]
    )
    runner = InMemoryRunner(
        app_name="calc",
        agent_name="calc_agent",
        model=model,
        tools=[FunctionTool(lambda a, b: a + b, name="add")],
        plugins=[DebugLoggingPlugin(output_path=out)],
        system_instruction="Add numbers.",
    )

    _run_once(runner, "1 + 2")
    _run_once(runner, "again")

    docs = _documents(out)
    assert len(docs) == 2
    first = docs[0]
    assert first["app_name"] == "calc"
    assert first["user_id"] == "u1"

    types = [e["entry_type"] for e in first["entries"]]
    assert types == [
        "user_message",
        "invocation_start",
        "llm_request",
        "llm_response",
        "event",
        "tool_call",
        "tool_response",
        "event",
        "llm_request",
        "llm_response",
        "event",
        "session_state_snapshot",
        "invocation_end",
    ]

    entries = first["entries"]
    request = entries[2]["data"]
    assert request["system_instruction"] == "Add numbers."
    assert request["tools"] == ["add"]
    assert entries[3]["agent_name"] == "calc_agent"
    assert entries[6]["data"]["result"] == {"result": 3}
    assert entries[9]["data"]["usage_metadata"]["totalTokenCount"] == 6
    assert entries[10]["data"]["is_final_response"] is True
    assert entries[11]["data"]["state"] == {"plan": "basic"}
    assert entries[12]["data"]["final_agent"] == "calc_agent"


def test_optional_sections_can_be_disabled(tmp_path: Path) -> None:
    out = tmp_path / "debug.yaml"
    plugin = DebugLoggingPlugin.from_config(
        DebugLoggingConfig(output_path=str(out), include_session_state=False, include_system_instruction=False)
    )
    runner = InMemoryRunner(
        app_name="app",
        agent_name="root",
        model=FakeModel([LlmResponse(content=Content(role="model", parts=[Part(text="ok")]))]),
        plugins=[plugin],
        system_instruction="secret prompt",
    )

    _run_once(runner, "hi")

    entries = _documents(out)[0]["entries"]
    types = [e["entry_type"] for e in entries]
    assert "session_state_snapshot" not in types
    request = next(e for e in entries if e["entry_type"] == "llm_request")["data"]
    assert "system_instruction" not in request
    assert request["system_instruction_length"] == len("secret prompt")


def test_model_and_tool_errors_are_logged(tmp_path: Path) -> None:
    from agent_devkit.core.contexts import CallbackContext, InvocationContext, ToolContext
    from agent_devkit.core.contracts import LlmRequest, Session
    from agent_devkit.tools.base_tool import BaseTool

    plugin = DebugLoggingPlugin(output_path=tmp_path / "debug.yaml", include_session_state=False)
    ctx = InvocationContext(
        invocation_id="inv-1", session=Session(id="s"), app_name="app", user_id="u", agent_name="root"
    )

    async def _run() -> None:
        await plugin.before_run(invocation_context=ctx)
        await plugin.on_model_error(
            callback_context=CallbackContext(ctx), llm_request=LlmRequest(model="m"), error=TimeoutError("slow")
        )
        await plugin.on_tool_error(
            tool=BaseTool(name="t"), tool_args={"x": 1}, tool_context=ToolContext(ctx, function_call_id="c1"),
            error=KeyError("x"),
        )
        await plugin.after_run(invocation_context=ctx)

    asyncio.run(_run())

    entries = _documents(tmp_path / "debug.yaml")[0]["entries"]
    llm_error = entries[1]["data"]
    assert llm_error == {"model": "m", "error_name": "TimeoutError", "error_message": "slow"}
    tool_error = entries[2]["data"]
    assert tool_error["tool_name"] == "t"
    assert tool_error["function_call_id"] == "c1"
    assert tool_error["error_name"] == "KeyError"


def test_unknown_invocation_is_skipped(tmp_path: Path, caplog) -> None:  # type: ignore[no-untyped-def]
    from agent_devkit.core.contexts import InvocationContext
    from agent_devkit.core.contracts import Session

    plugin = DebugLoggingPlugin(output_path=tmp_path / "debug.yaml")
    ctx = InvocationContext(invocation_id="ghost", session=Session(id="s"), app_name="a", user_id="u", agent_name="r")

    asyncio.run(plugin.after_run(invocation_context=ctx))

    assert not (tmp_path / "debug.yaml").exists()
    assert "No debug state found" in caplog.text


def test_serialization_helpers() -> None:
    content = Content(role="user", parts=[Part(inline_data=Blob(mime_type="image/png", data="aGVsbG8=")), Part(text="look")])
    data = serialize_content(content)
    assert data == {
        "role": "user",
        "parts": [{"inline_data": {"mime_type": "image/png", "data_length": "<8>"}}, {"text": "look"}],
    }
    assert serialize_content(None) is None
    assert safe_serialize(b"\x00\x01") == "<bytes: 2 bytes>"
    assert safe_serialize({"k": (1, 2), 3: object}) == {"k": [1, 2], "3": str(object)}
