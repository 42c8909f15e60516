from __future__ import annotations

from agent_devkit.core.contexts import CallbackContext, InvocationContext, ToolContext
from agent_devkit.core.contracts import Content, Event, FunctionCall, FunctionResponse, Part, Session, to_wire
from agent_devkit.core.state import State


def test_state_delta_is_read_first_and_written_through() -> None:
    value = {"a": 1}
    delta: dict = {}
    state = State(value, delta)

    state["b"] = 2
    assert value == {"a": 1, "b": 2}
    assert delta == {"b": 2}
    assert state.has_delta()
    assert "a" in state and "b" in state
    assert state.setdefault("a", 9) == 1
    assert state.to_dict() == {"a": 1, "b": 2}


def test_callback_context_state_writes_land_in_event_actions() -> None:
    session = Session(id="s1", app_name="app", user_id="u1", state={"x": 1})
    ctx = ToolContext(
        InvocationContext(invocation_id="inv", session=session, app_name="app", user_id="u1", agent_name="root"),
        function_call_id="call-1",
    )

    ctx.state["y"] = 2

    assert isinstance(ctx, CallbackContext)
    assert ctx.event_actions.state_delta == {"y": 2}
    assert session.state == {"x": 1, "y": 2}
    assert ctx.function_call_id == "call-1"
    assert ctx.invocation_id == "inv"
    assert ctx.agent_name == "root"


def test_wire_form_uses_camel_case_and_accepts_both_spellings() -> None:
    part = Part(function_call=FunctionCall(id="c1", name="lookup", args={"q": 1}))
    data = to_wire(Content(role="model", parts=[part]))
    assert data == {"role": "model", "parts": [{"functionCall": {"id": "c1", "name": "lookup", "args": {"q": 1}}}]}

    again = Content.model_validate(data)
    assert again.parts[0].function_call.name == "lookup"  # type: ignore[union-attr]
    assert Part.model_validate({"function_call": {"name": "x"}}).function_call.name == "x"  # type: ignore[union-attr]


def test_event_final_response_detection() -> None:
    text = Event(author="root", content=Content(role="model", parts=[Part(text="done")]))
    call = Event(author="root", content=Content(role="model", parts=[Part(function_call=FunctionCall(name="t"))]))
    resp = Event(
        author="root", content=Content(role="user", parts=[Part(function_response=FunctionResponse(name="t"))])
    )
    partial = Event(author="root", content=Content(role="model", parts=[Part(text="d")]), partial=True)

    assert text.is_final_response()
    assert not call.is_final_response()
    assert not resp.is_final_response()
    assert not partial.is_final_response()
    assert call.get_function_calls()[0].name == "t"
    assert resp.get_function_responses()[0].name == "t"
