from __future__ import annotations

import asyncio
import json
from typing import List

import httpx
import pytest

from agent_devkit.conformance.client import AdkWebServerClient, RunAgentRequest
from agent_devkit.core.contracts import Content, Event, Part
from agent_devkit.core.errors import WebServerError

from fake_agent_server import FakeAgentWebServer, build_weather_runner


def _user(text: str) -> Content:
    return Content(role="user", parts=[Part(text=text)])


def test_session_lifecycle_and_run_against_fake_server() -> None:
    server = FakeAgentWebServer({"weather_agent": build_weather_runner()})

    async def _run() -> List[Event]:
        async with server.client() as client:
            session = await client.create_session(app_name="weather_agent", user_id="u1", state={"units": "C"})
            assert session.state == {"units": "C"}

            request = RunAgentRequest(
                app_name="weather_agent", user_id="u1", session_id=session.id, new_message=_user("weather in Oslo")
            )
            events = [e async for e in client.run_agent(request)]

            updated = await client.update_session(
                app_name="weather_agent", user_id="u1", session_id=session.id, state_delta={"seen": True}
            )
            assert updated.state["seen"] is True
            fetched = await client.get_session(app_name="weather_agent", user_id="u1", session_id=session.id)
            assert fetched.state == {"units": "C", "seen": True}
            assert len(fetched.events) == 4

            await client.delete_session(app_name="weather_agent", user_id="u1", session_id=session.id)
            with pytest.raises(WebServerError, match="Failed to get session: 404"):
                await client.get_session(app_name="weather_agent", user_id="u1", session_id=session.id)
            return events

    events = asyncio.run(_run())

    assert [e.author for e in events] == ["weather_agent"] * 3
    assert events[0].get_function_calls()[0].name == "get_weather"
    assert events[2].content.parts[0].text == "Forecast: sunny in Oslo"  # type: ignore[union-attr]
    assert ("POST", "/run_sse") in server.requests


def test_run_agent_injects_mode_config_into_state_delta() -> None:
    seen: List[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, content=b"", headers={"Content-Type": "text/event-stream"})

    async def _run() -> None:
        async with AdkWebServerClient("http://agent.test", transport=httpx.MockTransport(handler)) as client:
            request = RunAgentRequest(
                app_name="app", user_id="u", session_id="s", new_message=_user("hi"), state_delta={"k": 1}
            )
            _ = [e async for e in client.run_agent(request, mode="replay", test_case_dir="/cases/x", user_message_index=2)]

    asyncio.run(_run())

    payload = seen[0]
    assert payload["appName"] == "app"
    assert payload["newMessage"] == {"role": "user", "parts": [{"text": "hi"}]}
    assert payload["stateDelta"] == {"k": 1, "_adk_replay_config": {"dir": "/cases/x", "user_message_index": 2}}


def test_run_agent_validates_mode() -> None:
    client = AdkWebServerClient("http://agent.test", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    request = RunAgentRequest(app_name="app", user_id="u", session_id="s", new_message=_user("hi"))

    async def _drain(**kwargs) -> None:  # type: ignore[no-untyped-def]
        async for _ in client.run_agent(request, **kwargs):
            pass

    with pytest.raises(ValueError, match="mode must be"):
        asyncio.run(_drain(mode="live", test_case_dir="x", user_message_index=0))
    with pytest.raises(ValueError, match="must be provided"):
        asyncio.run(_drain(mode="record"))


def test_sse_stream_parsing_skips_garbage_and_raises_on_error_frame(caplog) -> None:  # type: ignore[no-untyped-def]
    body = (
        ": keep-alive\n\n"
        'data: {"author": "agent", "content": {"role": "model", "parts": [{"text": "one"}]}}\n\n'
        "data: not-json\n\n"
        "data:\n\n"
        'data: {"error": "Runtime sent more requests than expected"}\n\n'
        'data: {"author": "agent"}\n\n'
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body.encode("utf-8"), headers={"Content-Type": "text/event-stream"})

    received: List[Event] = []

    async def _run() -> None:
        async with AdkWebServerClient("http://agent.test", transport=httpx.MockTransport(handler)) as client:
            request = RunAgentRequest(app_name="app", user_id="u", session_id="s", new_message=_user("hi"))
            async for event in client.run_agent(request):
                received.append(event)

    with pytest.raises(WebServerError, match="Agent run failed: Runtime sent more requests"):
        asyncio.run(_run())
    assert [e.content.parts[0].text for e in received] == ["one"]  # type: ignore[union-attr]
    assert "Failed to parse SSE event data: not-json" in caplog.text


def test_http_errors_are_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/run_sse":
            return httpx.Response(500)
        raise httpx.ConnectError("connection refused", request=request)

    async def _run_create() -> None:
        async with AdkWebServerClient("http://agent.test/", transport=httpx.MockTransport(handler)) as client:
            assert client.base_url == "http://agent.test"
            await client.create_session(app_name="app", user_id="u")

    async def _run_agent() -> None:
        async with AdkWebServerClient("http://agent.test", transport=httpx.MockTransport(handler)) as client:
            request = RunAgentRequest(app_name="app", user_id="u", session_id="s", new_message=_user("hi"))
            async for _ in client.run_agent(request):
                pass

    with pytest.raises(WebServerError, match="Failed to create session: connection refused"):
        asyncio.run(_run_create())
    with pytest.raises(WebServerError, match="Failed to run agent: 500 Internal Server Error"):
        asyncio.run(_run_agent())
