"""
测试夹具：用 `httpx.MockTransport` 模拟 agent web server（session 接口 + `/run_sse`），
后端为 InMemoryRunner（挂载 ReplayPlugin + RecordingsPlugin）。
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple

import httpx

from agent_devkit.conformance.client import AdkWebServerClient
from agent_devkit.conformance.recordings_plugin import RecordingsPlugin
from agent_devkit.conformance.replay_plugin import ReplayPlugin
from agent_devkit.core.contracts import Content, FunctionCall, LlmRequest, LlmResponse, Part, to_wire
from agent_devkit.runtime.runner import InMemoryRunner
from agent_devkit.tools.base_tool import FunctionTool


class ScriptedWeatherModel:
    """确定性模型：`weather in X` → 调用 get_weather；工具结果 → 总结；其它 → echo。"""

    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self, llm_request: LlmRequest) -> LlmResponse:
        self.calls += 1
        last = llm_request.contents[-1].parts[0]
        if last.function_response is not None:
            forecast = (last.function_response.response or {}).get("forecast")
            return LlmResponse(content=Content(role="model", parts=[Part(text=f"Forecast: {forecast}")]))
        text = last.text or ""
        if text.startswith("weather in "):
            call = FunctionCall(name="get_weather", args={"city": text[len("weather in ") :]})
            return LlmResponse(content=Content(role="model", parts=[Part(function_call=call)]))
        return LlmResponse(content=Content(role="model", parts=[Part(text=f"echo: {text}")]))


def get_weather(city: str) -> Dict[str, Any]:
    return {"forecast": f"sunny in {city}"}


def build_weather_runner(model: Optional[ScriptedWeatherModel] = None) -> InMemoryRunner:
    return InMemoryRunner(
        app_name="weather_agent",
        agent_name="weather_agent",
        model=model or ScriptedWeatherModel(),
        model_name="scripted",
        tools=[FunctionTool(get_weather)],
        plugins=[ReplayPlugin(), RecordingsPlugin()],
    )


class FakeAgentWebServer:
    """按 app name 分发到 InMemoryRunner 的 MockTransport handler。"""

    def __init__(self, runners: Dict[str, InMemoryRunner]) -> None:
        self.runners = dict(runners)
        self.requests: List[Tuple[str, str]] = []

    def client(self) -> AdkWebServerClient:
        return AdkWebServerClient("http://agent.test", transport=httpx.MockTransport(self.handle))

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if request.url.path == "/run_sse" and request.method == "POST":
            return await self._run_sse(json.loads(request.content))

        segs = request.url.path.strip("/").split("/")
        if len(segs) < 5 or segs[0] != "apps" or segs[2] != "users" or segs[4] != "sessions":
            return httpx.Response(404)
        runner = self.runners.get(segs[1])
        if runner is None:
            return httpx.Response(404)
        user_id = segs[3]

        if len(segs) == 5:
            if request.method != "POST":
                return httpx.Response(405)
            body = json.loads(request.content or b"{}")
            session = runner.create_session(user_id=user_id, state=body.get("state"))
            return httpx.Response(200, json=to_wire(session))

        session = runner.get_session(user_id=user_id, session_id=segs[5])
        if session is None:
            return httpx.Response(404)
        if request.method == "GET":
            return httpx.Response(200, json=to_wire(session))
        if request.method == "DELETE":
            runner.delete_session(user_id=user_id, session_id=session.id)
            return httpx.Response(200)
        if request.method == "PATCH":
            session.state.update(json.loads(request.content).get("state_delta") or {})
            return httpx.Response(200, json=to_wire(session))
        return httpx.Response(405)

    async def _run_sse(self, payload: Dict[str, Any]) -> httpx.Response:
        runner = self.runners.get(payload["appName"])
        if runner is None:
            return httpx.Response(404)
        chunks: List[str] = []
        try:
            async for event in runner.run_async(
                user_id=payload["userId"],
                session_id=payload["sessionId"],
                new_message=Content.model_validate(payload["newMessage"]),
                state_delta=payload.get("stateDelta"),
            ):
                chunks.append(f"data: {json.dumps(to_wire(event))}\n\n")
        except Exception as exc:
            chunks.append(f"data: {json.dumps({'error': str(exc)})}\n\n")
        return httpx.Response(
            200, content="".join(chunks).encode("utf-8"), headers={"Content-Type": "text/event-stream"}
        )
