"""
agent web server 的 HTTP 客户端（conformance record/test 使用）。

接口：
- session：`/apps/{app}/users/{user}/sessions[/{id}]`（POST/GET/DELETE/PATCH）
- run：`POST /run_sse`，响应为 SSE；每个 `data:` 行是一条 Event JSON

用法：

    async with AdkWebServerClient() as client:
        session = await client.create_session(app_name="app", user_id="user")
        async for event in client.run_agent(request):
            ...
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from agent_devkit.conformance.recordings_schema import RECORDINGS_CONFIG_KEY, REPLAY_CONFIG_KEY
from agent_devkit.core.contracts import Content, Event, Session, to_wire
from agent_devkit.core.errors import WebServerError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:8000"

# 流式 run 的超时倍数（相对基础 timeout）
_STREAM_TIMEOUT_FACTOR = 10


@dataclass
class RunAgentRequest:
    """`/run_sse` 请求参数。"""

    app_name: str
    user_id: str
    session_id: str
    new_message: Content
    streaming: bool = False
    state_delta: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "appName": self.app_name,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "newMessage": to_wire(self.new_message),
            "streaming": self.streaming,
            "stateDelta": self.state_delta,
        }


class AdkWebServerClient:
    """
    agent web server 客户端。

    参数：
    - base_url：服务地址（末尾 `/` 会被去掉）
    - timeout：单次请求超时（秒）；`run_agent` 使用其 10 倍
    - transport：可选 httpx transport（测试中注入 `httpx.MockTransport`）
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "AdkWebServerClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------ sessions

    @staticmethod
    def _session_path(app_name: str, user_id: str, session_id: Optional[str] = None) -> str:
        path = f"/apps/{app_name}/users/{user_id}/sessions"
        if session_id is not None:
            path += f"/{session_id}"
        return path

    async def _request(self, action: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise WebServerError(f"Failed to {action}: {exc}") from exc
        if resp.is_error:
            raise WebServerError(f"Failed to {action}: {resp.status_code} {resp.reason_phrase}")
        return resp

    async def create_session(
        self, *, app_name: str, user_id: str, state: Optional[Dict[str, Any]] = None
    ) -> Session:
        payload: Dict[str, Any] = {}
        if state is not None:
            payload["state"] = state
        resp = await self._request("create session", "POST", self._session_path(app_name, user_id), json=payload)
        return Session.model_validate(resp.json())

    async def get_session(self, *, app_name: str, user_id: str, session_id: str) -> Session:
        resp = await self._request("get session", "GET", self._session_path(app_name, user_id, session_id))
        return Session.model_validate(resp.json())

    async def delete_session(self, *, app_name: str, user_id: str, session_id: str) -> None:
        await self._request("delete session", "DELETE", self._session_path(app_name, user_id, session_id))

    async def update_session(
        self, *, app_name: str, user_id: str, session_id: str, state_delta: Dict[str, Any]
    ) -> Session:
        """只更新 session state，不触发 agent run。"""

        resp = await self._request(
            "update session",
            "PATCH",
            self._session_path(app_name, user_id, session_id),
            json={"state_delta": state_delta},
        )
        return Session.model_validate(resp.json())

    # ------------------------------------------------------------------ run

    async def run_agent(
        self,
        request: RunAgentRequest,
        mode: Optional[str] = None,
        test_case_dir: Optional[str] = None,
        user_message_index: Optional[int] = None,
    ) -> AsyncIterator[Event]:
        """
        运行 agent 并以 async iterator 形式产出 SSE events。

        参数：
        - mode：`"record"` / `"replay"`；设置时把对应配置写入 `state_delta`
          （`_adk_recordings_config` / `_adk_replay_config`），此时 test_case_dir 与 user_message_index 必填

        说明：
        - 无法解析的 `data:` 行记录 warning 后跳过，不中断流；
        - server 发送 `{"error": ...}` 帧（run 被 plugin 异常中止）时抛 `WebServerError`。
        """

        if mode is not None:
            if mode not in ("record", "replay"):
                raise ValueError(f"mode must be 'record' or 'replay', got {mode!r}")
            if test_case_dir is None or user_message_index is None:
                raise ValueError("test_case_dir and user_message_index must be provided when mode is specified")
            key = REPLAY_CONFIG_KEY if mode == "replay" else RECORDINGS_CONFIG_KEY
            request.state_delta = dict(request.state_delta or {})
            request.state_delta[key] = {"dir": str(test_case_dir), "user_message_index": int(user_message_index)}

        timeout = httpx.Timeout(self.timeout * _STREAM_TIMEOUT_FACTOR)
        try:
            async with self._client.stream("POST", "/run_sse", json=request.to_payload(), timeout=timeout) as resp:
                if resp.is_error:
                    await resp.aread()
                    raise WebServerError(f"Failed to run agent: {resp.status_code} {resp.reason_phrase}")
                async for line in resp.aiter_lines():
                    event = _parse_sse_line(line)
                    if event is not None:
                        yield event
        except httpx.HTTPError as exc:
            raise WebServerError(f"Failed to run agent: {exc}") from exc


def _parse_sse_line(line: str) -> Optional[Event]:
    """
    解析一行 SSE。

    异常：
    - WebServerError：server 在 run 中止时发送的 `{"error": "..."}` 帧
    """

    if not line or not line.startswith("data:"):
        return None
    data = line[len("data:") :].strip()
    if not data:
        return None
    try:
        obj = json.loads(data)
    except ValueError:
        logger.warning("Failed to parse SSE event data: %s", data)
        return None
    if isinstance(obj, dict) and set(obj) == {"error"}:
        raise WebServerError(f"Agent run failed: {obj['error']}")
    try:
        return Event.model_validate(obj)
    except ValueError:
        logger.warning("Failed to parse SSE event data: %s", data)
        return None
