"""
Fake LLM（离线回归夹具）。

用途：
- 在不依赖真实模型/外网的情况下，回归 runner 的编排逻辑（function call → 工具 → 回注 → 继续），
  以及 record/replay plugin 的端到端行为。
"""

from __future__ import annotations

from typing import List, Sequence

from agent_devkit.core.contracts import LlmRequest, LlmResponse


class FakeModel:
    """
    按预设顺序返回 LlmResponse 的 fake model。

    说明：
    - 每次调用消耗一个预设响应；耗尽时抛 ValueError
    - `requests` 保存收到的请求副本，便于断言 contents
    """

    def __init__(self, responses: Sequence[LlmResponse]) -> None:
        self._responses = list(responses)
        self._idx = 0
        self.requests: List[LlmRequest] = []

    @property
    def calls(self) -> int:
        return self._idx

    async def __call__(self, llm_request: LlmRequest) -> LlmResponse:
        self.requests.append(llm_request.model_copy(deep=True))
        if self._idx >= len(self._responses):
            raise ValueError("FakeModel responses 已耗尽")
        response = self._responses[self._idx]
        self._idx += 1
        return response.model_copy(deep=True)
