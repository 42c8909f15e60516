"""
对话历史裁剪：保留最近 N 个 invocation（ContextFilterPlugin）。

规则：
- invocation = 一个 model turn + 紧邻其前的连续 user turns；
- 从尾部数第 N 个 model turn 作为起点，再向前吞掉连续的 user turns；
- 切点不得把 function_response 与其配对的 function_call 分开：若会产生孤儿 response，
  切点继续前移直到覆盖对应的 call；
- N 为 None 或 <= 0 时不做 invocation 裁剪（恒等）；
- 最后可选地应用调用方提供的 `custom_filter`。
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from agent_devkit.core.contexts import CallbackContext
from agent_devkit.core.contracts import Content, LlmRequest, LlmResponse
from agent_devkit.plugins.base import BasePlugin

logger = logging.getLogger(__name__)

CustomFilter = Callable[[List[Content]], List[Content]]


def adjust_split_index_to_avoid_orphaned_function_responses(contents: List[Content], split_index: int) -> int:
    """
    调整切点，避免保留 function_response 却丢掉其前面的 function_call。

    参数：
    - contents：按时间顺序的完整对话
    - split_index：候选切点（保留 `contents[split_index:]`）

    返回：
    - 不大于 split_index 的切点；在该切点之后所有 response 的 call 都在保留范围内。
      找不到这样的切点时返回 0（保留全部）。

    说明：
    - 带 id 的 response 按 id 配对；
    - 不带 id 的 response（例如 runner 已去掉客户端生成的 id）与其前方最近的、同名且不带 id 的 call 配对。
    """

    needed_call_ids: set[str] = set()
    needed_idless_by_name: Dict[str, int] = {}
    for i in range(len(contents) - 1, -1, -1):
        for part in reversed(contents[i].parts):
            response = part.function_response
            if response is not None:
                if response.id:
                    needed_call_ids.add(response.id)
                else:
                    key = response.name or ""
                    needed_idless_by_name[key] = needed_idless_by_name.get(key, 0) + 1
            call = part.function_call
            if call is not None:
                if call.id:
                    needed_call_ids.discard(call.id)
                elif needed_idless_by_name.get(call.name or ""):
                    key = call.name or ""
                    needed_idless_by_name[key] -= 1
                    if not needed_idless_by_name[key]:
                        del needed_idless_by_name[key]
        if i <= split_index and not needed_call_ids and not needed_idless_by_name:
            return i
    return 0


def _invocation_split_index(contents: List[Content], num_invocations_to_keep: int) -> int:
    """返回保留最后 N 个 invocation 的初始切点（尚未做 call/response 配对修正）。"""

    model_turns_to_find = num_invocations_to_keep
    for i in range(len(contents) - 1, -1, -1):
        if contents[i].role != "model":
            continue
        model_turns_to_find -= 1
        if model_turns_to_find == 0:
            start = i
            while start > 0 and contents[start - 1].role == "user":
                start -= 1
            return start
    return 0


def filter_contents(
    contents: List[Content],
    *,
    num_invocations_to_keep: Optional[int] = None,
    custom_filter: Optional[CustomFilter] = None,
) -> List[Content]:
    """
    按 invocation 数裁剪对话历史，再应用 custom_filter。

    说明：
    - 纯函数：不修改入参列表，返回新列表；
    - model turn 数少于 N 时保留全部。
    """

    kept = list(contents)
    if num_invocations_to_keep is not None and num_invocations_to_keep > 0:
        num_model_turns = sum(1 for c in kept if c.role == "model")
        if num_model_turns >= num_invocations_to_keep:
            split_index = _invocation_split_index(kept, num_invocations_to_keep)
            split_index = adjust_split_index_to_avoid_orphaned_function_responses(kept, split_index)
            kept = kept[split_index:]

    if custom_filter is not None:
        kept = list(custom_filter(kept))
    return kept


class ContextFilterPlugin(BasePlugin):
    """
    在请求发往模型前裁剪上下文，缓解长对话的 context window 压力。

    用法：
    - `ContextFilterPlugin(num_invocations_to_keep=3)`：只保留最近 3 轮
    - `ContextFilterPlugin(custom_filter=lambda cs: [c for c in cs if c.role != "system"])`
    """

    def __init__(
        self,
        *,
        num_invocations_to_keep: Optional[int] = None,
        custom_filter: Optional[CustomFilter] = None,
        name: str = "context_filter_plugin",
    ) -> None:
        super().__init__(name)
        self.num_invocations_to_keep = num_invocations_to_keep
        self.custom_filter = custom_filter

    @classmethod
    def from_config(cls, cfg: Any, *, custom_filter: Optional[CustomFilter] = None) -> "ContextFilterPlugin":
        """从 `DevkitConfig.context_filter` 构造。"""

        return cls(num_invocations_to_keep=cfg.num_invocations_to_keep, custom_filter=custom_filter)

    async def before_model(
        self, *, callback_context: CallbackContext, llm_request: LlmRequest
    ) -> Optional[LlmResponse]:
        """
        就地替换 `llm_request.contents`；始终返回 None（不短路模型调用）。

        说明：
        - 裁剪失败（通常来自 custom_filter）只记录错误，请求保持原样继续。
        """

        try:
            llm_request.contents = filter_contents(
                llm_request.contents,
                num_invocations_to_keep=self.num_invocations_to_keep,
                custom_filter=self.custom_filter,
            )
        except Exception:
            logger.error("Failed to reduce context for request", exc_info=True)
        return None
