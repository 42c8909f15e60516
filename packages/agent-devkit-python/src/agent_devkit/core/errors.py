"""
Devkit 错误分类（异常类型）。

说明：
- 配置/输入类错误（缺字段、YAML 非法、路径不存在）统一为 `UserError`，details 带上出错的 path/name；
- replay 校验错误是严格且不可恢复的：一旦抛出即中止当前 run，由 conformance runner 按 test case 捕获；
- 外部 HTTP 错误由 `WebServerError` 承载，供 CLI 层汇总。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


class AgentDevkitError(Exception):
    """Devkit 错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """结构化问题对象（可用于 CLI 输出与测试断言）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(AgentDevkitError):
    """框架层结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建框架错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class UserError(FrameworkError):
    """用户输入/配置导致的错误（spec.yaml、配置 overlay、user message 等）。"""

    def __init__(self, message: str, *, code: str = "USER_ERROR", details: Dict[str, Any] | None = None) -> None:
        super().__init__(code=code, message=message, details=details or {})


class ReplayConfigError(FrameworkError):
    """replay 配置缺失或非法（参数缺失、recordings 文件不存在/无法解析、state 未初始化）。"""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(code="REPLAY_CONFIG_ERROR", message=message, details=details or {})


class ReplayVerificationError(FrameworkError):
    """
    replay 严格校验失败。

    说明：
    - 请求数超过录制数、请求内容不一致、录制类型不匹配（LLM vs tool）都会抛出；
    - 不做重试：该异常会沿 plugin 链向上传播并中止本次 run。
    """

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(code="REPLAY_VERIFICATION_ERROR", message=message, details=details or {})


class RecordingStateError(FrameworkError):
    """recording 回调触发时找不到当前 invocation 的录制状态。"""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(code="RECORDING_STATE_ERROR", message=message, details=details or {})


class WebServerError(AgentDevkitError):
    """与 agent web server 通信失败（HTTP 非 2xx、连接错误等）。"""
