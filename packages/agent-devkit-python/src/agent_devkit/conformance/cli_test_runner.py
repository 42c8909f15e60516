"""
`agent-devkit conformance test`：以 replay 模式运行 test cases 并对比录制结果。

每个 test case：
- 创建 session → 以 replay 模式发送 user messages（server 侧 ReplayPlugin 严格校验）；
- 拉取最终 session，与 generated-session.yaml 对比 events 与 session；
- 删除 session（清理失败忽略）。

任何 replay 异常都记为该 case 失败，不影响其它 case。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from agent_devkit.conformance.client import AdkWebServerClient
from agent_devkit.conformance.driver import load_recorded_session, run_user_messages
from agent_devkit.conformance.replay_validators import compare_events, compare_session
from agent_devkit.conformance.test_case import TestCase, discover_test_cases
from agent_devkit.config.loader import ConformanceConfig
from agent_devkit.core.errors import WebServerError

logger = logging.getLogger(__name__)

_SEPARATOR = "=" * 50


@dataclass
class TestResult:
    """单个 test case 的结果。"""

    __test__ = False

    category: str
    name: str
    success: bool
    error_message: Optional[str] = None


@dataclass
class ConformanceTestSummary:
    """全部 test case 的结果汇总。"""

    __test__ = False

    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    results: List[TestResult] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        """通过率（百分比）；没有用例时为 0。"""

        if self.total_tests == 0:
            return 0.0
        return self.passed_tests / self.total_tests * 100


class ConformanceTestRunner:
    """
    conformance test runner。

    参数：
    - paths：test case 根目录
    - client：已创建的 web server 客户端（生命周期由调用方管理）
    - mode：`replay`；`live` 目前只返回未实现的失败结果
    """

    __test__ = False

    def __init__(
        self,
        paths: Iterable[Path],
        client: AdkWebServerClient,
        *,
        mode: str = "replay",
        config: Optional[ConformanceConfig] = None,
        progress: Optional[Callable[[str], None]] = None,
    ) -> None:
        if mode not in ("replay", "live"):
            raise ValueError(f"mode must be 'replay' or 'live', got {mode!r}")
        self.paths = [Path(p) for p in paths]
        self.client = client
        self.mode = mode
        self.config = config or ConformanceConfig()
        self._progress = progress

    @property
    def user_id(self) -> str:
        return self.config.user_id

    def _emit(self, text: str) -> None:
        if self._progress is not None:
            self._progress(text)

    def discover_test_cases(self) -> List[TestCase]:
        return discover_test_cases(
            self.paths,
            require_recordings=self.mode == "replay",
            spec_file=self.config.spec_file,
            recordings_file=self.config.recordings_file,
        )

    async def _validate_test_results(self, session_id: str, test_case: TestCase) -> TestResult:
        spec = test_case.test_spec
        final_session = await self.client.get_session(
            app_name=spec.agent, user_id=self.user_id, session_id=session_id
        )
        recorded_session = load_recorded_session(test_case.dir / self.config.session_file)
        if recorded_session is None:
            return TestResult(
                test_case.category,
                test_case.name,
                success=False,
                error_message="No recorded session found for replay comparison",
            )

        events_result = compare_events(final_session.events, recorded_session.events)
        session_result = compare_session(final_session, recorded_session)

        messages: List[str] = []
        if not events_result.success and events_result.error_message:
            messages.append(f"Event mismatch: {events_result.error_message}")
        if not session_result.success and session_result.error_message:
            messages.append(f"Session mismatch: {session_result.error_message}")
        return TestResult(
            test_case.category,
            test_case.name,
            success=events_result.success and session_result.success,
            error_message="\n\n".join(messages) if messages else None,
        )

    async def _run_test_case_replay(self, test_case: TestCase) -> TestResult:
        spec = test_case.test_spec
        try:
            session = await self.client.create_session(
                app_name=spec.agent, user_id=self.user_id, state=spec.initial_state
            )
        except WebServerError as exc:
            return TestResult(test_case.category, test_case.name, False, f"Test setup failed: {exc}")

        try:
            try:
                await run_user_messages(
                    self.client, test_case, session_id=session.id, user_id=self.user_id, mode="replay"
                )
            except Exception as exc:
                logger.debug("Replay failed for %s", test_case.label, exc_info=True)
                return TestResult(test_case.category, test_case.name, False, f"Replay verification failed: {exc}")

            try:
                return await self._validate_test_results(session.id, test_case)
            except WebServerError as exc:
                return TestResult(test_case.category, test_case.name, False, f"Test validation failed: {exc}")
        finally:
            try:
                await self.client.delete_session(app_name=spec.agent, user_id=self.user_id, session_id=session.id)
            except WebServerError:
                logger.debug("Ignoring session cleanup failure for %s", test_case.label, exc_info=True)

    async def run_test_case(self, test_case: TestCase) -> TestResult:
        if self.mode == "replay":
            return await self._run_test_case_replay(test_case)
        return TestResult(test_case.category, test_case.name, False, "Live mode not yet implemented")

    async def run_all_tests(self) -> ConformanceTestSummary:
        test_cases = self.discover_test_cases()
        if not test_cases:
            logger.warning("No test cases found!")
            return ConformanceTestSummary()

        self._emit(f"\nFound {len(test_cases)} test cases to run in {self.mode} mode\n")
        results: List[TestResult] = []
        for test_case in test_cases:
            result = await self.run_test_case(test_case)
            results.append(result)
            self._emit(format_test_case_result(test_case.label, result))

        passed = sum(1 for r in results if r.success)
        return ConformanceTestSummary(
            total_tests=len(results),
            passed_tests=passed,
            failed_tests=len(results) - passed,
            results=results,
        )


def format_test_case_result(label: str, result: TestResult) -> str:
    line = f"Running {label}... {'PASS' if result.success else 'FAIL'}"
    if not result.success and result.error_message:
        line += f"\nError: {result.error_message}"
    return line


def format_test_summary(summary: ConformanceTestSummary) -> str:
    lines = ["", _SEPARATOR, "CONFORMANCE TEST SUMMARY", _SEPARATOR]
    if summary.total_tests == 0:
        lines.append("No tests were run.")
        return "\n".join(lines)

    lines.append(f"Total tests: {summary.total_tests}")
    lines.append(f"Passed: {summary.passed_tests}")
    lines.append(f"Failed: {summary.failed_tests}")
    lines.append(f"Success rate: {summary.success_rate:.1f}%")

    failed = [r for r in summary.results if not r.success]
    if failed:
        lines.append("\nFailed tests:")
        for r in failed:
            lines.append(f"\n{r.category}/{r.name}\n")
            if r.error_message:
                lines.extend(f"  {line}" for line in r.error_message.splitlines())
    return "\n".join(lines)


async def run_conformance_test(
    paths: Iterable[Path],
    mode: str = "replay",
    *,
    config: Optional[ConformanceConfig] = None,
    client: Optional[AdkWebServerClient] = None,
) -> int:
    """
    运行 conformance tests 并打印结果。

    返回：
    - 退出码：全部通过（或没有用例）为 0；存在失败为 1
    """

    cfg = config or ConformanceConfig()
    print(_SEPARATOR)
    print(f"Running conformance tests in {mode} mode...")
    print(_SEPARATOR)

    owned = client is None
    active = client or AdkWebServerClient(cfg.base_url, cfg.timeout_sec)
    try:
        runner = ConformanceTestRunner(paths, active, mode=mode, config=cfg, progress=print)
        summary = await runner.run_all_tests()
    finally:
        if owned:
            await active.close()

    print(format_test_summary(summary))
    if summary.failed_tests > 0:
        print(f"\n{summary.failed_tests} test(s) failed")
        return 1
    print("\nAll tests passed!")
    return 0
