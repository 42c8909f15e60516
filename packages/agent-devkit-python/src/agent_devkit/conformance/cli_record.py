"""
`agent-devkit conformance record`：根据 spec.yaml 生成 recordings 与 session 文件。

流程（每个 test case）：
1) 删除旧的 generated-* 文件；
2) 创建 session（initial_state）；
3) 以 record 模式逐条发送 user messages（server 侧 RecordingsPlugin 写 recordings）；
4) 拉取最终 session 写入 generated-session.yaml。

单个 case 失败只记录错误，继续处理其它 case。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from agent_devkit.conformance.client import AdkWebServerClient
from agent_devkit.conformance.driver import run_user_messages, save_session
from agent_devkit.conformance.test_case import TestCase, discover_test_cases
from agent_devkit.config.loader import ConformanceConfig

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], AdkWebServerClient]


@dataclass
class RecordSummary:
    """record 结果汇总。"""

    generated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def _default_client_factory(cfg: ConformanceConfig) -> ClientFactory:
    return lambda: AdkWebServerClient(cfg.base_url, cfg.timeout_sec)


async def create_conformance_test_files(
    test_case: TestCase, *, client: AdkWebServerClient, config: ConformanceConfig
) -> Path:
    """为单个 test case 生成 recordings + session 文件，返回 session 文件路径。"""

    session_file = test_case.dir / config.session_file
    recordings_file = test_case.dir / config.recordings_file
    for stale in (session_file, recordings_file):
        if stale.exists():
            stale.unlink()

    spec = test_case.test_spec
    session = await client.create_session(app_name=spec.agent, user_id=config.user_id, state=spec.initial_state)
    await run_user_messages(client, test_case, session_id=session.id, user_id=config.user_id, mode="record")
    updated = await client.get_session(app_name=spec.agent, user_id=config.user_id, session_id=session.id)
    save_session(updated, session_file)
    return session_file


async def run_conformance_record(
    paths: Iterable[Path],
    *,
    config: Optional[ConformanceConfig] = None,
    client_factory: Optional[ClientFactory] = None,
) -> RecordSummary:
    """
    发现并录制 test cases。

    参数：
    - config：conformance 配置（文件名、user_id、server 地址）
    - client_factory：为每个 case 创建客户端（测试中可注入 MockTransport 客户端）
    """

    cfg = config or ConformanceConfig()
    factory = client_factory or _default_client_factory(cfg)
    summary = RecordSummary()

    print("Generating conformance tests...")
    test_cases = discover_test_cases(
        [Path(p) for p in paths],
        skip_invalid=True,
        spec_file=cfg.spec_file,
        recordings_file=cfg.recordings_file,
    )
    if not test_cases:
        print("No test specs found to process.")
        return summary

    print(f"\nProcessing {len(test_cases)} test cases...")
    for test_case in test_cases:
        try:
            async with factory() as client:
                await create_conformance_test_files(test_case, client=client, config=cfg)
        except Exception as exc:
            logger.error("Failed to generate %s", test_case.label, exc_info=True)
            print(f"Failed to generate {test_case.label}: {exc}")
            summary.failed.append(test_case.label)
            continue
        print(f"Generated conformance test files for: {test_case.label}")
        summary.generated.append(test_case.label)

    print("\nConformance test generation complete!")
    return summary
