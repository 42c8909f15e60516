"""
agent-devkit CLI（conformance record/test）。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）
- exit code：0 成功；1 存在失败的 test case / 录制；2 参数或配置错误（输出 `CODE: message`）
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import ValidationError

from agent_devkit.config.loader import DevkitConfig, load_config
from agent_devkit.conformance.cli_record import run_conformance_record
from agent_devkit.conformance.cli_test_runner import run_conformance_test
from agent_devkit.core.errors import FrameworkError, UserError


def _build_parser() -> argparse.ArgumentParser:
    """构建 CLI argparse parser。"""

    parser = argparse.ArgumentParser(prog="agent-devkit", description="Agent devkit CLI（conformance record/test）。")
    root_sub = parser.add_subparsers(dest="command", required=True)

    def _add_common_flags(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", action="append", default=[], help="Overlay config YAML path (repeatable).")
        p.add_argument("--base-url", default=None, help="Agent web server base URL (overrides config).")
        p.add_argument(
            "--log-level",
            default=None,
            choices=["DEBUG", "INFO", "WARNING", "ERROR"],
            help="Logging level (overrides config).",
        )

    conformance = root_sub.add_parser("conformance", help="Conformance testing commands")
    conformance_sub = conformance.add_subparsers(dest="conformance_cmd", required=True)

    record = conformance_sub.add_parser("record", help="Generate recordings from spec.yaml test cases")
    record.add_argument("paths", nargs="+", help="Directories containing test cases.")
    _add_common_flags(record)

    test = conformance_sub.add_parser("test", help="Run test cases against recorded interactions")
    test.add_argument("paths", nargs="+", help="Directories containing test cases.")
    test.add_argument("--mode", choices=["replay", "live"], default="replay", help="Test mode (default: replay).")
    _add_common_flags(test)

    return parser


def _load_cli_config(args: argparse.Namespace) -> DevkitConfig:
    """加载 默认配置 + `--config` overlays，并应用命令行覆盖项。"""

    cfg = load_config([Path(p) for p in args.config])
    if args.base_url:
        cfg.conformance.base_url = str(args.base_url)
    if args.log_level:
        cfg.logging.level = args.log_level
    return cfg


def _config_error_code(exc: Exception) -> str:
    if isinstance(exc, FileNotFoundError):
        return "CLI_CONFIG_NOT_FOUND"
    if isinstance(exc, ValidationError):
        return "CLI_CONFIG_INVALID"
    return "CLI_CONFIG_LOAD_FAILED"


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI 入口函数（用于 console_scripts 与测试）。

    返回：
    - int：exit code（不会直接 sys.exit，便于测试）
    """

    parser = _build_parser()
    try:
        args = parser.parse_args(list(argv) if argv is not None else None)
    except SystemExit as exc:
        code = getattr(exc, "code", 2)
        if code is None:
            return 2
        return int(code)

    try:
        cfg = _load_cli_config(args)
    except (OSError, ValueError) as exc:
        # pydantic.ValidationError 是 ValueError 的子类
        print(f"{_config_error_code(exc)}: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(level=getattr(logging, cfg.logging.level), format="%(levelname)s %(name)s: %(message)s")

    paths: List[Path] = [Path(p) for p in args.paths]
    try:
        if args.conformance_cmd == "record":
            summary = asyncio.run(run_conformance_record(paths, config=cfg.conformance))
            return 1 if summary.failed else 0
        if args.conformance_cmd == "test":
            return asyncio.run(run_conformance_test(paths, args.mode, config=cfg.conformance))
    except UserError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except FrameworkError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    print(f"CLI_COMMAND_INVALID: Unknown conformance subcommand: {args.conformance_cmd}", file=sys.stderr)
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
