from __future__ import annotations

from pathlib import Path

from agent_devkit.cli.main import main


def test_missing_subcommand_is_usage_error(capsys) -> None:  # type: ignore[no-untyped-def]
    assert main([]) == 2
    assert main(["conformance"]) == 2
    assert main(["conformance", "test", str(Path("x")), "--mode", "bogus"]) == 2
    assert "usage:" in capsys.readouterr().err


def test_help_exits_zero(capsys) -> None:  # type: ignore[no-untyped-def]
    assert main(["conformance", "--help"]) == 0
    assert "record" in capsys.readouterr().out


def test_config_errors_are_reported_with_codes(tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    assert main(["conformance", "test", str(tmp_path), "--config", str(tmp_path / "nope.yaml")]) == 2
    assert "CLI_CONFIG_NOT_FOUND" in capsys.readouterr().err

    bad = tmp_path / "bad.yaml"
    bad.write_text("conformance:\n  timeout_sec: 0\n", encoding="utf-8")
    assert main(["conformance", "record", str(tmp_path), "--config", str(bad)]) == 2
    assert "CLI_CONFIG_INVALID" in capsys.readouterr().err


def test_no_test_cases_is_success(tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    assert main(["conformance", "test", str(tmp_path), "--log-level", "WARNING"]) == 0
    assert "No tests were run." in capsys.readouterr().out

    assert main(["conformance", "record", str(tmp_path)]) == 0
    assert "No test specs found to process." in capsys.readouterr().out


def test_record_against_unreachable_server_fails(tmp_path: Path, capsys) -> None:  # type: ignore[no-untyped-def]
    case_dir = tmp_path / "basic" / "hello"
    case_dir.mkdir(parents=True)
    (case_dir / "spec.yaml").write_text("description: hi\nagent: hello\nuser_messages:\n  - text: hi\n", encoding="utf-8")

    code = main(["conformance", "record", str(tmp_path), "--base-url", "http://127.0.0.1:9"])

    assert code == 1
    assert "Failed to generate basic/hello" in capsys.readouterr().out
