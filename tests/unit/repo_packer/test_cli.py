from __future__ import annotations

import argparse
import io
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from repo_packer import __version__, cli
from repo_packer.config import MeasureMode, PatternKind
from repo_packer.exceptions import GitCommandError

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


@pytest.mark.unit
def test_parse_priority_rule_splits_on_last_equal_sign() -> None:
    assert cli.parse_priority_rule("a=b/**=15") == {"pattern": "a=b/**", "score": 15, "kind": PatternKind.GLOB}
    assert cli.parse_priority_rule(r"^src/.*\.py$ = -3", PatternKind.REGEX) == {
        "pattern": r"^src/.*\.py$",
        "score": -3,
        "kind": PatternKind.REGEX,
    }


@pytest.mark.unit
@pytest.mark.parametrize("value", ["src/**", "src/**=", "=10", "src/**=high"])
def test_parse_priority_rule_rejects_malformed_values(value: str) -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_priority_rule(value)


@pytest.mark.unit
def test_parse_cli_values_only_keeps_given_options() -> None:
    assert cli.parse_cli_values([]) == {}

    values = cli.parse_cli_values(
        [
            "src",
            "tests",
            "--tokens",
            "--priority-rule",
            "src/**=10",
            "--priority-regex",
            "^docs/=5",
            "--ignore-patterns",
            "*.gen",
            "--ignore-patterns",
            "tmp/",
            "--no-stream",
        ],
    )

    assert values == {
        "input_paths": ["src", "tests"],
        "tokens": "",
        "priority_rules": [
            {"pattern": "src/**", "score": 10, "kind": PatternKind.GLOB},
            {"pattern": "^docs/", "score": 5, "kind": PatternKind.REGEX},
        ],
        "ignore_patterns": ["*.gen", "tmp/"],
        "stream": False,
    }


@pytest.mark.unit
def test_parse_args_builds_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    settings = cli.parse_args(["--tokens", "100K", "--json", "--threads", "2", "--max-git-depth", "0"])

    assert settings.measure_mode == MeasureMode.TOKENS
    assert settings.budget == 100_000
    assert settings.json_output is True
    assert settings.threads == 2
    assert settings.input_paths == ["."]


@pytest.mark.unit
def test_parse_args_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["--version"])

    assert exc_info.value.code == 0
    assert __version__ in capsys.readouterr().out


@pytest.mark.unit
def test_main_returns_2_on_invalid_settings(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.chdir(tmp_path)

    assert cli.main(["--max-size", "ten"]) == cli.EXIT_CONFIGURATION
    assert "repo-packer:" in capsys.readouterr().err


@pytest.mark.unit
def test_main_returns_1_on_other_fatal_errors(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    mocker: MockerFixture,
) -> None:
    monkeypatch.chdir(tmp_path)
    error = GitCommandError(command="git log", returncode=128, stdout="", stderr="boom")
    run = mocker.patch.object(cli, "run_pipeline", side_effect=error)

    assert cli.main(["--max-git-depth", "0"]) == cli.EXIT_FAILURE
    run.assert_called_once()


class _BrokenStdout(io.StringIO):
    def write(self, s: str) -> int:
        raise BrokenPipeError(32, "Broken pipe")


@pytest.mark.unit
def test_main_reports_a_broken_stdout(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(sys, "stdout", _BrokenStdout())

    assert cli.main([str(tmp_path), "--stream", "--max-git-depth", "0"]) == cli.EXIT_FAILURE
    assert "<stdout>" in capsys.readouterr().err


@pytest.mark.unit
def test_main_reports_an_unopenable_log_file(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    mocker: MockerFixture,
) -> None:
    monkeypatch.chdir(tmp_path)
    run = mocker.patch.object(cli, "run_pipeline")
    log_file = tmp_path / "missing" / "run.log"

    assert cli.main(["--log-file", str(log_file), "--max-git-depth", "0"]) == cli.EXIT_FAILURE
    assert str(log_file) in capsys.readouterr().err
    run.assert_not_called()
