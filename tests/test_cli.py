from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from typer.testing import CliRunner

from procexec.cli.main import EXIT_START_FAILED, EXIT_TIMED_OUT, app

PYTHON = sys.executable


def test_cli_run_prints_output_and_exits_with_child_code() -> None:
    runner = CliRunner()

    result = runner.invoke(
        app, ["run", PYTHON, "--", "-c", "print('from child'); raise SystemExit(5)"]
    )

    assert result.exit_code == 5
    assert "from child" in result.output


def test_cli_run_success() -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["run", PYTHON, "--", "-c", "print('ok')"])

    assert result.exit_code == 0
    assert "ok" in result.output


def test_cli_run_passes_environment() -> None:
    runner = CliRunner()

    result = runner.invoke(
        app,
        [
            "run",
            "--env",
            "PROCEXEC_CLI=yes",
            PYTHON,
            "--",
            "-c",
            "import os; print(os.environ['PROCEXEC_CLI'])",
        ],
    )

    assert result.exit_code == 0
    assert "yes" in result.output


def test_cli_run_reports_timeout() -> None:
    runner = CliRunner()

    result = runner.invoke(
        app, ["run", "--timeout", "0.5", PYTHON, "--", "-c", "import time; time.sleep(10)"]
    )

    assert result.exit_code == EXIT_TIMED_OUT
    assert "Timed out" in result.output


def test_cli_run_shows_progress() -> None:
    runner = CliRunner()

    result = runner.invoke(
        app, ["run", "--progress", PYTHON, "--", "-c", "print('step 1/4')"]
    )

    assert result.exit_code == 0
    assert "25.00%" in result.output


def test_cli_run_missing_executable() -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["run", "a-nonexistent-binary-procexec"])

    assert result.exit_code == EXIT_START_FAILED
    assert "Failed to start" in result.output


def test_cli_run_rejects_malformed_env() -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["run", "--env", "NOVALUE", PYTHON])

    assert result.exit_code == 2
    assert "KEY=VALUE" in result.output


def test_cli_pipe_counts_lines() -> None:
    runner = CliRunner()
    source = f"'{PYTHON}' -c 'for i in range(7): print(i)'"
    destination = f"'{PYTHON}' -c 'import sys; print(sum(1 for _ in sys.stdin))'"

    result = runner.invoke(app, ["pipe", source, destination])

    assert result.exit_code == 0
    assert "7" in result.output


def test_cli_run_uses_config_timeout(tmp_path: Path) -> None:
    config_path = tmp_path / "procexec.yaml"
    config_path.write_text('{"executor": {"timeout_s": 0.5}}', encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(
        app,
        ["run", "--config", str(config_path), PYTHON, "--", "-c", "import time; time.sleep(10)"],
    )

    assert result.exit_code == EXIT_TIMED_OUT


def test_cli_which_reports_found_and_missing(monkeypatch: Any) -> None:
    monkeypatch.setattr(
        "procexec.resolver.shutil.which",
        lambda name: "/usr/bin/git" if name == "git" else None,
    )
    runner = CliRunner()

    result = runner.invoke(app, ["which", "git", "vspipe"])

    assert result.exit_code == 1
    assert "git: /usr/bin/git" in result.output
    assert "vspipe: not found" in result.output
