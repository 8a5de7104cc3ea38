"""CLI entrypoints for procexec."""

from __future__ import annotations

import asyncio
import shlex
import signal
from pathlib import Path
from typing import Awaitable, Callable, Optional

import typer

from procexec.config import ConfigError, EngineConfig, load_config, to_execution_options
from procexec.execution.base import (
    CancellationToken,
    ExecutionResult,
    ProcessSpec,
    ProcessStartError,
    ProgressEvent,
)
from procexec.execution.local_exec import LocalExecutor
from procexec.resolver import resolve_commands
from procexec.util.logging import configure_logging

EXIT_TIMED_OUT = 124
EXIT_CANCELLED = 130
EXIT_START_FAILED = 127

app = typer.Typer(help="Run child processes with progress, timeouts, and pipes.")

_PASSTHROUGH = {"allow_extra_args": True, "ignore_unknown_options": True}


@app.callback()
def main(
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        help="Logging level (e.g., DEBUG, INFO, WARNING).",
    ),
) -> None:
    """Configure CLI-level options."""

    configure_logging(log_level)


@app.command("run", context_settings=_PASSTHROUGH)
def run_command(
    executable: str = typer.Argument(..., help="Executable to run."),
    arguments: Optional[list[str]] = typer.Argument(None, help="Arguments for the executable."),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Timeout in seconds."),
    cwd: Optional[Path] = typer.Option(None, "--cwd", help="Working directory."),
    env: Optional[list[str]] = typer.Option(None, "--env", "-e", help="KEY=VALUE to add."),
    show_progress: bool = typer.Option(
        False, "--progress", help="Print progress parsed from the output."
    ),
    no_capture: bool = typer.Option(False, "--no-capture", help="Discard the output."),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Configuration file."),
) -> None:
    """Run a single process and exit with its exit code."""

    config = _load(config_path)
    try:
        options = to_execution_options(
            config,
            timeout_s=timeout,
            working_directory=cwd,
            environment_variables=_parse_env(env or []),
            capture_output=False if no_capture else None,
        )
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc

    executor = LocalExecutor()
    result = _run_cancellable(
        lambda token: executor.execute_async(
            executable,
            list(arguments or []),
            options,
            _progress_printer() if show_progress else None,
            token,
        )
    )
    _report(result)


@app.command("pipe")
def pipe_command(
    source: str = typer.Argument(..., help="Source command line, e.g. 'cat data.txt'."),
    destination: str = typer.Argument(..., help="Destination command line, e.g. 'wc -l'."),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Timeout in seconds."),
    show_progress: bool = typer.Option(
        False, "--progress", help="Print progress parsed from the source's stderr."
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Configuration file."),
) -> None:
    """Run SOURCE | DESTINATION and exit with the destination's exit code."""

    config = _load(config_path)
    try:
        options = to_execution_options(config, timeout_s=timeout)
        source_spec = _split_command_line(source)
        destination_spec = _split_command_line(destination)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc

    executor = LocalExecutor()
    result = _run_cancellable(
        lambda token: executor.execute_with_piping_async(
            source_spec,
            destination_spec,
            _progress_printer() if show_progress else None,
            token,
            options,
        )
    )
    _report(result)


@app.command("which")
def which_command(
    names: list[str] = typer.Argument(..., help="Command names to resolve."),
) -> None:
    """Print the full path of each command found on PATH."""

    try:
        found = resolve_commands(names)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    for name in names:
        if name in found:
            typer.echo(f"{name}: {found[name]}")
        else:
            typer.echo(f"{name}: not found", err=True)
    if len(found) != len(set(names)):
        raise typer.Exit(code=1)


def _load(config_path: Path | None) -> EngineConfig:
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc
    return config


def _parse_env(pairs: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for pair in pairs:
        key, separator, value = pair.partition("=")
        if not separator or not key:
            raise ValueError(f"Environment entries must be KEY=VALUE, got '{pair}'.")
        env[key] = value
    return env


def _split_command_line(command_line: str) -> ProcessSpec:
    parts = shlex.split(command_line)
    if not parts:
        raise ValueError("Command line must not be empty.")
    return ProcessSpec(parts[0], parts[1:])


def _progress_printer() -> Callable[[ProgressEvent], None]:
    def _print(event: ProgressEvent) -> None:
        typer.echo(f"[{event.percentage:6.2f}% {event.elapsed_s:7.2f}s] {event.line}", err=True)

    return _print


def _run_cancellable(
    start: Callable[[CancellationToken], Awaitable[ExecutionResult]],
) -> ExecutionResult:
    async def _main() -> ExecutionResult:
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, token.cancel)
            installed = True
        except (NotImplementedError, RuntimeError):
            installed = False
        try:
            return await start(token)
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    try:
        return asyncio.run(_main())
    except ProcessStartError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=EXIT_START_FAILED) from exc


def _report(result: ExecutionResult) -> None:
    if result.stdout:
        typer.echo(result.stdout, nl=False)
    if result.stderr:
        typer.echo(result.stderr, nl=False, err=True)
    if result.timed_out:
        typer.echo(f"Timed out after {result.duration_s:.2f}s.", err=True)
        raise typer.Exit(code=EXIT_TIMED_OUT)
    if result.cancelled:
        typer.echo("Cancelled.", err=True)
        raise typer.Exit(code=EXIT_CANCELLED)
    if result.exit_code != 0:
        raise typer.Exit(code=result.exit_code if result.exit_code > 0 else 1)

