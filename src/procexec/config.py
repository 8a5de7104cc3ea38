"""Configuration models and loaders for procexec."""

from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from procexec.execution.base import ExecutionOptions
from procexec.execution.progress import patterns_from_names

DEFAULT_PROGRESS_PATTERNS: list[str] = ["common"]
CONFIG_FILE_NAMES: tuple[str, ...] = ("procexec.yaml", "procexec.yml", "pyproject.toml")


class ConfigError(ValueError):
    """Raised when a configuration file is malformed."""


@dataclass(frozen=True)
class ExecutorConfig:
    """Defaults applied to every execution.

    Attributes:
        timeout_s: Wall-clock timeout in seconds, or None for no limit.
        env: Environment variables merged over the inherited environment.
        capture_output: Whether stdout/stderr text is retained.
        encoding: Encoding used to decode output.
        progress_patterns: Names of built-in progress patterns, in order.
        working_directory: Optional default working directory.
    """

    timeout_s: float | None = None
    env: dict[str, str] = field(default_factory=dict)
    capture_output: bool = True
    encoding: str = "utf-8"
    progress_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_PROGRESS_PATTERNS))
    working_directory: Path | None = None


@dataclass(frozen=True)
class LoggingConfig:
    """Configuration for log output."""

    level: str = "INFO"
    format: str | None = None


@dataclass(frozen=True)
class EngineConfig:
    """Top-level configuration."""

    executor: ExecutorConfig = field(default_factory=lambda: ExecutorConfig())
    logging: LoggingConfig = field(default_factory=lambda: LoggingConfig())


def load_config(path: Path | None = None) -> EngineConfig:
    """Load configuration from disk.

    Args:
        path: Optional path to a configuration file or a directory to search.

    Returns:
        Parsed EngineConfig with defaults applied when no config exists.

    Raises:
        ConfigError: If the file type is unsupported or its contents are invalid.
    """

    config_path = _resolve_config_path(path)
    if config_path is None:
        return EngineConfig()

    if config_path.suffix in {".yaml", ".yml", ".json"}:
        raw_data = _load_yaml(config_path)
    elif config_path.suffix == ".toml":
        raw_data = _load_toml(config_path)
    else:
        raise ConfigError(f"Unsupported config file type: {config_path}")

    return _parse_engine_config(raw_data, base_path=config_path.parent)


def config_to_dict(config: EngineConfig) -> dict[str, Any]:
    """Serialize an EngineConfig into a JSON-compatible dictionary."""

    working_directory = config.executor.working_directory
    return {
        "executor": {
            "timeout_s": config.executor.timeout_s,
            "env": dict(config.executor.env),
            "capture_output": config.executor.capture_output,
            "encoding": config.executor.encoding,
            "progress_patterns": list(config.executor.progress_patterns),
            "working_directory": str(working_directory) if working_directory else None,
        },
        "logging": {
            "level": config.logging.level,
            "format": config.logging.format,
        },
    }


def to_execution_options(config: EngineConfig, **overrides: Any) -> ExecutionOptions:
    """Build ExecutionOptions from configuration defaults.

    Keyword overrides whose value is None are ignored; ``environment_variables``
    overrides are merged over the configured ``env``.

    Raises:
        ConfigError: If a configured progress pattern name is unknown.
    """

    executor = config.executor
    try:
        patterns = tuple(patterns_from_names(executor.progress_patterns))
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    env = dict(executor.env)
    env.update(overrides.pop("environment_variables", None) or {})
    options = ExecutionOptions(
        working_directory=executor.working_directory,
        timeout_s=executor.timeout_s,
        progress_patterns=patterns,
        capture_output=executor.capture_output,
        environment_variables=env,
        encoding=executor.encoding,
    )
    applied = {key: value for key, value in overrides.items() if value is not None}
    return replace(options, **applied) if applied else options


def update_timeout(config: EngineConfig, timeout_s: float | None) -> EngineConfig:
    """Return a config copy with an updated executor timeout."""

    return replace(config, executor=replace(config.executor, timeout_s=timeout_s))


def _resolve_config_path(path: Path | None) -> Path | None:
    candidate_paths: list[Path] = []
    if path is None:
        candidate_paths.extend(Path(name) for name in CONFIG_FILE_NAMES)
    elif path.is_dir():
        candidate_paths.extend(path / name for name in CONFIG_FILE_NAMES)
    else:
        candidate_paths.append(path)

    for candidate in candidate_paths:
        if candidate.exists():
            return candidate
    return None


def _load_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as handle:
        try:
            data = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc
    if path.name == "pyproject.toml":
        tool_config = data.get("tool", {}).get("procexec", {})
        if not isinstance(tool_config, dict):
            raise ConfigError("tool.procexec must be a mapping.")
        return tool_config
    return data


def _load_yaml(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None
    if data is not None:
        if not isinstance(data, dict):
            raise ConfigError("YAML configuration must be a mapping.")
        return data
    try:
        import yaml  # type: ignore[import-untyped]
    except ImportError as exc:
        raise ConfigError(
            "PyYAML is required to parse non-JSON YAML configuration files."
        ) from exc
    parsed = yaml.safe_load(text)
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ConfigError("YAML configuration must be a mapping.")
    return parsed


def _parse_engine_config(raw_data: dict[str, Any], base_path: Path) -> EngineConfig:
    return EngineConfig(
        executor=_parse_executor_config(raw_data.get("executor", {}), base_path),
        logging=_parse_logging_config(raw_data.get("logging", {})),
    )


def _parse_executor_config(raw: Any, base_path: Path) -> ExecutorConfig:
    if not isinstance(raw, dict):
        return ExecutorConfig()
    env = raw.get("env", {})
    env_map: dict[str, str] = {}
    if isinstance(env, dict):
        env_map = {str(key): str(value) for key, value in env.items()}
    patterns = raw.get("progress_patterns", DEFAULT_PROGRESS_PATTERNS)
    if not isinstance(patterns, list):
        raise ConfigError("executor.progress_patterns must be a list of pattern names.")
    working_directory = _optional_str(raw.get("working_directory"))
    resolved_directory: Path | None = None
    if working_directory is not None:
        resolved_directory = Path(working_directory)
        if not resolved_directory.is_absolute():
            resolved_directory = (base_path / resolved_directory).resolve()
    return ExecutorConfig(
        timeout_s=_optional_float(raw.get("timeout_s")),
        env=env_map,
        capture_output=bool(raw.get("capture_output", True)),
        encoding=str(raw.get("encoding", "utf-8")),
        progress_patterns=[str(name) for name in patterns],
        working_directory=resolved_directory,
    )


def _parse_logging_config(raw: Any) -> LoggingConfig:
    if not isinstance(raw, dict):
        return LoggingConfig()
    return LoggingConfig(
        level=str(raw.get("level", "INFO")),
        format=_optional_str(raw.get("format")),
    )


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        timeout = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Expected a number of seconds, got {value!r}.") from exc
    if timeout < 0:
        raise ConfigError("timeout_s must be non-negative.")
    return timeout
