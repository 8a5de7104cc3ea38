from pathlib import Path

import pytest

from procexec.config import (
    ConfigError,
    EngineConfig,
    config_to_dict,
    load_config,
    to_execution_options,
    update_timeout,
)


def test_engine_config_defaults() -> None:
    config = EngineConfig()
    assert config.executor.timeout_s is None
    assert config.executor.capture_output is True
    assert config.executor.progress_patterns == ["common"]
    assert config.logging.level == "INFO"


def test_load_config_without_file_returns_defaults(tmp_path: Path) -> None:
    assert load_config(tmp_path) == EngineConfig()


def test_load_config_from_pyproject(tmp_path: Path) -> None:
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(
        """
[tool.procexec.executor]
timeout_s = 90
capture_output = false
progress_patterns = ["ffmpeg_frame", "percent"]
working_directory = "work"

[tool.procexec.executor.env]
FFREPORT = "level=32"

[tool.procexec.logging]
level = "DEBUG"
""",
        encoding="utf-8",
    )

    config = load_config(pyproject)

    assert config.executor.timeout_s == 90.0
    assert config.executor.capture_output is False
    assert config.executor.progress_patterns == ["ffmpeg_frame", "percent"]
    assert config.executor.working_directory == (tmp_path / "work").resolve()
    assert config.executor.env == {"FFREPORT": "level=32"}
    assert config.logging.level == "DEBUG"


def test_pyproject_without_tool_section_uses_defaults(tmp_path: Path) -> None:
    (tmp_path / "pyproject.toml").write_text('[project]\nname = "other"\n', encoding="utf-8")

    assert load_config(tmp_path) == EngineConfig()


def test_load_config_from_json_yaml(tmp_path: Path) -> None:
    config_path = tmp_path / "procexec.yaml"
    config_path.write_text(
        '{"executor": {"timeout_s": 5, "encoding": "latin-1"}}',
        encoding="utf-8",
    )

    config = load_config(tmp_path)

    assert config.executor.timeout_s == 5.0
    assert config.executor.encoding == "latin-1"


def test_load_config_from_non_json_yaml(tmp_path: Path) -> None:
    pytest.importorskip("yaml")
    config_path = tmp_path / "procexec.yml"
    config_path.write_text(
        """
executor:
  timeout_s: 2.5
  progress_patterns:
    - vspipe_frame
logging:
  level: WARNING
""",
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert config.executor.timeout_s == 2.5
    assert config.executor.progress_patterns == ["vspipe_frame"]
    assert config.logging.level == "WARNING"


def test_load_config_rejects_negative_timeout(tmp_path: Path) -> None:
    config_path = tmp_path / "procexec.yaml"
    config_path.write_text('{"executor": {"timeout_s": -1}}', encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config_path)


def test_load_config_rejects_unknown_file_type(tmp_path: Path) -> None:
    config_path = tmp_path / "procexec.ini"
    config_path.write_text("[executor]\n", encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config_path)


def test_to_execution_options_applies_overrides() -> None:
    config = update_timeout(EngineConfig(), 30)

    options = to_execution_options(
        config,
        timeout_s=None,
        capture_output=False,
        environment_variables={"EXTRA": "1"},
    )

    assert options.timeout_s == 30
    assert options.capture_output is False
    assert dict(options.environment_variables) == {"EXTRA": "1"}
    assert [pattern.name for pattern in options.progress_patterns] == [
        "vspipe_frame",
        "fraction",
        "percent",
    ]


def test_to_execution_options_rejects_unknown_pattern(tmp_path: Path) -> None:
    config_path = tmp_path / "procexec.yaml"
    config_path.write_text('{"executor": {"progress_patterns": ["eta"]}}', encoding="utf-8")

    with pytest.raises(ConfigError):
        to_execution_options(load_config(config_path))


def test_config_to_dict_round_trips_values() -> None:
    data = config_to_dict(update_timeout(EngineConfig(), 12.0))

    assert data["executor"]["timeout_s"] == 12.0
    assert data["executor"]["working_directory"] is None
    assert data["logging"]["level"] == "INFO"
