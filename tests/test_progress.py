from __future__ import annotations

import re

import pytest

from procexec.execution.progress import (
    FFMPEG_FRAME_PATTERN,
    FRACTION_PATTERN,
    PERCENT_PATTERN,
    VSPIPE_FRAME_PATTERN,
    ProgressPattern,
    common_patterns,
    match_progress,
    patterns_from_names,
)


def test_percent_line_reports_number() -> None:
    assert match_progress("45%", common_patterns()) == 45.0


def test_fraction_line_reports_ratio() -> None:
    assert match_progress("123/456", common_patterns()) == pytest.approx(26.97, abs=0.01)


def test_unmatched_line_reports_nothing() -> None:
    assert match_progress("compiling module", common_patterns()) is None
    assert match_progress("45%", []) is None


def test_first_pattern_in_list_wins() -> None:
    line = "1/4 chunks, 90% of bytes"

    assert match_progress(line, [PERCENT_PATTERN, FRACTION_PATTERN]) == 90.0
    assert match_progress(line, [FRACTION_PATTERN, PERCENT_PATTERN]) == 25.0


def test_vspipe_frame_pattern_in_common_set() -> None:
    assert match_progress("Frame: 30/60", common_patterns()) == 50.0
    assert common_patterns()[0] is VSPIPE_FRAME_PATTERN


def test_ffmpeg_frame_pattern_returns_raw_counter() -> None:
    line = "frame= 1234 fps= 30 q=28.0 size=    1024kB"

    assert match_progress(line, [FFMPEG_FRAME_PATTERN]) == 1234.0


def test_values_are_not_clamped() -> None:
    assert match_progress("150%", [PERCENT_PATTERN]) == 150.0


def test_fraction_with_zero_total_reports_zero() -> None:
    assert match_progress("5/0", [FRACTION_PATTERN]) == 0.0


def test_failing_extraction_falls_through_to_next_pattern() -> None:
    def explode(match: re.Match[str]) -> float:
        raise ArithmeticError("bad rule")

    faulty = ProgressPattern.create("faulty", r"(\d+)%", explode)

    assert match_progress("70%", [faulty, PERCENT_PATTERN]) == 70.0
    assert match_progress("70%", [faulty]) is None


def test_patterns_from_names_expands_common_without_duplicates() -> None:
    patterns = patterns_from_names(["percent", "common", "ffmpeg_frame"])

    assert [pattern.name for pattern in patterns] == [
        "percent",
        "vspipe_frame",
        "fraction",
        "ffmpeg_frame",
    ]


def test_patterns_from_names_rejects_unknown_name() -> None:
    with pytest.raises(ValueError, match="Unknown progress pattern"):
        patterns_from_names(["eta"])
