"""Progress extraction from unstructured output lines."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable

from procexec.util.logging import get_logger

_LOGGER = get_logger("procexec.execution.progress")


@dataclass(frozen=True)
class ProgressPattern:
    """A text rule plus a function turning a match into a percentage.

    Attributes:
        name: Short identifier used in configuration and logs.
        regex: Compiled pattern searched anywhere in a line.
        extract: Maps a successful match to a percentage estimate.
    """

    name: str
    regex: re.Pattern[str]
    extract: Callable[[re.Match[str]], float]

    @classmethod
    def create(
        cls, name: str, pattern: str, extract: Callable[[re.Match[str]], float]
    ) -> ProgressPattern:
        """Build a pattern from an uncompiled regular expression."""

        return cls(name=name, regex=re.compile(pattern), extract=extract)


def match_progress(line: str, patterns: Iterable[ProgressPattern]) -> float | None:
    """Return the percentage reported by the first pattern that handles ``line``.

    Patterns are tried in order. A pattern whose extraction raises is skipped
    and the next one is tried. Values are returned as extracted, without
    clamping to the 0-100 range.
    """

    for pattern in patterns:
        match = pattern.regex.search(line)
        if match is None:
            continue
        try:
            return float(pattern.extract(match))
        except Exception:  # noqa: BLE001 - a faulty rule must not break draining
            _LOGGER.debug(
                "Progress pattern '%s' matched but extraction failed for line %r.",
                pattern.name,
                line,
                exc_info=True,
            )
    return None


def _ratio(match: re.Match[str]) -> float:
    current = int(match.group(1))
    total = int(match.group(2))
    if total <= 0:
        return 0.0
    return current / total * 100.0


def _percent(match: re.Match[str]) -> float:
    return float(match.group(1))


def _raw_frame(match: re.Match[str]) -> float:
    # Raw counter, not a percentage; callers convert using their known total.
    return float(int(match.group(1)))


# Order matters in common_patterns(): "Frame: 1/2" also matches the fraction rule.
FRACTION_PATTERN = ProgressPattern.create("fraction", r"(\d+)/(\d+)", _ratio)
PERCENT_PATTERN = ProgressPattern.create("percent", r"(\d+)%", _percent)
VSPIPE_FRAME_PATTERN = ProgressPattern.create("vspipe_frame", r"Frame:\s*(\d+)/(\d+)", _ratio)
FFMPEG_FRAME_PATTERN = ProgressPattern.create("ffmpeg_frame", r"frame=\s*(\d+)", _raw_frame)

BUILTIN_PATTERNS: dict[str, ProgressPattern] = {
    pattern.name: pattern
    for pattern in (FRACTION_PATTERN, PERCENT_PATTERN, VSPIPE_FRAME_PATTERN, FFMPEG_FRAME_PATTERN)
}


def common_patterns() -> list[ProgressPattern]:
    """Return the commonly used patterns, most specific first."""

    return [VSPIPE_FRAME_PATTERN, FRACTION_PATTERN, PERCENT_PATTERN]


def patterns_from_names(names: Iterable[str]) -> list[ProgressPattern]:
    """Resolve pattern names, expanding ``common`` to :func:`common_patterns`.

    Raises:
        ValueError: If a name is not a known pattern.
    """

    resolved: list[ProgressPattern] = []
    for raw_name in names:
        name = raw_name.strip().lower()
        if name == "common":
            candidates = common_patterns()
        elif name in BUILTIN_PATTERNS:
            candidates = [BUILTIN_PATTERNS[name]]
        else:
            known = ", ".join(["common", *sorted(BUILTIN_PATTERNS)])
            raise ValueError(f"Unknown progress pattern '{raw_name}'. Known patterns: {known}.")
        for candidate in candidates:
            if candidate not in resolved:
                resolved.append(candidate)
    return resolved
