"""Resolve command names to executables on PATH."""

from __future__ import annotations

import shutil
from typing import Iterable

from procexec.util.logging import get_logger

_FORBIDDEN_CHARACTERS = frozenset("&|;><`$(){}\n\r")
_LOGGER = get_logger("procexec.resolver")


def resolve_command(command: str) -> str | None:
    """Return the full path of ``command`` on PATH, or None if it is not found.

    Raises:
        ValueError: If ``command`` is empty, contains shell metacharacters, or
            is a path rather than a bare name.
    """

    _validate_command(command)
    resolved = shutil.which(command)
    if resolved is None:
        _LOGGER.debug("Command '%s' not found on PATH.", command)
    return resolved


def resolve_commands(commands: Iterable[str]) -> dict[str, str]:
    """Resolve several commands, omitting those that are not found."""

    found: dict[str, str] = {}
    for command in commands:
        resolved = resolve_command(command)
        if resolved is not None:
            found[command] = resolved
    return found


def command_exists(command: str) -> bool:
    """Return whether ``command`` is found on PATH."""

    return resolve_command(command) is not None


def _validate_command(command: str) -> None:
    if not command or not command.strip():
        raise ValueError("Command must be a non-empty name.")
    if any(char in _FORBIDDEN_CHARACTERS for char in command):
        raise ValueError(f"Command contains invalid characters: '{command}'")
    if "/" in command or "\\" in command:
        raise ValueError(f"Command must be a name, not a path: '{command}'")
