"""Log levels understood by the bridge.

The bridge uses its own ordered severity scale rather than the raw
numbers of the standard logging module. The scale has six real levels
and a ``NONE`` sentinel that can never be enabled:

    TRACE < DEBUG < INFORMATION < WARNING < ERROR < CRITICAL < NONE

Each real level has a fixed four character tag used at the start of
every rendered line, so that the category column lines up regardless of
severity.

Example:
    >>> LogLevel.from_stdlib(logging.WARNING)
    <LogLevel.WARNING: 3>
    >>> level_tag(LogLevel.WARNING)
    'warn'
"""

from __future__ import annotations

import logging
from enum import IntEnum


class LogLevel(IntEnum):
    """Ordered log severity."""

    TRACE = 0
    DEBUG = 1
    INFORMATION = 2
    WARNING = 3
    ERROR = 4
    CRITICAL = 5
    NONE = 6

    @classmethod
    def from_stdlib(cls, levelno: int) -> LogLevel:
        """Map a standard library level number onto the bridge scale.

        Custom level numbers registered with ``logging.addLevelName``
        map to the highest known level that does not exceed them, so a
        level of 25 is treated as INFORMATION and anything below DEBUG
        (including NOTSET and the common TRACE=5 convention) as TRACE.

        Args:
            levelno: Numeric level from ``LogRecord.levelno``.

        Returns:
            The matching LogLevel. Never returns NONE.

        Example:
            >>> LogLevel.from_stdlib(logging.INFO)
            <LogLevel.INFORMATION: 2>
            >>> LogLevel.from_stdlib(5)
            <LogLevel.TRACE: 0>
        """
        for threshold, level in _STDLIB_THRESHOLDS:
            if levelno >= threshold:
                return level
        return cls.TRACE

    def to_stdlib(self) -> int:
        """Return the standard library level number for this level.

        Raises:
            ValueError: For NONE, which has no stdlib equivalent.
        """
        if self is LogLevel.NONE:
            raise ValueError("LogLevel.NONE has no standard library equivalent")
        return _TO_STDLIB[self]


# Highest threshold first
_STDLIB_THRESHOLDS: tuple[tuple[int, LogLevel], ...] = (
    (logging.CRITICAL, LogLevel.CRITICAL),
    (logging.ERROR, LogLevel.ERROR),
    (logging.WARNING, LogLevel.WARNING),
    (logging.INFO, LogLevel.INFORMATION),
    (logging.DEBUG, LogLevel.DEBUG),
)

_TO_STDLIB: dict[LogLevel, int] = {
    LogLevel.TRACE: 5,
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFORMATION: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}

_LEVEL_TAGS: dict[int, str] = {
    LogLevel.CRITICAL: "crit",
    LogLevel.DEBUG: "dbug",
    LogLevel.ERROR: "fail",
    LogLevel.INFORMATION: "info",
    LogLevel.TRACE: "trce",
    LogLevel.WARNING: "warn",
}


def level_tag(level: int) -> str:
    """Return the fixed-width tag rendered for a log level.

    Args:
        level: A LogLevel (or its integer value).

    Returns:
        One of "crit", "fail", "warn", "info", "dbug", "trce".

    Raises:
        ValueError: If level is NONE or outside the known scale. There is
            no fallback tag.

    Example:
        >>> level_tag(LogLevel.ERROR)
        'fail'
    """
    try:
        return _LEVEL_TAGS[level]
    except (KeyError, TypeError):
        raise ValueError(f"level out of range: {level!r}") from None
