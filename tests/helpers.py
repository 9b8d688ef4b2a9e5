"""Shared test helpers for logbridge.

Message formatters mirror the shapes a logging framework passes to
TestOutputLogger.log: one that describes its inputs, and degenerate
ones returning None, an empty string, or a very long message.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

STATIC_TIMESTAMP = "2018-08-19 16:12:16Z"


def static_clock() -> datetime:
    """Return 2018-08-19 17:12:16 at UTC+1, i.e. 16:12:16Z."""
    return datetime(2018, 8, 19, 17, 12, 16, tzinfo=timezone(timedelta(hours=1)))


def describe(state: object, exception: BaseException | None) -> str:
    """Formatter whose output records whether state and exception were set.

    Example:
        >>> describe("state", None)
        'Message|True|False'
    """
    return f"Message|{state is not None}|{exception is not None}"


def format_none(state: object, exception: BaseException | None) -> str | None:
    return None


def format_empty(state: object, exception: BaseException | None) -> str:
    return ""


def format_long(state: object, exception: BaseException | None) -> str:
    return "a" * 2048


def lines(*parts: str) -> str:
    """Join expected output lines with newlines."""
    return "\n".join(parts)
