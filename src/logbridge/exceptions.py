"""Exceptions raised by logbridge."""

from __future__ import annotations


class LogBridgeError(Exception):
    """Base exception for logbridge errors."""

    pass


class NoActiveTestError(LogBridgeError, RuntimeError):
    """Raised when writing to a test output that is no longer attached.

    Application code can keep logging after the test that owned the
    output has finished (background threads, server shutdown). The
    formatter treats this error as an expected race and drops the line.
    """

    def __init__(self, test_name: str | None = None) -> None:
        """Initialize with the name of the detached test, if known.

        Args:
            test_name: Node id or name of the test whose output has been
                closed. Stored in self.test_name.
        """
        self.test_name = test_name
        if test_name:
            super().__init__(f"There is no currently active test ({test_name} ended)")
        else:
            super().__init__("There is no currently active test")


class ScopeOrderError(LogBridgeError, RuntimeError):
    """Raised when a log scope is closed out of nesting order."""

    pass
