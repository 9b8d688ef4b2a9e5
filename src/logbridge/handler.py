"""Standard library logging integration.

TestOutputHandler is a logging.Handler that forwards every record it
receives to a TestOutputLogger for the record's logger name, so code
that logs through the standard ``logging`` module ends up in the
current test's output:

    handler = add_test_output(COMPOSITE_OUTPUT)  # attach to root
    logging.getLogger("app.db").info("Connected to %s", dsn)

The record's level is mapped onto LogLevel, its exc_info supplies the
exception, and an ``event_id`` passed through ``extra`` supplies the
event id:

    log.warning("Retrying", extra={"event_id": 7})

Open scopes (logbridge.scopes.push_scope) are rendered when the
handler's options enable include_scopes.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from logbridge.levels import LogLevel
from logbridge.logger import LoggerOptions, TestOutputLoggerProvider
from logbridge.output import (
    FixedOutputAccessor,
    MessageSink,
    MessageSinkAccessor,
    OutputAccessor,
    TestOutput,
)

#: Record attribute (set through ``extra``) holding the event id.
EVENT_ID_ATTR = "event_id"


def _format_record(record: logging.LogRecord, exception: BaseException | None) -> str:
    """Message text of a record, with stack_info appended when present."""
    message = record.getMessage()
    if record.stack_info:
        message = f"{message}\n{record.stack_info}" if message else record.stack_info
    return message


def _exception_of(record: logging.LogRecord) -> BaseException | None:
    """Exception instance from a record's exc_info, if any."""
    if record.exc_info and record.exc_info[1] is not None:
        return record.exc_info[1]
    return None


class TestOutputHandler(logging.Handler):
    """Handler that forwards log records into test output.

    Includes a thread-local recursion guard: records emitted by the
    bridge itself while a record is being delivered are skipped instead
    of looping back into the handler.

    Usage:
        provider = TestOutputLoggerProvider(COMPOSITE_OUTPUT)
        handler = TestOutputHandler(provider)
        logging.getLogger().addHandler(handler)
    """

    __test__ = False  # not a pytest test class

    # Thread-local recursion guard to prevent infinite loops
    _local = threading.local()

    def __init__(
        self,
        provider: TestOutputLoggerProvider,
        level: int = logging.NOTSET,
    ) -> None:
        """Initialize the handler with a logger provider.

        Args:
            provider: Supplies one TestOutputLogger per logger name. Its
                accessors decide where lines go and its options control
                filtering and rendering.
            level: Minimum stdlib level handled. Default NOTSET handles
                everything that reaches the handler.

        Raises:
            ValueError: If provider is None.
        """
        if provider is None:
            raise ValueError("provider must not be None")
        super().__init__(level)
        self.provider = provider

    def emit(self, record: logging.LogRecord) -> None:
        """Forward a record to the logger for its category.

        Following logging.Handler conventions, unexpected exceptions are
        passed to handleError() rather than propagated to the code that
        logged. Writes after a test ended are dropped by the formatter.

        Args:
            record: The record to forward.
        """
        # Recursion guard: skip if we're already emitting in this thread
        if getattr(self._local, "emitting", False):
            return

        try:
            self._local.emitting = True

            bridge_logger = self.provider.create_logger(record.name)
            bridge_logger.log(
                LogLevel.from_stdlib(record.levelno),
                int(getattr(record, EVENT_ID_ATTR, 0) or 0),
                record,
                _exception_of(record),
                _format_record,
            )
        except Exception:
            self.handleError(record)
        finally:
            self._local.emitting = False

    def close(self) -> None:
        """Close the handler and drop the provider's cached loggers."""
        self.provider.close()
        super().close()


# =============================================================================
# Registration
# =============================================================================


def _resolve_logger(logger: logging.Logger | str | None) -> logging.Logger:
    if logger is None or isinstance(logger, str):
        return logging.getLogger(logger)
    return logger


def _resolve_options(options: LoggerOptions | None, overrides: dict[str, Any]) -> LoggerOptions:
    if options is not None and overrides:
        raise ValueError("pass either options or keyword overrides, not both")
    return options or LoggerOptions(**overrides)


def add_test_output(
    target: TestOutput | OutputAccessor,
    logger: logging.Logger | str | None = None,
    *,
    level: int = logging.NOTSET,
    options: LoggerOptions | None = None,
    **overrides: Any,
) -> TestOutputHandler:
    """Attach a handler writing to a test output or accessor.

    Args:
        target: A TestOutput (always written to) or an OutputAccessor
            (looked up on every write, e.g. COMPOSITE_OUTPUT).
        logger: Logger, logger name, or None for the root logger.
        level: Handler level.
        options: LoggerOptions for the provider.
        **overrides: LoggerOptions fields, as an alternative to options.

    Returns:
        The attached handler, for later removal with
        ``logger.removeHandler(handler)``.

    Raises:
        ValueError: If target is None, or both options and overrides
            are given.

    Example:
        >>> handler = add_test_output(output, "app", include_scopes=True)
    """
    if target is None:
        raise ValueError("target must not be None")
    accessor = FixedOutputAccessor(target) if isinstance(target, TestOutput) else target
    provider = TestOutputLoggerProvider(accessor, _resolve_options(options, overrides))
    handler = TestOutputHandler(provider, level)
    _resolve_logger(logger).addHandler(handler)
    return handler


def add_message_sink(
    message_sink: MessageSink | MessageSinkAccessor,
    logger: logging.Logger | str | None = None,
    *,
    level: int = logging.NOTSET,
    options: LoggerOptions | None = None,
    **overrides: Any,
) -> TestOutputHandler:
    """Attach a handler relaying rendered lines to a message sink.

    Same arguments as add_test_output, with a MessageSink (or its
    accessor) as the destination.
    """
    if message_sink is None:
        raise ValueError("message_sink must not be None")
    accessor = (
        message_sink
        if isinstance(message_sink, MessageSinkAccessor)
        else MessageSinkAccessor(message_sink)
    )
    provider = TestOutputLoggerProvider(
        options=_resolve_options(options, overrides), message_sink_accessor=accessor
    )
    handler = TestOutputHandler(provider, level)
    _resolve_logger(logger).addHandler(handler)
    return handler


@contextmanager
def capture_logs(
    target: TestOutput | OutputAccessor,
    logger: logging.Logger | str | None = None,
    *,
    level: int = logging.NOTSET,
    options: LoggerOptions | None = None,
    **overrides: Any,
) -> Iterator[TestOutputHandler]:
    """Attach a test output handler for the duration of a with block.

    Example:
        >>> with capture_logs(output, "app"):
        ...     run_job()
        >>> assert "job finished" in output.text
    """
    resolved = _resolve_logger(logger)
    handler = add_test_output(target, resolved, level=level, options=options, **overrides)
    try:
        yield handler
    finally:
        resolved.removeHandler(handler)
        handler.close()


def to_logger(
    output: TestOutput,
    name: str,
    *,
    options: LoggerOptions | None = None,
    **overrides: Any,
) -> logging.Logger:
    """Return a stdlib logger whose records go to one test output.

    The logger's level is lowered so that every record reaches the
    handler; filtering is left to the options' filter. The logger stops
    propagating, so a handler higher up the tree (such as the plugin's
    session handler on the root logger) does not capture the same
    record again. Calling this again for the same name replaces the
    previous TestOutputHandler instead of adding another one.

    Args:
        output: The TestOutput receiving every record.
        name: Logger name, also used as the category of each line.
        options: LoggerOptions for the handler's provider.
        **overrides: LoggerOptions fields, as an alternative to options.

    Returns:
        The configured logging.Logger.

    Raises:
        ValueError: If output or name is None, or both options and
            overrides are given.

    Example:
        >>> log = to_logger(log_output, "app.worker")
        >>> log.info("started")
    """
    if output is None:
        raise ValueError("output must not be None")
    if name is None:
        raise ValueError("name must not be None")
    stdlib_logger = logging.getLogger(name)
    stdlib_logger.setLevel(1)
    stdlib_logger.propagate = False

    for existing in list(stdlib_logger.handlers):
        if isinstance(existing, TestOutputHandler):
            stdlib_logger.removeHandler(existing)
            existing.close()

    add_test_output(output, stdlib_logger, options=options, **overrides)
    return stdlib_logger
