"""Per-category loggers that write into test output.

TestOutputLogger is the bridge's logger abstraction: it owns a category
name and a filter, opens scopes, and turns (level, event id, state,
exception, formatter) calls into rendered lines delivered through its
accessors. TestOutputLoggerProvider caches one logger per category.

The standard library integration (logbridge.handler) sits on top of
these classes; they can also be used directly:

    output = TestOutput("test_checkout")
    log = TestOutputLogger.for_output("Checkout", output)
    with log.begin_scope({"order": 42}):
        log.log(LogLevel.INFORMATION, 1, "Paid", None, lambda s, e: s)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

from logbridge.formatter import (
    DEFAULT_TIMESTAMP_FORMAT,
    FormatterOptions,
    LogLineFormatter,
    _utc_now,
)
from logbridge.levels import LogLevel
from logbridge.output import (
    DiagnosticMessage,
    FixedOutputAccessor,
    MessageSink,
    MessageSinkAccessor,
    OutputAccessor,
    TestOutput,
)
from logbridge.scopes import ScopeToken, iter_scopes, push_scope

logger = logging.getLogger(__name__)

TState = TypeVar("TState")

#: Decides whether a (category, level) pair produces output.
LogFilter = Callable[[str, LogLevel], bool]

#: Replaces the built-in writer: (logger, output, message_sink, level,
#: event_id, message, exception) -> None.
WriteMessageOverride = Callable[
    [
        "TestOutputLogger",
        TestOutput | None,
        MessageSink | None,
        LogLevel,
        int,
        str | None,
        BaseException | None,
    ],
    None,
]


def _log_everything(category: str, level: LogLevel) -> bool:
    return True


@dataclass
class LoggerOptions:
    """Configuration shared by the loggers of a provider.

    Attributes:
        filter: Called with (category, level); False suppresses the
            record. Defaults to accepting everything.
        include_scopes: Render open scopes above each message.
        timestamp_format: strftime pattern for the line prefix.
        use_utc_timestamp: Convert timestamps to UTC before formatting.
            Pair False with a timestamp_format that has no "Z" suffix.
        clock: Source of the timestamp.
        message_factory: Wraps a rendered line for a MessageSink.
        write_message_override: Optional replacement for the built-in
            writer, called instead of rendering.
    """

    filter: LogFilter = _log_everything
    include_scopes: bool = False
    timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT
    use_utc_timestamp: bool = True
    clock: Callable[[], datetime] = field(default=_utc_now)
    message_factory: Callable[[str], object] = DiagnosticMessage
    write_message_override: WriteMessageOverride | None = None

    def formatter_options(self) -> FormatterOptions:
        """Return the rendering subset of these options.

        Returns:
            A new FormatterOptions, so each logger can change its own
            include_scopes and clock without affecting the others.
        """
        return FormatterOptions(
            include_scopes=self.include_scopes,
            timestamp_format=self.timestamp_format,
            use_utc_timestamp=self.use_utc_timestamp,
            clock=self.clock,
        )


class TestOutputLogger:
    """Logger for one category, writing to the current test's output.

    A logger is bound to an output accessor, a message sink accessor, or
    both. Each write looks the sinks up again, so one logger can serve
    many tests in sequence.

    Attributes:
        name: Category shown in every rendered line.
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        name: str,
        accessor: OutputAccessor | None = None,
        options: LoggerOptions | None = None,
        *,
        message_sink_accessor: MessageSinkAccessor | None = None,
    ) -> None:
        """Create a logger for a category.

        Args:
            name: Category name. Required.
            accessor: Locates the TestOutput to write to.
            options: Logger configuration; defaults apply when None.
            message_sink_accessor: Locates a MessageSink to relay to.

        Raises:
            ValueError: If name is None, or neither accessor is given.
        """
        if name is None:
            raise ValueError("name must not be None")
        if accessor is None and message_sink_accessor is None:
            raise ValueError("accessor must not be None")

        options = options or LoggerOptions()
        self.name = name
        self._accessor = accessor
        self._message_sink_accessor = message_sink_accessor
        self._filter: LogFilter = options.filter or _log_everything
        self._message_factory = options.message_factory or DiagnosticMessage
        self._write_message_override = options.write_message_override
        self._formatter = LogLineFormatter(options.formatter_options())

    @classmethod
    def for_output(
        cls, name: str, output: TestOutput, options: LoggerOptions | None = None
    ) -> TestOutputLogger:
        """Create a logger that always writes to one output.

        Args:
            name: Category name.
            output: The TestOutput every line goes to.
            options: Logger configuration; defaults apply when None.

        Returns:
            A TestOutputLogger bound to a FixedOutputAccessor.

        Raises:
            ValueError: If name or output is None.

        Example:
            >>> log = TestOutputLogger.for_output("Checkout", log_output)
        """
        if output is None:
            raise ValueError("output must not be None")
        return cls(name, FixedOutputAccessor(output), options)

    @classmethod
    def for_message_sink(
        cls, name: str, message_sink: MessageSink, options: LoggerOptions | None = None
    ) -> TestOutputLogger:
        """Create a logger that relays every line to one message sink.

        Args:
            name: Category name.
            message_sink: Receives a message_factory(line) per record.
            options: Logger configuration; defaults apply when None.

        Returns:
            A TestOutputLogger with no output accessor.

        Raises:
            ValueError: If name or message_sink is None.
        """
        if message_sink is None:
            raise ValueError("message_sink must not be None")
        return cls(
            name, options=options, message_sink_accessor=MessageSinkAccessor(message_sink)
        )

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @property
    def filter(self) -> LogFilter:
        """Callable deciding whether (category, level) is logged."""
        return self._filter

    @filter.setter
    def filter(self, value: LogFilter) -> None:
        """Replace the filter.

        Raises:
            ValueError: If value is None.
        """
        if value is None:
            raise ValueError("filter must not be None")
        self._filter = value

    @property
    def message_factory(self) -> Callable[[str], object]:
        """Wraps each rendered line before it is relayed to a sink."""
        return self._message_factory

    @message_factory.setter
    def message_factory(self, value: Callable[[str], object]) -> None:
        """Replace the message factory.

        Raises:
            ValueError: If value is None.
        """
        if value is None:
            raise ValueError("message_factory must not be None")
        self._message_factory = value

    @property
    def include_scopes(self) -> bool:
        """Whether open scopes are rendered above each message."""
        return self._formatter.options.include_scopes

    @include_scopes.setter
    def include_scopes(self, value: bool) -> None:
        """Enable or disable scope rendering for this logger only."""
        self._formatter.options.include_scopes = value

    @property
    def clock(self) -> Callable[[], datetime]:
        """Source of the timestamp stamped on each line."""
        return self._formatter.options.clock

    @clock.setter
    def clock(self, value: Callable[[], datetime]) -> None:
        """Replace the clock for this logger only."""
        self._formatter.options.clock = value

    @property
    def output(self) -> TestOutput | None:
        """The output the next write would go to, if any."""
        return self._accessor.output if self._accessor is not None else None

    @property
    def message_sink(self) -> MessageSink | None:
        """The message sink the next write would relay to, if any."""
        if self._message_sink_accessor is None:
            return None
        return self._message_sink_accessor.message_sink

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    def begin_scope(self, state: object) -> ScopeToken:
        """Open a scope annotating every line logged until it is closed.

        Args:
            state: Scope annotation; see logbridge.scopes.classify_state.

        Returns:
            ScopeToken closing the scope; usable as a context manager.

        Raises:
            ValueError: If state is None.
        """
        return push_scope(state)

    def is_enabled(self, level: LogLevel | int) -> bool:
        """Return True if records at this level pass the filter.

        NONE is always disabled, whatever the filter says.

        Args:
            level: Level to check.

        Returns:
            True if a record at this level would be written.
        """
        if level == LogLevel.NONE:
            return False
        return bool(self._filter(self.name, level))

    def log(
        self,
        level: LogLevel | int,
        event_id: int,
        state: TState,
        exception: BaseException | None,
        formatter: Callable[[TState, BaseException | None], str | None],
    ) -> None:
        """Log a record.

        Args:
            level: Severity of the record.
            event_id: Integer tag for the kind of record.
            state: Message state, passed to formatter.
            exception: Exception attached to the record, if any.
            formatter: Builds the message text from state and exception.

        Raises:
            ValueError: If formatter is None, or level has no tag.
        """
        if not self.is_enabled(level):
            return

        if formatter is None:
            raise ValueError("formatter must not be None")

        message = formatter(state, exception)
        if not message and exception is None:
            return

        if self._write_message_override is not None:
            self._write_message_override(
                self,
                self.output,
                self.message_sink,
                LogLevel(level),
                event_id,
                message,
                exception,
            )
        else:
            self.write_message(level, event_id, message, exception)

    def write_message(
        self,
        level: LogLevel | int,
        event_id: int,
        message: str | None,
        exception: BaseException | None,
    ) -> None:
        """Render a message and write it to the current sinks.

        Does nothing when neither an output nor a message sink is
        currently available.

        Args:
            level: Severity of the record.
            event_id: Integer tag shown after the category.
            message: Formatted message, may be None with an exception.
            exception: Exception attached to the record, if any.

        Raises:
            ValueError: If level has no tag.
        """
        output = self.output
        message_sink = self.message_sink
        if output is None and message_sink is None:
            return

        scopes = iter_scopes() if self.include_scopes else None
        self._formatter.write(
            level,
            self.name,
            event_id,
            message,
            exception,
            output=output,
            message_sink=message_sink,
            message_factory=self._message_factory,
            scopes=scopes,
        )

    def __repr__(self) -> str:
        return f"TestOutputLogger({self.name!r})"


class TestOutputLoggerProvider:
    """Creates and caches one TestOutputLogger per category.

    All loggers of a provider share its accessors and options; each has
    its own formatter, so include_scopes and clock can be changed per
    logger. Safe to call create_logger() from several threads: one
    logger per category is published and reused.

    Can be used as a context manager; close() drops the cache.

    Example:
        >>> with TestOutputLoggerProvider(COMPOSITE_OUTPUT) as provider:
        ...     log = provider.create_logger("app.db")
        ...     assert provider.create_logger("app.db") is log
    """

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        accessor: OutputAccessor | None = None,
        options: LoggerOptions | None = None,
        *,
        message_sink_accessor: MessageSinkAccessor | None = None,
    ) -> None:
        """Create a provider sharing accessors and options among its loggers.

        Args:
            accessor: Locates the TestOutput to write to.
            options: Configuration copied into every logger created.
            message_sink_accessor: Locates a MessageSink to relay to.

        Raises:
            ValueError: If neither accessor is given.
        """
        if accessor is None and message_sink_accessor is None:
            raise ValueError("accessor must not be None")
        self.options = options or LoggerOptions()
        self._accessor = accessor
        self._message_sink_accessor = message_sink_accessor
        self._loggers: dict[str, TestOutputLogger] = {}
        self._lock = threading.Lock()

    @classmethod
    def for_output(
        cls, output: TestOutput, options: LoggerOptions | None = None
    ) -> TestOutputLoggerProvider:
        """Create a provider whose loggers all write to one output.

        Args:
            output: The TestOutput every logger writes to.
            options: Logger configuration; defaults apply when None.

        Returns:
            A TestOutputLoggerProvider bound to a FixedOutputAccessor.

        Raises:
            ValueError: If output is None.

        Example:
            >>> provider = TestOutputLoggerProvider.for_output(log_output)
            >>> provider.create_logger("app.db").name
            'app.db'
        """
        if output is None:
            raise ValueError("output must not be None")
        return cls(FixedOutputAccessor(output), options)

    @classmethod
    def for_message_sink(
        cls, message_sink: MessageSink, options: LoggerOptions | None = None
    ) -> TestOutputLoggerProvider:
        """Create a provider whose loggers relay to one message sink.

        Args:
            message_sink: Receives every rendered line.
            options: Logger configuration; defaults apply when None.

        Returns:
            A TestOutputLoggerProvider with no output accessor.

        Raises:
            ValueError: If message_sink is None.
        """
        if message_sink is None:
            raise ValueError("message_sink must not be None")
        return cls(
            options=options, message_sink_accessor=MessageSinkAccessor(message_sink)
        )

    def create_logger(self, category: str) -> TestOutputLogger:
        """Return the logger for a category, creating it on first use.

        Args:
            category: Logger name, usually a stdlib logger name.

        Returns:
            The cached TestOutputLogger for the category.
        """
        existing = self._loggers.get(category)
        if existing is not None:
            return existing

        with self._lock:
            existing = self._loggers.get(category)
            if existing is None:
                existing = TestOutputLogger(
                    category,
                    self._accessor,
                    self.options,
                    message_sink_accessor=self._message_sink_accessor,
                )
                self._loggers[category] = existing
        return existing

    def close(self) -> None:
        """Drop all cached loggers.

        Loggers handed out earlier keep working; the next
        create_logger() call for a category builds a new one.
        """
        with self._lock:
            count = len(self._loggers)
            self._loggers.clear()
        logger.debug("Closed logger provider with %d cached loggers", count)

    def __enter__(self) -> TestOutputLoggerProvider:
        """Enter context manager.

        Returns:
            This provider.
        """
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager, closing the provider."""
        self.close()
