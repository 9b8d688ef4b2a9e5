"""Log line formatter.

Renders one log record into a single block of text with a fixed column
layout, so that multi-line messages, scopes and tracebacks stay
readable in a test report:

    [2018-08-19 16:12:16Z] info: MyName[2]
          => request_id: abc123
            => loading fixtures
          First line of the message
          second line of the message
    RuntimeError: Invalid

Layout rules:
- The header is ": <category>[<event id>]", prefixed last with
  "[<timestamp>] <tag>" once the body is known.
- Scope lines, message lines and continuation lines are indented by a
  fixed six character column (width of a level tag plus ": ").
- Each nested scope adds two more spaces before "=> ".
- The exception text is written flush left, after the message.

Rendering borrows an io.StringIO from a pool owned by the formatter, so
a burst of log calls reuses the same few buffers. A buffer that grew
past MAX_RETAINED_CAPACITY is dropped instead of pooled, which bounds
the memory kept alive between calls.
"""

from __future__ import annotations

import io
import logging
import traceback
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from logbridge.exceptions import NoActiveTestError
from logbridge.levels import LogLevel, level_tag
from logbridge.output import DiagnosticMessage, MessageSink, TestOutput
from logbridge.scopes import LogScope

logger = logging.getLogger(__name__)

#: Separator between the level tag and the category.
LOG_LEVEL_PADDING = ": "

#: Left margin for scopes, messages and message continuation lines.
MESSAGE_PADDING = " " * (len(level_tag(LogLevel.DEBUG)) + len(LOG_LEVEL_PADDING))

NEW_LINE_WITH_MESSAGE_PADDING = "\n" + MESSAGE_PADDING

#: Sortable universal time, e.g. "2018-08-19 16:12:16Z".
DEFAULT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%SZ"

#: Largest buffer, in characters, returned to the pool after a render.
MAX_RETAINED_CAPACITY = 1024


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class FormatterOptions:
    """Rendering options for LogLineFormatter.

    Attributes:
        include_scopes: Render the open scope chain between the header
            and the message.
        timestamp_format: strftime pattern for the timestamp prefix.
        use_utc_timestamp: Convert the clock value to UTC before
            formatting. Matches the literal "Z" suffix of the default
            pattern; when disabled, also set a timestamp_format without
            "Z" (for example "%Y-%m-%d %H:%M:%S%z"), since the time is
            then printed as the clock returned it.
        clock: Returns the time stamped on each line.
    """

    include_scopes: bool = False
    timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT
    use_utc_timestamp: bool = True
    clock: Callable[[], datetime] = field(default=_utc_now)


class _BufferPool:
    """Pool of reusable text buffers, one per concurrent render.

    deque.pop and deque.append are atomic, so concurrent renders each
    get their own buffer without a lock.

    Example:
        >>> pool = _BufferPool()
        >>> buffer = pool.acquire()
        >>> buffer.write("text")
        >>> pool.release(buffer)
        >>> pool.acquire() is buffer
        True
    """

    def __init__(self, max_retained: int = MAX_RETAINED_CAPACITY) -> None:
        """Create an empty pool.

        Args:
            max_retained: Largest buffer size, in characters, kept for
                reuse after release().
        """
        self.max_retained = max_retained
        self._buffers: deque[io.StringIO] = deque()

    def acquire(self) -> io.StringIO:
        """Check out an empty buffer, creating one if the pool is empty.

        Returns:
            An io.StringIO positioned at 0 with no content.
        """
        try:
            return self._buffers.pop()
        except IndexError:
            return io.StringIO()

    def release(self, buffer: io.StringIO) -> None:
        """Return a buffer to the pool.

        The buffer is cleared for reuse. If it grew past max_retained it
        is replaced by a fresh buffer, so the pool never keeps a large
        allocation alive between renders.

        Args:
            buffer: Buffer previously returned by acquire().
        """
        if buffer.tell() > self.max_retained:
            # Drop the oversized buffer; memory goes with it
            buffer = io.StringIO()
        else:
            buffer.seek(0)
            buffer.truncate()
        self._buffers.append(buffer)

    def __len__(self) -> int:
        """Number of idle buffers held."""
        return len(self._buffers)


def format_exception(exception: BaseException) -> str:
    """Return the full traceback text of an exception.

    Uses the same rendering as an uncaught exception (type, message,
    chained causes and stack), without the trailing newline.

    Args:
        exception: The exception to render. A never-raised exception
            has no stack and renders as its final line only.

    Returns:
        Traceback text ending with "<Type>: <message>".
    """
    text = "".join(
        traceback.format_exception(type(exception), exception, exception.__traceback__)
    )
    return text.removesuffix("\n")


class LogLineFormatter:
    """Renders log records and hands them to test sinks.

    Safe to share between threads: per-call state lives in a buffer
    checked out of the formatter's pool for the duration of render().

    Example:
        >>> formatter = LogLineFormatter(FormatterOptions(clock=fixed_clock))
        >>> formatter.render(LogLevel.INFORMATION, "MyName", 2, None,
        ...                  RuntimeError("Invalid"))
        '[2018-08-19 16:12:16Z] info: MyName[2]\\nRuntimeError: Invalid'
    """

    def __init__(self, options: FormatterOptions | None = None) -> None:
        """Create a formatter with its own buffer pool.

        Args:
            options: Rendering options; defaults apply when None.
        """
        self.options = options or FormatterOptions()
        self._pool = _BufferPool()

    def format_timestamp(self) -> str:
        """Format the clock's current value with the configured pattern.

        Returns:
            The timestamp text placed between brackets at the start of
            each line.

        Example:
            >>> formatter.format_timestamp()
            '2018-08-19 16:12:16Z'
        """
        now = self.options.clock()
        if self.options.use_utc_timestamp:
            now = now.astimezone(UTC)
        return now.strftime(self.options.timestamp_format)

    def render(
        self,
        level: LogLevel | int,
        category: str,
        event_id: int,
        message: str | None,
        exception: BaseException | None = None,
        scopes: Iterable[LogScope] | None = None,
    ) -> str | None:
        """Render one log record.

        Args:
            level: Severity. Must be one of the six real levels.
            category: Logger name shown in the header.
            event_id: Integer tag shown in brackets after the category.
            message: Formatted message. May be None or empty when an
                exception is given.
            exception: Exception whose traceback follows the message.
            scopes: Scope frames, outermost first. Rendered only when
                include_scopes is enabled.

        Returns:
            The rendered block, or None when there is neither a message
            nor an exception.

        Raises:
            ValueError: If level has no tag (NONE or out of range).
        """
        has_message = bool(message)
        if not has_message and exception is None:
            return None

        tag = level_tag(level)
        buffer = self._pool.acquire()
        try:
            buffer.write(LOG_LEVEL_PADDING)
            buffer.write(category)
            buffer.write(f"[{event_id}]\n")

            if self.options.include_scopes and scopes is not None:
                self._write_scopes(buffer, scopes)

            if has_message:
                buffer.write(MESSAGE_PADDING)
                buffer.write(message.replace("\n", NEW_LINE_WITH_MESSAGE_PADDING))

            if exception is not None:
                if has_message:
                    buffer.write("\n")
                buffer.write(format_exception(exception))

            # Prefix last: [timestamp] tag
            return f"[{self.format_timestamp()}] {tag}{buffer.getvalue()}"
        finally:
            self._pool.release(buffer)

    @staticmethod
    def _write_scopes(buffer: io.StringIO, scopes: Iterable[LogScope]) -> None:
        for depth, scope in enumerate(scopes):
            indent = MESSAGE_PADDING + "  " * depth + "=> "
            for line in scope.state.lines():
                buffer.write(indent)
                buffer.write(line)
                buffer.write("\n")

    def deliver(
        self,
        line: str,
        output: TestOutput | None,
        message_sink: MessageSink | None = None,
        message_factory: Callable[[str], object] = DiagnosticMessage,
    ) -> None:
        """Hand a rendered block to the configured sinks.

        A NoActiveTestError from either sink means the owning test ended
        between the enabled check and the write; the line is dropped.
        Any other exception propagates.
        """
        try:
            if output is not None:
                output.write_line(line)
            if message_sink is not None:
                message_sink.on_message(message_factory(line))
        except NoActiveTestError as e:
            logger.debug("Dropped log line: %s", e)

    def write(
        self,
        level: LogLevel | int,
        category: str,
        event_id: int,
        message: str | None,
        exception: BaseException | None = None,
        *,
        output: TestOutput | None = None,
        message_sink: MessageSink | None = None,
        message_factory: Callable[[str], object] = DiagnosticMessage,
        scopes: Iterable[LogScope] | None = None,
    ) -> str | None:
        """Render a record and deliver it, skipping work nobody will see.

        Returns:
            The delivered block, or None if nothing was rendered because
            there is no sink or nothing to print.
        """
        if output is None and message_sink is None:
            return None

        line = self.render(level, category, event_id, message, exception, scopes)
        if line is not None:
            self.deliver(line, output, message_sink, message_factory)
        return line
