"""Capture destinations and the accessors that locate them.

A log line ends up in one of two kinds of sink:

- TestOutput: the per-test capture buffer. Lines written here are
  attached to the test's report by the pytest plugin.
- MessageSink: a relay for diagnostic messages that are not tied to a
  single test (the plugin relays them to the terminal reporter).

Loggers never hold a sink directly. They hold an accessor and look the
sink up on every write, because the test that owns the output changes
while a long-lived logger (an application under test, a session fixture)
keeps running:

- FixedOutputAccessor: always the same output, for one-off loggers.
- AmbientOutputAccessor: context-local, set by the plugin around each
  test phase and propagated to asyncio tasks.
- ActiveTestOutputAccessor: process-wide output of the running test,
  visible from threads that did not inherit the test's context.
- CompositeOutputAccessor: ambient first, then the active test.

Example:
    output = TestOutput("test_login")
    accessor = AmbientOutputAccessor()
    accessor.output = output
    assert accessor.output is output
"""

from __future__ import annotations

import contextvars
import threading
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from logbridge.exceptions import NoActiveTestError

# =============================================================================
# Sinks
# =============================================================================


class TestOutput:
    """Thread-safe line buffer owned by a single test.

    Application threads may log while the test body runs, so writes are
    serialized with a lock. Once the owning test finishes the output is
    closed, and any further write raises NoActiveTestError.

    Attributes:
        name: Node id or name of the owning test.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, name: str = "") -> None:
        """Create an open, empty output.

        Args:
            name: Node id or name of the owning test, used in
                NoActiveTestError messages and repr().
        """
        self.name = name
        self._lines: list[str] = []
        self._lock = threading.Lock()
        self._closed = False

    def write_line(self, line: str) -> None:
        """Append one rendered log block.

        Args:
            line: Text to capture. May contain embedded newlines.

        Raises:
            NoActiveTestError: If the output has been closed.
        """
        with self._lock:
            if self._closed:
                raise NoActiveTestError(self.name or None)
            self._lines.append(line)

    @property
    def lines(self) -> list[str]:
        """Copy of the captured blocks, in write order."""
        with self._lock:
            return list(self._lines)

    @property
    def text(self) -> str:
        """Captured blocks joined with newlines."""
        with self._lock:
            return "\n".join(self._lines)

    @property
    def closed(self) -> bool:
        """True once the owning test has finished."""
        return self._closed

    def close(self) -> None:
        """Detach the output from its test. Idempotent.

        Lines already captured stay readable through lines and text;
        later write_line calls raise NoActiveTestError.

        Example:
            >>> output.close()
            >>> output.closed
            True
        """
        with self._lock:
            self._closed = True

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"TestOutput({self.name!r}, {len(self._lines)} lines, {state})"


@dataclass(frozen=True)
class DiagnosticMessage:
    """Minimal message shape relayed to a MessageSink."""

    message: str

    def __str__(self) -> str:
        return self.message


@runtime_checkable
class MessageSink(Protocol):  # pragma: no cover
    """Protocol for objects that accept relayed diagnostic messages."""

    def on_message(self, message: object) -> bool:
        """Handle a relayed message.

        Returns:
            True to keep receiving messages.
        """
        ...


# =============================================================================
# Output Accessors
# =============================================================================


@runtime_checkable
class OutputAccessor(Protocol):  # pragma: no cover
    """Protocol for a mutable holder of the current TestOutput."""

    @property
    def output(self) -> TestOutput | None:
        """The current capture destination, or None."""
        ...

    @output.setter
    def output(self, value: TestOutput | None) -> None: ...


class FixedOutputAccessor:
    """Accessor holding a single output set at construction.

    Used by loggers that belong to exactly one test, such as the
    bridge_logger fixture or to_logger().

    Example:
        >>> accessor = FixedOutputAccessor(output)
        >>> accessor.output is output
        True
    """

    def __init__(self, output: TestOutput | None) -> None:
        """Initialize with the output every write goes to.

        Args:
            output: The TestOutput to hold.

        Raises:
            ValueError: If output is None.
        """
        if output is None:
            raise ValueError("output must not be None")
        self._output: TestOutput | None = output

    @property
    def output(self) -> TestOutput | None:
        """The held output."""
        return self._output

    @output.setter
    def output(self, value: TestOutput | None) -> None:
        """Replace the held output; None detaches the accessor."""
        self._output = value


# Ambient output for the current logical context
_ambient_output: contextvars.ContextVar[TestOutput | None] = contextvars.ContextVar(
    "logbridge_output", default=None
)


class AmbientOutputAccessor:
    """Accessor backed by a context variable.

    All instances share the same context variable, so setting the output
    through one instance is visible through every other instance in the
    same logical context. The value follows asyncio tasks created while
    it is set, but threads started with threading.Thread do not see it.
    """

    @property
    def output(self) -> TestOutput | None:
        """Output bound to the current logical context, or None."""
        return _ambient_output.get()

    @output.setter
    def output(self, value: TestOutput | None) -> None:
        """Bind an output to the current context without a reset token."""
        _ambient_output.set(value)

    def bind(self, output: TestOutput | None) -> contextvars.Token[TestOutput | None]:
        """Set the output and return a token for reset().

        Args:
            output: The output for the current context, or None.

        Returns:
            Token restoring the previous binding when passed to reset().

        Example:
            >>> token = AMBIENT_OUTPUT.bind(output)
            >>> try:
            ...     run_phase()
            ... finally:
            ...     AMBIENT_OUTPUT.reset(token)
        """
        return _ambient_output.set(output)

    def reset(self, token: contextvars.Token[TestOutput | None]) -> None:
        """Restore the output that was current before bind().

        Args:
            token: Token returned by the matching bind() call.

        Raises:
            ValueError: If the token was created in another context.
        """
        _ambient_output.reset(token)


# Output of the test pytest is currently running, process-wide
_active_output: TestOutput | None = None
_active_lock = threading.Lock()


def set_active_test_output(output: TestOutput | None) -> TestOutput | None:
    """Publish the running test's output process-wide.

    Called by the pytest plugin when a test starts and ends.

    Args:
        output: The new active output, or None between tests.

    Returns:
        The previously active output.
    """
    global _active_output

    with _active_lock:
        previous = _active_output
        _active_output = output
    return previous


def get_active_test_output() -> TestOutput | None:
    """Return the running test's output, or None between tests."""
    return _active_output


class ActiveTestOutputAccessor:
    """Read-only accessor for the process-wide active test output."""

    @property
    def output(self) -> TestOutput | None:
        """Output of the test pytest is running, or None between tests."""
        return get_active_test_output()

    @output.setter
    def output(self, value: TestOutput | None) -> None:
        """Always fails; see set_active_test_output().

        Raises:
            AttributeError: Always.
        """
        raise AttributeError(
            "ActiveTestOutputAccessor is read-only; the pytest plugin "
            "owns the active test output"
        )


class CompositeOutputAccessor:
    """Ambient output first, falling back to the active test output.

    Setting the output writes to the ambient accessor only.
    """

    def __init__(
        self,
        ambient: AmbientOutputAccessor | None = None,
        active: ActiveTestOutputAccessor | None = None,
    ) -> None:
        """Initialize from the two accessors consulted in order.

        Args:
            ambient: Context-local accessor. Defaults to a new
                AmbientOutputAccessor, which shares AMBIENT_OUTPUT's slot.
            active: Process-wide accessor. Defaults to a new
                ActiveTestOutputAccessor.
        """
        self._ambient = ambient or AmbientOutputAccessor()
        self._active = active or ActiveTestOutputAccessor()

    @property
    def output(self) -> TestOutput | None:
        """Ambient output if bound, else the active test output."""
        output = self._ambient.output
        if output is None:
            output = self._active.output
        return output

    @output.setter
    def output(self, value: TestOutput | None) -> None:
        """Bind an output in the current context (ambient only)."""
        self._ambient.output = value


AMBIENT_OUTPUT = AmbientOutputAccessor()
COMPOSITE_OUTPUT = CompositeOutputAccessor(AMBIENT_OUTPUT)


# =============================================================================
# Message Sink Accessor
# =============================================================================


class MessageSinkAccessor:
    """Mutable holder of the current MessageSink.

    The pytest plugin clears the held sink while a test runs, so that
    lines logged during a test are not also relayed to the terminal.
    """

    def __init__(self, message_sink: MessageSink | None) -> None:
        """Initialize with the sink to relay to.

        Args:
            message_sink: Initial MessageSink.

        Raises:
            ValueError: If message_sink is None.
        """
        if message_sink is None:
            raise ValueError("message_sink must not be None")
        self._message_sink: MessageSink | None = message_sink

    @property
    def message_sink(self) -> MessageSink | None:
        """The current sink, or None while relaying is suspended."""
        return self._message_sink

    @message_sink.setter
    def message_sink(self, value: MessageSink | None) -> None:
        """Replace the sink; None suspends relaying."""
        self._message_sink = value
