"""Tests for TestOutputLogger and TestOutputLoggerProvider."""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from logbridge.levels import LogLevel
from logbridge.logger import LoggerOptions, TestOutputLogger, TestOutputLoggerProvider
from logbridge.output import (
    DiagnosticMessage,
    FixedOutputAccessor,
    MessageSinkAccessor,
    TestOutput,
)
from logbridge.scopes import ScopeToken, current_scope
from tests.helpers import (
    STATIC_TIMESTAMP,
    describe,
    format_empty,
    format_long,
    format_none,
    lines,
    static_clock,
)


def above_information(category, level):
    return level > LogLevel.INFORMATION


@pytest.fixture
def options():
    """LoggerOptions with the frozen clock."""
    return LoggerOptions(clock=static_clock)


@pytest.fixture
def logger(output, options):
    """Logger "MyName" writing to the unit output."""
    return TestOutputLogger.for_output("MyName", output, options)


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    """Tests for TestOutputLogger construction and configuration."""

    def test_name_required(self, output):
        """Verifies a logger needs a name.

        Arrangement:
        1. None as name, valid accessor.

        Action:
        Constructs the logger.

        Assertion Strategy:
        Validates ValueError mentioning "name".

        Testing Principle:
        Validates argument checking.
        """
        with pytest.raises(ValueError, match="name"):
            TestOutputLogger(None, FixedOutputAccessor(output))

    def test_accessor_required(self):
        """Verifies at least one accessor is needed.

        Arrangement:
        1. Name only.

        Action:
        Constructs the logger.

        Assertion Strategy:
        Validates ValueError mentioning "accessor".

        Testing Principle:
        Validates a logger always has a destination source.
        """
        with pytest.raises(ValueError, match="accessor"):
            TestOutputLogger("MyName")

    def test_for_output_rejects_none(self):
        """Verifies for_output refuses a missing output.

        Arrangement:
        1. None as output.

        Action:
        Calls for_output.

        Assertion Strategy:
        Validates ValueError mentioning "output".

        Testing Principle:
        Validates factory argument checking.
        """
        with pytest.raises(ValueError, match="output"):
            TestOutputLogger.for_output("MyName", None)

    def test_for_message_sink_rejects_none(self):
        """Verifies for_message_sink refuses a missing sink.

        Arrangement:
        1. None as sink.

        Action:
        Calls for_message_sink.

        Assertion Strategy:
        Validates ValueError mentioning "message_sink".

        Testing Principle:
        Validates factory argument checking.
        """
        with pytest.raises(ValueError, match="message_sink"):
            TestOutputLogger.for_message_sink("MyName", None)

    def test_defaults(self, output):
        """Verifies a logger built without options uses the defaults.

        Arrangement:
        1. Logger created with only a name and an output.

        Action:
        Reads its configuration properties.

        Assertion Strategy:
        Validates the default filter accepts even NONE, the default
        message factory is DiagnosticMessage, scopes are off, and the
        clock returns an aware datetime.

        Testing Principle:
        Validates zero-configuration usability.
        """
        logger = TestOutputLogger.for_output("MyName", output)

        assert logger.name == "MyName"
        assert logger.filter(None, LogLevel.NONE) is True
        assert logger.message_factory("x") == DiagnosticMessage("x")
        assert logger.include_scopes is False
        assert logger.clock().tzinfo is not None
        assert logger.output is output
        assert logger.message_sink is None

    def test_options_applied(self, output):
        """Verifies every LoggerOptions field reaches the logger.

        Arrangement:
        1. Options with filter, scopes, clock and factory set.

        Action:
        Builds a logger and reads its properties.

        Assertion Strategy:
        Validates each property is the configured object.

        Testing Principle:
        Validates configuration wiring.
        """
        factory = MagicMock()
        logger = TestOutputLogger.for_output(
            "MyName",
            output,
            LoggerOptions(
                filter=above_information,
                include_scopes=True,
                clock=static_clock,
                message_factory=factory,
            ),
        )

        assert logger.filter is above_information
        assert logger.include_scopes is True
        assert logger.clock is static_clock
        assert logger.message_factory is factory

    def test_filter_rejects_none(self, logger):
        """Verifies the filter cannot be cleared.

        Arrangement:
        1. Default logger.

        Action:
        Assigns None to filter.

        Assertion Strategy:
        Validates ValueError.

        Testing Principle:
        Validates the filter is always callable.
        """
        with pytest.raises(ValueError):
            logger.filter = None

    def test_filter_can_be_replaced(self, logger):
        """Verifies the filter can be swapped after construction.

        Arrangement:
        1. Default logger.

        Action:
        Assigns a new filter.

        Assertion Strategy:
        Validates the property returns it.

        Testing Principle:
        Validates runtime reconfiguration.
        """
        logger.filter = above_information

        assert logger.filter is above_information

    def test_message_factory_rejects_none(self, logger):
        """Verifies the message factory cannot be cleared.

        Arrangement:
        1. Default logger.

        Action:
        Assigns None to message_factory.

        Assertion Strategy:
        Validates ValueError.

        Testing Principle:
        Validates sinks always get a message.
        """
        with pytest.raises(ValueError):
            logger.message_factory = None

    def test_include_scopes_is_per_logger(self, output, options):
        """Verifies toggling scopes on one logger leaves others alone.

        Arrangement:
        1. Provider with two loggers sharing options.

        Action:
        Enables include_scopes on the first.

        Assertion Strategy:
        Validates the second is still off.

        Testing Principle:
        Validates options are copied per logger.
        """
        provider = TestOutputLoggerProvider.for_output(output, options)
        first = provider.create_logger("first")
        second = provider.create_logger("second")

        first.include_scopes = True

        assert second.include_scopes is False

    def test_repr(self, logger):
        """Verifies repr shows the category.

        Arrangement:
        1. Logger "MyName".

        Action:
        Calls repr().

        Assertion Strategy:
        Validates "TestOutputLogger('MyName')".

        Testing Principle:
        Validates readable debugging output.
        """
        assert repr(logger) == "TestOutputLogger('MyName')"


# =============================================================================
# Scopes and Filtering
# =============================================================================


class TestScopes:
    """Tests for begin_scope()."""

    def test_begin_scope_returns_token(self, logger):
        """Verifies begin_scope pushes a scope and returns its token.

        Arrangement:
        1. Default logger.

        Action:
        Begins a scope, then closes it.

        Assertion Strategy:
        Validates a ScopeToken whose scope is current.

        Testing Principle:
        Validates delegation to the shared scope chain.
        """
        token = logger.begin_scope("state")

        assert isinstance(token, ScopeToken)
        assert current_scope() is token.scope
        token.close()

    def test_begin_scope_rejects_none(self, logger):
        """Verifies begin_scope(None) is refused.

        Arrangement:
        1. Default logger.

        Action:
        Begins a scope with None.

        Assertion Strategy:
        Validates ValueError.

        Testing Principle:
        Validates argument checking.
        """
        with pytest.raises(ValueError):
            logger.begin_scope(None)


class TestIsEnabled:
    """Tests for is_enabled()."""

    @pytest.mark.parametrize(
        ("level", "expected"),
        [
            (LogLevel.TRACE, False),
            (LogLevel.DEBUG, False),
            (LogLevel.INFORMATION, False),
            (LogLevel.WARNING, True),
            (LogLevel.ERROR, True),
            (LogLevel.CRITICAL, True),
            (LogLevel.NONE, False),
        ],
    )
    def test_filter_decides(self, output, level, expected):
        """Verifies the filter controls which levels are enabled.

        Arrangement:
        1. Filter enabling only levels above INFORMATION and recording
           the category it was called with.

        Action:
        Calls is_enabled for every level.

        Assertion Strategy:
        Validates the expected result per level, NONE always false,
        and that the filter sees the logger's category.

        Testing Principle:
        Validates filter delegation with the NONE override.
        """
        seen = []

        def record_filter(category, lvl):
            seen.append(category)
            return lvl > LogLevel.INFORMATION

        logger = TestOutputLogger.for_output(
            "MyName", output, LoggerOptions(filter=record_filter)
        )

        assert logger.is_enabled(level) is expected
        if level is not LogLevel.NONE:
            assert seen == ["MyName"]

    def test_none_disabled_even_when_filter_accepts(self, logger):
        """Verifies NONE is disabled regardless of the filter.

        Arrangement:
        1. Default filter accepting everything.

        Action:
        Calls is_enabled(NONE).

        Assertion Strategy:
        Validates False.

        Testing Principle:
        Validates the sentinel is never logged.
        """
        assert logger.is_enabled(LogLevel.NONE) is False


# =============================================================================
# Logging
# =============================================================================


class TestLog:
    """Tests for log() and write_message()."""

    def test_exception_only(self, logger, output):
        """Verifies a record with only an exception is written.

        Arrangement:
        1. Formatter returning None.

        Action:
        Logs with a RuntimeError.

        Assertion Strategy:
        Validates header and exception line.

        Testing Principle:
        Validates exceptions are logged without text.
        """
        logger.log(LogLevel.INFORMATION, 2, None, RuntimeError("Invalid"), format_none)

        assert output.lines == [
            lines(f"[{STATIC_TIMESTAMP}] info: MyName[2]", "RuntimeError: Invalid")
        ]

    def test_message_and_exception(self, logger, output):
        """Verifies the formatter sees state and exception.

        Arrangement:
        1. describe() formatter reporting which arguments were set.

        Action:
        Logs with state and exception.

        Assertion Strategy:
        Validates "Message|True|True" followed by the exception.

        Testing Principle:
        Validates the formatter contract.
        """
        logger.log(LogLevel.INFORMATION, 2, "state", RuntimeError("Invalid"), describe)

        assert output.lines == [
            lines(
                f"[{STATIC_TIMESTAMP}] info: MyName[2]",
                "      Message|True|True",
                "RuntimeError: Invalid",
            )
        ]

    @pytest.mark.parametrize("formatter", [format_none, format_empty])
    def test_nothing_written_without_message(self, logger, output, formatter):
        """Verifies nothing is written for an empty record.

        Arrangement:
        1. Formatter returning None or "", no exception.

        Action:
        Logs the record.

        Assertion Strategy:
        Validates the output stays empty.

        Testing Principle:
        Validates no blank blocks.
        """
        logger.log(LogLevel.INFORMATION, 2, None, None, formatter)

        assert output.lines == []

    def test_long_message(self, logger, output):
        """Verifies a 2048 character message is written in full.

        Arrangement:
        1. Formatter returning 2048 "a" characters.

        Action:
        Logs the record.

        Assertion Strategy:
        Validates the complete padded message.

        Testing Principle:
        Validates no truncation of large messages.
        """
        logger.log(LogLevel.INFORMATION, 2, None, None, format_long)

        assert output.lines == [
            lines(f"[{STATIC_TIMESTAMP}] info: MyName[2]", "      " + "a" * 2048)
        ]

    def test_formatter_required(self, logger):
        """Verifies an enabled record needs a formatter.

        Arrangement:
        1. Default logger.

        Action:
        Logs with formatter None.

        Assertion Strategy:
        Validates ValueError mentioning "formatter".

        Testing Principle:
        Validates argument checking.
        """
        with pytest.raises(ValueError, match="formatter"):
            logger.log(LogLevel.INFORMATION, 0, "state", None, None)

    def test_disabled_level_not_written(self, options):
        """Verifies a filtered record never reaches the output.

        Arrangement:
        1. Mock output standing in for TestOutput.
        2. Filter enabling only levels above INFORMATION.

        Action:
        Logs at DEBUG, and with a formatter that would fail if called.

        Assertion Strategy:
        Validates write_line and the formatter are never called.

        Testing Principle:
        Validates the filter runs before any other work.
        """
        output = MagicMock(spec=TestOutput)
        options.filter = above_information
        logger = TestOutputLogger.for_output("MyName", output, options)
        formatter = MagicMock()

        logger.log(LogLevel.DEBUG, 0, "state", None, formatter)

        formatter.assert_not_called()
        output.write_line.assert_not_called()

    def test_filtered_record_skips_formatter_validation(self, options, output):
        """Verifies a filtered record with no formatter is a no-op.

        Arrangement:
        1. Filter rejecting DEBUG.

        Action:
        Logs at DEBUG with formatter None.

        Assertion Strategy:
        Validates no error and an empty output.

        Testing Principle:
        Validates the filter is evaluated first.
        """
        options.filter = above_information
        logger = TestOutputLogger.for_output("MyName", output, options)

        logger.log(LogLevel.DEBUG, 0, "state", None, None)

        assert output.lines == []

    def test_invalid_level_raises(self, logger):
        """Verifies out-of-range levels are rejected.

        Arrangement:
        1. Default logger.

        Action:
        Logs at level 99.

        Assertion Strategy:
        Validates ValueError.

        Testing Principle:
        Validates invalid levels fail loudly.
        """
        with pytest.raises(ValueError):
            logger.log(99, 0, "state", None, describe)

    def test_no_output_is_a_no_op(self, options):
        """Verifies a record with no destination is dropped.

        Arrangement:
        1. Accessor whose output is None.

        Action:
        Logs a record.

        Assertion Strategy:
        Validates no error and output still None.

        Testing Principle:
        Validates logging between tests is harmless.
        """
        accessor = MagicMock()
        accessor.output = None
        logger = TestOutputLogger("MyName", accessor, options)

        logger.log(LogLevel.INFORMATION, 0, "state", None, describe)

        assert logger.output is None

    def test_detached_output_is_ignored(self, logger, output):
        """Verifies writing to a closed output is silently dropped.

        Arrangement:
        1. Output closed.

        Action:
        Logs a record.

        Assertion Strategy:
        Validates no error and no lines.

        Testing Principle:
        Validates late writes are harmless.
        """
        output.close()

        logger.log(LogLevel.INFORMATION, 0, "state", None, describe)

        assert output.lines == []

    def test_other_write_errors_propagate(self, options):
        """Verifies unexpected write errors reach the caller.

        Arrangement:
        1. Output mock raising OSError.

        Action:
        Logs a record.

        Assertion Strategy:
        Validates OSError is raised.

        Testing Principle:
        Validates only detached outputs are silenced.
        """
        output = MagicMock(spec=TestOutput)
        output.write_line.side_effect = OSError("broken")
        logger = TestOutputLogger.for_output("MyName", output, options)

        with pytest.raises(OSError):
            logger.log(LogLevel.INFORMATION, 0, "state", None, describe)

    def test_nested_scopes_rendered(self, output, options):
        """Verifies scopes opened through the logger are rendered.

        Arrangement:
        1. include_scopes enabled.
        2. Three nested scopes, the innermost closed before the second
           record.

        Action:
        Logs one record inside all three, one inside two.

        Assertion Strategy:
        Validates both exact blocks.

        Testing Principle:
        Validates scope rendering follows the live chain.
        """
        options.include_scopes = True
        logger = TestOutputLogger.for_output("MyName", output, options)

        with logger.begin_scope("_"), logger.begin_scope("__"):
            with logger.begin_scope("___"):
                logger.log(LogLevel.INFORMATION, 2, "state", None, describe)
            logger.log(LogLevel.INFORMATION, 3, "state", None, describe)

        assert output.lines == [
            lines(
                f"[{STATIC_TIMESTAMP}] info: MyName[2]",
                "      => _",
                "        => __",
                "          => ___",
                "      Message|True|False",
            ),
            lines(
                f"[{STATIC_TIMESTAMP}] info: MyName[3]",
                "      => _",
                "        => __",
                "      Message|True|False",
            ),
        ]

    def test_include_scopes_toggle(self, logger, output):
        """Verifies include_scopes can be enabled after construction.

        Arrangement:
        1. Default logger with scopes off, then switched on.

        Action:
        Logs inside a mapping scope.

        Assertion Strategy:
        Validates the scope line is present.

        Testing Principle:
        Validates the property setter takes effect.
        """
        logger.include_scopes = True

        with logger.begin_scope({"request": 1}):
            logger.log(LogLevel.INFORMATION, 0, "state", None, describe)

        assert "      => request: 1" in output.text


class TestMessageSink:
    """Tests for relaying lines to a MessageSink."""

    def test_sink_receives_diagnostic_message(self, options):
        """Verifies a sink-only logger relays the rendered block.

        Arrangement:
        1. Logger bound to a mock message sink, no output.

        Action:
        Logs an exception-only record.

        Assertion Strategy:
        Validates on_message is called once with a DiagnosticMessage
        whose text is the rendered block.

        Testing Principle:
        Validates the diagnostic relay path outside tests.
        """
        sink = MagicMock()
        logger = TestOutputLogger.for_message_sink("MyName", sink, options)

        logger.log(LogLevel.INFORMATION, 2, None, RuntimeError("Invalid"), format_none)

        sink.on_message.assert_called_once_with(
            DiagnosticMessage(
                lines(f"[{STATIC_TIMESTAMP}] info: MyName[2]", "RuntimeError: Invalid")
            )
        )

    def test_custom_message_factory(self, options):
        """Verifies the configured factory builds sink messages.

        Arrangement:
        1. Factory producing ("custom", text) tuples.

        Action:
        Logs one record.

        Assertion Strategy:
        Validates the sink received a "custom" tuple.

        Testing Principle:
        Validates pluggable message types.
        """
        sink = MagicMock()
        options.message_factory = lambda text: ("custom", text)
        logger = TestOutputLogger.for_message_sink("MyName", sink, options)

        logger.log(LogLevel.WARNING, 1, "state", None, describe)

        kind, _ = sink.on_message.call_args.args[0]
        assert kind == "custom"

    def test_output_and_sink_both_receive(self, output, options):
        """Verifies one record reaches both destinations.

        Arrangement:
        1. Logger with an output accessor and a sink accessor.

        Action:
        Logs one record.

        Assertion Strategy:
        Validates one output line and the same text at the sink.

        Testing Principle:
        Validates render once, deliver twice.
        """
        sink = MagicMock()
        logger = TestOutputLogger(
            "MyName",
            FixedOutputAccessor(output),
            options,
            message_sink_accessor=MessageSinkAccessor(sink),
        )

        logger.log(LogLevel.WARNING, 1, "state", None, describe)

        assert len(output.lines) == 1
        sink.on_message.assert_called_once_with(DiagnosticMessage(output.lines[0]))

    def test_cleared_sink_is_skipped(self, options):
        """Verifies a cleared sink accessor receives nothing.

        Arrangement:
        1. Sink accessor cleared after the logger is built.

        Action:
        Logs one record.

        Assertion Strategy:
        Validates the sink was not called.

        Testing Principle:
        Validates per-record accessor lookup.
        """
        sink = MagicMock()
        accessor = MessageSinkAccessor(sink)
        logger = TestOutputLogger("MyName", options=options, message_sink_accessor=accessor)
        accessor.message_sink = None

        logger.log(LogLevel.WARNING, 1, "state", None, describe)

        sink.on_message.assert_not_called()


class TestWriteMessageOverride:
    """Tests for the write_message_override option."""

    def test_override_replaces_writer(self, output, options):
        """Verifies the override receives the record instead of rendering.

        Arrangement:
        1. Options with a MagicMock write_message_override.

        Action:
        Logs a record with a message and an exception.

        Assertion Strategy:
        Validates the override's arguments and that nothing was
        rendered into the output.

        Testing Principle:
        Validates the extension point for custom writers.
        """
        override = MagicMock()
        options.write_message_override = override
        logger = TestOutputLogger.for_output("MyName", output, options)
        error = RuntimeError("Invalid")

        logger.log(3, 7, "state", error, describe)

        override.assert_called_once_with(
            logger, output, None, LogLevel.WARNING, 7, "Message|True|True", error
        )
        assert output.lines == []

    def test_override_not_called_for_empty_message(self, output, options):
        """Verifies empty records skip the override.

        Arrangement:
        1. MagicMock override; formatter returning None.

        Action:
        Logs a record with no message and no exception.

        Assertion Strategy:
        Validates the override was not called.

        Testing Principle:
        Validates the empty-record check precedes the override.
        """
        override = MagicMock()
        options.write_message_override = override
        logger = TestOutputLogger.for_output("MyName", output, options)

        logger.log(LogLevel.WARNING, 7, None, None, format_none)

        override.assert_not_called()


# =============================================================================
# Provider
# =============================================================================


class TestProvider:
    """Tests for TestOutputLoggerProvider."""

    def test_requires_an_accessor(self):
        """Verifies a provider needs at least one accessor.

        Arrangement:
        1. No arguments.

        Action:
        Constructs the provider.

        Assertion Strategy:
        Validates ValueError.

        Testing Principle:
        Validates argument checking.
        """
        with pytest.raises(ValueError):
            TestOutputLoggerProvider()

    def test_factory_methods_reject_none(self):
        """Verifies factory methods refuse None.

        Arrangement:
        1. None as output, then as sink.

        Action:
        Calls for_output and for_message_sink.

        Assertion Strategy:
        Validates ValueError both times.

        Testing Principle:
        Validates factory argument checking.
        """
        with pytest.raises(ValueError):
            TestOutputLoggerProvider.for_output(None)
        with pytest.raises(ValueError):
            TestOutputLoggerProvider.for_message_sink(None)

    def test_logger_cached_per_category(self, output):
        """Verifies one logger per category is cached.

        Arrangement:
        1. Provider for one output.

        Action:
        Creates loggers for two categories, one twice.

        Assertion Strategy:
        Validates identity for the same category, distinct otherwise.

        Testing Principle:
        Validates the per-category cache.
        """
        provider = TestOutputLoggerProvider.for_output(output)

        first = provider.create_logger("app.db")

        assert provider.create_logger("app.db") is first
        assert provider.create_logger("app.web") is not first
        assert first.name == "app.db"

    def test_loggers_share_options(self, output, options):
        """Verifies loggers from one provider share its configuration.

        Arrangement:
        1. Provider with the frozen clock.

        Action:
        Logs through two categories.

        Assertion Strategy:
        Validates both exact blocks with the frozen timestamp.

        Testing Principle:
        Validates provider-wide options.
        """
        provider = TestOutputLoggerProvider.for_output(output, options)

        provider.create_logger("a").log(LogLevel.ERROR, 1, "s", None, describe)
        provider.create_logger("b").log(LogLevel.ERROR, 2, "s", None, describe)

        assert output.lines == [
            lines(f"[{STATIC_TIMESTAMP}] fail: a[1]", "      Message|True|False"),
            lines(f"[{STATIC_TIMESTAMP}] fail: b[2]", "      Message|True|False"),
        ]

    def test_concurrent_creation_publishes_one_logger(self, output):
        """Verifies racing create_logger calls agree on one instance.

        Arrangement:
        1. Provider shared by 16 worker threads.
        2. Barrier so all workers request the category together.

        Action:
        Each worker calls create_logger("shared").

        Assertion Strategy:
        Validates every worker received the same object.

        Testing Principle:
        Validates thread-safe lazy creation.
        """
        provider = TestOutputLoggerProvider.for_output(output)
        barrier = threading.Barrier(16)

        def create(_):
            barrier.wait()
            return provider.create_logger("shared")

        with ThreadPoolExecutor(max_workers=16) as pool:
            loggers = list(pool.map(create, range(16)))

        assert all(logger is loggers[0] for logger in loggers)

    def test_close_drops_cache(self, output):
        """Verifies close() forgets cached loggers.

        Arrangement:
        1. One cached logger.

        Action:
        Closes the provider and creates the category again.

        Assertion Strategy:
        Validates a new instance.

        Testing Principle:
        Validates explicit cleanup.
        """
        provider = TestOutputLoggerProvider.for_output(output)
        first = provider.create_logger("app")

        provider.close()

        assert provider.create_logger("app") is not first

    def test_context_manager_closes(self, output):
        """Verifies leaving the with block closes the provider.

        Arrangement:
        1. Provider used as a context manager.

        Action:
        Creates a logger inside, then again after the block.

        Assertion Strategy:
        Validates a new instance after the block.

        Testing Principle:
        Validates scoped provider lifetime.
        """
        with TestOutputLoggerProvider.for_output(output) as provider:
            first = provider.create_logger("app")

        assert provider.create_logger("app") is not first

    def test_message_sink_provider(self, options):
        """Verifies a sink-only provider relays records.

        Arrangement:
        1. Provider built with for_message_sink.

        Action:
        Logs one WARNING record.

        Assertion Strategy:
        Validates the sink was called once.

        Testing Principle:
        Validates the sink factory path.
        """
        sink = MagicMock()
        provider = TestOutputLoggerProvider.for_message_sink(sink, options)

        provider.create_logger("app").log(LogLevel.WARNING, 0, "s", None, describe)

        sink.on_message.assert_called_once()
