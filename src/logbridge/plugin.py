"""pytest plugin routing log records into per-test output.

Registered through the ``pytest11`` entry point. For every test item the
plugin creates a TestOutput, makes it current (context-local and
process-wide) while the item's setup, call and teardown run, and
attaches what was captured in each phase to the report as a
"logbridge" section. After teardown the output is closed, so lines
logged by threads that outlive the test are dropped instead of leaking
into the next test.

A TestOutputHandler is attached to the configured logger for the whole
session. Records logged outside any test (collection, session-scoped
fixtures) are relayed to the terminal in verbose mode.

ini options:
    logbridge_level: Minimum stdlib level captured (default DEBUG).
    logbridge_include_scopes: Render open scopes (default false).
    logbridge_timestamp_format: strftime pattern for timestamps.
    logbridge_logger: Logger to attach to (default: root).

Fixtures:
    log_output: The current test's TestOutput.
    log_output_accessor: The ambient OutputAccessor.
    bridge_logger: A TestOutputLogger writing to the current test.
"""

from __future__ import annotations

import logging
from collections.abc import Generator

import pytest

from logbridge.formatter import DEFAULT_TIMESTAMP_FORMAT
from logbridge.handler import TestOutputHandler
from logbridge.logger import LoggerOptions, TestOutputLogger, TestOutputLoggerProvider
from logbridge.output import (
    AMBIENT_OUTPUT,
    COMPOSITE_OUTPUT,
    AmbientOutputAccessor,
    MessageSinkAccessor,
    TestOutput,
    set_active_test_output,
)

logger = logging.getLogger(__name__)

SECTION_NAME = "logbridge"
PLUGIN_NAME = "logbridge-session"

output_key = pytest.StashKey[TestOutput]()
_written_key = pytest.StashKey[int]()


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register the logbridge command line flag and ini options.

    Args:
        parser: pytest's option parser.
    """
    group = parser.getgroup("logbridge", "routing log records into per-test output")
    group.addoption(
        "--logbridge-disable",
        action="store_true",
        default=False,
        help="Do not attach the logbridge handler to the logging tree.",
    )
    parser.addini(
        "logbridge_level",
        "Minimum log level captured into test output (default: DEBUG).",
        default="DEBUG",
    )
    parser.addini(
        "logbridge_include_scopes",
        "Render open log scopes above each captured message.",
        type="bool",
        default=False,
    )
    parser.addini(
        "logbridge_timestamp_format",
        "strftime pattern for captured log timestamps.",
        default=DEFAULT_TIMESTAMP_FORMAT,
    )
    parser.addini(
        "logbridge_logger",
        "Name of the logger the handler is attached to (default: root).",
        default="",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Register the session plugin under PLUGIN_NAME.

    Args:
        config: The session config holding the logbridge options.

    Raises:
        pytest.UsageError: If logbridge_level is not a known level.
    """
    config.pluginmanager.register(LogBridgePlugin(config), PLUGIN_NAME)


def _parse_level(value: str) -> int:
    """Resolve an ini level given as a name ("INFO") or number ("20").

    Raises:
        pytest.UsageError: If the name is not a registered level.
    """
    value = value.strip()
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value.upper())
    if not isinstance(level, int):
        raise pytest.UsageError(f"logbridge_level: unknown log level {value!r}")
    return level


class TerminalMessageSink:
    """MessageSink writing relayed lines to the terminal reporter.

    Lines are only shown in verbose mode; otherwise they are counted and
    discarded.
    """

    def __init__(self, config: pytest.Config) -> None:
        """Initialize with the config used to find the terminal reporter."""
        self._config = config
        self.discarded = 0

    def on_message(self, message: object) -> bool:
        """Write a relayed line to the terminal in verbose mode.

        Args:
            message: Relayed message; rendered with str().

        Returns:
            Always True, to keep receiving messages.
        """
        reporter = self._config.pluginmanager.get_plugin("terminalreporter")
        if reporter is None or self._config.get_verbosity() <= 0:
            self.discarded += 1
            return True
        reporter.write_line(str(message))
        return True


class LogBridgePlugin:
    """Session-level state of the plugin.

    Attributes:
        level: Minimum stdlib level handled by the session handler.
        options: LoggerOptions built from the ini options.
        message_sink: Terminal relay for lines logged outside tests.
        provider: Logger provider writing through COMPOSITE_OUTPUT.
        handler: The attached TestOutputHandler, None when disabled.
    """

    def __init__(self, config: pytest.Config) -> None:
        """Read the ini options and build the provider.

        Args:
            config: The session config.

        Raises:
            pytest.UsageError: If logbridge_level is not a known level.
        """
        self.config = config
        self.level = _parse_level(config.getini("logbridge_level"))
        self.options = LoggerOptions(
            include_scopes=config.getini("logbridge_include_scopes"),
            timestamp_format=config.getini("logbridge_timestamp_format"),
        )
        self.message_sink = TerminalMessageSink(config)
        self.sink_accessor = MessageSinkAccessor(self.message_sink)
        self.provider = TestOutputLoggerProvider(
            COMPOSITE_OUTPUT,
            self.options,
            message_sink_accessor=self.sink_accessor,
        )
        self.handler: TestOutputHandler | None = None
        self._logger: logging.Logger | None = None
        self._saved_level = logging.NOTSET

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def pytest_sessionstart(self, session: pytest.Session) -> None:
        """Attach the session handler unless --logbridge-disable is set.

        Lowers the target logger's level when needed so records at
        logbridge_level reach the handler; the old level is saved.
        """
        if self.config.getoption("logbridge_disable"):
            return
        self._logger = logging.getLogger(self.config.getini("logbridge_logger") or None)
        self.handler = TestOutputHandler(self.provider, self.level)
        self._logger.addHandler(self.handler)

        # Make sure records at the configured level reach the handler
        self._saved_level = self._logger.level
        if self._logger.getEffectiveLevel() > self.level:
            self._logger.setLevel(self.level)
        logger.debug("logbridge handler attached to %r", self._logger.name)

    def pytest_sessionfinish(self, session: pytest.Session) -> None:
        """Detach and close the handler and restore the logger level."""
        if self.handler is None or self._logger is None:
            return
        self._logger.removeHandler(self.handler)
        self._logger.setLevel(self._saved_level)
        self.handler.close()
        self.handler = None

    # -------------------------------------------------------------------------
    # Per-test output
    # -------------------------------------------------------------------------

    def _run_phase(self, item: pytest.Item, when: str) -> Generator[None, None, None]:
        """Make the item's output current for one phase, then report it.

        Args:
            item: The test item being run.
            when: Phase name: "setup", "call" or "teardown".

        Yields:
            Once, while the phase runs.
        """
        output = item.stash[output_key]
        previous = set_active_test_output(output)
        token = AMBIENT_OUTPUT.bind(output)
        sink = self.sink_accessor.message_sink
        # Inside a test every line belongs to the test, not the terminal
        self.sink_accessor.message_sink = None
        try:
            yield
        finally:
            self.sink_accessor.message_sink = sink
            AMBIENT_OUTPUT.reset(token)
            set_active_test_output(previous)
            self._add_section(item, output, when)

    @staticmethod
    def _add_section(item: pytest.Item, output: TestOutput, when: str) -> None:
        """Attach the lines written during this phase to the report."""
        lines = output.lines
        written = item.stash.get(_written_key, 0)
        item.stash[_written_key] = len(lines)
        if len(lines) > written:
            item.add_report_section(when, SECTION_NAME, "\n".join(lines[written:]))

    @pytest.hookimpl(hookwrapper=True)
    def pytest_runtest_setup(self, item: pytest.Item) -> Generator[None, None, None]:
        """Create the item's TestOutput and capture the setup phase."""
        item.stash[output_key] = TestOutput(item.nodeid)
        yield from self._run_phase(item, "setup")

    @pytest.hookimpl(hookwrapper=True)
    def pytest_runtest_call(self, item: pytest.Item) -> Generator[None, None, None]:
        """Capture the call phase into the item's output."""
        yield from self._run_phase(item, "call")

    @pytest.hookimpl(hookwrapper=True)
    def pytest_runtest_teardown(self, item: pytest.Item) -> Generator[None, None, None]:
        """Capture the teardown phase, then close the item's output.

        Closing makes later writes (from threads that outlive the
        test) raise NoActiveTestError, which the formatter drops.
        """
        try:
            yield from self._run_phase(item, "teardown")
        finally:
            item.stash[output_key].close()


def _plugin(config: pytest.Config) -> LogBridgePlugin:
    """Return the registered session plugin.

    Raises:
        RuntimeError: If the plugin was not registered.
    """
    plugin = config.pluginmanager.get_plugin(PLUGIN_NAME)
    if not isinstance(plugin, LogBridgePlugin):
        raise RuntimeError("logbridge plugin is not registered")
    return plugin


@pytest.fixture
def log_output(request: pytest.FixtureRequest) -> TestOutput:
    """The TestOutput capturing log lines for the current test.

    Returns:
        TestOutput created for this item in pytest_runtest_setup.

    Example:
        >>> def test_checkout(log_output):
        ...     logging.getLogger("app").info("Paid")
        ...     assert "Paid" in log_output.text
    """
    return request.node.stash[output_key]


@pytest.fixture
def log_output_accessor() -> AmbientOutputAccessor:
    """The ambient accessor the plugin binds each test's output to.

    Hand it to code that creates loggers before the test starts (a
    session-scoped app, a server fixture) so their lines land in
    whichever test is running.

    Returns:
        The module-level AMBIENT_OUTPUT accessor.
    """
    return AMBIENT_OUTPUT


@pytest.fixture
def bridge_logger(request: pytest.FixtureRequest, log_output: TestOutput) -> TestOutputLogger:
    """A TestOutputLogger named after the test, writing to its output.

    Uses the session's LoggerOptions, so ini options such as
    logbridge_include_scopes apply.

    Returns:
        TestOutputLogger whose category is the test node name.
    """
    options = _plugin(request.config).options
    return TestOutputLogger.for_output(request.node.name, log_output, options)
