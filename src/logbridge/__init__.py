"""logbridge - route log records into pytest's per-test output.

Provides a formatter that renders log records (with nested scopes and
tracebacks) as aligned text blocks, loggers and a stdlib logging
handler that deliver those blocks to the running test, and a pytest
plugin that gives every test its own captured output.

Example:
    import logging
    from logbridge import push_scope

    log = logging.getLogger("app.orders")

    def test_checkout(log_output):
        with push_scope({"order_id": 42}):
            log.info("Charging card")
        assert "Charging card" in log_output.text

Direct use without the plugin:
    from logbridge import TestOutput, capture_logs

    output = TestOutput("manual")
    with capture_logs(output, "app", include_scopes=True):
        logging.getLogger("app").warning("Disk %d%% full", 91)
    print(output.text)
"""

from logbridge.exceptions import LogBridgeError, NoActiveTestError, ScopeOrderError
from logbridge.formatter import (
    DEFAULT_TIMESTAMP_FORMAT,
    FormatterOptions,
    LogLineFormatter,
)
from logbridge.handler import (
    TestOutputHandler,
    add_message_sink,
    add_test_output,
    capture_logs,
    to_logger,
)
from logbridge.levels import LogLevel, level_tag
from logbridge.logger import LoggerOptions, TestOutputLogger, TestOutputLoggerProvider
from logbridge.output import (
    AMBIENT_OUTPUT,
    COMPOSITE_OUTPUT,
    ActiveTestOutputAccessor,
    AmbientOutputAccessor,
    CompositeOutputAccessor,
    DiagnosticMessage,
    FixedOutputAccessor,
    MessageSink,
    MessageSinkAccessor,
    OutputAccessor,
    TestOutput,
)
from logbridge.scopes import (
    LinesState,
    LogScope,
    PairsState,
    ScopeToken,
    SingleState,
    current_scope,
    iter_scopes,
    push_scope,
)

__version__ = "0.1.0"

__all__ = [
    # Levels
    "LogLevel",
    "level_tag",
    # Scopes
    "LinesState",
    "LogScope",
    "PairsState",
    "ScopeToken",
    "SingleState",
    "current_scope",
    "iter_scopes",
    "push_scope",
    # Formatting
    "DEFAULT_TIMESTAMP_FORMAT",
    "FormatterOptions",
    "LogLineFormatter",
    # Sinks and accessors
    "AMBIENT_OUTPUT",
    "COMPOSITE_OUTPUT",
    "ActiveTestOutputAccessor",
    "AmbientOutputAccessor",
    "CompositeOutputAccessor",
    "DiagnosticMessage",
    "FixedOutputAccessor",
    "MessageSink",
    "MessageSinkAccessor",
    "OutputAccessor",
    "TestOutput",
    # Loggers
    "LoggerOptions",
    "TestOutputLogger",
    "TestOutputLoggerProvider",
    # stdlib integration
    "TestOutputHandler",
    "add_message_sink",
    "add_test_output",
    "capture_logs",
    "to_logger",
    # Errors
    "LogBridgeError",
    "NoActiveTestError",
    "ScopeOrderError",
]
