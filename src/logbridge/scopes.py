"""Context-local log scopes.

A scope attaches an annotation to every log line written while it is
open. Scopes nest: each new scope records the scope that was current
when it was opened as its parent, forming a singly linked chain whose
head is stored in a ``contextvars.ContextVar``. The chain therefore
follows asyncio tasks and ``contextvars.copy_context()`` runs belonging
to the same logical operation, while unrelated threads each see their
own (initially empty) chain.

The annotation is classified once, when the scope is pushed, into one
of three states so that rendering never has to inspect types:

- PairsState: ordered key/value pairs, rendered as "key: value" lines.
- LinesState: ordered strings, rendered one per line.
- SingleState: any other value, rendered as one line with str().

Example:
    with push_scope({"request_id": "abc123"}):
        with push_scope("loading fixtures"):
            for scope in iter_scopes():
                print(scope.state.lines())
    # ['request_id: abc123']
    # ['loading fixtures']
"""

from __future__ import annotations

import contextvars
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from logbridge.exceptions import ScopeOrderError

# Head of the scope chain for the current logical context
_current_scope: contextvars.ContextVar[LogScope | None] = contextvars.ContextVar(
    "logbridge_scope", default=None
)


# =============================================================================
# Scope State
# =============================================================================


@dataclass(frozen=True)
class PairsState:
    """Scope annotation made of ordered key/value pairs."""

    pairs: tuple[tuple[str, Any], ...]

    def lines(self) -> list[str]:
        """Return one "key: value" line per pair, in order."""
        return [f"{key}: {value}" for key, value in self.pairs]


@dataclass(frozen=True)
class LinesState:
    """Scope annotation made of ordered free-text entries."""

    entries: tuple[str, ...]

    def lines(self) -> list[str]:
        """Return the entries, one per line."""
        return list(self.entries)


@dataclass(frozen=True)
class SingleState:
    """Scope annotation rendered from a single value."""

    value: Any

    def lines(self) -> list[str]:
        """Return the value rendered with str() as a single line."""
        return [str(self.value)]


ScopeState = PairsState | LinesState | SingleState


def _is_pair(item: object) -> bool:
    return isinstance(item, tuple) and len(item) == 2 and isinstance(item[0], str)


def classify_state(value: object) -> ScopeState:
    """Classify a scope annotation into its rendering state.

    Classification rules, in order:

    1. An existing ScopeState is returned unchanged.
    2. A Mapping becomes PairsState, keys converted with str().
    3. A str (or bytes) becomes SingleState, never a list of characters.
    4. Any other iterable is materialized once. If every item is a
       (str, value) 2-tuple it becomes PairsState; if every item is a
       str it becomes LinesState. An empty iterable is PairsState with
       no pairs and renders no lines.
    5. Anything else becomes SingleState.

    Args:
        value: The annotation passed to push_scope. Must not be None.

    Returns:
        The ScopeState used to render the annotation.

    Raises:
        ValueError: If value is None.

    Example:
        >>> classify_state([("user", "ada"), ("attempt", 2)])
        PairsState(pairs=(('user', 'ada'), ('attempt', 2)))
        >>> classify_state(["step one", "step two"])
        LinesState(entries=('step one', 'step two'))
        >>> classify_state(42)
        SingleState(value=42)
    """
    if value is None:
        raise ValueError("scope state must not be None")
    if isinstance(value, PairsState | LinesState | SingleState):
        return value
    if isinstance(value, Mapping):
        return PairsState(tuple((str(k), v) for k, v in value.items()))
    if isinstance(value, str | bytes | bytearray):
        return SingleState(value)
    if isinstance(value, Iterable):
        items = tuple(value)
        if all(_is_pair(item) for item in items):
            return PairsState(items)
        if all(isinstance(item, str) for item in items):
            return LinesState(items)
        # Iterators are exhausted by now, keep the materialized items
        return SingleState(list(items) if isinstance(value, Iterator) else value)
    return SingleState(value)


# =============================================================================
# Scope Chain
# =============================================================================


@dataclass(frozen=True, eq=False)
class LogScope:
    """One frame of the scope chain.

    Attributes:
        state: The classified annotation for this frame.
        parent: The frame that was current when this one was pushed, or
            None for the outermost frame.
    """

    state: ScopeState
    parent: LogScope | None = field(default=None, repr=False)

    def __str__(self) -> str:
        """Render the frame's lines joined with newlines."""
        return "\n".join(self.state.lines())


class ScopeToken:
    """Handle returned by push_scope; closing it pops the scope.

    Usable as a context manager. Closing is idempotent, and closing a
    scope that is not the innermost open one raises ScopeOrderError
    without modifying the chain.
    """

    def __init__(self, scope: LogScope) -> None:
        """Wrap a frame that push_scope() just made current."""
        self._scope = scope
        self._closed = False

    @property
    def scope(self) -> LogScope:
        """The frame this token controls."""
        return self._scope

    @property
    def closed(self) -> bool:
        """True once the scope has been popped."""
        return self._closed

    def close(self) -> None:
        """Pop the scope, making its parent current again.

        Raises:
            ScopeOrderError: If a scope opened after this one in the same
                context is still open.
        """
        if self._closed:
            return
        current = _current_scope.get()
        if current is not self._scope:
            raise ScopeOrderError(
                f"Scope {str(self._scope)!r} closed while an inner scope "
                f"{str(current)!r} is still open"
            )
        _current_scope.set(self._scope.parent)
        self._closed = True

    def __enter__(self) -> ScopeToken:
        """Enter context manager.

        Returns:
            This token.
        """
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager, closing the scope."""
        self.close()


def push_scope(state: object) -> ScopeToken:
    """Open a new scope in the current logical context.

    Args:
        state: The annotation. A mapping or list of (key, value) pairs,
            a list of strings, or any single value. See classify_state.

    Returns:
        ScopeToken that pops the scope when closed or exited.

    Raises:
        ValueError: If state is None.

    Example:
        >>> with push_scope({"test": "test_login"}):
        ...     logger.info("Posting credentials")
    """
    scope = LogScope(classify_state(state), parent=_current_scope.get())
    _current_scope.set(scope)
    return ScopeToken(scope)


def current_scope() -> LogScope | None:
    """Return the innermost open scope of the current context."""
    return _current_scope.get()


def iter_scopes(current: LogScope | None = None) -> Iterator[LogScope]:
    """Yield the scope chain from the outermost frame to ``current``.

    The chain is snapshotted when the function is called, so scopes
    pushed or popped while iterating do not affect the result.

    Args:
        current: Innermost frame to start from. Defaults to the current
            context's innermost scope.

    Returns:
        Iterator over LogScope frames, outermost first.
    """
    if current is None:
        current = _current_scope.get()
    chain: list[LogScope] = []
    while current is not None:
        chain.append(current)
        current = current.parent
    return reversed(chain)
