"""
DeferredValue: a value that only exists once provisioning has produced it.

Resource properties such as a server's FQDN or a storage account's connection
string are not known while the program is being declared. A DeferredValue
holds such a property and lets dependent code register continuations that
run once the value has settled.

Example:
    fqdn = DeferredValue(label="sql.fqdn")
    database = DeferredValue(label="sql.database")

    conn = DeferredValue.format("Server=tcp:{};initial catalog={}", fqdn, database)

    fqdn.resolve("todo.database.windows.net")
    database.resolve("todo")

    conn.value()  # "Server=tcp:todo.database.windows.net;initial catalog=todo"
"""

import threading
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class DeferredStateError(Exception):
    """Raised when a deferred value is settled twice or read before resolution."""
    pass


class ResolutionError(Exception):
    """Raised when reading a deferred value whose upstream failed."""

    def __init__(self, label: str | None, cause: BaseException):
        self.label = label
        self.cause = cause
        super().__init__(f"Deferred value '{label or '<anonymous>'}' failed: {cause}")


class State(Enum):
    """Lifecycle states of a DeferredValue."""

    PENDING = "pending"
    RESOLVED = "resolved"
    FAILED = "failed"
    UNKNOWN = "unknown"


class DeferredValue(Generic[T]):
    """
    Container for a value that is settled exactly once.

    A DeferredValue is either pending or settled. A settled value is one of:
    - RESOLVED: the value is known
    - FAILED: an upstream step failed; the cause is kept as-is
    - UNKNOWN: the value cannot be known in this run (e.g. a preview)

    Composition (map, chain, all, format) never blocks: it returns a new
    pending DeferredValue and registers a continuation on its inputs.
    Continuations only ever see resolved inputs, run at most once, and run
    on the thread that settled the last input they wait for.

    `origins` holds opaque handles of the runtime values this value was
    derived from (e.g. Pulumi outputs). map, chain, all and format carry
    them forward, so a runtime bridge can restore secrecy and resource
    dependencies when handing a derived value back to the runtime.
    """

    def __init__(self, label: str | None = None):
        self.label = label
        self._state = State.PENDING
        self._value: Any = None
        self._cause: BaseException | None = None
        self._listeners: list[Callable[["DeferredValue[T]"], None]] = []
        self._lock = threading.Lock()
        self.origins: tuple[Any, ...] = ()

    # Constructors

    @classmethod
    def of(cls, value: T, label: str | None = None) -> "DeferredValue[T]":
        """Create an already-resolved value."""
        deferred: DeferredValue[T] = cls(label=label)
        deferred.resolve(value)
        return deferred

    @classmethod
    def unknown(cls, label: str | None = None) -> "DeferredValue[Any]":
        """Create a value that is unknown for the rest of this run."""
        deferred: DeferredValue[Any] = cls(label=label)
        deferred.mark_unknown()
        return deferred

    @classmethod
    def failed(cls, cause: BaseException, label: str | None = None) -> "DeferredValue[Any]":
        """Create a value that has already failed with the given cause."""
        deferred: DeferredValue[Any] = cls(label=label)
        deferred.fail(cause)
        return deferred

    @classmethod
    def from_input(cls, value: Any, label: str | None = None) -> "DeferredValue[Any]":
        """Wrap a plain value; deferred values are returned unchanged."""
        if isinstance(value, DeferredValue):
            return value
        return cls.of(value, label=label)

    # State

    @property
    def state(self) -> State:
        return self._state

    @property
    def is_pending(self) -> bool:
        return self._state is State.PENDING

    @property
    def is_resolved(self) -> bool:
        return self._state is State.RESOLVED

    @property
    def is_failed(self) -> bool:
        return self._state is State.FAILED

    @property
    def is_unknown(self) -> bool:
        return self._state is State.UNKNOWN

    @property
    def cause(self) -> BaseException | None:
        """The exception this value failed with, if any."""
        return self._cause

    def value(self) -> T:
        """
        Return the resolved value.

        Raises:
            ResolutionError: If the value failed (chained from the cause)
            DeferredStateError: If the value is pending or unknown
        """
        if self._state is State.RESOLVED:
            return self._value
        if self._state is State.FAILED:
            assert self._cause is not None
            raise ResolutionError(self.label, self._cause) from self._cause
        raise DeferredStateError(
            f"Deferred value '{self.label or '<anonymous>'}' is {self._state.value}"
        )

    # Settling

    def resolve(self, value: T) -> None:
        """Settle with a known value."""
        self._settle(State.RESOLVED, value=value)

    def fail(self, cause: BaseException) -> None:
        """Settle with a failure; dependents fail with the same cause."""
        self._settle(State.FAILED, cause=cause)

    def mark_unknown(self) -> None:
        """Settle as unknown; dependents become unknown too."""
        self._settle(State.UNKNOWN)

    def _settle(self, state: State, value: Any = None, cause: BaseException | None = None) -> None:
        with self._lock:
            if self._state is not State.PENDING:
                raise DeferredStateError(
                    f"Deferred value '{self.label or '<anonymous>'}' already {self._state.value}"
                )
            self._state = state
            self._value = value
            self._cause = cause
            listeners, self._listeners = self._listeners, []

        for listener in listeners:
            listener(self)

    def on_settled(self, callback: Callable[["DeferredValue[T]"], None]) -> None:
        """
        Register a callback receiving this value once it has settled.

        The callback runs immediately if the value is already settled.
        Prefer map/chain; this is the hook runtime bridges build on.
        """
        with self._lock:
            if self._state is State.PENDING:
                self._listeners.append(callback)
                return
        callback(self)

    # Composition

    def map(self, fn: Callable[[T], U], label: str | None = None) -> "DeferredValue[U]":
        """
        Transform the resolved value.

        If fn raises, the returned value fails with that exception.
        """
        result: DeferredValue[U] = DeferredValue(label=label or self.label)
        result.origins = self.origins

        def continuation(source: DeferredValue[T]) -> None:
            if not _forward_unresolved(source, result):
                return
            try:
                mapped = fn(source._value)
            except Exception as exc:
                result.fail(exc)
                return
            result.resolve(mapped)

        self.on_settled(continuation)
        return result

    def chain(self, fn: Callable[[T], "DeferredValue[U] | U"], label: str | None = None) -> "DeferredValue[U]":
        """
        Sequence a dependent step.

        fn may return another DeferredValue, in which case the result settles
        the way that value settles, or a plain value.
        """
        result: DeferredValue[U] = DeferredValue(label=label or self.label)
        result.origins = self.origins

        def continuation(source: DeferredValue[T]) -> None:
            if not _forward_unresolved(source, result):
                return
            try:
                produced = fn(source._value)
            except Exception as exc:
                result.fail(exc)
                return
            if isinstance(produced, DeferredValue):
                produced.on_settled(lambda inner: _copy_settlement(inner, result))
            else:
                result.resolve(produced)

        self.on_settled(continuation)
        return result

    @staticmethod
    def all(*values: Any, label: str | None = None) -> "DeferredValue[tuple]":
        """
        Join several values into a tuple in argument order.

        Plain (non-deferred) arguments are treated as resolved. The join fails
        as soon as any input fails, with that input's cause; it is unknown if
        any input is unknown and none failed.
        """
        inputs = [DeferredValue.from_input(v) for v in values]
        result: DeferredValue[tuple] = DeferredValue(label=label)
        result.origins = merge_origins(*inputs)

        if not inputs:
            result.resolve(())
            return result

        lock = threading.Lock()
        remaining = [len(inputs)]
        unknown = [False]
        done = [False]

        def continuation(source: DeferredValue[Any]) -> None:
            with lock:
                if done[0]:
                    return
                if not source.is_failed:
                    unknown[0] = unknown[0] or source.is_unknown
                    remaining[0] -= 1
                    if remaining[0] > 0:
                        return
                done[0] = True

            if source.is_failed:
                assert source.cause is not None
                result.fail(source.cause)
            elif unknown[0]:
                result.mark_unknown()
            else:
                result.resolve(tuple(item._value for item in inputs))

        for item in inputs:
            item.on_settled(continuation)
        return result

    @staticmethod
    def format(template: str, *args: Any, **kwargs: Any) -> "DeferredValue[str]":
        """
        str.format over deferred and plain arguments.

        Example:
            api = DeferredValue.format("https://{}/api", app.default_hostname)
        """
        keys = list(kwargs)
        joined = DeferredValue.all(*args, *(kwargs[k] for k in keys))

        def render(values: tuple) -> str:
            positional = values[:len(args)]
            named = dict(zip(keys, values[len(args):]))
            return template.format(*positional, **named)

        return joined.map(render)

    def __repr__(self) -> str:
        if self._state is State.RESOLVED:
            return f"DeferredValue(label={self.label!r}, value={self._value!r})"
        return f"DeferredValue(label={self.label!r}, state={self._state.value})"


def _forward_unresolved(source: DeferredValue[Any], target: DeferredValue[Any]) -> bool:
    """Propagate failure/unknown from source to target; True if source resolved."""
    if source.is_failed:
        assert source.cause is not None
        target.fail(source.cause)
        return False
    if source.is_unknown:
        target.mark_unknown()
        return False
    return True


def _copy_settlement(source: DeferredValue[Any], target: DeferredValue[Any]) -> None:
    if _forward_unresolved(source, target):
        target.resolve(source._value)


def merge_origins(*values: DeferredValue[Any]) -> tuple[Any, ...]:
    """Union of the origins of several values, first occurrence first."""
    merged: list[Any] = []
    for value in values:
        for origin in value.origins:
            if not any(origin is seen for seen in merged):
                merged.append(origin)
    return tuple(merged)
