"""
Tests for DeferredValue composition.
"""

import itertools

import pytest

from moraine.core.deferred import DeferredStateError, DeferredValue, ResolutionError, State


class TestSettling:
    """Tests for resolving, failing and reading deferred values."""

    def test_pending_value_cannot_be_read(self):
        """Reading a pending value raises."""
        deferred = DeferredValue(label="fqdn")

        assert deferred.state is State.PENDING
        with pytest.raises(DeferredStateError):
            deferred.value()

    def test_resolve_once(self):
        """A value settles exactly once."""
        deferred = DeferredValue(label="fqdn")
        deferred.resolve("todo.database.windows.net")

        assert deferred.value() == "todo.database.windows.net"
        with pytest.raises(DeferredStateError):
            deferred.resolve("other")
        with pytest.raises(DeferredStateError):
            deferred.fail(RuntimeError("late"))

    def test_failed_value_raises_resolution_error_with_cause(self):
        """Reading a failed value reports the originating cause."""
        cause = RuntimeError("server provisioning failed")
        deferred = DeferredValue.failed(cause, label="fqdn")

        with pytest.raises(ResolutionError) as excinfo:
            deferred.value()

        assert excinfo.value.cause is cause
        assert excinfo.value.__cause__ is cause

    def test_from_input_passes_deferred_through(self):
        """from_input wraps plain values only."""
        deferred = DeferredValue.of(1)

        assert DeferredValue.from_input(deferred) is deferred
        assert DeferredValue.from_input(2).value() == 2


class TestMap:
    """Tests for map()."""

    def test_map_does_not_run_before_resolution(self):
        """Continuations wait for the source."""
        calls = []
        source = DeferredValue()
        mapped = source.map(lambda v: calls.append(v) or v.upper())

        assert calls == []
        assert mapped.is_pending

        source.resolve("host")

        assert calls == ["host"]
        assert mapped.value() == "HOST"

    def test_map_on_resolved_value_runs_immediately(self):
        """Mapping a settled value runs the continuation right away."""
        assert DeferredValue.of(2).map(lambda v: v * 21).value() == 42

    def test_map_failure_propagates_same_cause(self):
        """A failed source fails the result; the function is not invoked."""
        calls = []
        cause = ValueError("boom")
        source = DeferredValue()
        mapped = source.map(lambda v: calls.append(v))

        source.fail(cause)

        assert calls == []
        assert mapped.is_failed
        assert mapped.cause is cause

    def test_exception_in_function_fails_result(self):
        """If the continuation raises, the result fails with that exception."""
        def explode(_):
            raise KeyError("missing")

        mapped = DeferredValue.of(1).map(explode)

        assert mapped.is_failed
        assert isinstance(mapped.cause, KeyError)

    def test_unknown_propagates_without_invoking(self):
        """Unknown values stay unknown through map."""
        calls = []
        mapped = DeferredValue.unknown().map(lambda v: calls.append(v))

        assert mapped.is_unknown
        assert calls == []


class TestChain:
    """Tests for chain()."""

    def test_chain_sequences_deferred_step(self):
        """chain waits for the inner deferred value too."""
        inner = DeferredValue()
        source = DeferredValue()
        chained = source.chain(lambda v: inner.map(lambda i: f"{v}:{i}"))

        source.resolve("a")
        assert chained.is_pending

        inner.resolve("b")
        assert chained.value() == "a:b"

    def test_chain_accepts_plain_result(self):
        """chain also accepts a plain return value."""
        assert DeferredValue.of(3).chain(lambda v: v + 1).value() == 4

    def test_chain_inner_failure(self):
        """A failing inner step fails the chain with its cause."""
        cause = OSError("upload failed")
        chained = DeferredValue.of(1).chain(lambda v: DeferredValue.failed(cause))

        assert chained.cause is cause


class TestAll:
    """Tests for DeferredValue.all()."""

    @pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
    def test_tuple_order_independent_of_resolution_order(self, order):
        """The i-th element is the i-th input, whatever order they resolve in."""
        inputs = [DeferredValue(label=f"v{i}") for i in range(3)]
        seen = []
        joined = DeferredValue.all(*inputs).map(lambda values: seen.append(values) or values)

        for index in order:
            assert seen == []
            assert joined.is_pending
            inputs[index].resolve(f"value-{index}")

        assert seen == [("value-0", "value-1", "value-2")]
        assert joined.value() == ("value-0", "value-1", "value-2")

    def test_continuation_never_observes_pending_input(self):
        """A continuation over N inputs only runs once all N resolved."""
        a, b, c = DeferredValue(), DeferredValue(), DeferredValue()
        observed = []

        def continuation(values):
            observed.append([a.is_resolved, b.is_resolved, c.is_resolved])
            return values

        DeferredValue.all(a, b, c).map(continuation)
        c.resolve(3)
        a.resolve(1)
        b.resolve(2)

        assert observed == [[True, True, True]]

    def test_plain_values_are_accepted(self):
        """Non-deferred arguments count as resolved."""
        assert DeferredValue.all("x", DeferredValue.of(1)).value() == ("x", 1)

    def test_empty_join(self):
        assert DeferredValue.all().value() == ()

    def test_failure_fails_join_with_same_cause(self):
        """The first failing input fails the join; continuations are skipped."""
        calls = []
        cause = RuntimeError("database failed")
        a, b = DeferredValue(), DeferredValue()
        joined = DeferredValue.all(a, b)
        joined.map(lambda values: calls.append(values))

        b.fail(cause)
        a.resolve("ignored")

        assert joined.cause is cause
        assert calls == []

    def test_unknown_input_makes_join_unknown(self):
        a, b = DeferredValue(), DeferredValue()
        joined = DeferredValue.all(a, b)

        a.mark_unknown()
        assert joined.is_pending
        b.resolve(1)

        assert joined.is_unknown

    def test_continuation_runs_once(self):
        """Each continuation is invoked exactly once."""
        calls = []
        a = DeferredValue()
        DeferredValue.all(a, a).map(lambda values: calls.append(values))

        a.resolve(5)

        assert calls == [(5, 5)]


class TestFormat:
    """Tests for DeferredValue.format()."""

    def test_format_positional_and_keyword(self):
        host = DeferredValue()
        url = DeferredValue.format("https://{}/{path}", host, path="api")

        assert url.is_pending
        host.resolve("todo-app.azurewebsites.net")

        assert url.value() == "https://todo-app.azurewebsites.net/api"

    def test_format_connection_string(self):
        fqdn = DeferredValue()
        database = DeferredValue()
        conn = DeferredValue.format(
            "Server=tcp:{fqdn};initial catalog={database};user ID={login}",
            fqdn=fqdn,
            database=database,
            login="TodoAdmin",
        )

        database.resolve("todo-sql")
        fqdn.resolve("todo.database.windows.net")

        assert conn.value() == "Server=tcp:todo.database.windows.net;initial catalog=todo-sql;user ID=TodoAdmin"


class TestOrigins:
    """Tests for origin tracking through composition."""

    def test_origins_flow_through_composition(self):
        fqdn = DeferredValue(label="fqdn")
        fqdn.origins = ("server.fqdn",)
        password = DeferredValue(label="password")
        password.origins = ("config.password",)

        conn = DeferredValue.format("Server={};password={}", fqdn, password)

        assert conn.origins == ("server.fqdn", "config.password")
        assert conn.map(len).origins == conn.origins
        assert conn.chain(lambda v: v).origins == conn.origins

    def test_shared_origin_is_kept_once(self):
        marker = object()
        a, b = DeferredValue(), DeferredValue()
        a.origins = (marker,)
        b.origins = (marker,)

        assert DeferredValue.all(a, b, "plain").origins == (marker,)

    def test_plain_values_have_no_origins(self):
        assert DeferredValue.of(1).map(str).origins == ()
