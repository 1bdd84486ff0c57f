"""
Tests for EffectGraph and EffectPlan.
"""

import pytest

from moraine.core.context import ExecutionGate
from moraine.core.dag import EffectGraph
from moraine.core.deferred import DeferredValue
from moraine.core.effects import EffectPlan, EffectPlanError


class TestEffectGraph:
    """Tests for EffectGraph class."""

    def test_empty_graph(self):
        graph = EffectGraph()

        assert len(graph.nodes) == 0
        assert graph.topological_sort() == []

    def test_add_edge(self):
        """Test adding ordering edges between effects."""
        graph = EffectGraph()
        graph.add_node("enable", None)
        graph.add_node("publish", None)
        graph.add_edge("enable", "publish")

        assert graph.nodes["publish"].dependencies == ["enable"]
        assert graph.nodes["enable"].dependents == ["publish"]

    def test_duplicate_node(self):
        graph = EffectGraph()
        graph.add_node("enable", None)

        with pytest.raises(ValueError, match="already declared"):
            graph.add_node("enable", None)

    def test_edge_to_unknown_node(self):
        graph = EffectGraph()
        graph.add_node("enable", None)

        with pytest.raises(ValueError, match="Unknown effect"):
            graph.add_edge("enable", "publish")

    def test_topological_sort_keeps_declaration_order_for_ties(self):
        """Independent effects keep their declaration order."""
        graph = EffectGraph()
        for name in ("enable", "resolve", "publish"):
            graph.add_node(name, None)
        graph.add_edge("enable", "publish")
        graph.add_edge("enable", "resolve")

        assert graph.topological_sort() == ["enable", "resolve", "publish"]

    def test_cycle_detection(self):
        """Test detection of cycles."""
        graph = EffectGraph()
        for name in ("a", "b", "c"):
            graph.add_node(name, None)
        graph.add_edge("a", "b")
        graph.add_edge("b", "c")
        graph.add_edge("c", "a")

        cycle = graph.detect_cycle()

        assert cycle is not None
        assert cycle[0] == cycle[-1]
        with pytest.raises(ValueError, match="cycle"):
            graph.topological_sort()

    def test_execution_levels(self):
        """Effects without ordering between them share a level."""
        graph = EffectGraph()
        for name in ("enable", "publish", "resolve", "notify"):
            graph.add_node(name, None)
        graph.add_edge("enable", "publish")
        graph.add_edge("enable", "resolve")
        graph.add_edge("publish", "notify")

        assert graph.get_execution_levels() == [["enable"], ["publish", "resolve"], ["notify"]]


class TestEffectPlan:
    """Tests for declaring and executing side effects."""

    def test_declared_effect_does_not_run_until_executed(self, apply_gate):
        calls = []
        plan = EffectPlan(apply_gate)

        result = plan.declare("upload", calls.append, "payload")

        assert calls == []
        assert result.is_pending

        plan.execute()

        assert calls == ["payload"]
        assert result.is_resolved

    def test_effect_waits_for_inputs(self, apply_gate):
        """The action runs once, with resolved inputs in declaration order."""
        calls = []
        plan = EffectPlan(apply_gate)
        connection_string = DeferredValue(label="connection_string")
        endpoint = DeferredValue(label="endpoint")

        result = plan.declare("publish", lambda cs, ep: calls.append((cs, ep)) or len(calls), connection_string, endpoint)
        plan.execute()

        endpoint.resolve("https://app/api")
        assert calls == []
        connection_string.resolve("AccountName=x")

        assert calls == [("AccountName=x", "https://app/api")]
        assert result.value() == 1
        assert plan._effects["publish"].runs == 1

    def test_after_orders_effects(self, apply_gate):
        """An effect declared 'after' another waits for it to complete."""
        calls = []
        plan = EffectPlan(apply_gate)
        site = DeferredValue(label="site")

        plan.declare("enable", lambda s: calls.append("enable"), site)
        plan.declare("publish", lambda: calls.append("publish"), after=("enable",))
        plan.execute()

        assert calls == []
        site.resolve("account")

        assert calls == ["enable", "publish"]

    def test_preview_skips_actions(self, preview_gate):
        """In preview, actions are not called; results are placeholders or unknown."""
        calls = []
        plan = EffectPlan(preview_gate)

        published = plan.declare("publish", calls.append, "payload", placeholder=[])
        resolved = plan.declare("resolve", calls.append, "payload")
        plan.execute()

        assert calls == []
        assert published.value() == []
        assert resolved.is_unknown

    def test_input_failure_skips_action_with_same_cause(self, apply_gate):
        calls = []
        cause = RuntimeError("storage account failed")
        plan = EffectPlan(apply_gate)
        site = DeferredValue(label="site")

        enabled = plan.declare("enable", calls.append, site)
        published = plan.declare("publish", calls.append, "x", after=("enable",))
        plan.execute()
        site.fail(cause)

        assert calls == []
        assert enabled.cause is cause
        assert published.cause is cause

    def test_action_failure_fails_result(self, apply_gate):
        def explode():
            raise ConnectionError("upload refused")

        plan = EffectPlan(apply_gate)
        result = plan.declare("publish", explode)
        plan.execute()

        assert isinstance(result.cause, ConnectionError)

    def test_unknown_input_skips_action(self, apply_gate):
        calls = []
        plan = EffectPlan(apply_gate)

        result = plan.declare("publish", calls.append, DeferredValue.unknown())
        plan.execute()

        assert calls == []
        assert result.is_unknown

    def test_undeclared_after(self, apply_gate):
        plan = EffectPlan(apply_gate)
        plan.declare("publish", lambda: None, after=("enable",))

        with pytest.raises(EffectPlanError, match="undeclared effect 'enable'"):
            plan.execute()

    def test_cycle_is_rejected(self, apply_gate):
        plan = EffectPlan(apply_gate)
        plan.declare("a", lambda: None, after=("b",))
        plan.declare("b", lambda: None, after=("a",))

        with pytest.raises(EffectPlanError, match="cycle"):
            plan.graph()

    def test_duplicate_and_late_declarations(self, apply_gate):
        plan = EffectPlan(apply_gate)
        plan.declare("publish", lambda: None)

        with pytest.raises(EffectPlanError, match="already declared"):
            plan.declare("publish", lambda: None)

        plan.execute()

        with pytest.raises(EffectPlanError, match="already executed"):
            plan.declare("resolve", lambda: None)
        with pytest.raises(EffectPlanError, match="already executed"):
            plan.execute()

    def test_describe_levels(self):
        plan = EffectPlan(ExecutionGate.preview())
        plan.declare("enable", lambda: None)
        plan.declare("publish", lambda: None, after=("enable",))
        plan.declare("resolve", lambda: None, after=("enable",))

        assert plan.describe() == [["enable"], ["publish", "resolve"]]

    def test_result_carries_input_origins(self, apply_gate):
        plan = EffectPlan(apply_gate)
        site = DeferredValue(label="site")
        site.origins = ("site.connection_string",)

        result = plan.declare("enable", lambda s: s, site)
        plan.execute()

        assert result.origins == ("site.connection_string",)
