"""
EffectPlan: declare side effects first, perform them later.

Declaring an effect only records which deferred values it consumes and
which other effects it must follow. Nothing runs until execute() wires the
plan onto its inputs, and even then each action goes through the
ExecutionGate so previews never touch the outside world.

Example:
    plan = EffectPlan(gate)

    enabled = plan.declare("enable-static-website", enable, site.connection_string)
    published = plan.declare(
        "publish-assets", publish, site.connection_string, api_endpoint,
        after=("enable-static-website",),
    )

    plan.execute()
"""

from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from moraine.core.context import ExecutionGate
from moraine.core.dag import EffectGraph
from moraine.core.deferred import DeferredValue

logger = structlog.get_logger()


class EffectPlanError(Exception):
    """Raised when an effect plan is invalid or executed twice."""
    pass


# Placeholder of effects without one: their result is UNKNOWN in preview.
UNKNOWN_IN_PREVIEW = object()


@dataclass
class Effect:
    """A side effect waiting on deferred inputs."""

    name: str
    action: Callable[..., Any]
    inputs: tuple[Any, ...]
    after: tuple[str, ...] = ()
    placeholder: Any = UNKNOWN_IN_PREVIEW
    result: DeferredValue[Any] = field(default_factory=DeferredValue)
    runs: int = 0


class EffectPlan:
    """
    Collection of side effects and their ordering.

    Each effect runs at most once, after all of its inputs and all effects
    it is declared 'after' have resolved. If any of those fail, the effect
    is not run and its result fails with the same cause.
    """

    def __init__(self, gate: ExecutionGate):
        self.gate = gate
        self._effects: dict[str, Effect] = {}
        self._executed = False

    def declare(
        self,
        name: str,
        action: Callable[..., Any],
        *inputs: Any,
        after: tuple[str, ...] = (),
        placeholder: Any = UNKNOWN_IN_PREVIEW,
    ) -> DeferredValue[Any]:
        """
        Record an effect.

        Args:
            name: Unique effect name
            action: Called with the resolved inputs, in order
            *inputs: Deferred (or plain) values the action consumes
            after: Names of effects that must complete first
            placeholder: Result used when the gate skips the action;
                by default the result is UNKNOWN in preview

        Returns:
            Pending DeferredValue settled with the action's result
        """
        if self._executed:
            raise EffectPlanError(f"Cannot declare '{name}': plan already executed")
        if name in self._effects:
            raise EffectPlanError(f"Effect '{name}' is already declared")

        effect = Effect(
            name=name,
            action=action,
            inputs=inputs,
            after=tuple(after),
            placeholder=placeholder,
            result=DeferredValue(label=name),
        )
        self._effects[name] = effect
        return effect.result

    def result(self, name: str) -> DeferredValue[Any]:
        return self._effects[name].result

    def graph(self) -> EffectGraph:
        """
        Build the ordering graph of the declared effects.

        Raises:
            EffectPlanError: On unknown 'after' names or cycles
        """
        graph = EffectGraph()
        for name, effect in self._effects.items():
            graph.add_node(name, effect)

        for name, effect in self._effects.items():
            for before in effect.after:
                if before not in self._effects:
                    raise EffectPlanError(f"Effect '{name}' waits for undeclared effect '{before}'")
                graph.add_edge(before, name)

        try:
            graph.topological_sort()
        except ValueError as e:
            raise EffectPlanError(str(e)) from e

        return graph

    def describe(self) -> list[list[str]]:
        """Effect names grouped by execution level."""
        return self.graph().get_execution_levels()

    def execute(self) -> dict[str, DeferredValue[Any]]:
        """
        Wire every effect onto its inputs.

        Returns:
            Mapping of effect name to its result

        Raises:
            EffectPlanError: If the plan is invalid or already executed
        """
        if self._executed:
            raise EffectPlanError("Effect plan already executed")

        graph = self.graph()
        self._executed = True

        for name in graph.topological_sort():
            self._wire(self._effects[name])

        logger.debug("effect_plan_wired", levels=graph.get_execution_levels(), mode=self.gate.mode.value)
        return {name: effect.result for name, effect in self._effects.items()}

    def _wire(self, effect: Effect) -> None:
        upstream = [self._effects[name].result for name in effect.after]
        ready = DeferredValue.all(*effect.inputs, *upstream, label=f"{effect.name}.inputs")
        count = len(effect.inputs)
        effect.result.origins = ready.origins

        def perform(values: tuple) -> Any:
            effect.runs += 1
            return self.gate.run(
                effect.name,
                effect.action,
                *values[:count],
                placeholder=effect.placeholder,
            )

        ready.map(perform).on_settled(lambda settled: _settle_into(settled, effect.result))


def _settle_into(source: DeferredValue[Any], target: DeferredValue[Any]) -> None:
    if source.is_failed:
        assert source.cause is not None
        logger.error("effect_failed", effect=target.label, error=str(source.cause))
        target.fail(source.cause)
    elif source.is_unknown or source.value() is UNKNOWN_IN_PREVIEW:
        target.mark_unknown()
    else:
        target.resolve(source.value())
