"""
Core moraine functionality.

- DeferredValue: values settled by provisioning, composed without blocking
- ExecutionGate: PREVIEW/APPLY switch consulted by every side effect
- EffectPlan: side effects declared first, wired onto their inputs later
"""

from moraine.core.context import ExecutionGate, ExecutionMode
from moraine.core.deferred import DeferredStateError, DeferredValue, ResolutionError, State
from moraine.core.effects import Effect, EffectPlan, EffectPlanError

__all__ = [
    "DeferredValue",
    "DeferredStateError",
    "ResolutionError",
    "State",
    "ExecutionGate",
    "ExecutionMode",
    "Effect",
    "EffectPlan",
    "EffectPlanError",
]
