"""
Bridge between Pulumi outputs and moraine deferred values.

Pulumi settles its outputs on the program's asyncio event loop; these
helpers mirror them into DeferredValues (and back) on that same loop, so
continuations run on the loop thread like Pulumi's own apply callbacks.
"""

import asyncio
from typing import Any, Iterable, Mapping

import structlog

try:
    import pulumi
except ImportError:
    raise ImportError(
        "pulumi required for the Pulumi bridge. "
        "Install with: pip install pulumi"
    )

from moraine.core.context import ExecutionGate, ExecutionMode
from moraine.core.deferred import DeferredValue

logger = structlog.get_logger()


def gate_from_runtime() -> ExecutionGate:
    """Create the execution gate from the running Pulumi deployment."""
    mode = ExecutionMode.PREVIEW if pulumi.runtime.is_dry_run() else ExecutionMode.APPLY
    logger.info("execution_mode", mode=mode.value)
    return ExecutionGate(mode)


def from_output(output: "pulumi.Output[Any]", label: str | None = None) -> DeferredValue[Any]:
    """
    Mirror a Pulumi output into a DeferredValue.

    Outputs that are unknown during a preview become UNKNOWN deferred values;
    failed outputs fail the deferred value with the same exception. The
    output is kept as an origin, so values derived from it stay secret and
    keep its resource dependencies when passed back through to_output().
    """
    deferred: DeferredValue[Any] = DeferredValue(label=label)
    deferred.origins = (output,)

    async def settle() -> None:
        try:
            known = await output.is_known()
            value = await output.future()
        except Exception as exc:
            deferred.fail(exc)
            return
        if known:
            deferred.resolve(value)
        else:
            deferred.mark_unknown()

    asyncio.ensure_future(settle())
    return deferred


def to_output(deferred: DeferredValue[Any]) -> "pulumi.Output[Any]":
    """
    Expose a DeferredValue to Pulumi as an output.

    The output depends on every resource its origin outputs depend on, and
    is secret if any origin output is secret.
    """
    origins = [origin for origin in deferred.origins if isinstance(origin, pulumi.Output)]
    loop = asyncio.get_event_loop()
    value_future: asyncio.Future = loop.create_future()
    known_future: asyncio.Future = loop.create_future()

    async def resources() -> set:
        gathered: set = set()
        for origin in origins:
            gathered |= await origin.resources()
        return gathered

    async def is_secret() -> bool:
        for origin in origins:
            if await origin.is_secret():
                return True
        return False

    def settle(source: DeferredValue[Any]) -> None:
        if source.is_failed:
            known_future.set_result(True)
            value_future.set_exception(source.cause)  # type: ignore[arg-type]
        elif source.is_unknown:
            known_future.set_result(False)
            value_future.set_result(None)
        else:
            known_future.set_result(True)
            value_future.set_result(source.value())

    deferred.on_settled(settle)
    return pulumi.Output(resources(), value_future, known_future, is_secret())


def to_input(value: Any) -> Any:
    """Convert a DeferredValue to a Pulumi input; other values pass through."""
    if isinstance(value, DeferredValue):
        return to_output(value)
    return value


def export_all(exports: Mapping[str, Any], secrets: Iterable[str] = ()) -> None:
    """
    Register stack outputs.

    Args:
        exports: Export name to plain value, DeferredValue or Output
        secrets: Export names to mark as secret
    """
    secret_names = set(secrets)
    for name, value in exports.items():
        output = to_input(value)
        if name in secret_names:
            output = pulumi.Output.secret(output)
        pulumi.export(name, output)
