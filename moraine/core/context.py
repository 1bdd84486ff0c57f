"""
Execution context for moraine programs.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

import structlog

logger = structlog.get_logger()


class ExecutionMode(Enum):
    """Execution modes of a provisioning run."""

    PREVIEW = "preview"
    APPLY = "apply"


@dataclass(frozen=True)
class ExecutionGate:
    """
    Decides whether side effects may run.

    The provisioning engine evaluates the program twice: once to plan
    (PREVIEW) and once to apply (APPLY). Uploads, signing, subprocess
    queries and remote configuration writes must only happen in APPLY.

    A gate is created once, before any resource is declared, and handed to
    every component that performs side effects.

    Example:
        gate = ExecutionGate(ExecutionMode.APPLY)
        gate.run("enable-static-website", store.enable_static_website, "index.html", "index.html")
    """

    mode: ExecutionMode = ExecutionMode.PREVIEW

    @property
    def is_preview(self) -> bool:
        return self.mode is ExecutionMode.PREVIEW

    @property
    def is_apply(self) -> bool:
        return self.mode is ExecutionMode.APPLY

    def run(
        self,
        effect: str,
        action: Callable[..., Any],
        *args: Any,
        placeholder: Any = None,
        **kwargs: Any,
    ) -> Any:
        """
        Run a side effect, or skip it in preview.

        Args:
            effect: Name of the effect, for logging
            action: Callable performing the effect
            placeholder: Value returned instead when skipped

        Returns:
            The action's result in APPLY, the placeholder in PREVIEW
        """
        if self.is_preview:
            logger.info("effect_skipped", effect=effect, mode=self.mode.value)
            return placeholder

        logger.debug("effect_running", effect=effect)
        return action(*args, **kwargs)

    @classmethod
    def preview(cls) -> "ExecutionGate":
        return cls(ExecutionMode.PREVIEW)

    @classmethod
    def apply(cls) -> "ExecutionGate":
        return cls(ExecutionMode.APPLY)
