"""
Action registry — named corrective mutations.

Same dispatch shape as the probe registry: the reconciler only calls
``ActionRegistry.apply``, which never raises.  Every failure, including a
missing parameter or an unrenderable snippet, comes back as a failed
``ApplyResult``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from berets.core.models.outcome import ApplyResult

if TYPE_CHECKING:
    from berets.core.context import RunContext

logger = logging.getLogger(__name__)

ActionFn = Callable[["RunContext", dict[str, Any], float], ApplyResult]


class ActionRegistry:
    """Central registry and dispatcher for actions."""

    def __init__(self) -> None:
        self._actions: dict[str, ActionFn] = {}

    def register(self, name: str, fn: ActionFn) -> None:
        """Register an action function under ``name``.

        Args:
            name: Action kind as used in catalogs.
            fn: ``fn(ctx, params, timeout) -> ApplyResult``; must be idempotent.
        """
        if name in self._actions:
            logger.warning("Overwriting existing action: %s", name)
        self._actions[name] = fn
        logger.debug("Registered action: %s", name)

    def get(self, name: str) -> ActionFn | None:
        return self._actions.get(name)

    def list_actions(self) -> list[str]:
        return sorted(self._actions)

    def __contains__(self, name: object) -> bool:
        return name in self._actions

    def apply(
        self,
        name: str,
        ctx: RunContext,
        params: dict[str, Any] | None = None,
        timeout: float = 300.0,
    ) -> ApplyResult:
        """Run action ``name``.

        Returns:
            ApplyResult (never raises).
        """
        fn = self._actions.get(name)
        if fn is None:
            return ApplyResult.failure(f"No action registered for '{name}'")

        start = time.monotonic()
        try:
            result = fn(ctx, dict(params or {}), timeout)
        except KeyError as e:
            result = ApplyResult.failure(f"Missing required param: {e.args[0]}")
        except Exception as e:
            # Actions should never raise; the item fails, the run goes on
            logger.error("Action %s raised: %s", name, e)
            result = ApplyResult.failure(f"Unexpected error: {e}")

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if result.timed_out:
            logger.warning("Action %s timed out after %ss", name, timeout)
        result.metadata.setdefault("duration_ms", elapsed_ms)
        logger.debug("Action %s -> %s in %dms", name, result.status, elapsed_ms)
        return result
