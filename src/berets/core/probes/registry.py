"""
Probe registry — named read-only checks.

The reconciler never calls probe functions directly, always through
``ProbeRegistry.evaluate``.  Evaluation never raises: an unknown kind, a
missing parameter or an exception inside the probe all come back as an
Indeterminate ``ProbeResult``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from berets.core.models.outcome import ProbeResult

if TYPE_CHECKING:
    from berets.core.context import RunContext

logger = logging.getLogger(__name__)

ProbeFn = Callable[["RunContext", dict[str, Any], float], ProbeResult]


class ProbeRegistry:
    """Central registry and dispatcher for probes."""

    def __init__(self) -> None:
        self._probes: dict[str, ProbeFn] = {}

    def register(self, name: str, fn: ProbeFn) -> None:
        """Register a probe function under ``name``.

        Args:
            name: Probe kind as used in catalogs.
            fn: ``fn(ctx, params, timeout) -> ProbeResult``; must not mutate state.
        """
        if name in self._probes:
            logger.warning("Overwriting existing probe: %s", name)
        self._probes[name] = fn
        logger.debug("Registered probe: %s", name)

    def get(self, name: str) -> ProbeFn | None:
        return self._probes.get(name)

    def list_probes(self) -> list[str]:
        return sorted(self._probes)

    def __contains__(self, name: object) -> bool:
        return name in self._probes

    def evaluate(
        self,
        name: str,
        ctx: RunContext,
        params: dict[str, Any] | None = None,
        timeout: float = 10.0,
        negate: bool = False,
    ) -> ProbeResult:
        """Run probe ``name`` and return its tri-state answer.

        Args:
            name: Registered probe kind.
            ctx: Run context (runner, caches).
            params: Probe parameters from the catalog.
            timeout: Budget for any command the probe runs.
            negate: Assert absence instead of presence.

        Returns:
            ProbeResult (never raises).
        """
        fn = self._probes.get(name)
        if fn is None:
            return ProbeResult.unknown(f"No probe registered for '{name}'")

        start = time.monotonic()
        try:
            result = fn(ctx, dict(params or {}), timeout)
        except KeyError as e:
            result = ProbeResult.unknown(f"Missing required param: {e.args[0]}")
        except Exception as e:
            # Probes should never raise; keep the run going regardless
            logger.error("Probe %s raised: %s", name, e)
            result = ProbeResult.unknown(f"Unexpected error: {e}")

        if result.timed_out:
            logger.warning("Probe %s timed out after %ss", name, timeout)
        logger.debug(
            "Probe %s -> %s in %dms", name, result.state.value,
            int((time.monotonic() - start) * 1000),
        )
        return result.negated() if negate else result
