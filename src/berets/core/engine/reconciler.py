"""
Reconciler — the probe / apply / verify loop.

Items are processed one at a time in declaration order:

    Pending → Probing → Satisfied ─────────────────────────→ Done
                      → NeedsApply → Applying → Verifying → Done | Failed
                      → Indeterminate ──────────────────────→ Done (warning)

Rules:
    - an Indeterminate probe before applying never triggers the action;
      the item is skipped with a warning, or fails if it is critical
      and stays Indeterminate past its retry budget
    - a failed critical item halts the run; later items get no result
    - a failed non-critical item is recorded and the run continues
    - cancellation is checked before each item; an in-flight command
      is left to finish or time out
    - dry runs probe only; Unsatisfied items are reported as would_apply

Each item's result is built up while it is processed and frozen into a
``ReconciliationResult`` once the item is finished.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

from berets.core.context import RunContext
from berets.core.models.item import DesiredStateItem
from berets.core.models.outcome import ApplyResult, ProbeResult, ProbeState
from berets.core.models.report import ItemOutcome, ReconciliationResult, RunReport

logger = logging.getLogger(__name__)

ResultCallback = Callable[[ReconciliationResult], None]

_MARKERS = {
    ItemOutcome.ALREADY_SATISFIED: "✓",
    ItemOutcome.APPLIED: "✓",
    ItemOutcome.WOULD_APPLY: "→",
    ItemOutcome.SKIPPED: "⊘",
    ItemOutcome.FAILED: "✗",
}


@dataclass
class _Trace:
    """Mutable record of one item while it is being processed."""

    item: DesiredStateItem
    started: float = field(default_factory=time.monotonic)
    initial_state: ProbeState = ProbeState.INDETERMINATE
    final_state: ProbeState | None = None
    applied: bool = False
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    detail: str = ""

    def freeze(self, outcome: ItemOutcome) -> ReconciliationResult:
        return ReconciliationResult(
            name=self.item.name,
            critical=self.item.critical,
            initial_state=self.initial_state,
            final_state=self.final_state,
            applied=self.applied,
            outcome=outcome,
            error=self.error,
            warnings=tuple(self.warnings),
            remediation=tuple(self.item.remediation) if outcome == ItemOutcome.FAILED else (),
            detail=self.detail,
            duration_ms=int((time.monotonic() - self.started) * 1000),
        )


class Reconciler:
    """Drive an ordered list of desired-state items toward Satisfied.

    Args:
        ctx: Run context; supplies the cancellation event and the caches
            invalidated after each successful action.
        retry_delay: Seconds between probe retries (defaults to settings).
        on_result: Called with each frozen result as soon as it exists.
    """

    def __init__(
        self,
        ctx: RunContext | None = None,
        retry_delay: float | None = None,
        on_result: ResultCallback | None = None,
    ):
        self.ctx = ctx or RunContext()
        self.retry_delay = (
            self.ctx.settings.retry_delay if retry_delay is None else retry_delay
        )
        self.on_result = on_result

    @property
    def cancel_event(self) -> threading.Event:
        return self.ctx.cancel_event

    # ── Run ─────────────────────────────────────────────────────

    def run(
        self,
        items: Sequence[DesiredStateItem],
        mode: Literal["provision", "teardown"] = "provision",
        dry_run: bool = False,
        operation_id: str = "",
    ) -> RunReport:
        """Reconcile ``items`` in order and return the run report."""
        report = RunReport(
            operation_id=operation_id,
            mode=mode,
            dry_run=dry_run,
            declared_items=len(items),
        )
        logger.info(
            "Starting %s%s: %d items", mode, " (dry run)" if dry_run else "", len(items),
        )

        for item in items:
            if self.ctx.cancelled:
                report.cancelled = True
                logger.warning(
                    "Cancelled before %s; %d items not processed",
                    item.name, len(items) - report.total,
                )
                break

            result = self.reconcile_item(item, dry_run=dry_run)
            report.results.append(result)
            self._log_result(result)
            if self.on_result is not None:
                self.on_result(result)

            if result.failed and item.critical:
                report.halted_by = item.name
                logger.error(
                    "Critical item %s failed, halting: %d items not processed",
                    item.name, len(items) - report.total,
                )
                break

        report.ended_at = datetime.now(UTC).isoformat()
        logger.info("Finished %s: %s", mode, report.status.value)
        return report

    # ── One item ────────────────────────────────────────────────

    def reconcile_item(self, item: DesiredStateItem, dry_run: bool = False) -> ReconciliationResult:
        trace = _Trace(item=item)

        # Probing
        initial = self._probe(item)
        trace.initial_state = initial.state
        trace.detail = initial.detail

        if initial.satisfied:
            trace.final_state = ProbeState.SATISFIED
            return trace.freeze(ItemOutcome.ALREADY_SATISFIED)

        if initial.indeterminate:
            message = f"Could not check {item.name}: {initial.reason}"
            if item.critical:
                trace.error = message
                return trace.freeze(ItemOutcome.FAILED)
            trace.warnings.append(message)
            logger.warning("%s, skipping", message)
            return trace.freeze(ItemOutcome.SKIPPED)

        # NeedsApply
        if dry_run:
            trace.detail = initial.reason or trace.detail
            return trace.freeze(ItemOutcome.WOULD_APPLY)

        if item.apply is None:
            trace.final_state = initial.state
            trace.error = initial.reason or f"{item.name} does not hold"
            return trace.freeze(ItemOutcome.FAILED)

        # Applying
        logger.info("Applying %s (%s)", item.name, initial.reason or "unsatisfied")
        applied = self._apply(item)
        if applied.failed:
            trace.final_state = initial.state
            trace.error = applied.error or "action failed"
            if applied.output:
                trace.detail = applied.output
            return trace.freeze(ItemOutcome.FAILED)

        trace.applied = True
        self.ctx.invalidate_caches()

        # Verifying
        final = self._verify(item)
        trace.final_state = final.state
        if final.satisfied:
            trace.detail = final.detail or applied.output
            return trace.freeze(ItemOutcome.APPLIED)

        if final.indeterminate:
            trace.error = f"Could not verify {item.name} after applying: {final.reason}"
        else:
            trace.error = f"{item.name} still unsatisfied after applying: {final.reason}"
        trace.detail = applied.output
        return trace.freeze(ItemOutcome.FAILED)

    # ── Internals ───────────────────────────────────────────────

    def _probe(self, item: DesiredStateItem) -> ProbeResult:
        """Probe, retrying Indeterminate answers up to the item's budget."""
        result = self._probe_once(item)
        attempt = 0
        while result.indeterminate and attempt < item.retries:
            attempt += 1
            logger.debug(
                "%s indeterminate (%s), retry %d/%d",
                item.name, result.reason, attempt, item.retries,
            )
            if self.cancel_event.wait(self.retry_delay):
                break
            result = self._probe_once(item)
        return result

    def _verify(self, item: DesiredStateItem) -> ProbeResult:
        """Post-apply probe; up to ``verify_attempts`` tries for slow effects."""
        result = self._probe(item)
        for _ in range(item.verify_attempts - 1):
            if result.satisfied or self.cancel_event.wait(self.retry_delay):
                break
            result = self._probe(item)
        return result

    @staticmethod
    def _probe_once(item: DesiredStateItem) -> ProbeResult:
        try:
            return item.probe()
        except Exception as e:
            logger.error("Probe for %s raised: %s", item.name, e)
            return ProbeResult.unknown(f"Unexpected error: {e}")

    @staticmethod
    def _apply(item: DesiredStateItem) -> ApplyResult:
        assert item.apply is not None  # checked by the caller
        try:
            return item.apply()
        except Exception as e:
            logger.error("Action for %s raised: %s", item.name, e)
            return ApplyResult.failure(f"Unexpected error: {e}")

    @staticmethod
    def _log_result(result: ReconciliationResult) -> None:
        marker = _MARKERS[result.outcome]
        if result.failed and result.critical:
            logger.error("%s %s → %s: %s", marker, result.name, result.outcome.value, result.error)
        elif result.failed or result.outcome == ItemOutcome.SKIPPED:
            logger.warning(
                "%s %s → %s: %s", marker, result.name, result.outcome.value,
                result.error or "; ".join(result.warnings),
            )
        else:
            logger.info("%s %s → %s", marker, result.name, result.outcome.value)
