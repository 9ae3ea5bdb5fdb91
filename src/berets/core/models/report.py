"""
Reconciliation results and run reports.

A ``ReconciliationResult`` is created while one item is processed and
frozen once that item is finished.  A ``RunReport`` is the ordered list of
those results for one engine invocation, plus derived status.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from berets.core.models.outcome import ProbeState


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class ItemOutcome(str, Enum):
    """How processing one item ended."""

    ALREADY_SATISFIED = "already_satisfied"   # probe satisfied, nothing applied
    APPLIED = "applied"                       # applied and verified
    WOULD_APPLY = "would_apply"               # dry run, probe unsatisfied
    SKIPPED = "skipped"                       # probe indeterminate, left alone
    FAILED = "failed"


class RunStatus(str, Enum):
    """Overall status of one run."""

    SUCCESS = "success"
    SUCCESS_WITH_WARNINGS = "success_with_warnings"
    FAILED = "failed"


class ReconciliationResult(BaseModel):
    """Outcome of one desired-state item.  Immutable once created."""

    model_config = ConfigDict(frozen=True)

    name: str
    critical: bool = False
    initial_state: ProbeState
    final_state: ProbeState | None = None
    applied: bool = False
    outcome: ItemOutcome
    error: str | None = None
    warnings: tuple[str, ...] = ()
    remediation: tuple[str, ...] = ()
    detail: str = ""
    duration_ms: int = 0

    @property
    def failed(self) -> bool:
        return self.outcome == ItemOutcome.FAILED

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings) or self.outcome == ItemOutcome.SKIPPED


class RunReport(BaseModel):
    """Ordered per-item results of one reconciliation pass."""

    operation_id: str = ""
    mode: Literal["provision", "teardown"] = "provision"
    dry_run: bool = False
    started_at: str = Field(default_factory=_now_iso)
    ended_at: str = ""
    declared_items: int = 0
    results: list[ReconciliationResult] = Field(default_factory=list)
    halted_by: str | None = None     # critical item that stopped the run
    cancelled: bool = False          # operator interrupt

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> list[ReconciliationResult]:
        return [r for r in self.results if r.failed]

    @property
    def critical_failures(self) -> list[ReconciliationResult]:
        return [r for r in self.results if r.failed and r.critical]

    @property
    def warnings(self) -> list[ReconciliationResult]:
        return [r for r in self.results if r.has_warnings and not r.failed]

    @property
    def applied(self) -> list[ReconciliationResult]:
        return [r for r in self.results if r.applied]

    @property
    def not_processed(self) -> int:
        """Declared items that never got a result (halt or cancel)."""
        return max(0, self.declared_items - self.total)

    @property
    def status(self) -> RunStatus:
        if self.critical_failures or self.halted_by or self.cancelled:
            return RunStatus.FAILED
        if self.failed or self.warnings:
            return RunStatus.SUCCESS_WITH_WARNINGS
        return RunStatus.SUCCESS

    def result_for(self, name: str) -> ReconciliationResult | None:
        for result in self.results:
            if result.name == name:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "mode": self.mode,
            "dry_run": self.dry_run,
            "status": self.status.value,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "declared_items": self.declared_items,
            "processed": self.total,
            "applied": len(self.applied),
            "failed": len(self.failed),
            "warnings": len(self.warnings),
            "halted_by": self.halted_by,
            "cancelled": self.cancelled,
            "results": [r.model_dump(mode="json") for r in self.results],
        }
