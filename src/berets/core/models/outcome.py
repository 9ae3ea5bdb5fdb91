"""
Probe and apply outcomes — the result contract of probes and actions.

Probes answer "does this piece of desired state hold?", actions try to make
it hold.  Neither ever raises across its boundary: every failure is carried
in these models.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class ProbeState(str, Enum):
    """Tri-state answer of a probe."""

    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"
    INDETERMINATE = "indeterminate"   # the check itself could not run


class ProbeResult(BaseModel):
    """Result of evaluating one probe.

    ``reason`` explains Unsatisfied/Indeterminate answers, ``detail``
    carries informational output (e.g. a version string).
    """

    state: ProbeState
    reason: str = ""
    detail: str = ""
    timed_out: bool = False

    @property
    def satisfied(self) -> bool:
        return self.state == ProbeState.SATISFIED

    @property
    def unsatisfied(self) -> bool:
        return self.state == ProbeState.UNSATISFIED

    @property
    def indeterminate(self) -> bool:
        return self.state == ProbeState.INDETERMINATE

    def negated(self) -> ProbeResult:
        """Swap Satisfied and Unsatisfied; Indeterminate stays as is.

        Used by "desired absence" items: the probe for presence is reused
        and its answer inverted.
        """
        if self.state == ProbeState.SATISFIED:
            return self.model_copy(update={"state": ProbeState.UNSATISFIED,
                                           "reason": self.reason or "present"})
        if self.state == ProbeState.UNSATISFIED:
            return self.model_copy(update={"state": ProbeState.SATISFIED})
        return self

    @classmethod
    def met(cls, detail: str = "") -> ProbeResult:
        return cls(state=ProbeState.SATISFIED, detail=detail)

    @classmethod
    def unmet(cls, reason: str = "") -> ProbeResult:
        return cls(state=ProbeState.UNSATISFIED, reason=reason)

    @classmethod
    def unknown(cls, reason: str, timed_out: bool = False) -> ProbeResult:
        return cls(state=ProbeState.INDETERMINATE, reason=reason, timed_out=timed_out)

    @classmethod
    def from_bool(cls, value: bool, reason: str = "", detail: str = "") -> ProbeResult:
        """Satisfied when ``value`` is true, Unsatisfied with ``reason`` otherwise."""
        if value:
            return cls.met(detail=detail)
        return cls.unmet(reason=reason)


class ApplyResult(BaseModel):
    """Result of running one corrective action.

    ``status`` is ``applied`` when the action ran to completion (which does
    not prove the desired state now holds: the engine re-probes).
    """

    status: Literal["applied", "failed"] = "applied"
    output: str = ""
    error: str | None = None
    timed_out: bool = False
    spawn_error: bool = False   # the binary the action exists to invoke is missing
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "applied"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(cls, output: str = "", **kwargs: Any) -> ApplyResult:
        """Create an applied result."""
        return cls(status="applied", output=output, **kwargs)

    @classmethod
    def failure(cls, error: str, **kwargs: Any) -> ApplyResult:
        """Create a failed result."""
        return cls(status="failed", error=error, **kwargs)
