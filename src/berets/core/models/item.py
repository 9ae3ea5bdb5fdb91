"""
Desired-state items — catalog entries bound to executable probes/actions.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from berets.core.models.outcome import ApplyResult, ProbeResult

ProbeCall = Callable[[], ProbeResult]
ApplyCall = Callable[[], ApplyResult]


@dataclass
class DesiredStateItem:
    """A probe plus the corrective action that makes it hold.

    ``probe`` must be read-only.  ``apply`` must be safe to run again when
    the state already holds; the engine never relies on that and always
    probes first.
    """

    name: str
    probe: ProbeCall
    apply: ApplyCall | None = None
    critical: bool = False
    timeout_seconds: float = 300.0
    probe_timeout_seconds: float = 10.0
    retries: int = 0
    verify_attempts: int = 1
    description: str = ""
    remediation: list[str] = field(default_factory=list)
