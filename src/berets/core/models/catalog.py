"""
Catalog models — declared desired state, loaded from YAML.

A catalog is an ordered list of entries.  Each entry names a probe kind
and an action kind from the registries plus their parameters; the planner
binds them into executable ``DesiredStateItem``s.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ProbeSpec(BaseModel):
    """Which probe to run and with what parameters."""

    kind: str
    params: dict[str, Any] = Field(default_factory=dict)
    negate: bool = False   # assert absence instead of presence


class ActionSpec(BaseModel):
    """Which corrective action to run and with what parameters."""

    kind: str
    params: dict[str, Any] = Field(default_factory=dict)


class CatalogEntry(BaseModel):
    """One declared piece of desired state."""

    name: str
    description: str = ""
    probe: ProbeSpec
    action: ActionSpec | None = None        # None = verification-only item
    critical: bool = False
    timeout: float | None = None            # seconds for apply (and probe unless probe_timeout)
    probe_timeout: float | None = None
    retries: int | None = None              # extra probes while Indeterminate
    verify_attempts: int = 1                # post-apply probes before giving up
    remediation: list[str] = Field(default_factory=list)
    requires: list[str] = Field(default_factory=list)
    undoes: str = ""                        # teardown: provision entry this reverses


class Catalog(BaseModel):
    """An ordered set of catalog entries for one mode."""

    name: str
    description: str = ""
    mode: Literal["provision", "teardown"] = "provision"
    items: list[CatalogEntry] = Field(default_factory=list)
    # teardown only: provision entries deliberately left in place, with reason
    not_undone: dict[str, str] = Field(default_factory=dict)

    @property
    def names(self) -> list[str]:
        return [e.name for e in self.items]

    def get(self, name: str) -> CatalogEntry | None:
        for entry in self.items:
            if entry.name == name:
                return entry
        return None

    def select(self, names: list[str]) -> Catalog:
        """Return a copy restricted to ``names``, keeping declaration order."""
        wanted = set(names)
        return self.model_copy(
            update={"items": [e for e in self.items if e.name in wanted]},
        )
