"""
Domain models — Pydantic types for the provisioning engine.

All models are re-exported here for convenient access:

    from berets.core.models import Catalog, ProbeResult, RunReport, Settings
"""

from berets.core.models.catalog import ActionSpec, Catalog, CatalogEntry, ProbeSpec
from berets.core.models.item import DesiredStateItem
from berets.core.models.outcome import ApplyResult, ProbeResult, ProbeState
from berets.core.models.report import (
    ItemOutcome,
    ReconciliationResult,
    RunReport,
    RunStatus,
)
from berets.core.models.settings import DEFAULT_VARS, Settings

__all__ = [
    # catalog.py
    "ActionSpec",
    "Catalog",
    "CatalogEntry",
    "ProbeSpec",
    # item.py
    "DesiredStateItem",
    # outcome.py
    "ApplyResult",
    "ProbeResult",
    "ProbeState",
    # report.py
    "ItemOutcome",
    "ReconciliationResult",
    "RunReport",
    "RunStatus",
    # settings.py
    "DEFAULT_VARS",
    "Settings",
]
