"""
Reconcile use case — provision or tear down the workstation.

The full vertical slice: load settings, load and validate the catalog,
bind it to the registries, reconcile item by item and append the run to
the audit ledger.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from berets.adapters.process import ProcessRunner
from berets.core.actions import ActionRegistry, default_action_registry
from berets.core.config.catalog_loader import CatalogError, load_mode_catalog
from berets.core.config.loader import ConfigError, load_settings
from berets.core.context import RunContext
from berets.core.engine.planner import build_items, generate_operation_id
from berets.core.engine.reconciler import Reconciler, ResultCallback
from berets.core.models.catalog import Catalog
from berets.core.models.report import RunReport
from berets.core.models.settings import Settings
from berets.core.persistence.audit import AuditEntry, AuditWriter
from berets.core.probes import ProbeRegistry, default_probe_registry

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Result of one provision or teardown invocation."""

    report: RunReport | None = None
    catalog: Catalog | None = None
    settings: Settings | None = None
    audit_path: Path | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        result: dict = {}
        if self.catalog:
            result["catalog"] = self.catalog.name
        if self.audit_path:
            result["audit_path"] = str(self.audit_path)
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def run_reconcile(
    mode: Literal["provision", "teardown"],
    config_path: Path | None = None,
    dry_run: bool = False,
    only: list[str] | None = None,
    cancel_event: threading.Event | None = None,
    settings: Settings | None = None,
    probes: ProbeRegistry | None = None,
    actions: ActionRegistry | None = None,
    runner: ProcessRunner | None = None,
    on_result: ResultCallback | None = None,
) -> ReconcileResult:
    """Reconcile the system against the ``mode`` catalog.

    Args:
        mode: ``provision`` (desired state) or ``teardown`` (desired absence).
        config_path: Optional explicit path to berets.yml.
        dry_run: Probe only; report what would be applied.
        only: Restrict the run to these item names (catalog order kept).
        cancel_event: Set from outside to stop before the next item.
        settings: Pre-loaded settings (skips config loading).
        probes: Optional pre-configured probe registry.
        actions: Optional pre-configured action registry.
        runner: Optional process runner (tests inject one).
        on_result: Called with each item's result as soon as it is final.

    Returns:
        ReconcileResult; ``error`` is set for configuration problems only.
    """
    result = ReconcileResult()

    # ── Load settings and catalog ────────────────────────────────
    try:
        settings = settings or load_settings(config_path)
        catalog = load_mode_catalog(mode, settings)
    except (ConfigError, CatalogError) as e:
        result.error = str(e)
        return result
    result.settings = settings

    if only:
        unknown = [name for name in only if catalog.get(name) is None]
        if unknown:
            result.error = f"Unknown item(s) in {mode} catalog: {', '.join(unknown)}"
            return result
        catalog = catalog.select(only)
    result.catalog = catalog

    # ── Reconcile ────────────────────────────────────────────────
    operation_id = generate_operation_id(mode)
    with RunContext(settings=settings, runner=runner, cancel_event=cancel_event) as ctx:
        items = build_items(
            catalog, ctx,
            probes or default_probe_registry(),
            actions or default_action_registry(),
        )
        reconciler = Reconciler(ctx, on_result=on_result)
        report = reconciler.run(items, mode=mode, dry_run=dry_run, operation_id=operation_id)
    result.report = report

    # ── Write audit log ──────────────────────────────────────────
    if not dry_run:
        writer = AuditWriter(state_dir=settings.state_path)
        if writer.write(AuditEntry.from_report(report)):
            result.audit_path = writer.path

    return result
