"""
Planner — binds catalog entries to probes and actions.

Turns each ``CatalogEntry`` into a ``DesiredStateItem`` whose ``probe`` and
``apply`` callables dispatch through the registries with the entry's
params, timeouts and negation.  Ordering is exactly catalog order.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from functools import partial

from berets.core.actions.registry import ActionRegistry
from berets.core.context import RunContext
from berets.core.models.catalog import Catalog, CatalogEntry
from berets.core.models.item import DesiredStateItem
from berets.core.probes.registry import ProbeRegistry

logger = logging.getLogger(__name__)


def build_item(
    entry: CatalogEntry,
    ctx: RunContext,
    probes: ProbeRegistry,
    actions: ActionRegistry,
) -> DesiredStateItem:
    """Bind one catalog entry to the registries.

    Timeouts and the retry budget fall back to the run's settings when the
    entry does not override them.
    """
    settings = ctx.settings
    apply_timeout = entry.timeout or settings.apply_timeout
    probe_timeout = entry.probe_timeout or settings.probe_timeout

    apply = None
    if entry.action is not None:
        apply = partial(
            actions.apply, entry.action.kind, ctx, entry.action.params, apply_timeout,
        )

    return DesiredStateItem(
        name=entry.name,
        probe=partial(
            probes.evaluate, entry.probe.kind, ctx, entry.probe.params,
            probe_timeout, entry.probe.negate,
        ),
        apply=apply,
        critical=entry.critical,
        timeout_seconds=apply_timeout,
        probe_timeout_seconds=probe_timeout,
        retries=entry.retries if entry.retries is not None else settings.probe_retries,
        verify_attempts=max(1, entry.verify_attempts),
        description=entry.description,
        remediation=list(entry.remediation),
    )


def build_items(
    catalog: Catalog,
    ctx: RunContext,
    probes: ProbeRegistry,
    actions: ActionRegistry,
) -> list[DesiredStateItem]:
    """Build the ordered item list for one run."""
    items = [build_item(entry, ctx, probes, actions) for entry in catalog.items]
    logger.debug("Planned %d items from catalog '%s'", len(items), catalog.name)
    return items


def generate_operation_id(mode: str = "run") -> str:
    """Generate a unique operation ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"{mode}-{now}-{short}"
