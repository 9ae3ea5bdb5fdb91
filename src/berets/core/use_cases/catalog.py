"""
Catalog use case — list declared items without touching the system.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from berets.core.config.catalog_loader import (
    CatalogError,
    catalog_path,
    load_mode_catalog,
    uncovered_items,
)
from berets.core.config.loader import ConfigError, load_settings
from berets.core.models.catalog import Catalog


@dataclass
class CatalogResult:
    """A loaded catalog plus, for teardown, the coverage of provision items."""

    catalog: Catalog | None = None
    path: Path | None = None
    uncovered: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error or self.catalog is None:
            return {"error": self.error}
        return {
            "name": self.catalog.name,
            "mode": self.catalog.mode,
            "path": str(self.path),
            "items": [e.model_dump(mode="json", exclude_defaults=True) for e in self.catalog.items],
            "not_undone": self.catalog.not_undone,
            "uncovered": self.uncovered,
        }


def describe_catalog(mode: str, config_path: Path | None = None) -> CatalogResult:
    """Load the ``mode`` catalog for display."""
    result = CatalogResult()
    try:
        settings = load_settings(config_path)
        result.path = catalog_path(mode, settings)
        result.catalog = load_mode_catalog(mode, settings)
        if mode == "teardown":
            provision = load_mode_catalog("provision", settings)
            result.uncovered = uncovered_items(provision, result.catalog)
    except (ConfigError, CatalogError) as e:
        result.error = str(e)
    return result
