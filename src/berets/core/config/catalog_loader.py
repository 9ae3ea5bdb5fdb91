"""
Catalog loader — reads provision.yml / teardown.yml into Catalog models.

Loading is strict: a catalog that names an unknown probe or action kind,
repeats a name, or references an item that is not declared earlier is
rejected as a whole with ``CatalogError``.  Nothing is ever half-applied
from a broken catalog.

Variables from ``settings.vars`` are substituted into every string param
and remediation hint with ``{name}`` syntax.  Only lower-case names are variables, so shell
text such as ``${HOME}`` passes through untouched.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from berets.core.data import CATALOG_MODES, builtin_catalog_path
from berets.core.models.catalog import Catalog
from berets.core.models.settings import Settings

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\{([a-z_][a-z0-9_]*)\}")


class CatalogError(Exception):
    """Raised when a catalog file is missing, malformed or inconsistent."""


# ── Variables ───────────────────────────────────────────────────────


def expand_vars(value: Any, variables: dict[str, str]) -> Any:
    """Substitute ``{name}`` in every string inside ``value``.

    Raises:
        CatalogError: A referenced variable is not defined.
    """
    if isinstance(value, str):
        def _sub(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in variables:
                raise CatalogError(f"Unknown variable {{{name}}} in '{value}'")
            return variables[name]

        return _VAR_RE.sub(_sub, value)
    if isinstance(value, list):
        return [expand_vars(v, variables) for v in value]
    if isinstance(value, dict):
        return {k: expand_vars(v, variables) for k, v in value.items()}
    return value


# ── Loading ─────────────────────────────────────────────────────────


def catalog_path(mode: str, settings: Settings | None = None) -> Path:
    """Where the catalog for ``mode`` comes from (override dir or built-in)."""
    if mode not in CATALOG_MODES:
        raise CatalogError(f"Unknown catalog mode: {mode}")
    if settings is not None and settings.catalog_dir:
        return Path(settings.catalog_dir).expanduser() / f"{mode}.yml"
    return builtin_catalog_path(mode)


def load_catalog(
    path: Path,
    settings: Settings | None = None,
    probe_kinds: Iterable[str] | None = None,
    action_kinds: Iterable[str] | None = None,
) -> Catalog:
    """Load, expand and validate one catalog file.

    Args:
        path: Catalog YAML file.
        settings: Source of ``{var}`` values (defaults when None).
        probe_kinds: Known probe kinds (built-ins when None).
        action_kinds: Known action kinds (built-ins when None).

    Raises:
        CatalogError: If the file is missing, invalid or inconsistent.
    """
    settings = settings or Settings()

    if not path.is_file():
        raise CatalogError(f"Catalog file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise CatalogError(f"Cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise CatalogError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise CatalogError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        catalog = Catalog.model_validate(data)
    except ValidationError as e:
        raise CatalogError(f"Invalid catalog {path}: {e}") from e

    for entry in catalog.items:
        entry.probe.params = expand_vars(entry.probe.params, settings.vars)
        entry.remediation = expand_vars(entry.remediation, settings.vars)
        if entry.action is not None:
            entry.action.params = expand_vars(entry.action.params, settings.vars)

    problems = validate_catalog(catalog, probe_kinds, action_kinds)
    if problems:
        raise CatalogError(
            f"Catalog {path} has {len(problems)} problem(s):\n  - " + "\n  - ".join(problems)
        )

    logger.debug("Loaded catalog '%s' with %d items from %s", catalog.name, len(catalog.items), path)
    return catalog


def load_mode_catalog(mode: str, settings: Settings | None = None) -> Catalog:
    """Load the catalog for ``provision`` or ``teardown``.

    A teardown catalog is also checked against the provision catalog: every
    ``undoes`` must name a provision item.
    """
    settings = settings or Settings()
    catalog = load_catalog(catalog_path(mode, settings), settings)
    if catalog.mode != mode:
        raise CatalogError(f"Catalog '{catalog.name}' is a {catalog.mode} catalog, not {mode}")

    if mode == "teardown":
        provision = load_catalog(catalog_path("provision", settings), settings)
        unknown = unknown_undoes(provision, catalog)
        if unknown:
            raise CatalogError(
                "Teardown items undo unknown provision items: " + ", ".join(unknown)
            )
    return catalog


# ── Validation ──────────────────────────────────────────────────────


def validate_catalog(
    catalog: Catalog,
    probe_kinds: Iterable[str] | None = None,
    action_kinds: Iterable[str] | None = None,
) -> list[str]:
    """Return every consistency problem of ``catalog`` (empty when valid)."""
    if probe_kinds is None or action_kinds is None:
        from berets.core.actions.builtin import BUILTIN_ACTIONS
        from berets.core.probes.builtin import BUILTIN_PROBES

        probe_kinds = BUILTIN_PROBES if probe_kinds is None else probe_kinds
        action_kinds = BUILTIN_ACTIONS if action_kinds is None else action_kinds

    probes, actions = set(probe_kinds), set(action_kinds)
    problems: list[str] = []
    seen: set[str] = set()

    for entry in catalog.items:
        if entry.name in seen:
            problems.append(f"duplicate item name '{entry.name}'")
        if entry.probe.kind not in probes:
            problems.append(f"{entry.name}: unknown probe kind '{entry.probe.kind}'")
        if entry.action is not None and entry.action.kind not in actions:
            problems.append(f"{entry.name}: unknown action kind '{entry.action.kind}'")
        for required in entry.requires:
            if required not in seen:
                problems.append(
                    f"{entry.name}: requires '{required}' which is not declared earlier"
                )
        if entry.undoes and catalog.mode != "teardown":
            problems.append(f"{entry.name}: 'undoes' is only valid in a teardown catalog")
        if entry.timeout is not None and entry.timeout <= 0:
            problems.append(f"{entry.name}: timeout must be positive")
        seen.add(entry.name)

    if catalog.not_undone and catalog.mode != "teardown":
        problems.append("'not_undone' is only valid in a teardown catalog")

    return problems


def unknown_undoes(provision: Catalog, teardown: Catalog) -> list[str]:
    """Teardown ``undoes`` targets (and ``not_undone`` keys) missing from provision."""
    declared = set(provision.names)
    targets = [e.undoes for e in teardown.items if e.undoes] + list(teardown.not_undone)
    return sorted({name for name in targets if name not in declared})


def uncovered_items(provision: Catalog, teardown: Catalog) -> list[str]:
    """Provision items with neither a teardown counterpart nor a documented reason."""
    covered = {e.undoes for e in teardown.items if e.undoes} | set(teardown.not_undone)
    return [name for name in provision.names if name not in covered]
