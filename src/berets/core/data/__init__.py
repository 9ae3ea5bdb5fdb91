"""
Static data shipped with the package: built-in catalogs and snippets.

    catalogs/provision.yml   ordered desired state for a fresh workstation
    catalogs/teardown.yml    ordered desired absence, mirroring provision
    snippets/*               shell/TOML templates rendered by actions
"""

from __future__ import annotations

from pathlib import Path

DATA_DIR = Path(__file__).parent
CATALOGS_DIR = DATA_DIR / "catalogs"
SNIPPETS_DIR = DATA_DIR / "snippets"

CATALOG_MODES = ("provision", "teardown")


def builtin_catalog_path(mode: str) -> Path:
    """Path of the built-in catalog for ``mode``."""
    if mode not in CATALOG_MODES:
        raise ValueError(f"Unknown catalog mode: {mode}")
    return CATALOGS_DIR / f"{mode}.yml"


def read_snippet(name: str) -> str:
    """Read a snippet template by file name.

    Raises:
        FileNotFoundError: No such snippet.
    """
    path = SNIPPETS_DIR / name
    if path.parent != SNIPPETS_DIR:
        raise FileNotFoundError(name)
    return path.read_text(encoding="utf-8")


def list_snippets() -> list[str]:
    return sorted(p.name for p in SNIPPETS_DIR.iterdir() if p.is_file())
