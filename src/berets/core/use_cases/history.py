"""
History use case — recent runs from the audit ledger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from berets.core.config.loader import ConfigError, load_settings
from berets.core.persistence.audit import AuditEntry, AuditWriter


@dataclass
class HistoryResult:
    entries: list[AuditEntry] = field(default_factory=list)
    path: Path | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.error:
            return {"error": self.error}
        return {
            "path": str(self.path),
            "entries": [e.model_dump(mode="json") for e in self.entries],
        }


def read_history(config_path: Path | None = None, n: int = 10) -> HistoryResult:
    """Read the ``n`` most recent runs, oldest first."""
    result = HistoryResult()
    try:
        settings = load_settings(config_path)
    except ConfigError as e:
        result.error = str(e)
        return result

    writer = AuditWriter(state_dir=settings.state_path)
    result.path = writer.path
    result.entries = writer.read_recent(n)
    return result
