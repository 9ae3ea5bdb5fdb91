"""
Audit ledger — append-only history of provisioning runs.

Every non-dry run appends one NDJSON line summarising its report.  The
ledger is never rewritten; ``berets history`` reads the tail of it.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from berets.core.models.report import RunReport

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_FILE = "audit.ndjson"


class AuditEntry(BaseModel):
    """Summary of one run."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    operation_id: str = ""
    mode: str = ""                 # provision, teardown
    dry_run: bool = False

    # Results
    status: str = ""               # success, success_with_warnings, failed
    items_declared: int = 0
    items_processed: int = 0
    items_applied: int = 0
    items_failed: int = 0
    items_warned: int = 0
    halted_by: str | None = None
    cancelled: bool = False
    duration_ms: int = 0

    applied: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: RunReport) -> AuditEntry:
        return cls(
            operation_id=report.operation_id,
            mode=report.mode,
            dry_run=report.dry_run,
            status=report.status.value,
            items_declared=report.declared_items,
            items_processed=report.total,
            items_applied=len(report.applied),
            items_failed=len(report.failed),
            items_warned=len(report.warnings),
            halted_by=report.halted_by,
            cancelled=report.cancelled,
            duration_ms=sum(r.duration_ms for r in report.results),
            applied=[r.name for r in report.applied],
            failed=[r.name for r in report.failed],
        )


class AuditWriter:
    """Append-only audit ledger writer.

    Each call to write() appends a single JSON line; the file and its
    directory are created on first write.
    """

    def __init__(self, path: Path | None = None, state_dir: Path | None = None):
        if path is not None:
            self._path = path
        elif state_dir is not None:
            self._path = state_dir / DEFAULT_AUDIT_FILE
        else:
            self._path = Path(DEFAULT_AUDIT_FILE)

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> bool:
        """Append an audit entry to the ledger.

        Returns:
            False when the ledger could not be written (logged, not raised:
            a read-only state dir must not fail an otherwise good run).
        """
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.error("Failed to write audit entry to %s: %s", self._path, e)
            return False
        logger.debug("Audit entry written: %s/%s", entry.mode, entry.operation_id)
        return True

    def read_all(self) -> list[AuditEntry]:
        """Read all entries, oldest first; corrupt lines are skipped."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """The most recent ``n`` entries, oldest first."""
        if n <= 0:
            return []
        return self.read_all()[-n:]
