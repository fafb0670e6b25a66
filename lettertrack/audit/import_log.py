"""Append-only audit log for bulk letter imports.

Writes ImportAuditEntry records as JSON Lines (one JSON object per line).
Every submission the server answered, accepted or rejected, is logged here.
"""

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from lettertrack.schemas.bulk import SubmitReport

logger = logging.getLogger(__name__)

ImportAction = Literal["created", "rejected"]


class ImportAuditEntry(BaseModel):
    timestamp: datetime
    action: ImportAction
    numbers: list[str] = Field(default_factory=list)
    skip_duplicates: bool = False
    created: int = 0
    skipped: int = 0
    skipped_numbers: list[str] = Field(default_factory=list)
    attached: int = 0
    attachment_failures: int = 0
    error: str | None = None


class ImportLog:
    """Append-only JSONL log of bulk submissions.

    Usage::

        log = ImportLog("/path/to/imports.log")
        log.log_submission(["001", "002"], report, skip_duplicates=False)

        entries = log.read_entries(since=some_datetime)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, entry: ImportAuditEntry) -> None:
        """Append a single entry to the log file."""
        with self._path.open("a", encoding="utf-8") as f:
            f.write(entry.model_dump_json() + "\n")
        logger.debug("Import audit: %s created=%d skipped=%d", entry.action, entry.created, entry.skipped)

    def log_submission(
        self,
        numbers: list[str],
        report: SubmitReport,
        *,
        skip_duplicates: bool,
    ) -> ImportAuditEntry:
        """Record the outcome of one batch-create call."""
        result = report.result
        entry = ImportAuditEntry(
            timestamp=datetime.now(UTC),
            action="created" if report.submitted else "rejected",
            numbers=numbers,
            skip_duplicates=skip_duplicates,
            created=result.created if result else 0,
            skipped=result.skipped if result else 0,
            skipped_numbers=result.skipped_numbers if result else [],
            attached=report.attached_count,
            attachment_failures=len(report.attachment_failures),
            error=report.error,
        )
        self.log(entry)
        return entry

    def read_entries(
        self,
        *,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[ImportAuditEntry]:
        """Read entries oldest first, optionally only those after ``since``.

        ``limit`` keeps the newest N after filtering.
        """
        if not self._path.exists():
            return []

        entries: list[ImportAuditEntry] = []
        with self._path.open(encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                entry = ImportAuditEntry.model_validate_json(line)
                if since and entry.timestamp <= since:
                    continue
                entries.append(entry)

        if limit is not None:
            entries = entries[-limit:]

        return entries
