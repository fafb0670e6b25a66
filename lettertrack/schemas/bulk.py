"""Schemas for the bulk import pipeline.

Covers the full lifecycle:
  document → extraction service → editable row → batch create → attachment upload
"""

import datetime as dt
import uuid
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lettertrack.constants import PRIORITY_DEFAULT
from lettertrack.importer.deadlines import parse_date_value
from lettertrack.schemas.letters import Letter

# Row fields a user (or an extraction result) may write.
EDITABLE_FIELDS = ("number", "org", "date", "deadline_date", "type", "content", "priority")


def normalize_business_key(number: str) -> str:
    """Business keys compare trimmed and case-folded."""
    return number.strip().casefold()


# --- Editable rows ---


class BulkImportRow(BaseModel):
    """One letter-to-be in the bulk import table.

    ``parsing`` is True while extraction is in flight; the row is read-only
    until it flips back. ``parsed_by_ai`` marks rows auto-filled successfully.
    ``date_is_default`` marks a date nobody supplied yet, which extraction may
    replace and which never drives deadline inference.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    number: str = ""
    org: str = ""
    date: dt.date | None = Field(default_factory=dt.date.today)
    date_is_default: bool = False
    deadline_date: dt.date | None = None
    type: str = ""
    content: str = ""
    priority: int = Field(default=PRIORITY_DEFAULT, ge=0, le=100)
    file: Path | None = None
    parsing: bool = False
    parsed_by_ai: bool = False
    extraction_error: str | None = None
    errors: list[str] = Field(default_factory=list)

    @field_validator("date", "deadline_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: object) -> dt.date | None:
        if value is None or value == "":
            return None
        parsed = parse_date_value(value)
        if parsed is None:
            raise ValueError(f"Unrecognized date: {value!r}")
        return parsed

    @property
    def business_key(self) -> str:
        return normalize_business_key(self.number)

    def is_blank(self) -> bool:
        """True for an untouched default row (the prefilled date is ignored)."""
        return not (
            self.number.strip()
            or self.org.strip()
            or self.deadline_date
            or self.type
            or self.content.strip()
            or self.file
        )

    def to_payload(self) -> dict:
        """Serialize for ``POST /api/letters/bulk``."""
        payload: dict = {
            "clientId": self.id,
            "number": self.number.strip(),
            "org": self.org.strip(),
            "date": self.date.isoformat() if self.date else None,
            "priority": self.priority,
        }
        if self.deadline_date:
            payload["deadlineDate"] = self.deadline_date.isoformat()
        if self.type:
            payload["type"] = self.type
        if self.content.strip():
            payload["content"] = self.content.strip()
        return payload


# --- Extraction service output ---


class ExtractedLetterData(BaseModel):
    """Candidate field values returned by ``POST /api/parse-pdf``.

    The service output is loosely typed; anything unusable becomes ``None``
    instead of failing the whole row.
    """

    model_config = ConfigDict(populate_by_name=True)

    number: str | None = None
    date: dt.date | None = None
    deadline: dt.date | None = None
    organization: str | None = None
    content: str | None = None
    content_russian: str | None = Field(default=None, alias="contentRussian")
    region: str | None = None
    district: str | None = None

    @field_validator("date", "deadline", mode="before")
    @classmethod
    def _lenient_date(cls, value: object) -> dt.date | None:
        return parse_date_value(value)

    @field_validator(
        "number", "organization", "content", "content_russian", "region", "district",
        mode="before",
    )
    @classmethod
    def _clean_text(cls, value: object) -> str | None:
        if value is None:
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if not isinstance(value, str):
            return None
        value = value.strip()
        return value or None

    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())


# --- Batch create ---


class BulkCreateResult(BaseModel):
    """Successful response of ``POST /api/letters/bulk``."""

    model_config = ConfigDict(populate_by_name=True)

    created: int = 0
    skipped: int = 0
    skipped_numbers: list[str] = Field(default_factory=list, alias="skippedNumbers")
    letters: list[Letter] = Field(default_factory=list)


# --- Operation reports ---


class ExtractionSummary(BaseModel):
    """Outcome of a concurrent extraction run."""

    total: int = 0
    recognized: int = 0
    failed_row_ids: list[str] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failed_row_ids)

    def message(self) -> str:
        return f"{self.recognized} of {self.total} recognized"


class AttachmentOutcome(BaseModel):
    """Result of uploading one row's source file to its created letter."""

    row_id: str
    number: str
    filename: str
    letter_id: str | None = None
    attached: bool = False
    error: str | None = None


class SubmitReport(BaseModel):
    """Everything the caller needs to report a bulk submission."""

    submitted: bool = False
    result: BulkCreateResult | None = None
    error: str | None = None
    duplicates: list[str] = Field(default_factory=list)
    row_errors: dict[str, list[str]] = Field(default_factory=dict)
    attachments: list[AttachmentOutcome] = Field(default_factory=list)

    @property
    def attached_count(self) -> int:
        return sum(1 for a in self.attachments if a.attached)

    @property
    def attachment_failures(self) -> list[AttachmentOutcome]:
        return [a for a in self.attachments if not a.attached]
