"""Pydantic models mirroring the letters API response shapes.

The API speaks camelCase; models accept either the wire name or the
Python attribute name.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class LetterStatus(StrEnum):
    """Workflow status of a letter."""

    NOT_REVIEWED = "NOT_REVIEWED"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    CLARIFICATION = "CLARIFICATION"
    READY = "READY"
    DONE = "DONE"


STATUS_LABELS: dict[LetterStatus, str] = {
    LetterStatus.NOT_REVIEWED: "not reviewed",
    LetterStatus.ACCEPTED: "accepted",
    LetterStatus.IN_PROGRESS: "in progress",
    LetterStatus.CLARIFICATION: "clarification",
    LetterStatus.READY: "ready",
    LetterStatus.DONE: "done",
}


def is_done_status(status: LetterStatus) -> bool:
    """READY and DONE both count as closed."""
    return status in (LetterStatus.READY, LetterStatus.DONE)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class UserSummary(_WireModel):
    """A user reference as embedded in letters and returned by /api/users."""

    id: str
    name: str | None = None
    email: str | None = None
    image: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id


class LetterCounts(_WireModel):
    comments: int = 0
    watchers: int = 0


class Letter(_WireModel):
    """A tracked piece of correspondence.

    Only includes fields the list view and bulk import work with.
    """

    id: str
    number: str
    org: str = ""
    date: datetime | None = None
    deadline_date: datetime | None = Field(default=None, alias="deadlineDate")
    status: LetterStatus = LetterStatus.NOT_REVIEWED
    type: str | None = None
    content: str | None = None
    priority: int = 50
    owner: UserSummary | None = None
    counts: LetterCounts = Field(default_factory=LetterCounts, alias="_count")
    client_id: str | None = Field(default=None, alias="clientId")


class Pagination(_WireModel):
    """Pagination metadata returned alongside a page of letters."""

    page: int = 1
    limit: int = 50
    total: int = 0
    total_pages: int = Field(default=0, alias="totalPages")


class LettersPage(_WireModel):
    """Response of ``GET /api/letters``."""

    letters: list[Letter] = Field(default_factory=list)
    pagination: Pagination | None = None


class SearchSuggestion(_WireModel):
    """Compact letter reference shown under the search box."""

    id: str
    number: str
    org: str = ""
    status: LetterStatus
    deadline_date: datetime | None = Field(default=None, alias="deadlineDate")

    @classmethod
    def from_letter(cls, letter: Letter) -> "SearchSuggestion":
        return cls(
            id=letter.id,
            number=letter.number,
            org=letter.org,
            status=letter.status,
            deadline_date=letter.deadline_date,
        )
