"""Client-side list view state: filters, sorting, view modes and saved views."""

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from lettertrack.schemas.letters import LetterStatus


class SortField(StrEnum):
    CREATED = "created"
    DATE = "date"
    DEADLINE = "deadline"
    PRIORITY = "priority"
    NUMBER = "number"
    STATUS = "status"


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"


class QuickFilter(StrEnum):
    """Named, predefined filter shortcuts."""

    ALL = ""
    MINE = "mine"
    UNASSIGNED = "unassigned"
    FAVORITES = "favorites"
    OVERDUE = "overdue"
    URGENT = "urgent"
    ACTIVE = "active"
    DONE = "done"


class ViewMode(StrEnum):
    TABLE = "table"
    CARDS = "cards"
    KANBAN = "kanban"


StatusFilter = LetterStatus | Literal["all"]

# Dimensions that can be changed through ListController.set_filter.
FILTER_DIMENSIONS = (
    "search",
    "status",
    "quick_filter",
    "owner",
    "type",
    "sort_by",
    "sort_order",
)


class FilterState(BaseModel):
    """Current filter/sort/pagination state of a list view.

    Validated on assignment so a bad enum value never reaches the query string.
    """

    model_config = ConfigDict(validate_assignment=True)

    search: str = ""
    status: StatusFilter = "all"
    quick_filter: QuickFilter = QuickFilter.ALL
    owner: str = ""
    type: str = ""
    sort_by: SortField = SortField.CREATED
    sort_order: SortOrder = SortOrder.DESC
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1)


class ViewFilters(BaseModel):
    """Frozen snapshot of every filter dimension plus the view mode."""

    model_config = ConfigDict(frozen=True)

    search: str = ""
    status: StatusFilter = "all"
    quick_filter: QuickFilter = QuickFilter.ALL
    owner: str = ""
    type: str = ""
    sort_by: SortField = SortField.CREATED
    sort_order: SortOrder = SortOrder.DESC
    view_mode: ViewMode = ViewMode.TABLE


class SavedView(BaseModel):
    """A user-named snapshot of filter settings, stored locally."""

    id: str
    name: str
    filters: ViewFilters
