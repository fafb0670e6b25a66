"""Mapping between FilterState, API query parameters and the page URL.

The API request always carries page/limit/sort so its serialization is a
stable cache key. The page URL only carries dimensions that differ from
their defaults, which keeps shared links short.
"""

import logging
from collections.abc import Callable

import httpx

from lettertrack.schemas.filters import FilterState, QuickFilter, SortField, SortOrder
from lettertrack.schemas.letters import LetterStatus

logger = logging.getLogger(__name__)

LIST_PATH = "/letters"


def build_request_params(filters: FilterState) -> httpx.QueryParams:
    """Canonical ``GET /api/letters`` parameters for the current state."""
    params: dict[str, str | int] = {
        "page": filters.page,
        "limit": filters.limit,
        "sortBy": filters.sort_by.value,
        "sortOrder": filters.sort_order.value,
    }
    if filters.status != "all":
        params["status"] = str(filters.status)
    if filters.quick_filter:
        params["filter"] = filters.quick_filter.value
    if filters.owner:
        params["owner"] = filters.owner
    if filters.type:
        params["type"] = filters.type
    if filters.search:
        params["search"] = filters.search
    return httpx.QueryParams(params)


def cache_key(filters: FilterState) -> str:
    return str(build_request_params(filters))


def build_url_query(filters: FilterState, default_limit: int) -> str:
    """Address-bar query: only dimensions that differ from their defaults."""
    params: dict[str, str | int] = {}
    if filters.status != "all":
        params["status"] = str(filters.status)
    if filters.quick_filter:
        params["filter"] = filters.quick_filter.value
    if filters.owner:
        params["owner"] = filters.owner
    if filters.type:
        params["type"] = filters.type
    if filters.sort_by != SortField.CREATED:
        params["sortBy"] = filters.sort_by.value
    if filters.sort_order != SortOrder.DESC:
        params["sortOrder"] = filters.sort_order.value
    if filters.page != 1:
        params["page"] = filters.page
    if filters.limit != default_limit:
        params["limit"] = filters.limit
    if filters.search:
        params["search"] = filters.search
    return str(httpx.QueryParams(params))


def _positive_int(value: str | None, default: int) -> int:
    try:
        number = int(value) if value is not None else default
    except ValueError:
        return default
    return number if number > 0 else default


def _enum_or(enum_cls, value: str | None, default):
    try:
        return enum_cls(value) if value is not None else default
    except ValueError:
        return default


def parse_url_query(query: str, default_limit: int) -> FilterState:
    """Build a FilterState from a URL query; unknown values fall back to defaults.

    A ``limit`` present in the URL wins over the stored page-size preference.
    """
    params = httpx.QueryParams(query.lstrip("?"))
    status_value = params.get("status")
    status: LetterStatus | str = _enum_or(LetterStatus, status_value, "all")
    return FilterState(
        search=params.get("search", ""),
        status=status,
        quick_filter=_enum_or(QuickFilter, params.get("filter"), QuickFilter.ALL),
        owner=params.get("owner", ""),
        type=params.get("type", ""),
        sort_by=_enum_or(SortField, params.get("sortBy"), SortField.CREATED),
        sort_order=_enum_or(SortOrder, params.get("sortOrder"), SortOrder.DESC),
        page=_positive_int(params.get("page"), 1),
        limit=_positive_int(params.get("limit"), default_limit),
    )


class UrlSync:
    """Pushes state into the URL; state always wins over the URL on mismatch.

    ``replace`` receives the full relative URL (e.g. ``/letters?status=DONE``)
    and is only called when the query actually changes.
    """

    def __init__(
        self,
        replace: Callable[[str], None] | None = None,
        *,
        path: str = LIST_PATH,
        initial_query: str | None = None,
    ) -> None:
        self._replace = replace
        self._path = path
        self._last_query = (initial_query or "").lstrip("?")

    @property
    def current_url(self) -> str:
        return f"{self._path}?{self._last_query}" if self._last_query else self._path

    def sync(self, filters: FilterState, default_limit: int, *, force: bool = False) -> bool:
        """Write the state's query to the URL. Returns True if it changed."""
        query = build_url_query(filters, default_limit)
        if query == self._last_query and not force:
            return False
        self._last_query = query
        logger.debug("URL -> %s", self.current_url)
        if self._replace is not None:
            self._replace(self.current_url)
        return True
