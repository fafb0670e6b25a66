"""List view state machine for the letters list.

Owns the filter state, the displayed page, search suggestions, saved views,
selection and bulk actions. Every page fetch goes through one cancellation
scope, so the displayed list always reflects the most recently started load
that is still current when it completes.

Usage::

    async with LettersClient(base_url, token) as client:
        controller = ListController(client, preferences=prefs)
        await controller.start()
        await controller.set_filter("status", "IN_PROGRESS")
        for letter in controller.letters:
            ...
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from enum import StrEnum

import httpx
from pydantic import ValidationError

from lettertrack.constants import (
    AUTOCOMPLETE_LIMIT,
    SEARCH_DEBOUNCE_SECONDS,
    SUGGESTIONS_DEBOUNCE_SECONDS,
    SUGGESTIONS_LIMIT,
)
from lettertrack.errors import LettersApiError
from lettertrack.integrations.letters_api import LettersClient
from lettertrack.listing.cache import Clock, ResponseCache, TimedValue
from lettertrack.listing.cancellation import CancellationScope, CancellationToken
from lettertrack.listing.debounce import Debouncer
from lettertrack.listing.preferences import PreferencesStore
from lettertrack.listing.url_state import UrlSync, build_request_params, cache_key, parse_url_query
from lettertrack.notifications import Notifier
from lettertrack.schemas.filters import (
    FILTER_DIMENSIONS,
    FilterState,
    SavedView,
    SortField,
    SortOrder,
    ViewFilters,
    ViewMode,
)
from lettertrack.schemas.letters import Letter, LettersPage, Pagination, SearchSuggestion, UserSummary

logger = logging.getLogger(__name__)

# Fields accepted by PATCH /api/letters/{id}, by wire name.
PATCHABLE_FIELDS = ("status", "owner", "type", "content", "priority", "deadlineDate", "org", "number", "date")


class LoadPhase(StrEnum):
    IDLE = "idle"
    LOADING = "loading"


class LoadOutcome(StrEnum):
    SUCCESS = "success"
    CACHED = "cached"
    ABORTED = "aborted"
    ERROR = "error"


class BulkAction(StrEnum):
    STATUS = "status"
    OWNER = "owner"
    DELETE = "delete"


class ListController:
    """Filter/sort/paginate the letters list against the API.

    All collaborators are injected; the defaults give an in-memory setup
    suitable for tests. ``url_replace`` receives the relative URL whenever the
    filter state changes the address-bar query.
    """

    def __init__(
        self,
        client: LettersClient,
        *,
        notifier: Notifier | None = None,
        preferences: PreferencesStore | None = None,
        cache: ResponseCache | None = None,
        clock: Clock = time.monotonic,
        url_replace: Callable[[str], None] | None = None,
        initial_query: str = "",
        cache_ttl: float = 30.0,
        users_ttl: float = 300.0,
        search_delay: float = SEARCH_DEBOUNCE_SECONDS,
        suggestions_delay: float = SUGGESTIONS_DEBOUNCE_SECONDS,
        default_page_size: int = 50,
    ) -> None:
        self._client = client
        self._notifier = notifier if notifier is not None else Notifier()
        self._prefs = preferences if preferences is not None else PreferencesStore(":memory:")
        self._cache = cache if cache is not None else ResponseCache(cache_ttl, clock)
        self._users_cache: TimedValue[list[UserSummary]] = TimedValue(users_ttl, clock)
        self._default_page_size = default_page_size

        self._list_scope = CancellationScope("letters")
        self._suggest_scope = CancellationScope("suggestions")
        self._search_debouncer = Debouncer(search_delay, self._on_search_settled)
        self._suggest_debouncer = Debouncer(suggestions_delay, self._fetch_suggestions)

        stored_limit = self._prefs.get_items_per_page(default_page_size)
        self.filters: FilterState = parse_url_query(initial_query, stored_limit)
        self._url = UrlSync(url_replace, initial_query=initial_query)
        self._url.sync(self.filters, default_page_size)

        self.letters: list[Letter] = []
        self.pagination: Pagination | None = None
        self.phase = LoadPhase.IDLE
        self.last_outcome: LoadOutcome | None = None
        self.loading = False
        self.content_loading = False
        self.is_searching = False

        self.suggestions: list[SearchSuggestion] = []
        self.suggestions_loading = False
        self.recent_searches: list[str] = self._prefs.get_recent_searches()

        self.view_mode: ViewMode = self._prefs.get_view_mode()
        self.saved_views: list[SavedView] = self._prefs.list_saved_views()
        self.active_view_id: str | None = None

        self.users: list[UserSummary] = []
        self.selected: set[str] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Initial load of the first page and the users list."""
        await asyncio.gather(self.load(), self.load_users())

    async def close(self) -> None:
        """Drop debounced work and cancel everything in flight."""
        self._search_debouncer.shutdown()
        self._suggest_debouncer.shutdown()
        self._list_scope.cancel()
        self._suggest_scope.cancel()

    async def settle(self) -> None:
        """Wait for debounced search and suggestion work to finish."""
        await self._search_debouncer.wait()
        await self._suggest_debouncer.wait()

    @property
    def url(self) -> str:
        return self._url.current_url

    @property
    def active_filters_count(self) -> int:
        f = self.filters
        return sum(
            (
                bool(f.search),
                f.status != "all",
                bool(f.quick_filter),
                bool(f.owner),
                bool(f.type),
            )
        )

    # ------------------------------------------------------------------
    # Filter changes
    # ------------------------------------------------------------------

    async def set_filter(self, dimension: str, value: object) -> None:
        """Change one filter dimension and reload.

        Search text is debounced; every other dimension reloads right away.
        Page resets to 1 unless only the sort order changed.
        """
        if dimension not in FILTER_DIMENSIONS:
            raise ValueError(f"Unknown filter dimension: {dimension}")
        if dimension == "search":
            self.set_search(str(value))
            return

        setattr(self.filters, dimension, value)
        if dimension != "sort_order":
            self.filters.page = 1
        self.active_view_id = None
        self._sync_url()
        await self.load(show_loading=False, content_only=True)

    def set_search(self, text: str) -> None:
        """Update the search text; the reload happens after the debounce delay."""
        self.filters.search = text
        self.filters.page = 1
        self.active_view_id = None
        self.is_searching = True

        if text.strip():
            self._suggest_debouncer.trigger(text.strip())
        else:
            self._suggest_debouncer.cancel()
            self._suggest_scope.cancel()
            self.suggestions = []
            self.suggestions_loading = False

        self._search_debouncer.trigger(text)

    async def toggle_sort(self, field: SortField | str) -> None:
        """Same field flips the order in place; another field sorts it descending from page 1."""
        field = SortField(field)
        if field == self.filters.sort_by:
            flipped = SortOrder.ASC if self.filters.sort_order == SortOrder.DESC else SortOrder.DESC
            await self.set_filter("sort_order", flipped)
            return
        self.filters.sort_by = field
        self.filters.sort_order = SortOrder.DESC
        self.filters.page = 1
        self.active_view_id = None
        self._sync_url()
        await self.load(show_loading=False, content_only=True)

    async def go_to_page(self, page: int) -> None:
        total_pages = self.pagination.total_pages if self.pagination else 0
        page = max(1, min(page, total_pages or 1))
        if page == self.filters.page:
            return
        self.filters.page = page
        self._sync_url()
        await self.load(show_loading=False, content_only=True)

    async def next_page(self) -> None:
        await self.go_to_page(self.filters.page + 1)

    async def prev_page(self) -> None:
        await self.go_to_page(self.filters.page - 1)

    async def set_page_size(self, limit: int) -> None:
        self.filters.limit = limit
        self.filters.page = 1
        self._prefs.set_items_per_page(limit)
        self._sync_url()
        await self.load(show_loading=False, content_only=True)

    async def reset_filters(self) -> None:
        self._search_debouncer.cancel()
        self._suggest_debouncer.cancel()
        self._suggest_scope.cancel()
        self.suggestions = []
        self.is_searching = False
        self.filters = FilterState(limit=self.filters.limit)
        self.active_view_id = None
        self._sync_url()
        await self.load(show_loading=False, content_only=True)

    def _sync_url(self, *, force: bool = False) -> None:
        self._url.sync(self.filters, self._default_page_size, force=force)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(
        self,
        *,
        show_loading: bool = True,
        force: bool = False,
        content_only: bool = False,
    ) -> LoadOutcome:
        """Fetch the page for the current filters, or serve it from cache.

        Starting a load supersedes any load in flight. A superseded load
        returns ABORTED and leaves the displayed state untouched.
        """
        token = self._list_scope.issue()
        key = cache_key(self.filters)

        if force:
            self._cache.clear()
        else:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Serving letters from cache: %s", key)
                self._apply_page(cached)
                return self._finish(token, LoadOutcome.CACHED)

        self.phase = LoadPhase.LOADING
        if show_loading:
            self.loading = True
        if content_only:
            self.content_loading = True

        task = asyncio.ensure_future(self._client.list_letters(build_request_params(self.filters)))
        token.attach(task)
        try:
            page = await task
        except asyncio.CancelledError:
            if token.cancelled:
                logger.debug("letters request %d aborted", token.request_id)
                return LoadOutcome.ABORTED
            raise
        except (httpx.HTTPError, LettersApiError, ValidationError) as exc:
            if not self._list_scope.is_current(token):
                return LoadOutcome.ABORTED
            logger.warning("Failed to load letters: %s", exc)
            self._notifier.error("Could not load letters")
            return self._finish(token, LoadOutcome.ERROR)

        if not self._list_scope.is_current(token):
            logger.debug("Discarding stale letters response %d", token.request_id)
            return LoadOutcome.ABORTED

        self._cache.set(key, page)
        self._apply_page(page)
        self.selected.clear()
        return self._finish(token, LoadOutcome.SUCCESS)

    def _apply_page(self, page: LettersPage) -> None:
        self.letters = list(page.letters)
        self.pagination = page.pagination

    def _finish(self, token: CancellationToken, outcome: LoadOutcome) -> LoadOutcome:
        if self._list_scope.is_current(token):
            self.phase = LoadPhase.IDLE
            self.loading = False
            self.content_loading = False
            self.last_outcome = outcome
        return outcome

    async def on_visibility_change(self, visible: bool) -> LoadOutcome | None:
        """Reload fresh data when the view becomes visible again."""
        if not visible:
            return None
        self._cache.clear()
        return await self.load(show_loading=False, force=True, content_only=True)

    async def on_history_navigation(self, query: str | None = None) -> LoadOutcome:
        """Back/forward navigation: adopt the URL's filters if given, then reload fresh."""
        if query is not None:
            self.filters = parse_url_query(query, self.filters.limit)
            self.active_view_id = None
        self._cache.clear()
        self._sync_url(force=True)
        return await self.load(show_loading=False, force=True, content_only=True)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def _on_search_settled(self, text: str) -> None:
        if text.strip():
            self.recent_searches = self._prefs.add_recent_search(text)
        self._sync_url()
        try:
            await self.load(show_loading=False, content_only=True)
        finally:
            if self.filters.search == text:
                self.is_searching = False

    async def _fetch_suggestions(self, query: str) -> None:
        token = self._suggest_scope.issue()
        self.suggestions_loading = True
        params = httpx.QueryParams(
            {
                "search": query,
                "limit": SUGGESTIONS_LIMIT,
                "sortBy": SortField.CREATED.value,
                "sortOrder": SortOrder.DESC.value,
            }
        )
        task = asyncio.ensure_future(self._client.list_letters(params))
        token.attach(task)
        try:
            page = await task
        except asyncio.CancelledError:
            if token.cancelled:
                return
            raise
        except (httpx.HTTPError, LettersApiError, ValidationError) as exc:
            if self._suggest_scope.is_current(token):
                logger.warning("Failed to load suggestions: %s", exc)
                self.suggestions_loading = False
            return

        if not self._suggest_scope.is_current(token):
            return
        self.suggestions = [SearchSuggestion.from_letter(letter) for letter in page.letters]
        self.suggestions_loading = False

    def autocomplete_candidates(self) -> list[str]:
        """Up to three distinct org/number strings from the suggestions that contain the query."""
        query = self.filters.search.strip().casefold()
        if not query:
            return []
        candidates: list[str] = []
        for suggestion in self.suggestions:
            for value in (suggestion.org, suggestion.number):
                if value and query in value.casefold() and value not in candidates:
                    candidates.append(value)
                if len(candidates) >= AUTOCOMPLETE_LIMIT:
                    return candidates
        return candidates

    def clear_recent_searches(self) -> None:
        self._prefs.clear_recent_searches()
        self.recent_searches = []

    # ------------------------------------------------------------------
    # View mode and saved views
    # ------------------------------------------------------------------

    def set_view_mode(self, mode: ViewMode | str) -> None:
        self.view_mode = ViewMode(mode)
        self._prefs.set_view_mode(self.view_mode)

    def save_current_view(self, name: str) -> SavedView:
        name = name.strip()
        if not name:
            raise ValueError("Saved view name must not be empty")
        f = self.filters
        view = SavedView(
            id=uuid.uuid4().hex,
            name=name,
            filters=ViewFilters(
                search=f.search,
                status=f.status,
                quick_filter=f.quick_filter,
                owner=f.owner,
                type=f.type,
                sort_by=f.sort_by,
                sort_order=f.sort_order,
                view_mode=self.view_mode,
            ),
        )
        self.saved_views = [*self.saved_views, view]
        self._prefs.save_saved_views(self.saved_views)
        self.active_view_id = view.id
        logger.info("Saved view %r", name)
        return view

    async def apply_saved_view(self, view_id: str) -> LoadOutcome:
        """Restore every dimension of a saved view with a single reload."""
        view = next((v for v in self.saved_views if v.id == view_id), None)
        if view is None:
            raise KeyError(view_id)
        self._search_debouncer.cancel()
        self.is_searching = False
        saved = view.filters
        self.filters = FilterState(
            search=saved.search,
            status=saved.status,
            quick_filter=saved.quick_filter,
            owner=saved.owner,
            type=saved.type,
            sort_by=saved.sort_by,
            sort_order=saved.sort_order,
            page=1,
            limit=self.filters.limit,
        )
        self.set_view_mode(saved.view_mode)
        self.active_view_id = view.id
        self._sync_url()
        return await self.load(show_loading=False, content_only=True)

    def delete_saved_view(self, view_id: str) -> bool:
        remaining = [v for v in self.saved_views if v.id != view_id]
        if len(remaining) == len(self.saved_views):
            return False
        self.saved_views = remaining
        self._prefs.save_saved_views(remaining)
        if self.active_view_id == view_id:
            self.active_view_id = None
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def load_users(self) -> list[UserSummary]:
        cached = self._users_cache.get()
        if cached is not None:
            self.users = cached
            return cached
        try:
            users = await self._client.list_users()
        except (httpx.HTTPError, LettersApiError, ValidationError) as exc:
            logger.warning("Failed to load users: %s", exc)
            return self.users
        self._users_cache.set(users)
        self.users = users
        return users

    # ------------------------------------------------------------------
    # Selection and bulk actions
    # ------------------------------------------------------------------

    def toggle_select(self, letter_id: str) -> None:
        if letter_id in self.selected:
            self.selected.discard(letter_id)
        else:
            self.selected.add(letter_id)

    def toggle_select_all(self) -> None:
        visible = {letter.id for letter in self.letters}
        if visible and visible <= self.selected:
            self.selected -= visible
        else:
            self.selected |= visible

    def clear_selection(self) -> None:
        self.selected.clear()

    async def bulk_action(self, action: BulkAction | str, value: str | None = None) -> int:
        """Apply an action to the selected letters and reload.

        Returns:
            Number of letters the server updated (0 on failure or empty selection).
        """
        action = BulkAction(action)
        if not self.selected:
            self._notifier.warning("No letters selected")
            return 0
        if action != BulkAction.DELETE and not value:
            raise ValueError(f"Bulk action {action.value!r} needs a value")

        ids = sorted(self.selected)
        try:
            updated = await self._client.bulk_update(ids, action.value, value)
        except (httpx.HTTPError, LettersApiError) as exc:
            logger.warning("Bulk %s failed for %d letters: %s", action.value, len(ids), exc)
            self._notifier.error("Bulk action failed")
            return 0

        verb = "Deleted" if action == BulkAction.DELETE else "Updated"
        self._notifier.success(f"{verb} {updated} letters")
        self.selected.clear()
        await self.load(show_loading=False, force=True, content_only=True)
        return updated

    # ------------------------------------------------------------------
    # Inline edits
    # ------------------------------------------------------------------

    async def patch_letter(self, letter_id: str, field: str, value: object) -> bool:
        """Optimistically update one field; reverts the row if the server refuses."""
        if field not in PATCHABLE_FIELDS:
            raise ValueError(f"Field {field!r} cannot be edited inline")
        index = next((i for i, letter in enumerate(self.letters) if letter.id == letter_id), None)
        if index is None:
            raise KeyError(letter_id)

        original = self.letters[index]
        self.letters[index] = self._patched(original, field, value)
        try:
            await self._client.patch_letter(letter_id, field, value)
        except (httpx.HTTPError, LettersApiError) as exc:
            logger.warning("Failed to update %s on letter %s: %s", field, letter_id, exc)
            self._revert(original)
            self._notifier.error("Could not save the change")
            return False

        self._cache.clear()
        return True

    def _patched(self, letter: Letter, field: str, value: object) -> Letter:
        data = letter.model_dump(by_alias=True)
        if field == "owner":
            if value:
                owner = next((u for u in self.users if u.id == value), None)
                data["owner"] = (owner or UserSummary(id=str(value))).model_dump()
            else:
                data["owner"] = None
        else:
            data[field] = value
        return Letter.model_validate(data)

    def _revert(self, original: Letter) -> None:
        for i, letter in enumerate(self.letters):
            if letter.id == original.id:
                self.letters[i] = original
                return
