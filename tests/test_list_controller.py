"""Tests for the letters list controller."""

import asyncio

import httpx
import pytest

from lettertrack.errors import LettersApiError
from lettertrack.listing.cache import ResponseCache
from lettertrack.listing.controller import BulkAction, ListController, LoadOutcome
from lettertrack.listing.preferences import PreferencesStore
from lettertrack.notifications import NotificationLevel
from lettertrack.schemas.filters import QuickFilter, SortField, SortOrder, ViewMode
from lettertrack.schemas.letters import Letter, LettersPage, LetterStatus, Pagination, UserSummary

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _letter(letter_id: str = "l1", number: str = "001", org: str = "Ministry of Health", **kwargs) -> Letter:
    return Letter(id=letter_id, number=number, org=org, **kwargs)


def _page(*letters: Letter, page: int = 1, total_pages: int = 1) -> LettersPage:
    return LettersPage(
        letters=list(letters),
        pagination=Pagination(page=page, limit=50, total=len(letters), total_pages=total_pages),
    )


def _main_calls(client) -> list[httpx.QueryParams]:
    """Params of list calls made for the main list (suggestion calls carry no page)."""
    return [c.args[0] for c in client.list_letters.call_args_list if "page" in c.args[0]]


async def _until(predicate) -> None:
    for _ in range(100):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture()
def client(letters_client):
    letters_client.list_letters.return_value = _page(_letter())
    letters_client.list_users.return_value = [UserSummary(id="u1", name="Dilnoza")]
    letters_client.bulk_update.return_value = 0
    letters_client.patch_letter.return_value = {}
    return letters_client


@pytest.fixture()
def prefs():
    with PreferencesStore(":memory:") as p:
        yield p


@pytest.fixture()
def urls() -> list[str]:
    return []


@pytest.fixture()
def controller(client, notifier, prefs, urls):
    return ListController(
        client,
        notifier=notifier,
        preferences=prefs,
        url_replace=urls.append,
        search_delay=0.01,
        suggestions_delay=0.01,
    )


# ------------------------------------------------------------------
# Initial state
# ------------------------------------------------------------------


class TestInitialState:
    def test_filters_come_from_url(self, client):
        c = ListController(client, initial_query="status=DONE&page=3&sortBy=deadline")
        assert c.filters.status == LetterStatus.DONE
        assert c.filters.page == 3
        assert c.filters.sort_by == SortField.DEADLINE

    def test_page_size_comes_from_preferences(self, client, prefs):
        prefs.set_items_per_page(100)
        c = ListController(client, preferences=prefs)
        assert c.filters.limit == 100

    def test_url_limit_wins_over_preference(self, client, prefs):
        prefs.set_items_per_page(100)
        c = ListController(client, preferences=prefs, initial_query="limit=25")
        assert c.filters.limit == 25

    async def test_start_loads_letters_and_users(self, controller, client):
        await controller.start()
        assert [letter.id for letter in controller.letters] == ["l1"]
        assert controller.users[0].display_name == "Dilnoza"
        assert controller.last_outcome == LoadOutcome.SUCCESS
        assert controller.loading is False


# ------------------------------------------------------------------
# Filters
# ------------------------------------------------------------------


class TestFilters:
    async def test_filter_change_resets_page(self, controller, client):
        controller.filters.page = 4
        await controller.set_filter("status", "DONE")
        assert controller.filters.page == 1
        params = _main_calls(client)[-1]
        assert params["status"] == "DONE"
        assert params["page"] == "1"

    async def test_sort_order_change_keeps_page(self, controller):
        controller.filters.page = 3
        await controller.set_filter("sort_order", "asc")
        assert controller.filters.page == 3
        assert controller.filters.sort_order == SortOrder.ASC

    async def test_toggle_sort_same_field_flips_order(self, controller):
        controller.filters.page = 2
        await controller.toggle_sort(SortField.CREATED)
        assert controller.filters.sort_order == SortOrder.ASC
        assert controller.filters.page == 2

    async def test_toggle_sort_new_field_sorts_descending_from_first_page(self, controller):
        controller.filters.page = 2
        controller.filters.sort_order = SortOrder.ASC
        await controller.toggle_sort("deadline")
        assert controller.filters.sort_by == SortField.DEADLINE
        assert controller.filters.sort_order == SortOrder.DESC
        assert controller.filters.page == 1

    async def test_unknown_dimension_rejected(self, controller):
        with pytest.raises(ValueError):
            await controller.set_filter("colour", "red")

    async def test_invalid_enum_value_rejected(self, controller, client):
        with pytest.raises(ValueError):
            await controller.set_filter("quick_filter", "nonsense")
        client.list_letters.assert_not_awaited()

    async def test_filter_change_updates_url(self, controller, urls):
        await controller.set_filter("quick_filter", QuickFilter.OVERDUE)
        assert urls[-1] == "/letters?filter=overdue"
        assert controller.url == "/letters?filter=overdue"

    async def test_reset_filters(self, controller):
        await controller.set_filter("status", "DONE")
        await controller.set_filter("owner", "u1")
        await controller.reset_filters()
        assert controller.filters.status == "all"
        assert controller.filters.owner == ""
        assert controller.active_filters_count == 0
        assert controller.url == "/letters"

    def test_active_filters_count(self, controller):
        controller.filters.status = LetterStatus.READY
        controller.filters.type = "Баг"
        controller.filters.sort_by = SortField.NUMBER
        assert controller.active_filters_count == 2


# ------------------------------------------------------------------
# Pagination
# ------------------------------------------------------------------


class TestPagination:
    async def test_next_and_prev_page(self, controller, client):
        client.list_letters.return_value = _page(_letter(), total_pages=3)
        await controller.load()
        await controller.next_page()
        assert controller.filters.page == 2
        await controller.prev_page()
        assert controller.filters.page == 1

    async def test_page_is_clamped(self, controller, client):
        client.list_letters.return_value = _page(_letter(), total_pages=2)
        await controller.load()
        await controller.go_to_page(10)
        assert controller.filters.page == 2

    async def test_prev_on_first_page_does_nothing(self, controller, client):
        await controller.load()
        await controller.prev_page()
        assert len(_main_calls(client)) == 1

    async def test_page_size_is_persisted(self, controller, client, prefs):
        controller.filters.page = 3
        await controller.set_page_size(100)
        assert controller.filters.page == 1
        assert prefs.get_items_per_page(50) == 100
        assert _main_calls(client)[-1]["limit"] == "100"


# ------------------------------------------------------------------
# Loading, cache and supersession
# ------------------------------------------------------------------


class TestLoad:
    async def test_second_load_served_from_cache(self, controller, client):
        assert await controller.load() == LoadOutcome.SUCCESS
        assert await controller.load() == LoadOutcome.CACHED
        assert client.list_letters.await_count == 1

    async def test_force_bypasses_cache(self, controller, client):
        await controller.load()
        assert await controller.load(force=True) == LoadOutcome.SUCCESS
        assert client.list_letters.await_count == 2

    async def test_cache_expires(self, client):
        now = [0.0]
        c = ListController(client, clock=lambda: now[0], cache_ttl=30)
        await c.load()
        now[0] = 29.0
        await c.load()
        assert client.list_letters.await_count == 1
        now[0] = 31.0
        await c.load()
        assert client.list_letters.await_count == 2

    async def test_visibility_change_refetches(self, controller, client):
        await controller.load()
        assert await controller.on_visibility_change(False) is None
        assert client.list_letters.await_count == 1
        assert await controller.on_visibility_change(True) == LoadOutcome.SUCCESS
        assert client.list_letters.await_count == 2

    async def test_history_navigation_adopts_url_and_refetches(self, controller, client, urls):
        await controller.load()
        await controller.on_history_navigation("status=READY")
        assert controller.filters.status == LetterStatus.READY
        assert client.list_letters.await_count == 2
        assert urls[-1] == "/letters?status=READY"

    async def test_success_clears_selection(self, controller):
        controller.selected = {"l1", "l2"}
        await controller.load()
        assert controller.selected == set()

    async def test_superseded_load_is_aborted(self, controller, client):
        gates = {"DONE": asyncio.Event(), "READY": asyncio.Event()}
        pages = {"DONE": _page(_letter("done")), "READY": _page(_letter("ready"))}

        async def fake(params):
            status = params["status"]
            await gates[status].wait()
            return pages[status]

        client.list_letters.side_effect = fake

        controller.filters.status = LetterStatus.DONE
        first = asyncio.create_task(controller.load())
        await _until(lambda: client.list_letters.await_count == 1)

        controller.filters.status = LetterStatus.READY
        second = asyncio.create_task(controller.load())
        await _until(lambda: client.list_letters.await_count == 2)

        gates["READY"].set()
        gates["DONE"].set()
        assert await first == LoadOutcome.ABORTED
        assert await second == LoadOutcome.SUCCESS
        assert [letter.id for letter in controller.letters] == ["ready"]
        assert controller.content_loading is False

    async def test_late_response_of_superseded_request_is_discarded(self, controller, client):
        """A request that finishes anyway after being superseded must not win."""
        gate = asyncio.Event()

        async def fake(params):
            if params.get("status") == "DONE":
                try:
                    await gate.wait()
                except asyncio.CancelledError:
                    pass
                return _page(_letter("stale"))
            return _page(_letter("fresh"))

        client.list_letters.side_effect = fake

        controller.filters.status = LetterStatus.DONE
        first = asyncio.create_task(controller.load())
        await _until(lambda: client.list_letters.await_count == 1)

        controller.filters.status = LetterStatus.READY
        assert await controller.load() == LoadOutcome.SUCCESS
        assert await first == LoadOutcome.ABORTED
        assert [letter.id for letter in controller.letters] == ["fresh"]

    async def test_error_keeps_list_and_notifies(self, controller, client, notifier):
        await controller.load()
        client.list_letters.side_effect = httpx.ConnectError("connection refused")

        assert await controller.load(force=True) == LoadOutcome.ERROR
        assert [letter.id for letter in controller.letters] == ["l1"]
        assert controller.loading is False
        assert notifier.history[-1].level == NotificationLevel.ERROR

    async def test_api_error_keeps_list_and_notifies(self, controller, client, notifier):
        await controller.load()
        client.list_letters.side_effect = LettersApiError("Expected JSON from /api/letters", status_code=200)

        assert await controller.load(force=True) == LoadOutcome.ERROR
        assert [letter.id for letter in controller.letters] == ["l1"]
        assert controller.loading is False
        assert notifier.history[-1].level == NotificationLevel.ERROR

    async def test_injected_empty_cache_is_used(self, client):
        cache = ResponseCache(30)
        c = ListController(client, cache=cache)

        await c.load()
        assert len(cache) == 1
        assert await c.load() == LoadOutcome.CACHED
        assert client.list_letters.await_count == 1

    async def test_no_automatic_retry(self, controller, client):
        client.list_letters.side_effect = httpx.ConnectError("down")
        await controller.load()
        assert client.list_letters.await_count == 1

    async def test_close_aborts_inflight_load(self, controller, client):
        never = asyncio.Event()

        async def fake(params):
            await never.wait()

        client.list_letters.side_effect = fake
        task = asyncio.create_task(controller.load())
        await _until(lambda: client.list_letters.await_count == 1)
        await controller.close()
        assert await task == LoadOutcome.ABORTED


# ------------------------------------------------------------------
# Search, suggestions and recent searches
# ------------------------------------------------------------------


class TestSearch:
    async def test_keystrokes_are_debounced_into_one_load(self, controller, client):
        for text in ("a", "ab", "abc"):
            controller.set_search(text)
        await controller.settle()

        main = _main_calls(client)
        assert len(main) == 1
        assert main[0]["search"] == "abc"
        assert controller.is_searching is False

    async def test_settled_search_is_remembered(self, controller, prefs):
        controller.set_search("minzdrav")
        await controller.settle()
        assert controller.recent_searches == ["minzdrav"]
        assert prefs.get_recent_searches() == ["minzdrav"]

    async def test_suggestions_use_own_request(self, controller, client):
        client.list_letters.return_value = _page(
            _letter("a", number="A-17", org="Alpha Clinic"),
            _letter("b", number="B-2", org="Beta Hospital"),
        )
        controller.set_search("alp")
        await controller.settle()

        suggestion_calls = [c.args[0] for c in client.list_letters.call_args_list if "page" not in c.args[0]]
        assert len(suggestion_calls) == 1
        assert suggestion_calls[0]["limit"] == "6"
        assert suggestion_calls[0]["sortBy"] == "created"
        assert [s.id for s in controller.suggestions] == ["a", "b"]
        assert controller.autocomplete_candidates() == ["Alpha Clinic"]

    async def test_empty_search_clears_suggestions(self, controller, client):
        controller.set_search("alp")
        await controller.settle()
        assert controller.suggestions

        controller.set_search("")
        assert controller.suggestions == []
        await controller.settle()

    async def test_suggestion_failure_is_silent(self, controller, client, notifier):
        client.list_letters.side_effect = httpx.ConnectError("down")
        controller.set_search("alp")
        await controller.settle()
        assert controller.suggestions == []
        # Only the main list failure is surfaced.
        assert len([n for n in notifier.history if n.level == NotificationLevel.ERROR]) == 1

    async def test_search_clears_active_view(self, controller):
        view = controller.save_current_view("All")
        assert controller.active_view_id == view.id
        controller.set_search("x")
        assert controller.active_view_id is None
        await controller.settle()


# ------------------------------------------------------------------
# Saved views and view mode
# ------------------------------------------------------------------


class TestSavedViews:
    async def test_save_and_apply(self, controller, client, prefs):
        controller.filters.status = LetterStatus.IN_PROGRESS
        controller.filters.owner = "u1"
        controller.set_view_mode(ViewMode.KANBAN)
        view = controller.save_current_view("My work")

        await controller.reset_filters()
        controller.set_view_mode(ViewMode.TABLE)
        calls_before = client.list_letters.await_count

        assert await controller.apply_saved_view(view.id) == LoadOutcome.SUCCESS
        assert client.list_letters.await_count == calls_before + 1
        assert controller.filters.status == LetterStatus.IN_PROGRESS
        assert controller.filters.owner == "u1"
        assert controller.filters.page == 1
        assert controller.view_mode == ViewMode.KANBAN
        assert controller.active_view_id == view.id

    async def test_later_filter_change_clears_active_view(self, controller):
        view = controller.save_current_view("Everything")
        await controller.apply_saved_view(view.id)
        await controller.set_filter("type", "Тикет")
        assert controller.active_view_id is None

    def test_views_persist_across_controllers(self, controller, client, prefs):
        controller.save_current_view("Overdue")
        other = ListController(client, preferences=prefs)
        assert [v.name for v in other.saved_views] == ["Overdue"]

    def test_blank_name_rejected(self, controller):
        with pytest.raises(ValueError):
            controller.save_current_view("   ")

    def test_delete(self, controller, prefs):
        view = controller.save_current_view("Temp")
        assert controller.delete_saved_view(view.id) is True
        assert controller.active_view_id is None
        assert prefs.list_saved_views() == []
        assert controller.delete_saved_view(view.id) is False

    async def test_apply_unknown_view(self, controller):
        with pytest.raises(KeyError):
            await controller.apply_saved_view("missing")

    def test_view_mode_is_persisted(self, controller, client, prefs):
        controller.set_view_mode("cards")
        assert ListController(client, preferences=prefs).view_mode == ViewMode.CARDS


# ------------------------------------------------------------------
# Users
# ------------------------------------------------------------------


class TestUsers:
    async def test_users_are_cached(self, controller, client):
        await controller.load_users()
        await controller.load_users()
        assert client.list_users.await_count == 1

    async def test_users_failure_is_logged_only(self, controller, client, notifier):
        client.list_users.side_effect = httpx.ConnectError("down")
        assert await controller.load_users() == []
        assert notifier.history == []


# ------------------------------------------------------------------
# Selection and bulk actions
# ------------------------------------------------------------------


class TestBulkActions:
    async def test_toggle_select_all(self, controller, client):
        client.list_letters.return_value = _page(_letter("a"), _letter("b", number="002"))
        await controller.load()
        controller.toggle_select_all()
        assert controller.selected == {"a", "b"}
        controller.toggle_select_all()
        assert controller.selected == set()
        controller.toggle_select("a")
        assert controller.selected == {"a"}

    async def test_bulk_status_change(self, controller, client, notifier):
        await controller.load()
        controller.selected = {"l1", "l2"}
        client.bulk_update.return_value = 2

        assert await controller.bulk_action(BulkAction.STATUS, "DONE") == 2
        client.bulk_update.assert_awaited_once_with(["l1", "l2"], "status", "DONE")
        assert controller.selected == set()
        assert notifier.history[-1].level == NotificationLevel.SUCCESS
        # The list is reloaded from the server, not from cache.
        assert client.list_letters.await_count == 2

    async def test_bulk_without_selection_warns(self, controller, client, notifier):
        assert await controller.bulk_action("delete") == 0
        client.bulk_update.assert_not_awaited()
        assert notifier.history[-1].level == NotificationLevel.WARNING

    async def test_bulk_failure_keeps_selection(self, controller, client, notifier):
        controller.selected = {"l1"}
        client.bulk_update.side_effect = httpx.ConnectError("down")
        assert await controller.bulk_action("owner", "u1") == 0
        assert controller.selected == {"l1"}
        assert notifier.history[-1].level == NotificationLevel.ERROR

    async def test_status_action_requires_value(self, controller):
        controller.selected = {"l1"}
        with pytest.raises(ValueError):
            await controller.bulk_action("status")


# ------------------------------------------------------------------
# Inline edits
# ------------------------------------------------------------------


class TestPatch:
    async def test_optimistic_update_then_cache_cleared(self, client, notifier):
        cache = ResponseCache(30)
        c = ListController(client, notifier=notifier, cache=cache)
        await c.load()
        assert len(cache) == 1

        assert await c.patch_letter("l1", "status", "DONE") is True
        assert c.letters[0].status == LetterStatus.DONE
        assert len(cache) == 0

    async def test_failure_reverts(self, controller, client, notifier):
        await controller.load()
        client.patch_letter.side_effect = httpx.ConnectError("down")

        assert await controller.patch_letter("l1", "priority", 90) is False
        assert controller.letters[0].priority == 50
        assert notifier.history[-1].level == NotificationLevel.ERROR

    async def test_owner_resolved_from_users(self, controller):
        await controller.start()
        await controller.patch_letter("l1", "owner", "u1")
        assert controller.letters[0].owner.name == "Dilnoza"

    async def test_unknown_field(self, controller):
        await controller.load()
        with pytest.raises(ValueError):
            await controller.patch_letter("l1", "id", "x")
