"""CLI entry point for the letters tracker.

Commands:
    lettertrack list     filter, sort and page through letters
    lettertrack views    manage saved views
    lettertrack patch    change one field of a letter
    lettertrack bulk     apply a status/owner/delete action to many letters
    lettertrack import   create letters from scanned PDFs
    lettertrack track    look up a request on the public portal
    lettertrack assets   manage the offline asset cache
"""

import asyncio
import logging
import sys

import click

from lettertrack.config import (
    ASSET_CACHE_DB_PATH,
    DEFAULT_DEADLINE_WORKING_DAYS,
    DEFAULT_PAGE_SIZE,
    IMPORT_LOG_PATH,
    LETTERS_API_TOKEN,
    LETTERS_BASE_URL,
    LETTERS_CACHE_TTL,
    LETTERS_PORTAL_BASE_URL,
    PREFERENCES_DB_PATH,
    USERS_CACHE_TTL,
)
from lettertrack.schemas.filters import QuickFilter, SortField, SortOrder, ViewMode
from lettertrack.schemas.letters import STATUS_LABELS, LetterStatus

logger = logging.getLogger("lettertrack")

_STATUS_CHOICES = ["all", *(s.value for s in LetterStatus)]
_FILTER_CHOICES = [f.value for f in QuickFilter if f.value]
_DATE_FORMATS = ["%Y-%m-%d", "%d.%m.%Y"]


def _validate_config() -> None:
    """Fail loudly if required config is missing."""
    missing = []
    if not LETTERS_BASE_URL:
        missing.append("LETTERS_BASE_URL")
    if not LETTERS_API_TOKEN or LETTERS_API_TOKEN == "placeholder":
        missing.append("LETTERS_API_TOKEN")
    if missing:
        click.echo(f"Error: Missing required config: {', '.join(missing)}", err=True)
        click.echo("Set these in secrets/internal.env or via SOPS.", err=True)
        sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Letters tracker: list, bulk-edit and import incoming correspondence."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _filter_options(func):
    """Options shared by commands that build a filter state."""
    options = [
        click.option("--search", "-s", default="", help="Free-text search."),
        click.option("--status", type=click.Choice(_STATUS_CHOICES), default="all", show_default=True),
        click.option("--filter", "quick_filter", type=click.Choice(_FILTER_CHOICES), default=None,
                     help="Quick filter."),
        click.option("--owner", default="", help="Owner user id."),
        click.option("--type", "letter_type", default="", help="Letter type."),
        click.option("--sort-by", type=click.Choice([f.value for f in SortField]), default="created",
                     show_default=True),
        click.option("--order", type=click.Choice([o.value for o in SortOrder]), default="desc",
                     show_default=True),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _apply_filter_options(controller, opts: dict) -> None:
    f = controller.filters
    f.search = opts["search"]
    f.status = opts["status"]
    f.quick_filter = opts["quick_filter"] or QuickFilter.ALL
    f.owner = opts["owner"]
    f.type = opts["letter_type"]
    f.sort_by = opts["sort_by"]
    f.sort_order = opts["order"]


def _make_controller(client, prefs, notifier, query: str = ""):
    from lettertrack.listing.controller import ListController

    return ListController(
        client,
        notifier=notifier,
        preferences=prefs,
        initial_query=query,
        cache_ttl=LETTERS_CACHE_TTL,
        users_ttl=USERS_CACHE_TTL,
        default_page_size=DEFAULT_PAGE_SIZE,
    )


def _echo_letters(controller) -> None:
    if not controller.letters:
        click.echo("No letters found.")
        return
    for letter in controller.letters:
        deadline = letter.deadline_date.strftime("%d.%m.%Y") if letter.deadline_date else "-"
        owner = letter.owner.display_name if letter.owner else "-"
        click.echo(
            f"  {letter.number:<14} {STATUS_LABELS[letter.status]:<14} {deadline:<11} "
            f"{owner:<20} {letter.org}"
        )
    p = controller.pagination
    if p is not None:
        click.echo(f"Page {p.page} of {max(p.total_pages, 1)} ({p.total} letters)")


# ------------------------------------------------------------------
# lettertrack list
# ------------------------------------------------------------------


@cli.command(name="list")
@_filter_options
@click.option("--page", "-p", default=1, show_default=True, type=click.IntRange(min=1))
@click.option("--limit", "-n", default=None, type=click.IntRange(min=1), help="Page size (remembered).")
@click.option("--view", "view_name", default=None, help="Apply a saved view by name.")
@click.option("--query", default="", help="Start from a URL query string, e.g. 'status=DONE&page=2'.")
def list_letters(page: int, limit: int | None, view_name: str | None, query: str, **opts) -> None:
    """List letters matching the given filters."""
    _validate_config()
    asyncio.run(_list_async(page, limit, view_name, query, opts))


async def _list_async(page: int, limit: int | None, view_name: str | None, query: str, opts: dict) -> None:
    from lettertrack.integrations.letters_api import LettersClient
    from lettertrack.listing.controller import LoadOutcome
    from lettertrack.listing.preferences import PreferencesStore
    from lettertrack.notifications import EchoNotifier

    notifier = EchoNotifier()
    with PreferencesStore(PREFERENCES_DB_PATH) as prefs:
        async with LettersClient(LETTERS_BASE_URL, LETTERS_API_TOKEN) as client:
            controller = _make_controller(client, prefs, notifier, query)
            try:
                if view_name:
                    view = next((v for v in controller.saved_views if v.name == view_name), None)
                    if view is None:
                        click.echo(f"Error: No saved view named {view_name!r}.", err=True)
                        sys.exit(1)
                    outcome = await controller.apply_saved_view(view.id)
                else:
                    if not query:
                        _apply_filter_options(controller, opts)
                        controller.filters.page = page
                    if limit is not None:
                        controller.filters.limit = limit
                        prefs.set_items_per_page(limit)
                    if controller.filters.search.strip():
                        controller.recent_searches = prefs.add_recent_search(controller.filters.search)
                    outcome = await controller.load()
                if outcome == LoadOutcome.ERROR:
                    sys.exit(1)
                _echo_letters(controller)
                logger.debug("Equivalent URL: %s", controller.url)
            finally:
                await controller.close()


# ------------------------------------------------------------------
# lettertrack views
# ------------------------------------------------------------------


@cli.group()
def views() -> None:
    """Manage saved views."""


@views.command(name="list")
def views_list() -> None:
    """Show saved views."""
    from lettertrack.listing.preferences import PreferencesStore

    with PreferencesStore(PREFERENCES_DB_PATH) as prefs:
        saved = prefs.list_saved_views()
    if not saved:
        click.echo("No saved views.")
        return
    for view in saved:
        f = view.filters
        parts = [f"status={f.status}"]
        if f.quick_filter:
            parts.append(f"filter={f.quick_filter.value}")
        if f.search:
            parts.append(f"search={f.search!r}")
        if f.owner:
            parts.append(f"owner={f.owner}")
        if f.type:
            parts.append(f"type={f.type}")
        parts.append(f"sort={f.sort_by.value} {f.sort_order.value}")
        click.echo(f"  {view.name:<20} [{f.view_mode.value}] {', '.join(parts)}")


@views.command(name="save")
@click.argument("name")
@_filter_options
@click.option("--mode", type=click.Choice([m.value for m in ViewMode]), default=None, help="View mode.")
def views_save(name: str, mode: str | None, **opts) -> None:
    """Save the given filters as a named view."""
    asyncio.run(_views_save_async(name, mode, opts))


async def _views_save_async(name: str, mode: str | None, opts: dict) -> None:
    from lettertrack.integrations.letters_api import LettersClient
    from lettertrack.listing.preferences import PreferencesStore
    from lettertrack.notifications import EchoNotifier

    with PreferencesStore(PREFERENCES_DB_PATH) as prefs:
        async with LettersClient(LETTERS_BASE_URL, LETTERS_API_TOKEN) as client:
            controller = _make_controller(client, prefs, EchoNotifier())
            try:
                _apply_filter_options(controller, opts)
                if mode:
                    controller.set_view_mode(mode)
                view = controller.save_current_view(name)
            except ValueError as e:
                click.echo(f"Error: {e}", err=True)
                sys.exit(1)
            finally:
                await controller.close()
    click.echo(f"Saved view {view.name!r}.")


@views.command(name="delete")
@click.argument("name")
def views_delete(name: str) -> None:
    """Delete a saved view by name."""
    from lettertrack.listing.preferences import PreferencesStore

    with PreferencesStore(PREFERENCES_DB_PATH) as prefs:
        saved = prefs.list_saved_views()
        remaining = [v for v in saved if v.name != name]
        if len(remaining) == len(saved):
            click.echo(f"Error: No saved view named {name!r}.", err=True)
            sys.exit(1)
        prefs.save_saved_views(remaining)
    click.echo(f"Deleted view {name!r}.")


# ------------------------------------------------------------------
# lettertrack patch
# ------------------------------------------------------------------


@cli.command()
@click.argument("letter_id")
@click.argument("field")
@click.argument("value")
def patch(letter_id: str, field: str, value: str) -> None:
    """Set FIELD of a letter to VALUE."""
    _validate_config()
    asyncio.run(_patch_async(letter_id, field, value))


async def _patch_async(letter_id: str, field: str, value: str) -> None:
    import httpx

    from lettertrack.errors import LettersApiError
    from lettertrack.integrations.letters_api import LettersClient
    from lettertrack.listing.controller import PATCHABLE_FIELDS

    if field not in PATCHABLE_FIELDS:
        click.echo(f"Error: {field!r} cannot be edited. Choose from: {', '.join(PATCHABLE_FIELDS)}", err=True)
        sys.exit(1)

    payload: object = int(value) if field == "priority" and value.isdigit() else value
    async with LettersClient(LETTERS_BASE_URL, LETTERS_API_TOKEN) as client:
        try:
            await client.patch_letter(letter_id, field, payload)
        except (httpx.HTTPError, LettersApiError) as e:
            click.echo(f"Error: Could not update letter: {e}", err=True)
            sys.exit(1)
        click.echo(f"Updated {field} of {client.get_letter_url(letter_id)}")


# ------------------------------------------------------------------
# lettertrack bulk
# ------------------------------------------------------------------


@cli.command()
@click.argument("action", type=click.Choice(["status", "owner", "delete"]))
@click.option("--id", "ids", multiple=True, required=True, help="Letter id (repeatable).")
@click.option("--value", default=None, help="New status or owner id.")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def bulk(action: str, ids: tuple[str, ...], value: str | None, yes: bool) -> None:
    """Apply ACTION to several letters at once."""
    _validate_config()
    if action == "status" and value not in {s.value for s in LetterStatus}:
        click.echo(f"Error: --value must be one of: {', '.join(s.value for s in LetterStatus)}", err=True)
        sys.exit(1)
    if action == "owner" and not value:
        click.echo("Error: --value (owner id) is required for the owner action.", err=True)
        sys.exit(1)
    if action == "delete" and not yes:
        click.confirm(f"Delete {len(ids)} letters?", abort=True)
    asyncio.run(_bulk_async(action, list(ids), value))


async def _bulk_async(action: str, ids: list[str], value: str | None) -> None:
    from lettertrack.integrations.letters_api import LettersClient
    from lettertrack.listing.preferences import PreferencesStore
    from lettertrack.notifications import EchoNotifier

    with PreferencesStore(PREFERENCES_DB_PATH) as prefs:
        async with LettersClient(LETTERS_BASE_URL, LETTERS_API_TOKEN) as client:
            controller = _make_controller(client, prefs, EchoNotifier())
            controller.selected = set(ids)
            try:
                updated = await controller.bulk_action(action, value)
            finally:
                await controller.close()
    if updated == 0:
        sys.exit(1)


# ------------------------------------------------------------------
# lettertrack import
# ------------------------------------------------------------------


@cli.command(name="import")
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--skip-duplicates", is_flag=True, help="Skip numbers that already exist instead of failing.")
@click.option("--date", "default_date", type=click.DateTime(_DATE_FORMATS), default=None,
              help="Letter date for every row.")
@click.option("--deadline", "default_deadline", type=click.DateTime(_DATE_FORMATS), default=None,
              help="Deadline for every row.")
@click.option("--type", "default_type", default=None, help="Letter type for every row.")
@click.option("--only-empty", is_flag=True, help="Apply --date/--deadline/--type only where the row has none.")
@click.option("--working-days", default=DEFAULT_DEADLINE_WORKING_DAYS, show_default=True,
              help="Deadline offset when only a date is known.")
@click.option("--export-csv", "export_path", type=click.Path(dir_okay=False), default=None,
              help="Write the created letters to this CSV file.")
@click.option("--yes", "-y", is_flag=True, help="Submit without asking.")
def import_letters(
    files: tuple[str, ...],
    skip_duplicates: bool,
    default_date,
    default_deadline,
    default_type: str | None,
    only_empty: bool,
    working_days: int,
    export_path: str | None,
    yes: bool,
) -> None:
    """Create letters from scanned PDF FILES."""
    _validate_config()
    asyncio.run(
        _import_async(
            list(files),
            skip_duplicates,
            default_date.date() if default_date else None,
            default_deadline.date() if default_deadline else None,
            default_type,
            only_empty,
            working_days,
            export_path,
            yes,
        )
    )


async def _import_async(
    files: list[str],
    skip_duplicates: bool,
    default_date,
    default_deadline,
    default_type: str | None,
    only_empty: bool,
    working_days: int,
    export_path: str | None,
    yes: bool,
) -> None:
    from lettertrack.audit.import_log import ImportLog
    from lettertrack.importer.reconciler import BulkImportReconciler
    from lettertrack.integrations.letters_api import LettersClient
    from lettertrack.notifications import EchoNotifier

    async with LettersClient(LETTERS_BASE_URL, LETTERS_API_TOKEN) as client:
        reconciler = BulkImportReconciler(
            client,
            EchoNotifier(),
            working_days=working_days,
            import_log=ImportLog(IMPORT_LOG_PATH),
        )
        if not reconciler.ingest(files):
            click.echo("Nothing to import.")
            return

        click.echo(f"Recognizing {len(reconciler.rows)} document(s)...")
        await reconciler.extract_all()

        if default_date or default_deadline or default_type:
            reconciler.apply_defaults(
                date=default_date,
                deadline=default_deadline,
                type=default_type,
                only_empty=only_empty,
            )

        for row in reconciler.rows:
            marker = "*" if row.parsed_by_ai else " "
            deadline = row.deadline_date.strftime("%d.%m.%Y") if row.deadline_date else "-"
            date = row.date.strftime("%d.%m.%Y") if row.date else "-"
            click.echo(f" {marker} {row.number or '?':<14} {date:<11} {deadline:<11} {row.type or '-':<28} {row.org}")
            if row.extraction_error:
                click.echo(f"     recognition failed: {row.extraction_error}")

        if not yes and not click.confirm(f"Create {len(reconciler.rows)} letters?", default=True):
            click.echo("Aborted.")
            return

        report = await reconciler.submit(skip_duplicates=skip_duplicates)
        if not report.submitted:
            for row in reconciler.rows:
                label = row.number or (row.file.name if row.file else "?")
                for error in row.errors:
                    click.echo(f"  {label}: {error}", err=True)
            if reconciler.batch_error:
                click.echo(f"  {reconciler.batch_error}", err=True)
            sys.exit(1)

        for outcome in report.attachment_failures:
            click.echo(f"  {outcome.filename}: {outcome.error}", err=True)
        if export_path:
            path = reconciler.export_csv(export_path)
            click.echo(f"Exported to {path}")


# ------------------------------------------------------------------
# lettertrack track
# ------------------------------------------------------------------


@cli.command()
@click.argument("request_id")
@click.argument("contact")
def track(request_id: str, contact: str) -> None:
    """Look up request REQUEST_ID by the CONTACT used to file it."""
    asyncio.run(_track_async(request_id, contact))


async def _track_async(request_id: str, contact: str) -> None:
    import httpx
    from pydantic import ValidationError

    from lettertrack.errors import LettersApiError, RateLimitedError, RequestNotFoundError
    from lettertrack.integrations.portal import PortalClient

    async with PortalClient(LETTERS_PORTAL_BASE_URL) as portal:
        try:
            tracked = await portal.track_request(request_id, contact)
        except ValidationError:
            click.echo("Error: Enter a request id and a contact of at least 3 characters.", err=True)
            sys.exit(1)
        except RequestNotFoundError:
            click.echo("No request found for this id and contact.", err=True)
            sys.exit(1)
        except RateLimitedError:
            click.echo("Too many lookups. Try again in a minute.", err=True)
            sys.exit(1)
        except (LettersApiError, httpx.HTTPError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    click.echo(f"Request {tracked.id}: {tracked.status}")
    if tracked.organization:
        click.echo(f"  Organization: {tracked.organization}")
    if tracked.sla_deadline:
        sla = f" ({tracked.sla_status})" if tracked.sla_status else ""
        click.echo(f"  Due:          {tracked.sla_deadline:%d.%m.%Y}{sla}")
    for change in tracked.history:
        click.echo(f"  {change.created_at:%d.%m.%Y %H:%M}  {change.old_value or '-'} -> {change.new_value or '-'}")
    for comment in tracked.comments:
        author = comment.author.name if comment.author and comment.author.name else "Staff"
        click.echo(f"  [{author}] {comment.text}")
    if tracked.files:
        click.echo(f"  Files: {', '.join(f.name for f in tracked.files)}")


# ------------------------------------------------------------------
# lettertrack assets
# ------------------------------------------------------------------


@cli.group()
def assets() -> None:
    """Manage the offline static asset cache."""


@assets.command(name="install")
@click.option("--base-url", default=None, help="Site to pre-cache from (defaults to LETTERS_BASE_URL).")
def assets_install(base_url: str | None) -> None:
    """Pre-cache the static asset manifest."""
    asyncio.run(_assets_install_async(base_url or LETTERS_BASE_URL))


async def _assets_install_async(base_url: str) -> None:
    import httpx

    from lettertrack.offline.asset_cache import AssetCacheStore, CachingTransport

    with AssetCacheStore(ASSET_CACHE_DB_PATH) as store:
        transport = CachingTransport(httpx.AsyncHTTPTransport(), store)
        try:
            count = await transport.install(base_url)
        except httpx.HTTPError as e:
            click.echo(f"Error: Pre-caching failed: {e}", err=True)
            sys.exit(1)
        finally:
            await transport.aclose()
    click.echo(f"Cached {count} assets.")


@assets.command(name="activate")
def assets_activate() -> None:
    """Delete caches left over from older versions."""
    from lettertrack.offline.asset_cache import CACHE_NAME, AssetCacheStore, activate

    with AssetCacheStore(ASSET_CACHE_DB_PATH) as store:
        removed = activate(store)
        click.echo(f"Active cache: {CACHE_NAME} ({store.count(CACHE_NAME)} assets)")
    for name in removed:
        click.echo(f"  removed {name}")
