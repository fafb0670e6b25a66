"""SQLite-backed local preferences for the list view.

Plain key/value storage with JSON values and no schema versioning: page size,
view mode, saved views and recent searches. A value that fails to decode is
treated as absent.
"""

import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from lettertrack.constants import RECENT_SEARCH_MIN_LENGTH, RECENT_SEARCHES_LIMIT
from lettertrack.schemas.filters import SavedView, ViewMode

logger = logging.getLogger(__name__)

ITEMS_PER_PAGE_KEY = "letters-items-per-page"
VIEW_MODE_KEY = "letters-view-mode"
SAVED_VIEWS_KEY = "letters-saved-views"
RECENT_SEARCHES_KEY = "letters-recent-searches"

_saved_views_adapter = TypeAdapter(list[SavedView])


def push_recent_search(existing: list[str], value: str) -> list[str]:
    """Put ``value`` at the front, dropping case-insensitive repeats.

    Values shorter than the minimum length are ignored.
    """
    trimmed = value.strip()
    if len(trimmed) < RECENT_SEARCH_MIN_LENGTH:
        return list(existing)
    lowered = trimmed.lower()
    rest = [item for item in existing if item.lower() != lowered]
    return [trimmed, *rest][:RECENT_SEARCHES_LIMIT]


class PreferencesStore:
    """Persistent key/value store for list view preferences.

    Usage::

        prefs = PreferencesStore("/path/to/preferences.db")
        prefs.set_items_per_page(100)
        views = prefs.list_saved_views()
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._db_path)
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS preferences (
                key        TEXT PRIMARY KEY,
                value      TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "PreferencesStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Raw access
    # ------------------------------------------------------------------

    def get(self, key: str) -> object | None:
        row = self._conn.execute("SELECT value FROM preferences WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning("Ignoring undecodable preference %s", key)
            return None

    def set(self, key: str, value: object) -> None:
        self._conn.execute(
            "INSERT INTO preferences (key, value, updated_at) VALUES (?, ?, ?)"
            " ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            (key, json.dumps(value, ensure_ascii=False), datetime.now(UTC).isoformat()),
        )
        self._conn.commit()

    def delete(self, key: str) -> bool:
        cursor = self._conn.execute("DELETE FROM preferences WHERE key = ?", (key,))
        self._conn.commit()
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    def get_items_per_page(self, default: int) -> int:
        value = self.get(ITEMS_PER_PAGE_KEY)
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            return value
        return default

    def set_items_per_page(self, value: int) -> None:
        self.set(ITEMS_PER_PAGE_KEY, value)

    def get_view_mode(self) -> ViewMode:
        value = self.get(VIEW_MODE_KEY)
        try:
            return ViewMode(value)
        except ValueError:
            return ViewMode.TABLE

    def set_view_mode(self, mode: ViewMode) -> None:
        self.set(VIEW_MODE_KEY, ViewMode(mode).value)

    def list_saved_views(self) -> list[SavedView]:
        value = self.get(SAVED_VIEWS_KEY)
        if value is None:
            return []
        try:
            return _saved_views_adapter.validate_python(value)
        except ValidationError:
            logger.warning("Ignoring malformed saved views")
            return []

    def save_saved_views(self, views: list[SavedView]) -> None:
        self.set(SAVED_VIEWS_KEY, _saved_views_adapter.dump_python(views, mode="json"))

    def get_recent_searches(self) -> list[str]:
        value = self.get(RECENT_SEARCHES_KEY)
        if not isinstance(value, list):
            return []
        return [str(item) for item in value][:RECENT_SEARCHES_LIMIT]

    def add_recent_search(self, value: str) -> list[str]:
        """Record a search and return the updated list (newest first)."""
        updated = push_recent_search(self.get_recent_searches(), value)
        self.set(RECENT_SEARCHES_KEY, updated)
        return updated

    def clear_recent_searches(self) -> None:
        self.delete(RECENT_SEARCHES_KEY)
