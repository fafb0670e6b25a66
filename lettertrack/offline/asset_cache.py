"""Offline cache for static assets, as an httpx transport.

Static files (icons, the web manifest) are served cache-first from a sqlite
store. API calls and page navigations always go to the network. A new cache
version is installed by pre-caching a fixed manifest and activated by
deleting every cache with another name.
"""

import json
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

CACHE_NAME = "letters-assets-v2"

STATIC_ASSETS: tuple[str, ...] = (
    "/favicon.ico",
    "/favicon.svg",
    "/apple-touch-icon.svg",
    "/manifest.webmanifest",
    "/logo-mark.svg",
)

_FRAMING_HEADERS = ("content-encoding", "content-length", "transfer-encoding")


class CachedAsset(BaseModel):
    url: str
    status_code: int
    headers: list[tuple[str, str]]
    body: bytes

    def to_response(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(self.status_code, headers=self.headers, content=self.body, request=request)


class AssetCacheStore:
    """Persistent response store, partitioned by cache name.

    Usage::

        store = AssetCacheStore("/path/to/assets.db")
        store.put(CACHE_NAME, asset)
        asset = store.get(CACHE_NAME, "https://host/favicon.svg")
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._db_path)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS assets (
                cache_name  TEXT NOT NULL,
                url         TEXT NOT NULL,
                status_code INTEGER NOT NULL,
                headers     TEXT NOT NULL,
                body        BLOB NOT NULL,
                stored_at   TEXT NOT NULL,
                PRIMARY KEY (cache_name, url)
            )
            """
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "AssetCacheStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def get(self, cache_name: str, url: str) -> CachedAsset | None:
        row = self._conn.execute(
            "SELECT status_code, headers, body FROM assets WHERE cache_name = ? AND url = ?",
            (cache_name, url),
        ).fetchone()
        if row is None:
            return None
        return CachedAsset(url=url, status_code=row[0], headers=json.loads(row[1]), body=row[2])

    def put(self, cache_name: str, asset: CachedAsset) -> None:
        self.put_many(cache_name, [asset])

    def put_many(self, cache_name: str, assets: list[CachedAsset]) -> None:
        """Store several assets in one transaction."""
        now = datetime.now(UTC).isoformat()
        with self._conn:
            self._conn.executemany(
                "INSERT OR REPLACE INTO assets (cache_name, url, status_code, headers, body, stored_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (cache_name, a.url, a.status_code, json.dumps(a.headers), a.body, now)
                    for a in assets
                ],
            )

    def cache_names(self) -> list[str]:
        rows = self._conn.execute("SELECT DISTINCT cache_name FROM assets ORDER BY cache_name").fetchall()
        return [r[0] for r in rows]

    def delete_cache(self, cache_name: str) -> int:
        cursor = self._conn.execute("DELETE FROM assets WHERE cache_name = ?", (cache_name,))
        self._conn.commit()
        return cursor.rowcount

    def count(self, cache_name: str) -> int:
        row = self._conn.execute("SELECT COUNT(*) FROM assets WHERE cache_name = ?", (cache_name,)).fetchone()
        return row[0]


def _bypasses_cache(request: httpx.Request) -> bool:
    if request.method != "GET" or request.url.scheme not in ("http", "https"):
        return True
    if request.headers.get("Sec-Fetch-Mode") == "navigate":
        return True
    return "/api/" in request.url.path


async def _read_asset(request: httpx.Request, response: httpx.Response) -> CachedAsset:
    # Stored bodies are decoded, so framing headers from the wire are dropped.
    body = await response.aread()
    await response.aclose()
    headers = [
        (key, value)
        for key, value in response.headers.multi_items()
        if key.lower() not in _FRAMING_HEADERS
    ]
    return CachedAsset(url=str(request.url), status_code=response.status_code, headers=headers, body=body)


class CachingTransport(httpx.AsyncBaseTransport):
    """Wraps another transport and serves static GETs from the asset store.

    Usage::

        transport = CachingTransport(httpx.AsyncHTTPTransport(), store)
        async with httpx.AsyncClient(transport=transport) as client:
            await client.get("https://host/favicon.svg")
    """

    def __init__(
        self,
        inner: httpx.AsyncBaseTransport,
        store: AssetCacheStore,
        cache_name: str = CACHE_NAME,
    ) -> None:
        self._inner = inner
        self._store = store
        self._cache_name = cache_name

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if _bypasses_cache(request):
            return await self._inner.handle_async_request(request)

        cached = self._store.get(self._cache_name, str(request.url))
        if cached is not None:
            logger.debug("Asset cache hit: %s", request.url)
            return cached.to_response(request)

        response = await self._inner.handle_async_request(request)
        if not response.is_success:
            return response
        asset = await _read_asset(request, response)
        self._store.put(self._cache_name, asset)
        return asset.to_response(request)

    async def aclose(self) -> None:
        await self._inner.aclose()

    async def install(self, base_url: str, manifest: tuple[str, ...] = STATIC_ASSETS) -> int:
        """Pre-cache every manifest entry. All-or-nothing: one failure stores nothing.

        Raises:
            httpx.HTTPStatusError: A manifest entry did not return 2xx.
        """
        base = base_url.rstrip("/")
        assets: list[CachedAsset] = []
        for path in manifest:
            request = httpx.Request("GET", f"{base}{path}")
            response = await self._inner.handle_async_request(request)
            if not response.is_success:
                await response.aclose()
                raise httpx.HTTPStatusError(
                    f"Pre-caching {request.url} failed with HTTP {response.status_code}",
                    request=request,
                    response=response,
                )
            assets.append(await _read_asset(request, response))
        self._store.put_many(self._cache_name, assets)
        logger.info("Installed %d assets into %s", len(assets), self._cache_name)
        return len(assets)

    def activate(self) -> list[str]:
        return activate(self._store, self._cache_name)


def activate(store: AssetCacheStore, cache_name: str = CACHE_NAME) -> list[str]:
    """Delete every cache except ``cache_name``. Returns the names removed."""
    removed = [name for name in store.cache_names() if name != cache_name]
    for name in removed:
        count = store.delete_cache(name)
        logger.info("Removed stale cache %s (%d assets)", name, count)
    return removed
