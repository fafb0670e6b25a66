"""Async client for the letters tracker REST API."""

import logging
import mimetypes
from pathlib import Path

import httpx

from lettertrack.errors import BatchValidationError, DuplicateNumbersError, LettersApiError
from lettertrack.schemas.bulk import BulkCreateResult, ExtractedLetterData
from lettertrack.schemas.letters import LettersPage, UserSummary

logger = logging.getLogger(__name__)


def _error_payload(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _json_body(response: httpx.Response) -> dict:
    """Decode a 2xx JSON object body; anything else is an API error."""
    try:
        data = response.json()
    except ValueError as exc:
        content_type = response.headers.get("Content-Type", "unknown")
        raise LettersApiError(
            f"Expected JSON from {response.request.url.path}, got {content_type}",
            status_code=response.status_code,
        ) from exc
    if not isinstance(data, dict):
        raise LettersApiError(
            f"Expected a JSON object from {response.request.url.path}",
            status_code=response.status_code,
        )
    return data


class LettersClient:
    """Async HTTP client for the letters API.

    Usage::

        async with LettersClient(base_url, token) as client:
            page = await client.list_letters({"page": 1, "limit": 50})
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "LettersClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    async def _get(self, path: str, params: dict | httpx.QueryParams | None = None) -> dict:
        response = await self._client.get(path, params=params)
        response.raise_for_status()
        return _json_body(response)

    async def _post(self, path: str, payload: dict) -> dict:
        response = await self._client.post(path, json=payload)
        response.raise_for_status()
        return _json_body(response)

    async def _patch(self, path: str, payload: dict) -> dict:
        response = await self._client.patch(path, json=payload)
        response.raise_for_status()
        return _json_body(response)

    # ------------------------------------------------------------------
    # Letters
    # ------------------------------------------------------------------

    async def list_letters(self, params: dict | httpx.QueryParams) -> LettersPage:
        """Fetch one page of letters matching the given filter parameters.

        Args:
            params: Query parameters (``page, limit, status, filter, owner,
                type, sortBy, sortOrder, search``).
        """
        data = await self._get("/api/letters", params=params)
        return LettersPage.model_validate(data)

    async def patch_letter(self, letter_id: str, field: str, value: object) -> dict:
        """Update a single field of a letter."""
        data = await self._patch(f"/api/letters/{letter_id}", {"field": field, "value": value})
        logger.info("Patched letter %s: %s", letter_id, field)
        return data

    async def bulk_update(self, ids: list[str], action: str, value: str | None = None) -> int:
        """Apply a status/owner/delete action to many letters.

        Returns:
            Number of letters the server reports as updated.
        """
        data = await self._post("/api/letters/bulk", {"ids": ids, "action": action, "value": value})
        return int(data.get("updated", 0))

    async def bulk_create(self, letters: list[dict], *, skip_duplicates: bool = False) -> BulkCreateResult:
        """Create many letters in one call.

        Raises:
            DuplicateNumbersError: Duplicate numbers inside the batch (400) or
                against stored letters when ``skip_duplicates`` is False (409).
            BatchValidationError: Field validation failed (400 with details).
            LettersApiError: Any other non-2xx response.
        """
        response = await self._client.post(
            "/api/letters/bulk",
            json={"letters": letters, "skipDuplicates": skip_duplicates},
        )
        if response.is_success:
            return BulkCreateResult.model_validate(_json_body(response))

        payload = _error_payload(response)
        message = str(payload.get("error") or f"Bulk create failed with HTTP {response.status_code}")
        if payload.get("duplicates"):
            raise DuplicateNumbersError(
                message,
                [str(d) for d in payload["duplicates"]],
                existing=response.status_code == 409,
                status_code=response.status_code,
                payload=payload,
            )
        if payload.get("details"):
            raise BatchValidationError(
                message,
                list(payload["details"]),
                status_code=response.status_code,
                payload=payload,
            )
        raise LettersApiError(message, status_code=response.status_code, payload=payload)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def list_users(self) -> list[UserSummary]:
        data = await self._get("/api/users")
        return [UserSummary.model_validate(u) for u in data.get("users", [])]

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def parse_pdf(self, file_path: str | Path) -> ExtractedLetterData:
        """Send a PDF to the extraction service and return candidate fields."""
        path = Path(file_path)
        with path.open("rb") as f:
            response = await self._client.post(
                "/api/parse-pdf",
                files={"file": (path.name, f, "application/pdf")},
            )
        response.raise_for_status()
        data = _json_body(response).get("data") or {}
        return ExtractedLetterData.model_validate(data)

    async def upload_file(self, file_path: str | Path, letter_id: str) -> dict:
        """Attach a file to an existing letter."""
        path = Path(file_path)
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        with path.open("rb") as f:
            response = await self._client.post(
                "/api/upload",
                data={"letterId": letter_id},
                files={"file": (path.name, f, content_type)},
            )
        response.raise_for_status()
        logger.info("Attached %s to letter %s", path.name, letter_id)
        return _json_body(response)

    def get_letter_url(self, letter_id: str) -> str:
        """Return the browser URL for a letter."""
        return f"{self._base_url}/letters/{letter_id}"
