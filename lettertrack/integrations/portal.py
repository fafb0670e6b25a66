"""Async client for the public, unauthenticated request portal."""

import logging

import httpx

from lettertrack.errors import LettersApiError, RateLimitedError, RequestNotFoundError
from lettertrack.schemas.portal import PortalTrackRequest, TrackedRequest

logger = logging.getLogger(__name__)


class PortalClient:
    """Looks up an applicant's request by id and contact (email, phone or Telegram).

    Usage::

        async with PortalClient(base_url) as portal:
            tracked = await portal.track_request("clx...", "me@example.com")
    """

    def __init__(
        self,
        base_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "PortalClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def track_request(self, request_id: str, contact: str) -> TrackedRequest:
        """Fetch the tracked snapshot of a request.

        Raises:
            pydantic.ValidationError: If the id or contact is malformed.
            RequestNotFoundError: No request matches (the portal does not say which part was wrong).
            RateLimitedError: Too many lookups from this client.
            LettersApiError: Any other non-2xx response.
        """
        body = PortalTrackRequest(request_id=request_id, contact=contact)
        response = await self._client.post(
            "/api/portal/request",
            json=body.model_dump(by_alias=True),
        )

        if response.is_success:
            return TrackedRequest.model_validate(response.json()["request"])

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        message = payload.get("error") or f"Portal lookup failed with HTTP {response.status_code}"

        if response.status_code == 404:
            raise RequestNotFoundError(message, status_code=404, payload=payload)
        if response.status_code == 429:
            logger.warning("Portal rate limit hit for request %s", request_id)
            raise RateLimitedError(message, status_code=429, payload=payload)
        raise LettersApiError(message, status_code=response.status_code, payload=payload)
