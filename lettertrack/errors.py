"""Exceptions raised by the API clients and the bulk importer."""


class LettersApiError(Exception):
    """An error response, or an unreadable success body, from the letters API."""

    def __init__(self, message: str, *, status_code: int | None = None, payload: dict | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class DuplicateNumbersError(LettersApiError):
    """The batch-create endpoint rejected business keys as duplicates.

    ``existing`` distinguishes collisions with stored letters (HTTP 409)
    from collisions inside the submitted batch (HTTP 400).
    """

    def __init__(
        self,
        message: str,
        duplicates: list[str],
        *,
        existing: bool,
        status_code: int | None = None,
        payload: dict | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, payload=payload)
        self.duplicates = duplicates
        self.existing = existing


class BatchValidationError(LettersApiError):
    """The batch-create endpoint rejected one or more fields.

    ``details`` holds ``{"path": "letters.2.org", "message": ...}`` items.
    """

    def __init__(
        self,
        message: str,
        details: list[dict],
        *,
        status_code: int | None = None,
        payload: dict | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, payload=payload)
        self.details = details


class RequestNotFoundError(LettersApiError):
    """The portal found no request matching the id and contact."""


class RateLimitedError(LettersApiError):
    """The portal rejected the call with HTTP 429."""


class RowLockedError(Exception):
    """A bulk import row was edited while its extraction is in flight."""
