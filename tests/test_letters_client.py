"""Tests for the letters API client against a mocked transport."""

import json

import httpx
import pytest

from lettertrack.errors import BatchValidationError, DuplicateNumbersError, LettersApiError
from lettertrack.integrations.letters_api import LettersClient
from lettertrack.schemas.letters import LetterStatus

BASE_URL = "http://letters.test"


def _make_client(handler) -> LettersClient:
    return LettersClient(BASE_URL, "secret-token", transport=httpx.MockTransport(handler))


def _letter(letter_id: str = "L1", number: str = "001", **extra) -> dict:
    return {"id": letter_id, "number": number, "org": "DMED", "status": "IN_PROGRESS", **extra}


# ------------------------------------------------------------------
# Listing
# ------------------------------------------------------------------


class TestListLetters:
    async def test_params_and_auth_header(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "letters": [_letter(deadlineDate="2025-11-01T00:00:00.000Z", _count={"comments": 2})],
                    "pagination": {"page": 2, "limit": 25, "total": 30, "totalPages": 2},
                },
            )

        async with _make_client(handler) as client:
            page = await client.list_letters({"page": 2, "limit": 25, "status": "IN_PROGRESS"})

        request = seen[0]
        assert request.url.path == "/api/letters"
        assert request.url.params["page"] == "2"
        assert request.url.params["status"] == "IN_PROGRESS"
        assert request.headers["Authorization"] == "Bearer secret-token"

        assert page.pagination.total_pages == 2
        letter = page.letters[0]
        assert letter.status == LetterStatus.IN_PROGRESS
        assert letter.deadline_date.year == 2025
        assert letter.counts.comments == 2

    async def test_http_error_raises(self):
        async with _make_client(lambda request: httpx.Response(500, json={"error": "boom"})) as client:
            with pytest.raises(httpx.HTTPStatusError):
                await client.list_letters({"page": 1})

    async def test_html_success_page_raises_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>login</html>", headers={"Content-Type": "text/html"})

        async with _make_client(handler) as client:
            with pytest.raises(LettersApiError) as excinfo:
                await client.list_letters({"page": 1})

        assert excinfo.value.status_code == 200
        assert "/api/letters" in str(excinfo.value)

    async def test_json_array_body_raises_api_error(self):
        async with _make_client(lambda request: httpx.Response(200, json=[1, 2])) as client:
            with pytest.raises(LettersApiError):
                await client.list_letters({"page": 1})


class TestMutations:
    async def test_patch_sends_field_and_value(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "PATCH"
            assert request.url.path == "/api/letters/L1"
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        async with _make_client(handler) as client:
            await client.patch_letter("L1", "status", "DONE")

        assert bodies == [{"field": "status", "value": "DONE"}]

    async def test_bulk_update_returns_count(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body == {"ids": ["a", "b"], "action": "status", "value": "DONE"}
            return httpx.Response(200, json={"success": True, "updated": 2})

        async with _make_client(handler) as client:
            assert await client.bulk_update(["a", "b"], "status", "DONE") == 2

    async def test_list_users(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"users": [{"id": "u1", "email": "a@b.c"}]})

        async with _make_client(handler) as client:
            users = await client.list_users()

        assert users[0].display_name == "a@b.c"


# ------------------------------------------------------------------
# Batch create
# ------------------------------------------------------------------


class TestBulkCreate:
    async def test_success(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["skipDuplicates"] is True
            assert body["letters"][0]["clientId"] == "row-1"
            return httpx.Response(
                200,
                json={
                    "success": True,
                    "created": 1,
                    "skipped": 1,
                    "skippedNumbers": ["002"],
                    "letters": [_letter(clientId="row-1")],
                },
            )

        async with _make_client(handler) as client:
            result = await client.bulk_create([{"clientId": "row-1", "number": "001"}], skip_duplicates=True)

        assert result.created == 1
        assert result.skipped_numbers == ["002"]
        assert result.letters[0].client_id == "row-1"

    async def test_conflict_with_existing_letters(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(409, json={"error": "Letters already exist", "duplicates": ["001"]})

        async with _make_client(handler) as client:
            with pytest.raises(DuplicateNumbersError) as excinfo:
                await client.bulk_create([{"number": "001"}])

        assert excinfo.value.existing is True
        assert excinfo.value.duplicates == ["001"]
        assert str(excinfo.value) == "Letters already exist"

    async def test_duplicates_inside_batch(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "Duplicate numbers", "duplicates": ["001"]})

        async with _make_client(handler) as client:
            with pytest.raises(DuplicateNumbersError) as excinfo:
                await client.bulk_create([{"number": "001"}, {"number": "001"}])

        assert excinfo.value.existing is False

    async def test_field_validation_details(self):
        details = [{"path": "letters.0.org", "message": "Required"}]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "Validation failed", "details": details})

        async with _make_client(handler) as client:
            with pytest.raises(BatchValidationError) as excinfo:
                await client.bulk_create([{"number": "001"}])

        assert excinfo.value.details == details
        assert excinfo.value.status_code == 400

    async def test_non_json_error(self):
        async with _make_client(lambda request: httpx.Response(502, text="Bad gateway")) as client:
            with pytest.raises(LettersApiError) as excinfo:
                await client.bulk_create([{"number": "001"}])

        assert excinfo.value.status_code == 502
        assert "HTTP 502" in str(excinfo.value)


# ------------------------------------------------------------------
# Documents
# ------------------------------------------------------------------


class TestDocuments:
    async def test_parse_pdf(self, tmp_path):
        pdf = tmp_path / "scan.pdf"
        pdf.write_bytes(b"%PDF-1.4\n")

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/parse-pdf"
            assert b'filename="scan.pdf"' in request.content
            return httpx.Response(
                200,
                json={"success": True, "data": {"number": 7941, "date": "28.10.2025", "organization": " "}},
            )

        async with _make_client(handler) as client:
            data = await client.parse_pdf(pdf)

        assert data.number == "7941"
        assert data.date.isoformat() == "2025-10-28"
        assert data.organization is None

    async def test_parse_pdf_without_data(self, tmp_path):
        pdf = tmp_path / "scan.pdf"
        pdf.write_bytes(b"%PDF-1.4\n")

        async with _make_client(lambda request: httpx.Response(200, json={"success": False})) as client:
            data = await client.parse_pdf(pdf)

        assert data.is_empty()

    async def test_upload_file(self, tmp_path):
        pdf = tmp_path / "scan.pdf"
        pdf.write_bytes(b"%PDF-1.4\n")

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/upload"
            assert b'name="letterId"' in request.content
            assert b"L7" in request.content
            return httpx.Response(200, json={"id": "f1"})

        async with _make_client(handler) as client:
            assert await client.upload_file(pdf, "L7") == {"id": "f1"}

    def test_letter_url(self):
        client = LettersClient(BASE_URL + "/")
        assert client.get_letter_url("L1") == "http://letters.test/letters/L1"
