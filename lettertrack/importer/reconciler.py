"""Bulk import: turn a pile of scanned letters into created letters.

The reconciler owns the editable row table. Documents are ingested as rows
in ``parsing`` state, sent to the extraction service concurrently, merged
into their rows, validated, submitted in one batch-create call and finally
attached to the created letters.
"""

import asyncio
import csv
import datetime as dt
import logging
import re
import uuid
from collections.abc import Iterable
from pathlib import Path

import httpx
from pydantic import ValidationError

from lettertrack.audit.import_log import ImportLog
from lettertrack.config import DEFAULT_DEADLINE_WORKING_DAYS
from lettertrack.constants import (
    BULK_MAX_LETTERS,
    CONTENT_MAX_LENGTH,
    IMPORT_ACCEPTED_SUFFIX,
    MAX_UPLOAD_BYTES,
    NUMBER_MAX_LENGTH,
    ORG_MAX_LENGTH,
    PRIORITY_DEFAULT,
)
from lettertrack.errors import BatchValidationError, DuplicateNumbersError, LettersApiError, RowLockedError
from lettertrack.importer.deadlines import add_working_days, infer_deadline
from lettertrack.importer.filenames import guess_organization, normalize_number, parse_letter_filename
from lettertrack.importer.recommend import recommend_letter_type
from lettertrack.integrations.letters_api import LettersClient
from lettertrack.notifications import Notifier
from lettertrack.schemas.bulk import (
    EDITABLE_FIELDS,
    AttachmentOutcome,
    BulkCreateResult,
    BulkImportRow,
    ExtractedLetterData,
    ExtractionSummary,
    SubmitReport,
    normalize_business_key,
)
from lettertrack.schemas.letters import Letter

logger = logging.getLogger(__name__)

_DETAIL_PATH = re.compile(r"^letters\.(\d+)(?:\.(\w+))?")

CSV_HEADERS = ("Number", "Organization", "Date", "Deadline", "Type", "Content", "Priority")


def _csv_date(value: dt.date | dt.datetime | None) -> str:
    if value is None:
        return ""
    if isinstance(value, dt.datetime):
        value = value.date()
    return value.strftime("%d.%m.%Y")


class BulkImportReconciler:
    """Editable row table plus the extract → validate → submit → attach flow.

    Usage::

        reconciler = BulkImportReconciler(client, notifier)
        reconciler.ingest([Path("7941_28.10.2025_DMED.pdf")])
        await reconciler.extract_all()
        report = await reconciler.submit(skip_duplicates=True)
    """

    def __init__(
        self,
        client: LettersClient,
        notifier: Notifier | None = None,
        *,
        working_days: int = DEFAULT_DEADLINE_WORKING_DAYS,
        import_log: ImportLog | None = None,
    ) -> None:
        self._client = client
        self._notifier = notifier if notifier is not None else Notifier()
        self._working_days = working_days
        self._import_log = import_log
        self.rows: list[BulkImportRow] = [BulkImportRow()]
        self.created_letters: list[Letter] = []
        self.batch_error: str | None = None
        self.submitting = False

    # ------------------------------------------------------------------
    # Row editing
    # ------------------------------------------------------------------

    def get_row(self, row_id: str) -> BulkImportRow:
        for row in self.rows:
            if row.id == row_id:
                return row
        raise KeyError(row_id)

    def add_row(self) -> BulkImportRow:
        row = BulkImportRow()
        self.rows.append(row)
        return row

    def remove_row(self, row_id: str) -> bool:
        """Remove a row; the table always keeps at least one."""
        if len(self.rows) <= 1:
            return False
        before = len(self.rows)
        self.rows = [row for row in self.rows if row.id != row_id]
        return len(self.rows) < before

    def duplicate_row(self, row_id: str) -> BulkImportRow:
        """Insert a copy right after the row, with the number cleared."""
        source = self.get_row(row_id)
        copy = source.model_copy(
            update={
                "id": str(uuid.uuid4()),
                "number": "",
                "errors": [],
                "parsing": False,
                "extraction_error": None,
            }
        )
        index = self.rows.index(source)
        self.rows.insert(index + 1, copy)
        return copy

    def update_row(self, row_id: str, field: str, value: object) -> BulkImportRow:
        """Set one field of a row.

        Raises:
            RowLockedError: The row's extraction is still in flight.
            ValueError: Unknown field, or a value the row model rejects.
        """
        if field not in EDITABLE_FIELDS:
            raise ValueError(f"Field {field!r} is not editable")
        row = self.get_row(row_id)
        if row.parsing:
            raise RowLockedError(f"Row {row_id} is being recognized")

        setattr(row, field, value)
        if field == "date":
            row.date_is_default = False
        if field == "date" and row.date is not None and row.deadline_date is None:
            row.deadline_date = add_working_days(row.date, self._working_days)
        row.errors = []
        return row

    def reset(self) -> None:
        self.rows = [BulkImportRow()]
        self.batch_error = None

    # ------------------------------------------------------------------
    # Ingestion and extraction
    # ------------------------------------------------------------------

    def ingest(self, files: Iterable[str | Path]) -> list[BulkImportRow]:
        """Create one ``parsing`` row per accepted document.

        Only PDFs within the upload size limit are accepted; the rest are
        reported in a single warning. A lone untouched default row is
        replaced rather than kept above the new rows.
        """
        accepted: list[Path] = []
        rejected: list[str] = []
        for item in files:
            path = Path(item)
            if path.suffix.lower() != IMPORT_ACCEPTED_SUFFIX:
                rejected.append(path.name)
                continue
            if path.is_file() and path.stat().st_size > MAX_UPLOAD_BYTES:
                rejected.append(path.name)
                continue
            accepted.append(path)

        if rejected:
            logger.info("Rejected %d files: %s", len(rejected), ", ".join(rejected))
            self._notifier.warning(f"Skipped {len(rejected)} files: only PDF files up to 10 MB are accepted")
        if not accepted:
            return []

        new_rows = [BulkImportRow(file=path, parsing=True, date_is_default=True) for path in accepted]
        if len(self.rows) == 1 and self.rows[0].is_blank():
            self.rows = new_rows
        else:
            self.rows.extend(new_rows)
        logger.info("Ingested %d documents", len(new_rows))
        return new_rows

    async def extract_all(self, rows: list[BulkImportRow] | None = None) -> ExtractionSummary:
        """Run extraction for every parsing row concurrently.

        Each row is updated as soon as its own result arrives; one failure
        never affects another row.
        """
        targets = rows if rows is not None else [row for row in self.rows if row.parsing]
        if not targets:
            return ExtractionSummary()
        for row in targets:
            row.parsing = True

        results = await asyncio.gather(
            *(self._extract_row(row) for row in targets),
            return_exceptions=True,
        )

        summary = ExtractionSummary(total=len(targets))
        for row, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.error("Extraction crashed for %s: %r", row.file, result)
                if row.parsing:
                    self._fail_extraction(row, str(result) or type(result).__name__)
            if result is True:
                summary.recognized += 1
            else:
                summary.failed_row_ids.append(row.id)

        notify = self._notifier.success if summary.failed == 0 else self._notifier.warning
        notify(summary.message())
        return summary

    async def _extract_row(self, row: BulkImportRow) -> bool:
        if row.file is None:
            self._fail_extraction(row, "No document attached")
            return False
        try:
            data = await self._client.parse_pdf(row.file)
        except (httpx.HTTPError, LettersApiError, ValidationError, OSError) as exc:
            logger.warning("Extraction failed for %s: %s", row.file.name, exc)
            self._fail_extraction(row, str(exc) or type(exc).__name__)
            return False
        self.merge_extraction(row, data)
        return row.parsed_by_ai

    def _fail_extraction(self, row: BulkImportRow, message: str) -> None:
        row.extraction_error = message
        row.parsed_by_ai = False
        row.parsing = False

    def merge_extraction(
        self,
        row: BulkImportRow,
        data: ExtractedLetterData,
        *,
        overwrite: bool = False,
    ) -> BulkImportRow:
        """Fill a row from extraction output, then from its file name.

        Without ``overwrite`` only empty fields are written. The prefilled
        date of a freshly ingested row counts as empty, and only a date that
        extraction, the file name or the user supplied drives the deadline.
        """

        def fill(field: str, value: object) -> None:
            if value is None or value == "":
                return
            if overwrite or not getattr(row, field):
                setattr(row, field, value)

        date_is_default = row.date_is_default or row.date is None

        if data.number:
            fill("number", normalize_number(data.number))
        fill("org", data.organization)
        fill("content", data.content_russian or data.content)
        if data.date and (overwrite or date_is_default):
            row.date = data.date
            date_is_default = False

        filename = row.file.name if row.file else ""
        if filename:
            parsed = parse_letter_filename(filename)
            if parsed.is_valid:
                fill("number", parsed.number)
                if parsed.date and date_is_default:
                    row.date = parsed.date
                    date_is_default = False
                fill("content", parsed.content)
            if not row.org:
                fill("org", guess_organization(f"{row.content} {filename}"))

        row.date_is_default = date_is_default
        deadline = infer_deadline(data.deadline, None if date_is_default else row.date, self._working_days)
        if deadline is not None and (overwrite or row.deadline_date is None):
            row.deadline_date = deadline

        if not row.type:
            recommended = recommend_letter_type(
                content=data.content,
                content_russian=data.content_russian,
                organization=data.organization,
                filename=filename,
            )
            if recommended:
                row.type = recommended

        row.parsed_by_ai = not data.is_empty()
        row.extraction_error = None
        row.parsing = False
        return row

    def apply_defaults(
        self,
        *,
        date: dt.date | None = None,
        deadline: dt.date | None = None,
        type: str | None = None,
        only_empty: bool = False,
    ) -> int:
        """Write shared values into every editable row.

        A date without an explicit deadline also sets the deadline from the
        working-days offset. Returns the number of rows changed.
        """
        changed = 0
        for row in self.rows:
            if row.parsing:
                continue
            before = (row.date, row.deadline_date, row.type)
            if date is not None and (not only_empty or row.date is None or row.date_is_default):
                row.date = date
                row.date_is_default = False
                if deadline is None and (not only_empty or row.deadline_date is None):
                    row.deadline_date = add_working_days(date, self._working_days)
            if deadline is not None and (not only_empty or row.deadline_date is None):
                row.deadline_date = deadline
            if type and (not only_empty or not row.type):
                row.type = type
            if (row.date, row.deadline_date, row.type) != before:
                row.errors = []
                changed += 1
        return changed

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def find_duplicate_numbers(self) -> dict[str, list[str]]:
        """Business key → ids of every row sharing it, for keys used more than once."""
        groups: dict[str, list[str]] = {}
        for row in self.rows:
            key = row.business_key
            if key:
                groups.setdefault(key, []).append(row.id)
        return {key: ids for key, ids in groups.items() if len(ids) > 1}

    def validate(self) -> bool:
        """Check required fields, limits and in-batch duplicates; annotate rows."""
        valid = True
        self.batch_error = None
        if len(self.rows) > BULK_MAX_LETTERS:
            self.batch_error = f"At most {BULK_MAX_LETTERS} letters can be created at once"
            valid = False

        for row in self.rows:
            errors: list[str] = []
            if not row.number.strip():
                errors.append("Number is required")
            elif len(row.number.strip()) > NUMBER_MAX_LENGTH:
                errors.append(f"Number is longer than {NUMBER_MAX_LENGTH} characters")
            if not row.org.strip():
                errors.append("Organization is required")
            elif len(row.org.strip()) > ORG_MAX_LENGTH:
                errors.append(f"Organization is longer than {ORG_MAX_LENGTH} characters")
            if row.date is None:
                errors.append("Date is required")
            if len(row.content) > CONTENT_MAX_LENGTH:
                errors.append(f"Content is longer than {CONTENT_MAX_LENGTH} characters")
            row.errors = errors

        by_id = {row.id: row for row in self.rows}
        for ids in self.find_duplicate_numbers().values():
            for row_id in ids:
                row = by_id[row_id]
                row.errors = [*row.errors, f"Duplicate number {row.number.strip()}"]

        return valid and not any(row.errors for row in self.rows)

    def row_errors(self) -> dict[str, list[str]]:
        return {row.id: list(row.errors) for row in self.rows if row.errors}

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, *, skip_duplicates: bool = False) -> SubmitReport:
        """Create every row in one batch call, then attach the source documents.

        Validation failures block the call entirely. Server rejections are
        mapped back onto the rows they concern. Attachment failures do not
        roll back created letters.
        """
        if any(row.parsing for row in self.rows):
            self._notifier.warning("Wait until recognition finishes")
            return SubmitReport(error="Recognition still in progress")

        if not self.validate():
            duplicates = sorted({self.get_row(ids[0]).number.strip() for ids in self.find_duplicate_numbers().values()})
            message = self.batch_error or "Fix the highlighted rows"
            if duplicates:
                message = f"Duplicate numbers: {', '.join(duplicates)}"
            self._notifier.error(message)
            return SubmitReport(error=message, duplicates=duplicates, row_errors=self.row_errors())

        rows = list(self.rows)
        numbers = [row.number.strip() for row in rows]
        self.submitting = True
        try:
            result = await self._client.bulk_create(
                [row.to_payload() for row in rows],
                skip_duplicates=skip_duplicates,
            )
        except DuplicateNumbersError as exc:
            report = self._reject_duplicates(rows, exc)
        except BatchValidationError as exc:
            report = self._reject_fields(rows, exc)
        except (LettersApiError, httpx.HTTPError, ValidationError) as exc:
            logger.warning("Bulk create failed: %s", exc)
            self._notifier.error(f"Could not create letters: {exc}")
            report = SubmitReport(error=str(exc))
        else:
            report = await self._complete(rows, result)
        finally:
            self.submitting = False

        if self._import_log is not None and (report.submitted or report.error):
            self._import_log.log_submission(numbers, report, skip_duplicates=skip_duplicates)
        return report

    def _reject_duplicates(self, rows: list[BulkImportRow], exc: DuplicateNumbersError) -> SubmitReport:
        keys = {normalize_business_key(number) for number in exc.duplicates}
        note = "Number already exists" if exc.existing else "Duplicate number in batch"
        for row in rows:
            if row.business_key in keys:
                row.errors = [*row.errors, note]
        self._notifier.error(f"Duplicates: {', '.join(exc.duplicates)}")
        return SubmitReport(error=str(exc), duplicates=list(exc.duplicates), row_errors=self.row_errors())

    def _reject_fields(self, rows: list[BulkImportRow], exc: BatchValidationError) -> SubmitReport:
        unmatched: list[str] = []
        for detail in exc.details:
            path = str(detail.get("path", ""))
            message = str(detail.get("message", "invalid value"))
            match = _DETAIL_PATH.match(path)
            if match and int(match.group(1)) < len(rows):
                field = match.group(2)
                row = rows[int(match.group(1))]
                row.errors = [*row.errors, f"{field}: {message}" if field else message]
            else:
                unmatched.append(f"{path}: {message}" if path else message)
        if unmatched:
            self.batch_error = "; ".join(unmatched)
        self._notifier.error(str(exc))
        return SubmitReport(error=str(exc), row_errors=self.row_errors())

    async def _complete(self, rows: list[BulkImportRow], result: BulkCreateResult) -> SubmitReport:
        message = f"Created {result.created} letters"
        if result.skipped:
            message += f", skipped {result.skipped}"
        self._notifier.success(message)
        logger.info("Bulk create: created=%d skipped=%d", result.created, result.skipped)

        attachments = await self.attach_files(rows, result.letters)
        if attachments:
            failed = [a for a in attachments if not a.attached]
            if failed:
                self._notifier.warning(
                    f"{len(attachments) - len(failed)} files attached, {len(failed)} failed"
                )
            else:
                self._notifier.success(f"Attached {len(attachments)} files")

        self.created_letters = list(result.letters)
        self.reset()
        return SubmitReport(submitted=True, result=result, attachments=attachments)

    async def attach_files(self, rows: list[BulkImportRow], letters: list[Letter]) -> list[AttachmentOutcome]:
        """Upload each row's document to the letter created from it.

        Rows are matched by the ``clientId`` the server echoes back, falling
        back to the business key.
        """
        by_client_id = {letter.client_id: letter for letter in letters if letter.client_id}
        by_key = {normalize_business_key(letter.number): letter for letter in letters}

        pending: list[tuple[BulkImportRow, Letter | None]] = []
        for row in rows:
            if row.file is None:
                continue
            letter = by_client_id.get(row.id) or by_key.get(row.business_key)
            pending.append((row, letter))
        if not pending:
            return []

        return list(await asyncio.gather(*(self._attach(row, letter) for row, letter in pending)))

    async def _attach(self, row: BulkImportRow, letter: Letter | None) -> AttachmentOutcome:
        outcome = AttachmentOutcome(row_id=row.id, number=row.number.strip(), filename=row.file.name)
        if letter is None:
            # Skipped as an existing duplicate, or missing from the response.
            outcome.error = "No created letter for this row"
            return outcome
        outcome.letter_id = letter.id
        try:
            await self._client.upload_file(row.file, letter.id)
        except (httpx.HTTPError, LettersApiError, OSError) as exc:
            logger.warning("Attaching %s to %s failed: %s", row.file.name, letter.id, exc)
            outcome.error = str(exc) or type(exc).__name__
            return outcome
        outcome.attached = True
        return outcome

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_csv(self, path: str | Path, letters: list[Letter] | None = None) -> Path:
        """Write created letters (or the current rows) as a spreadsheet-friendly CSV."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        source = letters if letters is not None else (self.created_letters or None)

        with path.open("w", encoding="utf-8-sig", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADERS)
            if source is not None:
                for letter in source:
                    writer.writerow(
                        [
                            letter.number,
                            letter.org,
                            _csv_date(letter.date),
                            _csv_date(letter.deadline_date),
                            letter.type or "",
                            letter.content or "",
                            letter.priority,
                        ]
                    )
            else:
                for row in self.rows:
                    writer.writerow(
                        [
                            row.number,
                            row.org,
                            _csv_date(row.date),
                            _csv_date(row.deadline_date),
                            row.type,
                            row.content,
                            row.priority or PRIORITY_DEFAULT,
                        ]
                    )
        logger.info("Exported %s", path)
        return path
