"""Heuristics applied to uploaded file names and free text.

Scanned letters are usually saved as ``NUMBER_DD.MM.YYYY_CONTENT.pdf``, e.g.
``7941_28.10.2025_DMEDda xatoni tog'irlash.pdf``. When the extraction service
misses a field the file name often still has it.
"""

import datetime as dt
import re
from pathlib import PurePath

from pydantic import BaseModel

from lettertrack.constants import ORGANIZATION_HINTS

NO_SUBJECT = "No subject"

_EXTENSION = re.compile(r"\.[^._ ]+$")
_FILENAME_DATE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")
_NUMBER_PREFIX = re.compile(r"^(?:№|#|no\.|num\.|number\b|no(?=[\s\d]))\s*", re.IGNORECASE)


class ParsedLetterFilename(BaseModel):
    """Fields recovered from a file name. ``error`` is set when ``is_valid`` is False."""

    filename: str
    number: str = ""
    date: dt.date | None = None
    content: str = ""
    is_valid: bool = False
    error: str | None = None


def parse_letter_filename(filename: str) -> ParsedLetterFilename:
    """Split ``NUMBER_DD.MM.YYYY_CONTENT.ext`` into its parts.

    Everything after the second underscore is content, underscores included.
    """
    result = ParsedLetterFilename(filename=filename)
    stem = _EXTENSION.sub("", PurePath(filename).name)
    parts = stem.split("_")

    if len(parts) < 3:
        result.error = "Expected NUMBER_DD.MM.YYYY_CONTENT"
        return result

    number = parts[0].strip()
    if not number:
        result.error = "Missing letter number"
        return result
    result.number = number

    date_text = parts[1].strip()
    match = _FILENAME_DATE.match(date_text)
    if not match:
        result.error = f"Invalid date {date_text!r}, expected DD.MM.YYYY"
        return result
    day, month, year = (int(g) for g in match.groups())
    try:
        result.date = dt.date(year, month, day)
    except ValueError:
        result.error = f"Invalid date {date_text!r}"
        return result

    result.content = "_".join(parts[2:]).strip() or NO_SUBJECT
    result.is_valid = True
    return result


def guess_organization(text: str) -> str:
    """Return the first organization whose keywords appear in ``text``, or ``""``."""
    lowered = text.lower()
    for org, keywords in ORGANIZATION_HINTS.items():
        if any(keyword in lowered for keyword in keywords):
            return org
    return ""


def normalize_number(value: str) -> str:
    """Strip a leading ``№``/``No.``/``#``/``number`` label from a letter number."""
    return _NUMBER_PREFIX.sub("", value.strip()).strip()
