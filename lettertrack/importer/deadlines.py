"""Date parsing and the deadline inference policy for new letters."""

import datetime as dt
import re

from lettertrack.config import DEFAULT_DEADLINE_WORKING_DAYS

_DOTTED = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")
_SLASHED = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")

# Saturday and Sunday in date.weekday() numbering.
_WEEKEND = (5, 6)


def _safe_date(year: int, month: int, day: int) -> dt.date | None:
    try:
        return dt.date(year, month, day)
    except ValueError:
        return None


def parse_date_value(value: object) -> dt.date | None:
    """Parse the date formats seen in filenames, forms and extraction output.

    Accepts ``date``/``datetime`` objects, ``DD.MM.YYYY``, ``DD/MM/YYYY`` and
    ISO strings (a time part is ignored). Anything else, including impossible
    calendar dates like 31.02.2024, yields ``None``.
    """
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    for pattern in (_DOTTED, _SLASHED):
        match = pattern.match(text)
        if match:
            day, month, year = (int(g) for g in match.groups())
            return _safe_date(year, month, day)

    match = _ISO_PREFIX.match(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        return _safe_date(year, month, day)

    return None


def add_working_days(start: dt.date, days: int) -> dt.date:
    """Advance ``start`` by ``days`` working days, skipping weekends."""
    result = start
    added = 0
    while added < days:
        result += dt.timedelta(days=1)
        if result.weekday() not in _WEEKEND:
            added += 1
    return result


def infer_deadline(
    deadline: dt.date | None,
    document_date: dt.date | None,
    working_days: int = DEFAULT_DEADLINE_WORKING_DAYS,
) -> dt.date | None:
    """Pick a deadline: explicit one first, else date + working days, else none."""
    if deadline is not None:
        return deadline
    if document_date is not None:
        return add_working_days(document_date, working_days)
    return None
