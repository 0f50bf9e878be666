"""Date helpers shared by the ledger, the state machine and storage."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from dateutil import parser
from dateutil.parser import ParserError
from dateutil.relativedelta import relativedelta


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_date(value) -> date | None:
    """
    Parse a date from a spreadsheet cell or API payload.

    Accepts ``date``/``datetime`` objects, ISO strings (``2025-03-01``) and the
    day-first dotted form HR types into the sheet (``01.03.2025``).
    Returns None for empty cells, raises ValueError for garbage.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    try:
        return parser.parse(text, dayfirst="." in text).date()
    except (ParserError, OverflowError) as e:
        raise ValueError(f"Invalid date: {text!r}") from e


def parse_datetime(value) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, datetime):
        try:
            value = parser.isoparse(str(value).strip())
        except ValueError as e:
            raise ValueError(f"Invalid timestamp: {value!r}") from e
    # Hand-typed cells carry no offset; stored timestamps are UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def inclusive_days(start: date, end: date) -> int:
    """Number of calendar days in [start, end]; both ends count."""
    return (end - start).days + 1


def end_from_days(start: date, days: int) -> date:
    return start + timedelta(days=days - 1)


def add_months(day: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the last day of short months."""
    return day + relativedelta(months=months)


def add_years(day: date, years: int) -> date:
    return day + relativedelta(years=years)
