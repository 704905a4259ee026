# src/timezone_utils.py
#
# Business-timezone clock and date parsing. Only the outer layers read the
# clock; scheduling rules receive "today" as a parameter.

from datetime import date, datetime, timezone
from typing import Optional, Union

import pytz

from config.settings import APP_TIMEZONE

_tz = pytz.timezone(APP_TIMEZONE)


def now() -> datetime:
    """Get current timezone-aware datetime in the business timezone."""
    return datetime.now(_tz)


def today() -> date:
    """Calendar date in the business timezone (not the server's)."""
    return now().date()


def utc_now_iso() -> str:
    """UTC timestamp used for provenance and audit columns."""
    return datetime.now(timezone.utc).isoformat()


def parse_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    """
    Coerce a stored or user-supplied value into a date.

    Accepts date objects, datetimes (converted to the business timezone when
    aware), 'YYYY-MM-DD' strings and ISO timestamps ('Z' suffix allowed).
    Raises ValueError for anything else.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(_tz)
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Cannot interpret {value!r} as a date")

    text = value.strip()
    if len(text) == 10:
        return datetime.strptime(text, "%Y-%m-%d").date()
    return parse_date(datetime.fromisoformat(text.replace('Z', '+00:00')))
