# calendar_rules.py
#
# Pure day-selection rules for recurring subscriptions. No storage, no clock:
# the single answer to "is this date a service day for this subscription?"

import calendar as cal
from datetime import date, timedelta
from typing import Iterator, Optional

from src.errors import ValidationError
from src.models import Frequency, Weekday, parse_enum, parse_weekday, weekday_of

MONTHLY_WINDOW_DAYS = 3


def monthly_service_date(year: int, month: int, anchor: date) -> date:
    """
    The one monthly service date for (year, month).

    The anchor's day-of-month is clamped to the month length (the 31st becomes
    the 30th/28th). Candidates are the non-Sunday days within ±3 days of that
    day; the nearest wins and ties go to the earlier date.
    """
    last_day = cal.monthrange(year, month)[1]
    target = min(anchor.day, last_day)

    candidates = [
        date(year, month, day)
        for day in range(max(1, target - MONTHLY_WINDOW_DAYS), min(last_day, target + MONTHLY_WINDOW_DAYS) + 1)
        if date(year, month, day).weekday() != 6
    ]
    return min(candidates, key=lambda d: (abs(d.day - target), d.day))


def is_service_day(candidate: date, frequency, anchor: date, preferred_day=None) -> bool:
    """
    Return True if candidate is a service day for the subscription.

    Args:
        candidate: date being considered
        frequency: Frequency member or its name
        anchor: subscription anchor date (creation date)
        preferred_day: Weekday member, its name, or None

    Rules:
      - ONETIME is never a recurring service day
      - a preferred day selects exactly that weekday (Sunday only if asked for)
      - otherwise Sundays are skipped and:
          WEEKLY   every remaining day
          BIWEEKLY weeks with even parity counted from the anchor
          MONTHLY  monthly_service_date() of the candidate's month
    """
    frequency = parse_enum(Frequency, frequency, "frequency")
    preferred = parse_weekday(preferred_day)

    if frequency is Frequency.ONETIME:
        return False

    if preferred is not None:
        return weekday_of(candidate) is preferred

    if weekday_of(candidate) is Weekday.SUNDAY:
        return False

    if frequency is Frequency.WEEKLY:
        return True

    if frequency is Frequency.BIWEEKLY:
        week_number = (candidate - anchor).days // 7
        return week_number % 2 == 0

    if frequency is Frequency.MONTHLY:
        return candidate == monthly_service_date(candidate.year, candidate.month, anchor)

    raise ValidationError(f"Unhandled frequency {frequency!r}")


def service_dates(frequency, anchor: date, preferred_day: Optional[str],
                  start: date, end: date) -> Iterator[date]:
    """Yield every service day in the inclusive range [start, end]."""
    current = start
    while current <= end:
        if is_service_day(current, frequency, anchor, preferred_day):
            yield current
        current += timedelta(days=1)
