# testing/test_calendar_rules.py
"""
Tests for service-day selection (frequency, anchor, preferred day).
"""

from datetime import date

import pytest

from src.api.calendar_rules import is_service_day, monthly_service_date, service_dates
from src.errors import ValidationError

ANCHOR = date(2024, 1, 1)  # a Monday


def test_weekly_skips_sundays_only():
    week = [date(2024, 3, d) for d in range(4, 11)]  # Mon 4th .. Sun 10th
    selected = [d for d in week if is_service_day(d, "WEEKLY", ANCHOR)]
    assert selected == week[:6]
    assert not is_service_day(date(2024, 3, 10), "WEEKLY", ANCHOR)


def test_biweekly_alternates_weeks_from_anchor():
    assert is_service_day(date(2024, 1, 2), "BIWEEKLY", ANCHOR)
    assert not is_service_day(date(2024, 1, 8), "BIWEEKLY", ANCHOR)
    assert not is_service_day(date(2024, 1, 13), "BIWEEKLY", ANCHOR)
    assert is_service_day(date(2024, 1, 15), "BIWEEKLY", ANCHOR)
    assert is_service_day(date(2024, 1, 29), "BIWEEKLY", ANCHOR)


def test_biweekly_parity_before_anchor_uses_floor_division():
    # -7 days is week -1 (odd); -14 days is week -2 (even)
    assert not is_service_day(date(2023, 12, 25), "BIWEEKLY", ANCHOR)
    assert is_service_day(date(2023, 12, 18), "BIWEEKLY", ANCHOR)
    # -2 days still falls in week -1
    assert not is_service_day(date(2023, 12, 30), "BIWEEKLY", ANCHOR)


def test_preferred_day_overrides_frequency():
    for frequency in ("WEEKLY", "BIWEEKLY", "MONTHLY"):
        assert is_service_day(date(2024, 3, 6), frequency, ANCHOR, "WEDNESDAY")
        assert not is_service_day(date(2024, 3, 7), frequency, ANCHOR, "WEDNESDAY")
    # an odd biweekly week still qualifies when the weekday matches
    assert is_service_day(date(2024, 1, 10), "BIWEEKLY", ANCHOR, "WEDNESDAY")


def test_preferred_sunday_is_honored():
    assert is_service_day(date(2024, 3, 10), "WEEKLY", ANCHOR, "SUNDAY")
    assert not is_service_day(date(2024, 3, 11), "WEEKLY", ANCHOR, "SUNDAY")


def test_preferred_day_is_case_insensitive_and_empty_means_unset():
    assert is_service_day(date(2024, 3, 6), "weekly", ANCHOR, "wednesday")
    assert is_service_day(date(2024, 3, 6), "WEEKLY", ANCHOR, "")


def test_monthly_selects_one_day_near_anchor():
    anchor = date(2024, 1, 15)
    march = [d for d in service_dates("MONTHLY", anchor, None, date(2024, 3, 1), date(2024, 3, 31))]
    assert march == [date(2024, 3, 15)]


def test_monthly_tie_break_prefers_earlier_day_when_target_is_sunday():
    # 2024-03-10 is a Sunday; the 9th and 11th are both one day away
    anchor = date(2024, 1, 10)
    assert monthly_service_date(2024, 3, anchor) == date(2024, 3, 9)
    assert is_service_day(date(2024, 3, 9), "MONTHLY", anchor)
    assert not is_service_day(date(2024, 3, 11), "MONTHLY", anchor)


def test_monthly_clamps_to_short_months():
    anchor = date(2024, 1, 31)
    assert monthly_service_date(2024, 2, anchor) == date(2024, 2, 29)
    assert monthly_service_date(2024, 4, anchor) == date(2024, 4, 30)


def test_onetime_is_never_a_recurring_day():
    assert not any(
        is_service_day(date(2024, 3, d), "ONETIME", ANCHOR) for d in range(1, 32)
    )
    assert not is_service_day(date(2024, 3, 6), "ONETIME", ANCHOR, "WEDNESDAY")


def test_invalid_values_raise_validation_error():
    with pytest.raises(ValidationError):
        is_service_day(date(2024, 3, 6), "FORTNIGHTLY", ANCHOR)
    with pytest.raises(ValidationError):
        is_service_day(date(2024, 3, 6), "WEEKLY", ANCHOR, "FUNDAY")


def test_service_dates_range_is_inclusive():
    dates = list(service_dates("WEEKLY", ANCHOR, "MONDAY", date(2024, 3, 4), date(2024, 3, 18)))
    assert dates == [date(2024, 3, 4), date(2024, 3, 11), date(2024, 3, 18)]
