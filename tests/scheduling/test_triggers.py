"""
Trigger Tests

Interval and exchange-local daily fire times.
"""

from datetime import datetime, time, timedelta, timezone

import pytest

from app.scheduling.triggers import DailyTrigger, IntervalTrigger


WEEKDAYS = [0, 1, 2, 3, 4]


def test_interval_trigger():
    start = datetime(2026, 3, 2, 4, 30, tzinfo=timezone.utc)

    assert IntervalTrigger(2).next_fire(start) == start + timedelta(seconds=2)


def test_interval_trigger_rejects_non_positive():
    with pytest.raises(ValueError):
        IntervalTrigger(0)


def test_daily_trigger_same_day():
    trigger = DailyTrigger.from_string("15:25", "Asia/Kolkata", WEEKDAYS)
    # Monday 10:00 IST
    after = datetime(2026, 3, 2, 4, 30, tzinfo=timezone.utc)

    assert trigger.next_fire(after) == datetime(2026, 3, 2, 9, 55, tzinfo=timezone.utc)


def test_daily_trigger_is_strictly_after():
    trigger = DailyTrigger(time(15, 25), "Asia/Kolkata", WEEKDAYS)
    at_fire = datetime(2026, 3, 2, 9, 55, tzinfo=timezone.utc)

    assert trigger.next_fire(at_fire) == datetime(2026, 3, 3, 9, 55, tzinfo=timezone.utc)


def test_daily_trigger_skips_weekend():
    trigger = DailyTrigger.from_string("23:25", "Asia/Kolkata", WEEKDAYS)
    # Friday 23:30 IST
    after = datetime(2026, 3, 6, 18, 0, tzinfo=timezone.utc)

    fire = trigger.next_fire(after)

    assert fire == datetime(2026, 3, 9, 17, 55, tzinfo=timezone.utc)
    assert fire.tzinfo == timezone.utc


def test_daily_trigger_all_days_by_default():
    trigger = DailyTrigger.from_string("16:55", "Asia/Kolkata")
    # Saturday 12:00 IST
    after = datetime(2026, 3, 7, 6, 30, tzinfo=timezone.utc)

    assert trigger.next_fire(after) == datetime(2026, 3, 7, 11, 25, tzinfo=timezone.utc)


def test_daily_trigger_rejects_empty_weekdays():
    with pytest.raises(ValueError):
        DailyTrigger(time(15, 25), "Asia/Kolkata", [])
