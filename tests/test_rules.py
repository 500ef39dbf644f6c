from datetime import datetime, timedelta, timezone
from itertools import combinations

import pytest

from shift_alarms.errors import InvalidAlarm, PastTriggerSkipped
from shift_alarms.models import Alarm
from shift_alarms.rules import (
    from_calendar_weekday,
    next_recurring,
    parse_time,
    resolve_trigger,
    to_calendar_weekday,
    validate_alarm,
    weekday_of,
)


def _tuesday_9am() -> datetime:
    return datetime(2025, 1, 7, 9, 0, tzinfo=timezone.utc)


def test_weekday_translation_monday_and_sunday():
    assert to_calendar_weekday(1) == 0
    assert to_calendar_weekday(7) == 6
    assert from_calendar_weekday(0) == 1
    assert from_calendar_weekday(6) == 7


def test_weekday_of_matches_iso_numbering():
    sunday = datetime(2025, 1, 12, 12, 0, tzinfo=timezone.utc)
    monday = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)
    assert weekday_of(sunday) == 7
    assert weekday_of(monday) == 1
    for offset in range(7):
        moment = monday + timedelta(days=offset)
        assert weekday_of(moment) == moment.isoweekday()


def test_weekday_translation_rejects_out_of_range():
    with pytest.raises(InvalidAlarm):
        to_calendar_weekday(0)
    with pytest.raises(InvalidAlarm):
        to_calendar_weekday(8)
    with pytest.raises(ValueError):
        from_calendar_weekday(7)


def test_parse_time():
    assert parse_time("08:05") == (8, 5)
    assert parse_time("7:30") == (7, 30)
    for bad in ("24:00", "12:60", "noon", "", None, "8"):
        with pytest.raises(InvalidAlarm):
            parse_time(bad)


def test_recurring_picks_next_weekday():
    # Tuesday 09:00, alarm on Mon/Wed/Fri at 08:00 -> Wednesday 08:00
    result = next_recurring(8, 0, [1, 3, 5], _tuesday_9am())
    assert result == datetime(2025, 1, 8, 8, 0, tzinfo=timezone.utc)


def test_recurring_today_when_time_not_passed():
    result = next_recurring(10, 30, [2], _tuesday_9am())
    assert result == datetime(2025, 1, 7, 10, 30, tzinfo=timezone.utc)


def test_recurring_today_already_passed_goes_to_next_week():
    result = next_recurring(8, 0, [2], _tuesday_9am())
    assert result == datetime(2025, 1, 14, 8, 0, tzinfo=timezone.utc)


def test_recurring_exact_now_is_treated_as_passed():
    result = next_recurring(9, 0, [2], _tuesday_9am())
    assert result == datetime(2025, 1, 14, 9, 0, tzinfo=timezone.utc)


def test_recurring_sunday_from_saturday():
    saturday = datetime(2025, 1, 11, 23, 0, tzinfo=timezone.utc)
    result = next_recurring(6, 15, [7], saturday)
    assert result == datetime(2025, 1, 12, 6, 15, tzinfo=timezone.utc)
    assert weekday_of(result) == 7


def test_recurring_result_lands_on_requested_day_and_in_future():
    monday = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)
    for offset in range(7):
        now = monday + timedelta(days=offset)
        today = weekday_of(now)
        for size in range(1, 8):
            for days in combinations(range(1, 8), size):
                for hours, minutes in ((6, 0), (12, 0), (18, 45)):
                    result = next_recurring(hours, minutes, days, now)
                    assert weekday_of(result) in days
                    assert result >= now
                    assert result - now <= timedelta(days=7)
                    assert (result.second, result.microsecond) == (0, 0)
                    if today in days and (hours, minutes) > (now.hour, now.minute):
                        assert result.date() == now.date()


def test_recurring_is_stable_for_same_clock():
    now = _tuesday_9am()
    assert next_recurring(8, 0, [1, 3, 5], now) == next_recurring(8, 0, [1, 3, 5], now)


def test_recurring_requires_days():
    with pytest.raises(InvalidAlarm):
        next_recurring(8, 0, [], _tuesday_9am())


def test_one_time_in_future_resolves():
    alarm = Alarm(id="a", type="one_time", time="07:15", date="2025-01-08")
    assert resolve_trigger(alarm, _tuesday_9am()) == datetime(2025, 1, 8, 7, 15, tzinfo=timezone.utc)


def test_one_time_accepts_full_iso_date():
    alarm = Alarm(id="a", type="one_time", time="07:15", date="2025-01-08T00:00:00.000Z")
    assert resolve_trigger(alarm, _tuesday_9am()).date() == datetime(2025, 1, 8).date()


def test_one_time_in_past_is_skipped():
    alarm = Alarm(id="a", type="one_time", time="09:00", date="2025-01-07")
    with pytest.raises(PastTriggerSkipped) as info:
        resolve_trigger(alarm, _tuesday_9am())
    assert info.value.alarm_id == "a"


def test_validate_alarm():
    validate_alarm(Alarm(id="a", type="shift_linked", include_check_in=True))
    with pytest.raises(InvalidAlarm):
        validate_alarm(Alarm(id="a", type="weekly", time="08:00"))
    with pytest.raises(InvalidAlarm):
        validate_alarm(Alarm(id="a", type="recurring", time="08:00", days=[]))
    with pytest.raises(InvalidAlarm):
        validate_alarm(Alarm(id="a", type="recurring", time="08:00", days=[0, 3]))
    with pytest.raises(InvalidAlarm):
        validate_alarm(Alarm(id="a", type="one_time", time="08:00", date="soon"))
