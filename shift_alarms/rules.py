"""Turn alarm recurrence descriptions into concrete trigger instants.

Alarm and shift records number weekdays 1..7 (Monday=1 .. Sunday=7), while
``date.weekday()`` counts 0..6 from Monday. ``to_calendar_weekday`` and
``from_calendar_weekday`` are the only places that convert between the two.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, Optional, Tuple

from .errors import InvalidAlarm, PastTriggerSkipped
from .models import ALARM_TYPES, ONE_TIME, RECURRING, Alarm

_TIME_RE = re.compile(r"(\d{1,2}):(\d{2})")


def parse_time(value: Optional[str]) -> Tuple[int, int]:
    match = _TIME_RE.fullmatch(value.strip()) if isinstance(value, str) else None
    if not match:
        raise InvalidAlarm(f"Invalid time {value!r}, expected HH:mm")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise InvalidAlarm(f"Invalid time {value!r}, expected HH:mm")
    return hours, minutes


def parse_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidAlarm(f"Invalid date {value!r}")
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value).date()
    except ValueError as exc:
        raise InvalidAlarm(f"Invalid date {value!r}") from exc


def to_calendar_weekday(day: int) -> int:
    if not 1 <= day <= 7:
        raise InvalidAlarm(f"Weekday must be within 1..7, got {day!r}")
    return day - 1


def from_calendar_weekday(weekday: int) -> int:
    if not 0 <= weekday <= 6:
        raise ValueError(f"Calendar weekday must be within 0..6, got {weekday!r}")
    return weekday + 1


def weekday_of(moment: date) -> int:
    return from_calendar_weekday(moment.weekday())


def at_time(day: date, hours: int, minutes: int, tz: Optional[tzinfo]) -> datetime:
    return datetime(day.year, day.month, day.day, hours, minutes, tzinfo=tz)


def next_recurring(hours: int, minutes: int, days: Iterable[int], now: datetime) -> datetime:
    """Next instant at ``hours:minutes`` on one of ``days`` that is still ahead of ``now``.

    A weekday equal to today counts only if the time has not passed yet;
    otherwise it lands a full week later.
    """
    today = now.date()
    today_at = at_time(today, hours, minutes, now.tzinfo)
    best: Optional[int] = None
    for day in set(days):
        offset = (to_calendar_weekday(day) - now.weekday()) % 7
        if offset == 0 and today_at <= now:
            offset = 7
        if best is None or offset < best:
            best = offset
    if best is None:
        raise InvalidAlarm("Recurring alarm needs at least one weekday")
    return at_time(today + timedelta(days=best), hours, minutes, now.tzinfo)


def one_time_trigger(day, hours: int, minutes: int, tz: Optional[tzinfo]) -> datetime:
    return at_time(parse_date(day), hours, minutes, tz)


def resolve_trigger(alarm: Alarm, now: datetime) -> datetime:
    """Trigger instant for a one-time or recurring alarm.

    Raises PastTriggerSkipped when a one-time alarm's moment has already gone.
    """
    hours, minutes = parse_time(alarm.time)
    if alarm.type == RECURRING:
        return next_recurring(hours, minutes, alarm.days, now)
    if alarm.type == ONE_TIME:
        trigger_at = one_time_trigger(alarm.date, hours, minutes, now.tzinfo)
        if trigger_at <= now:
            raise PastTriggerSkipped(alarm.id, trigger_at, now)
        return trigger_at
    raise InvalidAlarm(f"Alarm {alarm.id} of type {alarm.type!r} has no fixed trigger time")


def validate_alarm(alarm: Alarm) -> Alarm:
    if alarm.type not in ALARM_TYPES:
        raise InvalidAlarm(f"Unknown alarm type {alarm.type!r}, expected one of {', '.join(ALARM_TYPES)}")
    if alarm.type == ONE_TIME:
        parse_time(alarm.time)
        parse_date(alarm.date)
    elif alarm.type == RECURRING:
        parse_time(alarm.time)
        if not alarm.days:
            raise InvalidAlarm("Recurring alarm needs at least one weekday")
        for day in alarm.days:
            to_calendar_weekday(day)
    return alarm
