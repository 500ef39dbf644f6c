from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from .errors import InvalidAlarm
from .models import Alarm, Shift
from .rules import at_time, parse_time, weekday_of

logger = logging.getLogger(__name__)

DEPARTURE = "departure"
CHECK_IN = "check_in"
CHECK_OUT = "check_out"
SHIFT_ALARM_KINDS = (DEPARTURE, CHECK_IN, CHECK_OUT)


@dataclass(frozen=True)
class ShiftAlarmCandidate:
    kind: str
    trigger_at: datetime
    title: str
    body: str
    data: dict = field(default_factory=dict)


def derive_shift_alarms(shift: Shift, alarm: Alarm, now: datetime) -> List[ShiftAlarmCandidate]:
    """Today's departure / check-in / check-out alarms for ``shift``.

    Only instants strictly after ``now`` are returned. Nothing is produced on a
    weekday the shift does not apply to; future days are derived again when
    the schedule is refreshed on that day.
    """
    today = weekday_of(now)
    if today not in shift.applied_days:
        logger.debug("Shift %s does not apply on weekday %s", shift.id, today)
        return []

    candidates: List[ShiftAlarmCandidate] = []
    if alarm.include_departure:
        candidates.append(
            _candidate(
                alarm,
                shift,
                DEPARTURE,
                _today_at(shift, shift.departure_time, now),
                "Time to Leave for Work",
                f"Your shift ({shift.name}) starts at {shift.start_time}",
                shift.departure_time,
            )
        )
    if alarm.include_check_in:
        candidates.append(
            _candidate(
                alarm,
                shift,
                CHECK_IN,
                _today_at(shift, shift.start_time, now),
                "Time to Check In",
                f"Your shift ({shift.name}) has started",
                shift.start_time,
            )
        )
    if alarm.include_check_out:
        candidates.append(
            _candidate(
                alarm,
                shift,
                CHECK_OUT,
                shift_end_at(shift, now),
                "Time to Check Out",
                f"Your shift ({shift.name}) has ended",
                shift.end_time,
            )
        )
    return [c for c in candidates if c is not None and c.trigger_at > now]


def shift_end_at(shift: Shift, now: datetime) -> Optional[datetime]:
    """End of the shift that starts today.

    The end falls on the next day whenever its clock time is not after the
    start time, so a 22:00-06:00 shift ends tomorrow at 06:00 and a 22:30-22:10
    shift also ends tomorrow.
    """
    end_at = _today_at(shift, shift.end_time, now)
    if end_at is None:
        return None
    start_at = _today_at(shift, shift.start_time, now)
    if start_at is not None and end_at <= start_at:
        hours, minutes = end_at.hour, end_at.minute
        end_at = at_time(now.date() + timedelta(days=1), hours, minutes, now.tzinfo)
    return end_at


def _today_at(shift: Shift, value: Optional[str], now: datetime) -> Optional[datetime]:
    try:
        hours, minutes = parse_time(value)
    except InvalidAlarm as exc:
        logger.warning("Shift %s has an unusable time field: %s", shift.id, exc)
        return None
    return at_time(now.date(), hours, minutes, now.tzinfo)


def _candidate(
    alarm: Alarm,
    shift: Shift,
    kind: str,
    trigger_at: Optional[datetime],
    title: str,
    body: str,
    clock_time: Optional[str],
) -> Optional[ShiftAlarmCandidate]:
    if trigger_at is None:
        return None
    return ShiftAlarmCandidate(
        kind=kind,
        trigger_at=trigger_at,
        title=title,
        body=body,
        data={
            "type": kind,
            "alarmId": f"{alarm.id}_{kind}",
            "shiftId": shift.id,
            "shiftName": shift.name,
            "time": clock_time,
        },
    )
