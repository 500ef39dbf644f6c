from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

from .errors import InvalidAlarm

ONE_TIME = "one_time"
RECURRING = "recurring"
SHIFT_LINKED = "shift_linked"
ALARM_TYPES = (ONE_TIME, RECURRING, SHIFT_LINKED)

# JSON field name -> attribute name
_ALARM_FIELDS = {
    "id": "id",
    "type": "type",
    "title": "title",
    "description": "description",
    "time": "time",
    "date": "date",
    "days": "days",
    "includeDeparture": "include_departure",
    "includeCheckIn": "include_check_in",
    "includeCheckOut": "include_check_out",
    "isEnabled": "is_enabled",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}
_IMMUTABLE_FIELDS = ("id", "createdAt")


def new_alarm_id() -> str:
    """Time-ordered id, so sorting by id follows creation order."""
    return f"al_{int(time.time() * 1000):013d}_{uuid.uuid4().hex[:6]}"


def _as_days(raw: Any) -> List[int]:
    if raw is None:
        return []
    if isinstance(raw, (str, bytes)) or not hasattr(raw, "__iter__"):
        raise InvalidAlarm(f"days must be a list of weekday numbers, got {raw!r}")
    try:
        return list(dict.fromkeys(int(day) for day in raw))
    except (TypeError, ValueError) as exc:
        raise InvalidAlarm(f"days must be a list of weekday numbers, got {raw!r}") from exc


@dataclass
class Alarm:
    id: str
    type: str
    title: str = ""
    description: str = ""
    time: Optional[str] = None
    date: Optional[str] = None
    days: List[int] = field(default_factory=list)
    include_departure: bool = False
    include_check_in: bool = False
    include_check_out: bool = False
    is_enabled: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        payload = dict(self.extra)
        for key, attr in _ALARM_FIELDS.items():
            value = getattr(self, attr)
            payload[key] = list(value) if attr == "days" else value
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Alarm":
        alarm_id = data.get("id")
        if alarm_id in (None, ""):
            raise InvalidAlarm("Alarm payload missing id")
        return cls(
            id=str(alarm_id),
            type=str(data.get("type") or ""),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            time=data.get("time"),
            date=data.get("date"),
            days=_as_days(data.get("days")),
            include_departure=bool(data.get("includeDeparture", False)),
            include_check_in=bool(data.get("includeCheckIn", False)),
            include_check_out=bool(data.get("includeCheckOut", False)),
            is_enabled=bool(data.get("isEnabled", True)),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            extra={k: v for k, v in data.items() if k not in _ALARM_FIELDS},
        )

    def merged(self, patch: Mapping[str, Any]) -> "Alarm":
        """Return a copy with ``patch`` (JSON field names) applied; id and createdAt never change."""
        payload = self.to_dict()
        payload.update({k: v for k, v in patch.items() if k not in _IMMUTABLE_FIELDS})
        return Alarm.from_dict(payload)


_SETTINGS_FIELDS = {
    "soundEnabled": "sound_enabled",
    "vibrationEnabled": "vibration_enabled",
    "soundName": "sound_name",
    "snoozeMinutes": "snooze_minutes",
}


@dataclass
class AlarmSettings:
    sound_enabled: bool = True
    vibration_enabled: bool = True
    sound_name: str = "default"
    snooze_minutes: int = 5

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for key, attr in _SETTINGS_FIELDS.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], defaults: Optional["AlarmSettings"] = None) -> "AlarmSettings":
        base = defaults or cls()
        known = {attr: data[key] for key, attr in _SETTINGS_FIELDS.items() if key in data}
        return _checked_settings(replace(base, **known))

    def merged(self, patch: Mapping[str, Any]) -> "AlarmSettings":
        unknown = sorted(set(patch) - set(_SETTINGS_FIELDS))
        if unknown:
            raise ValueError(f"Unknown alarm settings: {', '.join(unknown)}")
        return AlarmSettings.from_dict(patch, defaults=self)


def _checked_settings(settings: AlarmSettings) -> AlarmSettings:
    minutes = settings.snooze_minutes
    if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes < 1:
        raise ValueError(f"snoozeMinutes must be a positive integer, got {minutes!r}")
    settings.sound_enabled = bool(settings.sound_enabled)
    settings.vibration_enabled = bool(settings.vibration_enabled)
    settings.sound_name = str(settings.sound_name or "default")
    return settings


@dataclass
class Shift:
    """Read-only view of a work shift owned by the shift management screens."""

    id: str
    name: str
    departure_time: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    applied_days: List[int] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Shift":
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name") or ""),
            departure_time=data.get("departureTime"),
            start_time=data.get("startTime"),
            end_time=data.get("endTime"),
            applied_days=_as_days(data.get("appliedDays")),
        )
