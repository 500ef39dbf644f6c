from __future__ import annotations

from datetime import datetime
from typing import Optional


class AlarmError(Exception):
    """Base class for alarm scheduling failures."""


class AlarmNotFound(AlarmError, KeyError):
    def __init__(self, alarm_id: str):
        super().__init__(alarm_id)
        self.alarm_id = alarm_id

    def __str__(self) -> str:
        return f"Alarm {self.alarm_id} not found"


class InvalidAlarm(AlarmError, ValueError):
    pass


class StorageUnavailable(AlarmError):
    """The key-value layer failed; the previously stored collection is untouched."""


class RegistrationFailed(AlarmError):
    def __init__(self, identifier: str, reason: str = ""):
        super().__init__(identifier, reason)
        self.identifier = identifier
        self.reason = reason

    def __str__(self) -> str:
        if self.reason:
            return f"Registration {self.identifier} failed: {self.reason}"
        return f"Registration {self.identifier} failed"


class PastTriggerSkipped(AlarmError):
    """Resolved trigger is not in the future. Not a failure for callers: the alarm stays stored."""

    def __init__(self, alarm_id: str, trigger_at: datetime, now: Optional[datetime] = None):
        super().__init__(alarm_id, trigger_at)
        self.alarm_id = alarm_id
        self.trigger_at = trigger_at
        self.now = now

    def __str__(self) -> str:
        return f"Alarm {self.alarm_id} trigger {self.trigger_at.isoformat()} is in the past, not scheduling"
