"""Alarm scheduling for the shift tracker."""

from .errors import AlarmError, AlarmNotFound, InvalidAlarm, PastTriggerSkipped, RegistrationFailed, StorageUnavailable
from .models import Alarm, AlarmSettings, Shift
from .notifications import LocalNotificationService, NotificationEvent, NotificationRequest
from .response_router import NotificationResponseRouter, RouteResult
from .scheduler import AlarmScheduler, registration_id, registration_ids
from .storage import AlarmStore, JsonFileKeyValueStore, MemoryKeyValueStore, StoredShiftLookup
