from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from .errors import (
    AlarmError,
    AlarmNotFound,
    InvalidAlarm,
    PastTriggerSkipped,
    RegistrationFailed,
    StorageUnavailable,
)
from .models import SHIFT_LINKED, Alarm, AlarmSettings, Shift, new_alarm_id
from .notifications import NotificationContent, NotificationRequest, NotificationService
from .rules import resolve_trigger, validate_alarm
from .shifts import SHIFT_ALARM_KINDS, derive_shift_alarms
from .storage import AlarmStore

logger = logging.getLogger(__name__)

SNOOZE = "snooze"


def registration_id(alarm_id: str, suffix: Optional[str] = None) -> str:
    if suffix:
        return f"alarm_{alarm_id}_{suffix}"
    return f"alarm_{alarm_id}"


def registration_ids(alarm_id: str) -> List[str]:
    """Every identifier an alarm can own in the notification service."""
    return [registration_id(alarm_id)] + [
        registration_id(alarm_id, suffix) for suffix in SHIFT_ALARM_KINDS + (SNOOZE,)
    ]


class ActiveShiftLookup(Protocol):
    async def get_active_shift(self) -> Optional[Shift]: ...


class AlarmScheduler:
    """Keeps stored alarms and notification registrations in step.

    Record-level failures (AlarmNotFound, InvalidAlarm, StorageUnavailable)
    are raised to the caller. Registration problems are logged and reported
    as ``False`` by the scheduling helpers; the record is stored regardless
    and ``reschedule_all`` can retry later.

    Without ``timezone`` the system offset is used as a fixed offset, which
    does not follow DST; pass a named zone (see ``time_utils.resolve_timezone``).
    """

    def __init__(
        self,
        store: AlarmStore,
        notifications: NotificationService,
        shift_lookup: Optional[ActiveShiftLookup] = None,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Callable[[], str] = new_alarm_id,
        timezone=None,
    ):
        self.store = store
        self.notifications = notifications
        self.shift_lookup = shift_lookup
        self.tzinfo = timezone or datetime.now().astimezone().tzinfo
        self.clock = clock or (lambda: datetime.now(self.tzinfo))
        self.id_factory = id_factory

        self._settings: Optional[AlarmSettings] = None
        self._collection_lock = asyncio.Lock()
        self._id_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    async def start(self) -> AlarmSettings:
        self._settings = await self.store.load_settings()
        logger.info("Alarm settings loaded: %s", self._settings.to_dict())
        return replace(self._settings)

    # Settings

    async def get_settings(self) -> AlarmSettings:
        if self._settings is None:
            await self.start()
        return replace(self._settings)

    async def update_settings(self, patch: Mapping[str, Any]) -> AlarmSettings:
        updated = (await self.get_settings()).merged(patch)
        await self.store.save_settings(updated)
        self._settings = updated
        logger.info("Alarm settings updated: %s", updated.to_dict())
        return replace(updated)

    # Queries

    async def get_alarms(self) -> List[Alarm]:
        return await self.store.load_alarms()

    async def get_alarm(self, alarm_id: str) -> Optional[Alarm]:
        for alarm in await self.store.load_alarms():
            if alarm.id == alarm_id:
                return alarm
        return None

    # Mutations

    async def add(self, alarm_data: Mapping[str, Any]) -> Alarm:
        stamp = self.clock().isoformat()
        payload = {"isEnabled": True, **alarm_data, "id": self.id_factory(), "createdAt": stamp, "updatedAt": stamp}
        alarm = validate_alarm(Alarm.from_dict(payload))
        async with self._alarm_lock(alarm.id):
            async with self._collection_lock:
                alarms = await self.store.load_alarms()
                alarms.append(alarm)
                await self.store.save_alarms(alarms)
            logger.info("Alarm %s added (type=%s, enabled=%s)", alarm.id, alarm.type, alarm.is_enabled)
            if alarm.is_enabled:
                await self.schedule_alarm(alarm)
        return alarm

    async def update(self, alarm_id: str, patch: Mapping[str, Any]) -> Alarm:
        """Merge ``patch`` into the stored alarm and register it again.

        Registrations are cancelled before saving; if the save fails the
        previous registrations are restored and the storage error is raised.
        """
        return await self._update(alarm_id, patch, validate=True)

    async def _update(self, alarm_id: str, patch: Mapping[str, Any], validate: bool) -> Alarm:
        async with self._alarm_lock(alarm_id):
            async with self._collection_lock:
                alarms = await self.store.load_alarms()
                index = _index_of(alarms, alarm_id)
                if index is None:
                    raise AlarmNotFound(alarm_id)
                current = alarms[index]
                updated = current.merged(patch)
                if validate:
                    validate_alarm(updated)
                updated.updated_at = self._timestamp_after(current.updated_at)
                await self.cancel_alarm(alarm_id)
                alarms[index] = updated
                try:
                    await self.store.save_alarms(alarms)
                except StorageUnavailable:
                    if current.is_enabled:
                        await self.schedule_alarm(current)
                    raise
            logger.info("Alarm %s updated (enabled=%s)", alarm_id, updated.is_enabled)
            if updated.is_enabled:
                await self.schedule_alarm(updated)
        return updated

    async def delete(self, alarm_id: str) -> bool:
        async with self._alarm_lock(alarm_id):
            async with self._collection_lock:
                await self.cancel_alarm(alarm_id)
                alarms = await self.store.load_alarms()
                remaining = [a for a in alarms if a.id != alarm_id]
                if len(remaining) == len(alarms):
                    logger.debug("Alarm %s already gone", alarm_id)
                    return True
                await self.store.save_alarms(remaining)
            logger.info("Alarm %s deleted", alarm_id)
        return True

    async def toggle(self, alarm_id: str, is_enabled: bool) -> Optional[Alarm]:
        """Flip the enabled flag without validating the rest of the record."""
        try:
            return await self._update(alarm_id, {"isEnabled": bool(is_enabled)}, validate=False)
        except AlarmNotFound:
            logger.warning("Toggle requested for unknown alarm %s", alarm_id)
            return None

    async def snooze(self, alarm_id: str, minutes: Optional[int] = None) -> Optional[datetime]:
        """Register a one-shot ``alarm_{id}_snooze`` reminder; the stored alarm is left as is.

        Returns the snooze trigger, or None when the registration failed.
        """
        settings = await self.get_settings()
        minutes = minutes or settings.snooze_minutes
        if minutes < 1:
            raise ValueError(f"Snooze minutes must be positive, got {minutes}")
        async with self._alarm_lock(alarm_id):
            alarm = await self.get_alarm(alarm_id)
            if alarm is None:
                raise AlarmNotFound(alarm_id)
            trigger_at = self.clock() + timedelta(minutes=minutes)
            request = NotificationRequest(
                identifier=registration_id(alarm.id, SNOOZE),
                content=self._alarm_content(alarm, settings, snooze=True),
                trigger=trigger_at,
            )
            if not await self._register(request):
                return None
        logger.info("Alarm %s snoozed for %s min until %s", alarm_id, minutes, trigger_at.isoformat())
        return trigger_at

    async def reschedule_all(self) -> int:
        """Drop every registration in the notification service and rebuild from the store.

        Returns how many alarms ended up with at least one registration.
        """
        async with self._collection_lock:
            try:
                await self.notifications.cancel_all()
            except Exception as exc:
                logger.error("Failed to cancel all registrations: %s", exc, exc_info=True)
            alarms = await self.store.load_alarms()
            settings = await self.get_settings()
            scheduled = 0
            for alarm in sorted(alarms, key=lambda a: a.id):
                if alarm.is_enabled and await self.schedule_alarm(alarm, settings):
                    scheduled += 1
        logger.info("Rescheduled %s of %s alarms", scheduled, len(alarms))
        return scheduled

    async def refresh_shift_alarms(self) -> int:
        """Re-derive today's registrations for every enabled shift-linked alarm."""
        alarms = await self.store.load_alarms()
        settings = await self.get_settings()
        scheduled = 0
        for listed in sorted(alarms, key=lambda a: a.id):
            if listed.type != SHIFT_LINKED or not listed.is_enabled:
                continue
            async with self._alarm_lock(listed.id):
                alarm = await self.get_alarm(listed.id)
                if alarm is None or alarm.type != SHIFT_LINKED or not alarm.is_enabled:
                    logger.debug("Alarm %s changed during shift refresh, skipped", listed.id)
                    continue
                for kind in SHIFT_ALARM_KINDS:
                    await self._cancel(registration_id(alarm.id, kind))
                if await self._schedule_shift_alarm(alarm, settings):
                    scheduled += 1
        logger.info("Shift alarms refreshed, %s scheduled", scheduled)
        return scheduled

    # Registration helpers

    async def schedule_alarm(self, alarm: Alarm, settings: Optional[AlarmSettings] = None) -> bool:
        if not alarm.is_enabled:
            return False
        settings = settings or await self.get_settings()
        if alarm.type == SHIFT_LINKED:
            return await self._schedule_shift_alarm(alarm, settings)
        try:
            trigger_at = resolve_trigger(alarm, self.clock())
        except PastTriggerSkipped as skipped:
            logger.info("%s", skipped)
            return False
        except InvalidAlarm as exc:
            logger.warning("Cannot resolve trigger for alarm %s: %s", alarm.id, exc)
            return False
        request = NotificationRequest(
            identifier=registration_id(alarm.id),
            content=self._alarm_content(alarm, settings),
            trigger=trigger_at,
        )
        return await self._register(request)

    async def cancel_alarm(self, alarm_id: str) -> bool:
        results = [await self._cancel(identifier) for identifier in registration_ids(alarm_id)]
        return all(results)

    async def _schedule_shift_alarm(self, alarm: Alarm, settings: AlarmSettings) -> bool:
        if self.shift_lookup is None:
            logger.warning("No shift lookup configured, shift-linked alarm %s not scheduled", alarm.id)
            return False
        try:
            shift = await self.shift_lookup.get_active_shift()
        except AlarmError as exc:
            logger.error("Active shift lookup failed for alarm %s: %s", alarm.id, exc)
            return False
        if shift is None:
            logger.info("No active shift, shift-linked alarm %s not scheduled", alarm.id)
            return False
        registered = []
        for candidate in derive_shift_alarms(shift, alarm, self.clock()):
            request = NotificationRequest(
                identifier=registration_id(alarm.id, candidate.kind),
                content=NotificationContent(
                    title=candidate.title,
                    body=candidate.body,
                    data=dict(candidate.data),
                    sound=_sound(settings),
                    vibrate=settings.vibration_enabled,
                ),
                trigger=candidate.trigger_at,
            )
            registered.append(await self._register(request))
        return any(registered)

    async def _register(self, request: NotificationRequest) -> bool:
        try:
            await self.notifications.schedule(request)
        except Exception as exc:
            failure = exc if isinstance(exc, RegistrationFailed) else RegistrationFailed(request.identifier, str(exc))
            logger.error("%s", failure, exc_info=True)
            return False
        logger.info("Scheduled %s for %s", request.identifier, request.trigger.isoformat())
        return True

    async def _cancel(self, identifier: str) -> bool:
        try:
            await self.notifications.cancel(identifier)
        except Exception as exc:
            logger.error("Failed to cancel %s: %s", identifier, exc, exc_info=True)
            return False
        return True

    def _alarm_content(self, alarm: Alarm, settings: AlarmSettings, snooze: bool = False) -> NotificationContent:
        data = {"type": alarm.type, "alarmId": alarm.id, **alarm.to_dict()}
        if snooze:
            data["isSnooze"] = True
        return NotificationContent(
            title=f"{alarm.title} (Snoozed)" if snooze else alarm.title,
            body=alarm.description or "",
            data=data,
            sound=_sound(settings),
            vibrate=settings.vibration_enabled,
        )

    @asynccontextmanager
    async def _alarm_lock(self, alarm_id: str):
        """Hold the per-alarm lock; the entry is dropped once no task holds or awaits it."""
        lock = self._id_locks.get(alarm_id)
        if lock is None:
            lock = self._id_locks[alarm_id] = asyncio.Lock()
        self._lock_users[alarm_id] = self._lock_users.get(alarm_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[alarm_id] -= 1
            if not self._lock_users[alarm_id]:
                del self._lock_users[alarm_id]
                del self._id_locks[alarm_id]

    def _timestamp_after(self, previous: Optional[str]) -> str:
        now = self.clock()
        try:
            before = datetime.fromisoformat(previous) if previous else None
        except ValueError:
            before = None
        if before is not None:
            if before.tzinfo is None:
                before = before.replace(tzinfo=now.tzinfo)
            if now <= before:
                now = before + timedelta(microseconds=1)
        return now.isoformat()


def _index_of(alarms: List[Alarm], alarm_id: str) -> Optional[int]:
    for index, alarm in enumerate(alarms):
        if alarm.id == alarm_id:
            return index
    return None


def _sound(settings: AlarmSettings) -> Optional[str]:
    return settings.sound_name if settings.sound_enabled else None
