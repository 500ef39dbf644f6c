from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .errors import AlarmError
from .notifications import RECEIVED, RESPONSE, NotificationEvent
from .shifts import SHIFT_ALARM_KINDS
from .storage import ATTENDANCE_LOGS_KEY, NOTES_KEY, KeyValueStore, read_json, write_json

logger = logging.getLogger(__name__)

NOTE = "note"


@dataclass
class RouteResult:
    handled: bool
    action: Optional[str] = None
    record: Optional[dict] = None


class NotificationResponseRouter:
    """Turns notification events back into attendance logs and note updates.

    Taps (``response`` events) are always dispatched. Deliveries
    (``received`` events) are only logged unless ``route_received`` is set,
    which suits hosts where nobody taps the notification.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        clock: Optional[Callable[[], datetime]] = None,
        route_received: bool = False,
    ):
        self.kv = kv
        self.clock = clock or (lambda: datetime.now().astimezone())
        self.route_received = route_received

    async def handle_event(self, event: NotificationEvent) -> RouteResult:
        if event.type == RESPONSE or (event.type == RECEIVED and self.route_received):
            return await self.dispatch(event.payload.get("type"), event.payload)
        logger.info("Notification %s received: %s", event.identifier, event.payload.get("type"))
        return RouteResult(handled=False)

    async def dispatch(self, kind: Optional[str], payload: dict) -> RouteResult:
        if kind in SHIFT_ALARM_KINDS:
            entry = await self.log_attendance(kind, payload.get("shiftId"))
            return RouteResult(handled=True, action="log_attendance", record=entry)
        if kind == NOTE:
            note = await self.mark_note_seen(payload.get("noteId"))
            return RouteResult(handled=note is not None, action="mark_note_seen", record=note)
        logger.debug("Ignoring notification of type %s", kind)
        return RouteResult(handled=False)

    async def log_attendance(self, action: str, shift_id: Optional[str]) -> dict:
        # Append-only: a notification delivered twice is logged twice.
        now = self.clock()
        entry = {
            "type": action,
            "time": now.strftime("%H:%M"),
            "timestamp": now.isoformat(),
            "shiftId": shift_id,
            "automatic": True,
        }
        logs = await read_json(self.kv, ATTENDANCE_LOGS_KEY, [])
        if not isinstance(logs, list):
            logs = []
        logs.append(entry)
        await write_json(self.kv, ATTENDANCE_LOGS_KEY, logs)
        logger.info("Attendance %s logged for shift %s", action, shift_id)
        return entry

    async def mark_note_seen(self, note_id) -> Optional[dict]:
        notes = await read_json(self.kv, NOTES_KEY)
        if not isinstance(notes, list):
            return None
        for index, note in enumerate(notes):
            if isinstance(note, dict) and note.get("id") == note_id:
                notes[index] = {**note, "lastSeen": self.clock().isoformat()}
                await write_json(self.kv, NOTES_KEY, notes)
                return notes[index]
        logger.debug("Note %s not found, nothing to mark", note_id)
        return None

    async def run(self, events: "asyncio.Queue[NotificationEvent]") -> None:
        while True:
            event = await events.get()
            try:
                await self.handle_event(event)
            except AlarmError as exc:
                logger.error("Failed to route notification %s: %s", event.identifier, exc, exc_info=True)
            finally:
                events.task_done()
