from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

RECEIVED = "received"
RESPONSE = "response"


@dataclass
class NotificationContent:
    title: str
    body: str = ""
    data: dict = field(default_factory=dict)
    sound: Optional[str] = "default"
    vibrate: bool = True
    priority: str = "high"


@dataclass
class NotificationRequest:
    identifier: str
    content: NotificationContent
    trigger: datetime


@dataclass
class NotificationEvent:
    type: str
    payload: dict
    identifier: Optional[str] = None


class NotificationService(Protocol):
    """Device-level scheduler. Cancelling an unknown identifier must be a no-op."""

    async def schedule(self, request: NotificationRequest) -> str: ...

    async def cancel(self, identifier: str) -> None: ...

    async def cancel_all(self) -> None: ...


class LocalNotificationService:
    """In-process scheduler that fires registrations from a polling loop.

    Due registrations are removed and pushed onto ``events`` as ``received``
    events. ``respond`` plays the part of the user tapping a notification.
    Scheduling an identifier that is already registered replaces it.
    """

    def __init__(
        self,
        events: Optional["asyncio.Queue[NotificationEvent]"] = None,
        check_interval: float = 0.8,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.events: "asyncio.Queue[NotificationEvent]" = events if events is not None else asyncio.Queue()
        self.check_interval = max(0.2, check_interval)
        self.clock = clock or (lambda: datetime.now().astimezone())
        self._pending: Dict[str, NotificationRequest] = {}
        self._task: Optional[asyncio.Task] = None

    async def schedule(self, request: NotificationRequest) -> str:
        request.trigger = _ensure_tz(request.trigger, self.clock().tzinfo)
        self._pending[request.identifier] = request
        logger.debug("Registered %s at %s", request.identifier, request.trigger.isoformat())
        return request.identifier

    async def cancel(self, identifier: str) -> None:
        if self._pending.pop(identifier, None) is not None:
            logger.debug("Cancelled %s", identifier)

    async def cancel_all(self) -> None:
        logger.debug("Cancelling %s registrations", len(self._pending))
        self._pending.clear()

    def pending(self) -> List[NotificationRequest]:
        return sorted(self._pending.values(), key=lambda r: r.trigger)

    def get(self, identifier: str) -> Optional[NotificationRequest]:
        return self._pending.get(identifier)

    def start(self) -> None:
        self._task = asyncio.create_task(self._loop(), name="notification-scheduler")

    async def shutdown(self) -> None:
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

    async def fire_due(self) -> List[NotificationRequest]:
        now = self.clock()
        due = [r for r in self.pending() if r.trigger <= now]
        for request in due:
            self._pending.pop(request.identifier, None)
            logger.info("Notification %s fired (%s)", request.identifier, request.content.title)
            await self.events.put(NotificationEvent(RECEIVED, dict(request.content.data), request.identifier))
        return due

    async def respond(self, identifier: str, payload: dict) -> None:
        await self.events.put(NotificationEvent(RESPONSE, dict(payload), identifier))

    async def _loop(self) -> None:
        while True:
            await self.fire_due()
            await asyncio.sleep(self.check_interval)


def _ensure_tz(dt: datetime, tzinfo) -> datetime:
    if dt.tzinfo:
        return dt
    return dt.replace(tzinfo=tzinfo)
