import asyncio
import json
from datetime import datetime, timezone

import pytest

from shift_alarms.notifications import (
    RECEIVED,
    RESPONSE,
    LocalNotificationService,
    NotificationContent,
    NotificationEvent,
    NotificationRequest,
)
from shift_alarms.response_router import NotificationResponseRouter
from shift_alarms.storage import MemoryKeyValueStore


def _now() -> datetime:
    return datetime(2025, 1, 6, 8, 2, tzinfo=timezone.utc)


async def _logs(kv):
    return json.loads(await kv.get_item("attendance_logs") or "[]")


@pytest.mark.asyncio
async def test_check_in_tap_logs_attendance():
    kv = MemoryKeyValueStore()
    router = NotificationResponseRouter(kv, clock=_now)

    result = await router.handle_event(NotificationEvent(RESPONSE, {"type": "check_in", "shiftId": "s1"}))

    assert result.handled
    assert result.action == "log_attendance"
    assert await _logs(kv) == [
        {"type": "check_in", "time": "08:02", "timestamp": _now().isoformat(), "shiftId": "s1", "automatic": True}
    ]


@pytest.mark.asyncio
async def test_duplicate_taps_are_logged_twice():
    kv = MemoryKeyValueStore()
    router = NotificationResponseRouter(kv, clock=_now)
    event = NotificationEvent(RESPONSE, {"type": "departure", "shiftId": "s1"})
    await router.handle_event(event)
    await router.handle_event(event)
    assert [entry["type"] for entry in await _logs(kv)] == ["departure", "departure"]


@pytest.mark.asyncio
async def test_note_tap_marks_note_seen():
    notes = [{"id": "n1", "text": "Bring badge"}, {"id": "n2", "text": "Call"}]
    kv = MemoryKeyValueStore({"notes": json.dumps(notes)})
    router = NotificationResponseRouter(kv, clock=_now)

    result = await router.dispatch("note", {"noteId": "n2"})

    assert result.handled
    stored = json.loads(await kv.get_item("notes"))
    assert stored[1] == {"id": "n2", "text": "Call", "lastSeen": _now().isoformat()}
    assert "lastSeen" not in stored[0]


@pytest.mark.asyncio
async def test_unknown_note_is_noop():
    kv = MemoryKeyValueStore({"notes": json.dumps([{"id": "n1"}])})
    router = NotificationResponseRouter(kv, clock=_now)
    result = await router.dispatch("note", {"noteId": "zzz"})
    assert not result.handled
    assert json.loads(await kv.get_item("notes")) == [{"id": "n1"}]


@pytest.mark.asyncio
async def test_unknown_type_is_ignored():
    kv = MemoryKeyValueStore()
    router = NotificationResponseRouter(kv, clock=_now)
    result = await router.dispatch("recurring", {"alarmId": "al_1"})
    assert not result.handled
    assert await kv.get_item("attendance_logs") is None


@pytest.mark.asyncio
async def test_received_events_only_routed_when_enabled():
    kv = MemoryKeyValueStore()
    event = NotificationEvent(RECEIVED, {"type": "check_out", "shiftId": "s1"})

    assert not (await NotificationResponseRouter(kv, clock=_now).handle_event(event)).handled
    assert await _logs(kv) == []

    assert (await NotificationResponseRouter(kv, clock=_now, route_received=True).handle_event(event)).handled
    assert len(await _logs(kv)) == 1


@pytest.mark.asyncio
async def test_run_consumes_fired_notifications():
    kv = MemoryKeyValueStore()
    clock_now = [datetime(2025, 1, 6, 7, 0, tzinfo=timezone.utc)]
    service = LocalNotificationService(clock=lambda: clock_now[0])
    router = NotificationResponseRouter(kv, clock=_now, route_received=True)
    await service.schedule(
        NotificationRequest(
            "alarm_al_1_check_in",
            NotificationContent(title="Time to Check In", data={"type": "check_in", "shiftId": "s1"}),
            datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc),
        )
    )
    assert await service.fire_due() == []

    clock_now[0] = datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc)
    assert len(await service.fire_due()) == 1
    assert service.pending() == []

    consumer = asyncio.create_task(router.run(service.events))
    await asyncio.wait_for(service.events.join(), timeout=1)
    consumer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await consumer

    assert [entry["type"] for entry in await _logs(kv)] == ["check_in"]
