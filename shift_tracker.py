import asyncio
import contextlib
import logging
import signal
from typing import List

from config import Config, load_config, setup_logging
from shift_alarms.errors import AlarmError
from shift_alarms.models import AlarmSettings
from shift_alarms.notifications import LocalNotificationService, NotificationEvent
from shift_alarms.response_router import NotificationResponseRouter
from shift_alarms.scheduler import AlarmScheduler
from shift_alarms.storage import AlarmStore, JsonFileKeyValueStore, StoredShiftLookup
from time_utils import format_tz_offset, now_in_tz, resolve_timezone

logger = logging.getLogger("shift_tracker")


class TrackerRuntime:
    def __init__(self, config: Config):
        self.config = config
        self.tzinfo = resolve_timezone(config.timezone)
        self.kv = JsonFileKeyValueStore(config.storage_path)
        self.events: "asyncio.Queue[NotificationEvent]" = asyncio.Queue()
        self.notifications = LocalNotificationService(
            self.events,
            check_interval=config.alarm_check_interval_ms / 1000.0,
            clock=self.now,
        )
        self.scheduler = AlarmScheduler(
            store=AlarmStore(self.kv, AlarmSettings(snooze_minutes=config.alarm_default_snooze_min)),
            notifications=self.notifications,
            shift_lookup=StoredShiftLookup(self.kv),
            clock=self.now,
            timezone=self.tzinfo,
        )
        self.router = NotificationResponseRouter(
            self.kv,
            clock=self.now,
            route_received=config.route_received_notifications,
        )
        self._tasks: List[asyncio.Task] = []

    def now(self):
        return now_in_tz(self.tzinfo)

    async def start(self) -> None:
        await self.scheduler.start()
        scheduled = await self.scheduler.reschedule_all()
        logger.info("%s alarms registered at startup", scheduled)
        self.notifications.start()
        self._tasks = [
            asyncio.create_task(self.router.run(self.events), name="notification-router"),
            asyncio.create_task(self._shift_refresh_loop(), name="shift-refresh"),
        ]

    async def shutdown(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.notifications.shutdown()

    async def _shift_refresh_loop(self) -> None:
        # Shift alarms only cover the current day, so derive them again once the date changes.
        last_day = self.now().date()
        while True:
            await asyncio.sleep(self.config.shift_refresh_check_min * 60)
            today = self.now().date()
            if today == last_day:
                continue
            try:
                await self.scheduler.refresh_shift_alarms()
                last_day = today
            except AlarmError as exc:
                logger.error("Shift alarm refresh failed: %s", exc)


async def run(config: Config) -> None:
    runtime = TrackerRuntime(config)
    await runtime.start()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):  # pragma: no cover - Windows event loop
            loop.add_signal_handler(sig, stop.set)
    try:
        await stop.wait()
    finally:
        await runtime.shutdown()


def main() -> None:
    config = load_config()
    setup_logging(config.log_level, config.log_dir)
    tzinfo = resolve_timezone(config.timezone)
    logger.info("Starting shift tracker (storage=%s, utc offset %s)", config.storage_path, format_tz_offset(tzinfo))
    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    logger.info("Shift tracker stopped")


if __name__ == "__main__":
    main()
