from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from dataclasses import replace
from typing import Any, Dict, List, Optional, Protocol

from .errors import InvalidAlarm, StorageUnavailable
from .models import Alarm, AlarmSettings, Shift

logger = logging.getLogger(__name__)

ALARMS_KEY = "alarms"
ALARM_SETTINGS_KEY = "alarm_settings"
SHIFTS_KEY = "shifts"
ACTIVE_SHIFT_KEY = "activeShiftId"
ATTENDANCE_LOGS_KEY = "attendance_logs"
NOTES_KEY = "notes"


class KeyValueStore(Protocol):
    async def get_item(self, key: str) -> Optional[str]: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...


class MemoryKeyValueStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileKeyValueStore:
    """All keys in one JSON object on disk.

    Writes go to a temp file in the same directory and replace the original,
    so a failed write leaves the previous content in place.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def get_item(self, key: str) -> Optional[str]:
        data = await asyncio.to_thread(self._read)
        return data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._update, key, value)

    async def remove_item(self, key: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._update, key, None)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
        if not isinstance(payload, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return payload

    def _update(self, key: str, value: Optional[str]) -> None:
        data = self._read()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise


async def read_raw(kv: KeyValueStore, key: str) -> Optional[str]:
    try:
        return await kv.get_item(key)
    except Exception as exc:
        raise StorageUnavailable(f"Failed to read {key!r}: {exc}") from exc


async def read_json(kv: KeyValueStore, key: str, default: Any = None) -> Any:
    raw = await read_raw(kv, key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise StorageUnavailable(f"Stored value under {key!r} is not valid JSON") from exc


async def write_json(kv: KeyValueStore, key: str, value: Any) -> None:
    serialized = json.dumps(value, ensure_ascii=False)
    try:
        await kv.set_item(key, serialized)
    except Exception as exc:
        raise StorageUnavailable(f"Failed to write {key!r}: {exc}") from exc


class AlarmStore:
    """Whole-collection access to alarms and alarm settings."""

    def __init__(self, kv: KeyValueStore, default_settings: Optional[AlarmSettings] = None):
        self.kv = kv
        self.default_settings = default_settings or AlarmSettings()

    async def load_alarms(self) -> List[Alarm]:
        payload = await read_json(self.kv, ALARMS_KEY, [])
        if not isinstance(payload, list):
            raise StorageUnavailable(f"Stored {ALARMS_KEY!r} is not a list")
        alarms: List[Alarm] = []
        for item in payload:
            try:
                alarms.append(Alarm.from_dict(item))
            except (InvalidAlarm, AttributeError) as exc:
                logger.warning("Skipping alarm item due to parse error: %s", exc)
        return alarms

    async def save_alarms(self, alarms: List[Alarm]) -> None:
        await write_json(self.kv, ALARMS_KEY, [a.to_dict() for a in alarms])

    async def load_settings(self) -> AlarmSettings:
        payload = await read_json(self.kv, ALARM_SETTINGS_KEY)
        if not isinstance(payload, dict):
            return replace(self.default_settings)
        try:
            return AlarmSettings.from_dict(payload, defaults=replace(self.default_settings))
        except ValueError as exc:
            logger.warning("Stored alarm settings are invalid, using defaults: %s", exc)
            return replace(self.default_settings)

    async def save_settings(self, settings: AlarmSettings) -> None:
        await write_json(self.kv, ALARM_SETTINGS_KEY, settings.to_dict())


class StoredShiftLookup:
    """Active shift as kept by the shift management screens."""

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    async def get_active_shift(self) -> Optional[Shift]:
        active_id = await read_raw(self.kv, ACTIVE_SHIFT_KEY)
        if not active_id:
            return None
        with contextlib.suppress(ValueError):
            active_id = str(json.loads(active_id))
        shifts = await read_json(self.kv, SHIFTS_KEY, [])
        for item in shifts if isinstance(shifts, list) else []:
            if isinstance(item, dict) and str(item.get("id")) == active_id:
                return Shift.from_dict(item)
        logger.debug("Active shift %s not found among %s shifts", active_id, len(shifts or []))
        return None
