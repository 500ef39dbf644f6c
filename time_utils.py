from __future__ import annotations

import logging
import os
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def local_timezone() -> tzinfo:
    """System timezone, as a named ZoneInfo where one can be found."""
    for key in (os.environ.get("TZ", "").lstrip(":"), _localtime_key()):
        if not key:
            continue
        try:
            return ZoneInfo(key)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            logger.debug("Local timezone key %s not usable: %s", key, exc)
    logger.warning("No named local timezone found, using a fixed UTC offset; set TIMEZONE to follow DST")
    return datetime.now().astimezone().tzinfo


def _localtime_key() -> Optional[str]:
    try:
        target = Path("/etc/localtime").resolve(strict=True)
    except OSError:
        return None
    parts = target.parts
    if "zoneinfo" not in parts:
        return None
    return "/".join(parts[parts.index("zoneinfo") + 1 :]) or None


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name:
        return local_timezone()
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        logger.warning("Failed to load timezone %s via zoneinfo (%s), using system local time", name, exc)
    return local_timezone()


def now_in_tz(tz: Optional[tzinfo]) -> datetime:
    if tz:
        return datetime.now(tz)
    return datetime.now().astimezone()


def format_tz_offset(tz: tzinfo) -> str:
    sample = now_in_tz(tz)
    offset = tz.utcoffset(sample) if hasattr(tz, "utcoffset") else None
    if offset is None:
        return ""
    total_minutes = int(offset.total_seconds() // 60)
    sign = "+" if total_minutes >= 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{sign}{hours:02d}:{minutes:02d}"
