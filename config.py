import logging
import logging.handlers
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _get_env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip() in {"1", "true", "True", "yes", "YES", "y"}


def _get_env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or val == "":
        return default
    try:
        return int(val)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


@dataclass
class Config:
    storage_path: Path
    timezone: Optional[str]
    debug: bool
    log_level: str
    log_dir: Path
    alarm_check_interval_ms: int
    alarm_default_snooze_min: int
    shift_refresh_check_min: int
    route_received_notifications: bool


def load_config(env_path: Optional[Path] = None) -> Config:
    if env_path is None:
        env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    debug = _get_env_bool("DEBUG", False)
    log_level = os.getenv("LOG_LEVEL", "DEBUG" if debug else "INFO").upper()
    alarm_default_snooze_min = _get_env_int("ALARM_DEFAULT_SNOOZE_MIN", 5)
    if alarm_default_snooze_min < 1:
        raise ValueError("ALARM_DEFAULT_SNOOZE_MIN must be at least 1")

    return Config(
        storage_path=Path(os.getenv("STORAGE_PATH", "data/storage.json")),
        timezone=os.getenv("TIMEZONE") or None,
        debug=debug,
        log_level=log_level,
        log_dir=Path(os.getenv("LOG_DIR", "logs")),
        alarm_check_interval_ms=_get_env_int("ALARM_CHECK_INTERVAL_MS", 800),
        alarm_default_snooze_min=alarm_default_snooze_min,
        shift_refresh_check_min=max(1, _get_env_int("SHIFT_REFRESH_CHECK_MIN", 10)),
        route_received_notifications=_get_env_bool("ROUTE_RECEIVED_NOTIFICATIONS", False),
    )


def setup_logging(log_level: str = "INFO", logs_dir: Path = Path("logs")) -> None:
    logs_dir.mkdir(parents=True, exist_ok=True)

    log_path = logs_dir / "shift_tracker.log"
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        handlers=[file_handler, console_handler],
    )
