from pathlib import Path

import pytest

from config import load_config

_VARS = (
    "STORAGE_PATH",
    "TIMEZONE",
    "DEBUG",
    "LOG_LEVEL",
    "ALARM_DEFAULT_SNOOZE_MIN",
    "SHIFT_REFRESH_CHECK_MIN",
    "ROUTE_RECEIVED_NOTIFICATIONS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults(tmp_path):
    config = load_config(tmp_path / "missing.env")
    assert config.storage_path == Path("data/storage.json")
    assert config.timezone is None
    assert config.log_level == "INFO"
    assert config.alarm_default_snooze_min == 5
    assert config.route_received_notifications is False


def test_values_from_env_file(tmp_path, monkeypatch):
    env = tmp_path / ".env"
    env.write_text(
        "STORAGE_PATH=/var/lib/shifts.json\nTIMEZONE=Asia/Ho_Chi_Minh\nALARM_DEFAULT_SNOOZE_MIN=9\n"
        "ROUTE_RECEIVED_NOTIFICATIONS=true\nDEBUG=1\n",
        encoding="utf-8",
    )
    config = load_config(env)
    assert config.storage_path == Path("/var/lib/shifts.json")
    assert config.timezone == "Asia/Ho_Chi_Minh"
    assert config.alarm_default_snooze_min == 9
    assert config.route_received_notifications is True
    assert config.log_level == "DEBUG"


def test_bad_integer(tmp_path, monkeypatch):
    monkeypatch.setenv("ALARM_DEFAULT_SNOOZE_MIN", "five")
    with pytest.raises(ValueError):
        load_config(tmp_path / "missing.env")
