import logging

import pytest
import yaml

from prayer_clock.core.app import PrayerClockApp


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SDL_AUDIODRIVER", "dummy")
    config_file = tmp_path / "config.yaml"
    config_file.write_text(yaml.safe_dump({
        "prayer_times": {"provider": "MANUAL"},
        "cache": {"directory": str(tmp_path / "cache")},
        "database": {"path": str(tmp_path / "clock.db")},
        "api": {"enabled": False},
        "logging": {"level": "DEBUG", "file": str(tmp_path / "clock.log")},
    }))
    root_handlers = list(logging.getLogger().handlers)
    app = PrayerClockApp(config_path=str(config_file), watch_config=False)
    yield app
    app.shutdown()
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    for handler in root_handlers:
        root_logger.addHandler(handler)


def test_prayer_settings_change_invalidates_cache(app):
    assert app.repository.resolve_today().fajr == "05:30"

    new_config = dict(app.config.data)
    new_config["prayer_times"] = {"provider": "MANUAL", "manual_times": {"fajr": "05:10"}}
    app.config.data = new_config
    app.handle_config_change(new_config)
    assert app.repository.resolve_today().fajr == "05:10"


def test_notification_change_updates_volume(app):
    assert app.repository.resolve_today().fajr == "05:30"
    new_config = dict(app.config.data)
    new_config["notifications"] = {"volume": 0.2}
    app.config.data = new_config
    app.handle_config_change(new_config)
    assert app.sink.get_volume() == 0.2
    assert app.repository.resolve_today().fajr == "05:30"


def test_background_tasks_are_registered(app):
    names = set(app.task_manager._registered_tasks)
    assert names == {"prayer_times_cleanup", "prayer_times_prefetch"}
