import logging
import os
import re
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from watchdog.events import FileSystemEventHandler, FileModifiedEvent
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

ENV_LINE = re.compile(r'^([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$')

DEFAULT_CONFIG: Dict[str, Any] = {
    "prayer_times": {
        "provider": "BACKEND_API",
        "zone": 1,
        "region": "Colombo",
        "apartment_adjustments": False,
        "manual_times": {
            "fajr": "05:30",
            "sunrise": "06:00",
            "dhuhr": "12:15",
            "asr": "15:30",
            "maghrib": "18:30",
            "isha": "19:45",
        },
        "iqamah_gaps": {"fajr": 20, "dhuhr": 10, "asr": 10, "maghrib": 5, "isha": 10},
        "jumma_night_bayan": {"enabled": False, "minutes": 30},
        "backend_api": {"base_url": "http://127.0.0.1:8000/", "api_key": "${PRAYER_CLOCK_API_KEY}"},
        "regional_api": {"base_url": "https://api.aladhan.com/", "method": 2, "school": 0},
        "retention_days": 30,
    },
    "notifications": {
        "enabled": True,
        "sound_enabled": True,
        "azan_sound_enabled": True,
        "iqamah_sound_enabled": True,
        "sound_type": "COUNTDOWN_TICKING",
        "muted": False,
        "volume": 0.7,
        "clips": {
            "countdown": "~/.prayer_clock/sounds/countdown.mp3",
            "beep": "~/.prayer_clock/sounds/beep.mp3",
        },
    },
    "tasks": {
        "cleanup": {"time": "03:00"},
        "prefetch": {"day": 1, "time": "02:00"},
    },
    "cache": {"directory": "~/.prayer_clock/cache"},
    "database": {"path": "~/.prayer_clock/prayer_clock.db"},
    "api": {"enabled": False, "host": "127.0.0.1", "port": 8765},
    "logging": {"level": "INFO", "file": "~/.prayer_clock/prayer_clock.log"},
}


class ConfigChangeHandler(FileSystemEventHandler):
    def __init__(self, config: "Config"):
        self.config = config
        self.last_modified = 0.0
        self.cooldown = 1.0  # seconds

    def on_modified(self, event):
        if not isinstance(event, FileModifiedEvent):
            return
        current_time = time.time()
        if current_time - self.last_modified < self.cooldown:
            return
        if Path(event.src_path).resolve() == self.config.config_file:
            self.last_modified = current_time
            self.config.reload()


class Config:
    """YAML configuration with .env loading, ${VAR} substitution and hot reload."""

    def __init__(self, config_path: Optional[str] = None, watch: bool = True):
        self.change_callbacks: List[Callable[[Dict[str, Any]], None]] = []
        self._reload_lock = threading.Lock()
        self.observer = None

        if config_path:
            self.config_file = Path(config_path).expanduser().resolve()
        else:
            self.config_file = (Path.cwd() / "config.yaml").resolve()
        self.config_dir = self.config_file.parent
        logger.debug(f"Using config file: {self.config_file}")

        self._load_env_file()
        self._ensure_config_exists()
        self.data: Dict[str, Any] = {}
        self._load_config()

        if watch:
            self.observer = Observer()
            self.observer.schedule(ConfigChangeHandler(self), str(self.config_dir), recursive=False)
            self.observer.start()
            logger.info(f"Watching {self.config_dir} for config changes")

    def register_change_callback(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Register a callback invoked with the new config data after a reload"""
        self.change_callbacks.append(callback)

    def reload(self) -> None:
        """Reload config and notify listeners"""
        if not self._reload_lock.acquire(blocking=False):
            return
        try:
            logger.info("Config file change detected - reloading configuration")
            # wait for the writer to finish
            time.sleep(0.1)
            old_config = self.data
            self._load_config()
            if old_config == self.data:
                logger.debug("Config unchanged after reload")
                return
            self._log_config_changes(old_config, self.data)
            for callback in self.change_callbacks:
                try:
                    callback(self.data)
                except Exception as e:
                    logger.error(f"Error in config change callback: {e}", exc_info=True)
        finally:
            self._reload_lock.release()

    def _log_config_changes(self, old_config: Dict, new_config: Dict) -> None:
        def compare_dict(path: str, dict1: Dict, dict2: Dict) -> None:
            for key in set(dict1.keys()) | set(dict2.keys()):
                current_path = f"{path}.{key}" if path else key
                if key in dict1 and key in dict2:
                    if isinstance(dict1[key], dict) and isinstance(dict2[key], dict):
                        compare_dict(current_path, dict1[key], dict2[key])
                    elif dict1[key] != dict2[key]:
                        logger.info(f"Config changed: {current_path}: {dict1[key]} -> {dict2[key]}")
                elif key in dict1:
                    logger.info(f"Config removed: {current_path}")
                else:
                    logger.info(f"Config added: {current_path}: {dict2[key]}")

        compare_dict("", old_config, new_config)

    def cleanup(self) -> None:
        """Stop the file observer"""
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None

    def _ensure_config_exists(self) -> None:
        if self.config_file.exists():
            return
        self.config_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Creating default config file: {self.config_file}")
        self.config_file.write_text(yaml.safe_dump(DEFAULT_CONFIG, sort_keys=False))

    def _load_env_file(self) -> None:
        """Load KEY=VALUE pairs from the first .env found; existing env vars win"""
        for env_file in (self.config_dir / ".env", Path.cwd() / ".env"):
            if env_file.exists():
                break
        else:
            logger.debug("No .env file found, skipping environment variable loading")
            return

        logger.info(f"Loading environment variables from: {env_file}")
        for line in env_file.read_text().splitlines():
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            match = ENV_LINE.match(line)
            if match:
                key, value = match.groups()
                os.environ.setdefault(key, value.strip('"').strip("'"))

    def _substitute_env_vars(self, data: Any) -> Any:
        """Replace "${VAR}" / "$VAR" string values with the environment value (unset -> None)"""
        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]
        if isinstance(data, str):
            if data.startswith('${') and data.endswith('}'):
                return os.environ.get(data[2:-1])
            if data.startswith('$') and len(data) > 1:
                return os.environ.get(data[1:])
        return data

    def _load_config(self) -> None:
        try:
            with open(self.config_file) as f:
                new_data = yaml.safe_load(f)
            if not isinstance(new_data, dict):
                raise ValueError("Invalid config format: root must be a mapping")
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Error loading config: {e}")
            if self.data:
                logger.info("Keeping previous configuration")
            else:
                logger.info("Using default configuration")
                self.data = self._substitute_env_vars(DEFAULT_CONFIG)
            return

        new_data = self._substitute_env_vars(new_data)
        if "logging" in new_data and new_data["logging"].get("file"):
            new_data["logging"]["file"] = os.path.expanduser(new_data["logging"]["file"])
        self.data = new_data
        logger.debug(f"Loaded config data: {self.data}")

    def section(self, name: str) -> Dict[str, Any]:
        return self.data.get(name) or {}
