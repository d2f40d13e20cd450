import hashlib
import logging
import os
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence

import pygame
import requests

from prayer_clock.notifications.sink import VIBRATION_PATTERN, NotificationSink


class AudioNotificationSink(NotificationSink):
    """
    Plays clips through pygame.mixer and keeps the most recent notifications
    in memory for the HTTP API. Clips are local files or URLs downloaded once
    into the cache directory.
    """

    MAX_NOTIFICATIONS = 50

    def __init__(self, clips: Dict[str, str], cache_dir: Optional[str] = None, volume: float = 0.7):
        self.logger = logging.getLogger(self.__class__.__name__)
        try:
            pygame.mixer.init()
            self.audio_available = True
        except pygame.error as e:
            # headless host without an audio device: notifications only
            self.logger.error(f"Audio unavailable, clips will not play: {e}")
            self.audio_available = False
        self.clips = dict(clips)
        self.cache_dir = Path(os.path.expanduser(cache_dir or "~/.prayer_clock/audio"))
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.notifications: Deque[Dict[str, Any]] = deque(maxlen=self.MAX_NOTIFICATIONS)
        self._cancel_actions: Dict[int, Callable[[], None]] = {}
        self._next_id = 1
        self._lock = threading.Lock()
        self._wake_held = False
        self.set_volume(volume)

    def get_volume(self) -> float:
        return self.volume

    def set_volume(self, volume: float) -> None:
        self.volume = max(0.0, min(1.0, volume))
        if self.audio_available:
            pygame.mixer.music.set_volume(self.volume)

    def is_muted(self) -> bool:
        return self.volume <= 0.0

    def is_playing(self) -> bool:
        return self.audio_available and pygame.mixer.music.get_busy()

    def _download(self, url: str) -> Optional[Path]:
        target = self.cache_dir / f"{hashlib.md5(url.encode()).hexdigest()}{Path(url).suffix or '.mp3'}"
        if target.exists():
            return target
        self.logger.info(f"Downloading clip from {url} to {target}")
        try:
            response = requests.get(url, stream=True, timeout=30)
            response.raise_for_status()
            with open(target, "wb") as f:
                for chunk in response.iter_content(chunk_size=8192):
                    f.write(chunk)
        except (requests.RequestException, OSError) as e:
            self.logger.error(f"Error downloading clip {url}: {e}")
            return None
        return target

    def _resolve_clip(self, clip_id: str) -> Optional[Path]:
        source = self.clips.get(clip_id, clip_id)
        if source.startswith(("http://", "https://")):
            return self._download(source)
        path = Path(os.path.expanduser(source))
        return path if path.exists() else None

    def play_clip(self, clip_id: str) -> bool:
        if not self.audio_available:
            self.logger.warning(f"Audio unavailable, not playing {clip_id}")
            return False
        clip = self._resolve_clip(clip_id)
        if clip is None:
            self.logger.error(f"No playable file for clip {clip_id!r}")
            return False
        try:
            pygame.mixer.music.load(str(clip))
            pygame.mixer.music.play()
        except pygame.error as e:
            self.logger.error(f"Error playing clip {clip}: {e}")
            return False
        self.logger.info(f"Playing clip {clip_id} ({clip})")
        return True

    def stop_all(self) -> None:
        if self.audio_available and pygame.mixer.get_init() and pygame.mixer.music.get_busy():
            pygame.mixer.music.stop()
            self.logger.info("Playback stopped")

    def vibrate(self, pattern: Sequence[int] = VIBRATION_PATTERN) -> None:
        # no vibration motor on a display host; record it so it is visible in logs
        self.logger.info(f"Silent mode: vibration pattern {list(pattern)}")

    def show_notification(self, title: str, body: str, cancel_action: Optional[Callable[[], None]] = None) -> None:
        with self._lock:
            notification_id = self._next_id
            self._next_id += 1
            if cancel_action is not None:
                self._cancel_actions[notification_id] = cancel_action
            self.notifications.append({
                "id": notification_id,
                "title": title,
                "body": body,
                "created_at": datetime.now(),
                "cancellable": cancel_action is not None,
            })
            oldest = self.notifications[0]["id"]
            self._cancel_actions = {k: v for k, v in self._cancel_actions.items() if k >= oldest}
        self.logger.info(f"Notification: {title} - {body}")

    def cancel(self, notification_id: int) -> bool:
        """Run a notification's cancel action (e.g. stop the countdown clip)"""
        with self._lock:
            action = self._cancel_actions.pop(notification_id, None)
        if action is None:
            return False
        action()
        return True

    def recent_notifications(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self.notifications)

    def acquire_wake(self) -> None:
        if not self._wake_held:
            self._wake_held = True
            self.logger.debug("Wake resource acquired")

    def release_wake(self) -> None:
        if self._wake_held:
            self._wake_held = False
            self.logger.debug("Wake resource released")

    def close(self) -> None:
        self.stop_all()
        self.release_wake()
        if pygame.mixer.get_init():
            pygame.mixer.quit()
