from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence

VIBRATION_PATTERN = (0, 500, 200, 500, 200, 500)  # wait, vibrate, pause, vibrate...

COUNTDOWN_CLIP = "countdown"
BEEP_CLIP = "beep"


class NotificationSink(ABC):
    """Where the scheduler sends audible and visible prayer events"""

    @abstractmethod
    def show_notification(self, title: str, body: str, cancel_action: Optional[Callable[[], None]] = None) -> None:
        pass

    @abstractmethod
    def play_clip(self, clip_id: str) -> bool:
        """Start playing a clip; returns False if it could not be played"""
        pass

    @abstractmethod
    def vibrate(self, pattern: Sequence[int] = VIBRATION_PATTERN) -> None:
        pass

    @abstractmethod
    def is_playing(self) -> bool:
        pass

    @abstractmethod
    def is_muted(self) -> bool:
        pass

    @abstractmethod
    def stop_all(self) -> None:
        """Stop any playback"""
        pass

    def acquire_wake(self) -> None:
        """Keep the display/host awake; no-op unless the platform supports it"""

    def release_wake(self) -> None:
        pass
