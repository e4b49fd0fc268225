"""
Device notifications (haptics, audio cues, wake lock).

The session calls these at fixed transition points. They are one-way and
non-critical: a failing notifier is logged and otherwise ignored.
"""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class DeviceNotifier(Protocol):
    def timer_near_zero(self, seconds_left: int) -> None:
        ...

    def timer_complete(self) -> None:
        ...

    def session_saved(self) -> None:
        ...


class NullDeviceNotifier:
    def timer_near_zero(self, seconds_left: int) -> None:
        pass

    def timer_complete(self) -> None:
        pass

    def session_saved(self) -> None:
        pass


def notify(devices: DeviceNotifier | None, event: str, *args) -> None:
    if devices is None:
        return
    try:
        getattr(devices, event)(*args)
    except Exception as e:
        logger.debug("Device notification %s failed: %s", event, e)
