# clickwise/hotkey.py
import asyncio
import threading
from typing import Callable, Optional

import keyboard  # needs root on Linux, admin on Windows sometimes


class StopSignal:
    """Set once from the hotkey thread, awaited by the capture loop."""

    def __init__(self):
        self._flag = False
        self._lock = threading.Lock()

    @property
    def triggered(self) -> bool:
        with self._lock:
            return self._flag

    def trigger(self):
        with self._lock:
            self._flag = True

    async def wait(self, poll: float = 0.1):
        while not self.triggered:
            await asyncio.sleep(poll)


def attach_hotkey(hotkey: str, signal: StopSignal,
                  on_stop: Optional[Callable[[], None]] = None) -> threading.Thread:
    def _pressed():
        if signal.triggered:
            return
        signal.trigger()
        if on_stop is not None:
            on_stop()

    t = threading.Thread(target=lambda: keyboard.add_hotkey(hotkey, _pressed), daemon=True)
    t.start()
    return t
