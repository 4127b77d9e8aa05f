"""
Frame deduplication.

Remembers the last frame bytes sent per resolution key so the render loop
can skip sends that would not change the display.
"""

import logging
import threading
from typing import Dict, Mapping

log = logging.getLogger(__name__)


class FrameDeduplicator:
    """
    Equality test of a candidate frame map against the last sent one.

    Single writer (the render loop); readers are allowed from any thread.
    """

    def __init__(self, enabled: bool = True):
        self._enabled = enabled
        self._last: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def has_changed(self, frames: Mapping[str, bytes]) -> bool:
        """True if any frame differs from the stored one, or if disabled."""
        if not self._enabled:
            return True

        with self._lock:
            if not self._last:
                return True
            for key, data in frames.items():
                previous = self._last.get(key)
                if previous is None or previous != data:
                    return True
            return False

    def update(self, frames: Mapping[str, bytes]) -> None:
        """Store copies of the given frames as the last sent state."""
        if not self._enabled:
            return

        # bytes() copies bytearray/memoryview inputs so callers may reuse buffers
        snapshot = {key: bytes(data) for key, data in frames.items()}
        with self._lock:
            self._last.update(snapshot)

    def reset(self) -> None:
        with self._lock:
            self._last.clear()

    def last_frame(self, key: str):
        """The last sent bytes for key, or None."""
        with self._lock:
            return self._last.get(key)
