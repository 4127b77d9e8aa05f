"""
Frame batching.

Buffers encoded frames and sends them to the gateway N at a time through
/multiple_game_events.
"""

import logging
import threading
from typing import TYPE_CHECKING, Callable, List, Optional

if TYPE_CHECKING:
    from .gateway import GatewayClient

log = logging.getLogger(__name__)


class FrameBatcher:
    """
    Buffers frames and sends them in batches.

    When disabled, add() tells the caller to send directly and never
    buffers. The buffer lock is held only for append and swap; the HTTP
    send happens outside it. A second lock orders the sends themselves so
    batches reach the gateway in the order they were triggered.
    """

    def __init__(
        self,
        enabled: bool,
        batch_size: int,
        sender: "GatewayClient",
        event_name: str,
        on_sent: Optional[Callable[[List[bytes]], None]] = None,
    ):
        if batch_size < 1:
            raise ValueError(f"batch size must be positive, got {batch_size}")
        self._enabled = enabled
        self._batch_size = batch_size
        self._sender = sender
        self._event_name = event_name
        self._on_sent = on_sent

        self._buffer: List[bytes] = []
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def batch_size(self) -> int:
        return self._batch_size

    @property
    def event_name(self) -> str:
        return self._event_name

    @property
    def buffered_count(self) -> int:
        with self._lock:
            return len(self._buffer)

    def add(self, frame: bytes) -> bool:
        """
        Buffer a frame.

        Returns True if batching is disabled and the caller should send the
        frame itself. When the buffer fills, it is flushed before returning;
        a failed flush raises GatewayError.
        """
        if not self._enabled:
            return True

        with self._lock:
            self._buffer.append(bytes(frame))
            should_flush = len(self._buffer) >= self._batch_size

        if should_flush:
            self.flush()
        return False

    def flush(self) -> None:
        """Send everything buffered. Safe when empty or disabled."""
        if not self._enabled:
            return

        with self._send_lock:
            with self._lock:
                if not self._buffer:
                    return
                frames, self._buffer = self._buffer, []

            log.debug(f"Sending batch of {len(frames)} frame(s) to '{self._event_name}'")
            self._sender.send_multiple_screen_data(self._event_name, frames)

            if self._on_sent:
                self._on_sent(frames)

    def reset(self) -> None:
        """Discard buffered frames without sending."""
        with self._lock:
            dropped = len(self._buffer)
            self._buffer = []
        if dropped:
            log.debug(f"Dropped {dropped} buffered frame(s)")
