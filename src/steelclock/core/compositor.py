"""
SteelClock Compositor - the render and heartbeat loops.

Every refresh tick the layout is composed, encoded, checked against the
last sent frame and pushed to the gateway, either directly or through the
batcher. A separate heartbeat job keeps the game registration alive.
"""

import logging
import threading
import time
from typing import TYPE_CHECKING, Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .batcher import FrameBatcher
from .dedup import FrameDeduplicator
from .display import Display, encode
from .errors import GatewayError, SteelClockError
from .logs import guarded, write_panic

if TYPE_CHECKING:
    from .config import Config
    from .gateway import GatewayClient
    from .layout import LayoutManager
    from .scheduler import WidgetScheduler

log = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 10.0
HEARTBEAT_JOB_ID = "steelclock-heartbeat"
JOIN_TIMEOUT = 5.0
MAX_SEND_FAILURES = 10

FrameListener = Callable[[bytes], None]
FailureCallback = Callable[[], None]


class Compositor:
    """
    Owns the render loop and the heartbeat for one session.

    Responsibilities:
    - Start and stop the widget scheduler
    - Compose, encode and send frames every refresh interval
    - Skip frames identical to the last one sent
    - Send a heartbeat every heartbeat_interval seconds
    - Report a gateway that keeps rejecting frames through on_failure
    """

    def __init__(
        self,
        client: "GatewayClient",
        layout: "LayoutManager",
        scheduler: "WidgetScheduler",
        config: "Config",
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        on_failure: Optional[FailureCallback] = None,
        max_failures: int = MAX_SEND_FAILURES,
    ):
        self.client = client
        self.layout = layout
        self.scheduler = scheduler
        self.display: Display = layout.display
        self.event_name = config.event_name
        self.refresh_interval = config.refresh_rate_ms / 1000.0
        self.heartbeat_interval = heartbeat_interval
        self.on_failure = on_failure
        self.max_failures = max(1, max_failures)
        self._key = self.display.resolution_key

        self.dedup = FrameDeduplicator(enabled=config.frame_dedup_enabled)

        batching = config.batch.enabled
        if batching:
            if client.supports_multiple_events():
                log.info(f"Event batching enabled with batch size {config.batch.size}")
            else:
                log.info("Event batching disabled: not supported by the gateway")
                batching = False
        self.batcher = FrameBatcher(
            batching,
            config.batch.size,
            client,
            config.batch_event_name,
            on_sent=self._on_batch_sent,
        )

        # Runtime state
        self._running = False
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._render_thread: Optional[threading.Thread] = None
        self._heartbeat: Optional[BackgroundScheduler] = None
        self._failures = 0
        self._failure_reported = False
        self._listeners: List[FrameListener] = []
        self._listeners_lock = threading.Lock()

        self.frames_sent = 0
        self.last_frame: Optional[bytes] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def add_frame_listener(self, callback: FrameListener) -> None:
        """Register callback(frame) for every frame the gateway accepted."""
        with self._listeners_lock:
            self._listeners.append(callback)

    def remove_frame_listener(self, callback: FrameListener) -> None:
        with self._listeners_lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _notify(self, frame: bytes) -> None:
        self.frames_sent += 1
        self.last_frame = frame

        with self._listeners_lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(frame)
            except Exception as e:
                log.warning(f"Frame listener error: {e}")

    def _on_batch_sent(self, frames: List[bytes]) -> None:
        last = frames[-1]
        self.dedup.update({self._key: last})
        self._notify(last)

    def render_frame(self) -> bool:
        """
        Run one compose -> encode -> dedup -> send cycle.

        Returns True if a frame was sent or buffered. Gateway and encoding
        failures propagate; the deduplicator is only updated once the
        gateway has accepted the frame.
        """
        canvas = self.layout.composite()
        frame = encode(canvas, self.display)
        frames = {self._key: frame}

        if not self.dedup.has_changed(frames):
            return False

        if self.batcher.enabled:
            # Unchanged frames are buffered too so a static display still fills the batch
            self.batcher.add(frame)
            return True

        self.client.send_screen_data(self.event_name, frame)
        self.dedup.update(frames)
        self._notify(frame)
        return True

    def _record_failure(self) -> None:
        """Count a rejected send; report once after max_failures in a row."""
        self._failures += 1
        if self._failures < self.max_failures or self._failure_reported:
            return

        self._failure_reported = True
        log.error(f"Gateway rejected {self._failures} frames in a row")
        if self.on_failure is None:
            return
        try:
            self.on_failure()
        except Exception as e:
            log.error(f"Backend failure handler error: {e}")

    def _render_loop(self) -> None:
        """Render loop. Runs in a dedicated thread until cancelled."""
        log.info("Render loop started")

        with guarded("render loop"):
            next_tick = time.monotonic() + self.refresh_interval
            while not self._cancel.wait(max(0.0, next_tick - time.monotonic())):
                try:
                    self.render_frame()
                except GatewayError as e:
                    log.error(f"Render error: {e}")
                    self._record_failure()
                except SteelClockError as e:
                    log.error(f"Render error: {e}")
                else:
                    self._failures = 0

                next_tick += self.refresh_interval
                now = time.monotonic()
                if next_tick < now:
                    next_tick = now + self.refresh_interval

        log.info("Render loop stopped")

    def _heartbeat_tick(self) -> None:
        """Heartbeat job body. A crash removes the job for the rest of the session."""
        try:
            self.client.send_heartbeat()
        except SteelClockError as e:
            log.warning(f"Heartbeat error: {e}")
        except Exception as e:
            write_panic("heartbeat", e)
            if self._heartbeat is not None:
                self._heartbeat.remove_job(HEARTBEAT_JOB_ID)

    def start(self) -> None:
        """Start widget updates, the render thread and the heartbeat job."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._cancel.clear()

        log.info("Compositor starting...")

        self.scheduler.start()

        self._render_thread = threading.Thread(
            target=self._render_loop,
            name="steelclock-render",
            daemon=True,
        )
        self._render_thread.start()

        self._heartbeat = BackgroundScheduler(daemon=True)
        self._heartbeat.add_job(
            self._heartbeat_tick,
            "interval",
            seconds=self.heartbeat_interval,
            id=HEARTBEAT_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._heartbeat.start()

        log.info(f"Compositor started (refresh {self.refresh_interval * 1000:.0f} ms)")

    def stop(self, flush_on_stop: bool = False) -> None:
        """
        Stop the render and heartbeat loops, then the widget scheduler.

        Buffered batch frames are dropped unless flush_on_stop is set.
        """
        with self._lock:
            if not self._running:
                return
            self._running = False

        log.info("Compositor stopping...")
        self._cancel.set()

        if self._render_thread and self._render_thread.is_alive():
            self._render_thread.join(timeout=JOIN_TIMEOUT)
            if self._render_thread.is_alive():
                log.warning("Render thread did not stop in time")
        self._render_thread = None

        if self._heartbeat is not None:
            self._heartbeat.shutdown(wait=True)
            self._heartbeat = None

        if flush_on_stop:
            try:
                self.batcher.flush()
            except SteelClockError as e:
                log.error(f"Error flushing batch on stop: {e}")
        else:
            self.batcher.reset()

        self.scheduler.stop()
        log.info("Compositor stopped")
