"""
Widget update scheduler for SteelClock.

Runs each widget's update() on its own thread at the widget's declared
cadence, independently of the render loop.
"""

import logging
import threading
import time
from typing import TYPE_CHECKING, List, Optional, Sequence

from .logs import guarded

if TYPE_CHECKING:
    from ..widgets.base import BaseWidget

log = logging.getLogger(__name__)

JOIN_TIMEOUT = 5.0


class WidgetScheduler:
    """
    Drives widget updates.

    Handles:
    - One daemon thread per widget
    - An immediate update on start, then fixed-rate ticks
    - Logging update errors without stopping the widget's thread
    - Draining all threads, then calling widget stop() on shutdown
    """

    def __init__(self, widgets: Sequence["BaseWidget"]):
        self._widgets: List["BaseWidget"] = list(widgets)
        self._threads: List[threading.Thread] = []
        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def widget_count(self) -> int:
        return len(self._widgets)

    @property
    def widgets(self) -> List["BaseWidget"]:
        return list(self._widgets)

    def start(self) -> None:
        """Start one update thread per widget. No-op when already running."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._cancel.clear()

            for widget in self._widgets:
                thread = threading.Thread(
                    target=self._run_widget,
                    args=(widget,),
                    name=f"steelclock-widget-{widget.name()}",
                    daemon=True,
                )
                self._threads.append(thread)
                thread.start()

        log.info(f"Widget scheduler started ({len(self._widgets)} widget(s))")

    def _update(self, widget: "BaseWidget") -> None:
        try:
            widget.update()
        except Exception as e:
            log.error(f"Widget '{widget.name()}' update error: {e}")

    def _run_widget(self, widget: "BaseWidget") -> None:
        """Update loop for a single widget. Runs in its own thread."""
        with guarded(f"widget update loop for {widget.name()}"):
            interval = widget.update_interval()

            # Initial update so the first frames have fresh data
            self._update(widget)

            next_tick = time.monotonic() + interval
            while True:
                timeout = max(0.0, next_tick - time.monotonic())
                if self._cancel.wait(timeout):
                    break

                self._update(widget)

                next_tick += interval
                now = time.monotonic()
                if next_tick < now:
                    # Fell behind (slow update); skip missed ticks instead of bursting
                    next_tick = now + interval

    def stop(self, timeout: Optional[float] = JOIN_TIMEOUT) -> None:
        """Cancel all update threads, wait for them, then stop the widgets."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._cancel.set()
            threads, self._threads = self._threads, []

        for thread in threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                log.warning(f"Thread '{thread.name}' did not stop within {timeout}s")

        for widget in self._widgets:
            stop = getattr(widget, "stop", None)
            if not callable(stop):
                continue
            try:
                stop()
            except Exception as e:
                log.error(f"Widget '{widget.name()}' stop error: {e}")

        log.info("Widget scheduler stopped")
