"""
Base widget class for SteelClock.

All widgets must inherit from BaseWidget and implement update() and render().
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Optional

from ..core.config import PositionConfig, StyleConfig, WidgetConfig
from ..core.display import Canvas, ImageLike, new_canvas

log = logging.getLogger(__name__)

# Public aliases: widgets describe themselves with these
Position = PositionConfig
Style = StyleConfig


class BaseWidget(ABC):
    """
    Base class for all SteelClock widgets.

    A widget produces a w x h image for its rectangle on the display. The
    scheduler calls update() at update_interval() from a dedicated thread;
    the render loop calls render() from another. Both run concurrently, so
    shared state must be guarded with self._lock.

    Lifecycle:
        1. __init__() - Called by the widget factory
        2. update() - Called at start, then every update_interval() seconds
        3. render() - Called every frame; return None to hide the widget
        4. stop() - Called after the scheduler has drained

    Example:
        @register("counter")
        class CounterWidget(BaseWidget):
            def update(self):
                with self._lock:
                    self.count += 1

            def render(self):
                canvas = self.create_canvas()
                with self._lock:
                    canvas.fill_rect(0, 0, self.count % self.width, self.height, 255)
                return canvas
    """

    def __init__(self, config: WidgetConfig):
        self.config = config
        self._id = config.id
        self._position = deepcopy(config.position)
        self._style = deepcopy(config.style)
        self._interval = config.update_interval
        self._auto_hide = config.auto_hide
        self._lock = threading.RLock()
        self._last_trigger: Optional[float] = None

    def name(self) -> str:
        """Stable id for logs."""
        return self._id

    def position(self) -> Position:
        return self._position

    def style(self) -> Style:
        return self._style

    def update_interval(self) -> float:
        """Seconds between update() calls."""
        return self._interval

    @property
    def width(self) -> int:
        return self._position.w

    @property
    def height(self) -> int:
        return self._position.h

    @property
    def properties(self) -> dict:
        return self.config.properties

    def prop(self, key: str, default: Any = None) -> Any:
        """Get a widget-specific property from the config."""
        return self.config.properties.get(key, default)

    @abstractmethod
    def update(self) -> None:
        """
        Refresh widget state.

        Must not block indefinitely. Raise WidgetUpdateError for failures
        the scheduler should log and ride out.
        """

    @abstractmethod
    def render(self) -> Optional[ImageLike]:
        """
        Render the current frame.

        Must return an image of exactly width x height, or None to hide
        the widget this frame.
        """

    def stop(self) -> None:
        """
        Release background resources.

        Override to perform cleanup.
        """

    # Utility methods for widgets

    def background_value(self) -> int:
        """Fill intensity for a fresh canvas; transparent widgets use their key value."""
        if self._style.is_transparent:
            return self._style.transparent_value or 0
        return self._style.background

    def create_canvas(self) -> Canvas:
        """A canvas of the widget's size filled with its background."""
        return new_canvas(self.width, self.height, self.background_value())

    def apply_border(self, canvas: Canvas) -> Canvas:
        """Draw the configured border, if any."""
        if self._style.border >= 0:
            canvas.draw_border(self._style.border)
        return canvas

    def trigger_auto_hide(self) -> None:
        """Mark new content; the widget stays visible for auto_hide.timeout seconds."""
        with self._lock:
            self._last_trigger = time.monotonic()

    def should_hide(self) -> bool:
        """True when auto-hide is on and the last trigger has expired."""
        if not self._auto_hide.enabled:
            return False
        with self._lock:
            if self._last_trigger is None:
                return True
            return time.monotonic() - self._last_trigger > self._auto_hide.timeout

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._id!r})"
