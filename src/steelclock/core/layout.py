"""
Layout compositor.

Paints widget images onto the display canvas in ascending z order, with
clipping and per-widget transparency.
"""

import logging
import threading
from typing import TYPE_CHECKING, List, Sequence, Set

from .display import Canvas, Display, as_canvas, draw_sub, new_canvas

if TYPE_CHECKING:
    from ..widgets.base import BaseWidget

log = logging.getLogger(__name__)


class LayoutManager:
    """
    Composes one grayscale canvas per frame.

    Widgets are sorted by z once at construction; ties keep their
    configured order. A configuration change builds a new LayoutManager.
    """

    def __init__(self, display: Display, widgets: Sequence["BaseWidget"]):
        self.display = display
        # sorted() is stable, so equal z keeps insertion order
        self._widgets: List["BaseWidget"] = sorted(widgets, key=lambda w: w.position().z)
        self._canvas = new_canvas(display.width, display.height, display.background)
        self._lock = threading.Lock()
        self._size_warned: Set[str] = set()

    @property
    def widgets(self) -> List["BaseWidget"]:
        """Widgets in render order."""
        return list(self._widgets)

    def composite(self) -> Canvas:
        """
        Render every widget and return a fresh copy of the composed frame.

        A widget that raises, returns the wrong size, or returns None is
        left out of this frame; the others still appear.
        """
        with self._lock:
            canvas = self._canvas
            canvas.fill(self.display.background)

            for widget in self._widgets:
                self._draw_widget(canvas, widget)

            return canvas.copy()

    def _draw_widget(self, canvas: Canvas, widget: "BaseWidget") -> None:
        name = widget.name()
        try:
            image = widget.render()
        except Exception as e:
            log.error(f"Widget '{name}' render error: {e}")
            return

        if image is None:
            return

        try:
            image = as_canvas(image)
        except (TypeError, ValueError) as e:
            log.error(f"Widget '{name}' returned an unusable image: {e}")
            return

        pos = widget.position()
        if image.width != pos.w or image.height != pos.h:
            if name not in self._size_warned:
                self._size_warned.add(name)
                log.warning(
                    f"Widget '{name}' rendered {image.width}x{image.height}, "
                    f"expected {pos.w}x{pos.h}; skipping"
                )
            return

        style = widget.style()
        if style.background == -1:
            transparent = style.transparent_value if style.transparent_value is not None else 0
            draw_sub(canvas, image, pos.x, pos.y, transparent_value=transparent)
        else:
            draw_sub(canvas, image, pos.x, pos.y)
