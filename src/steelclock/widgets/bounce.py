"""
Bouncing Logo Widget

A nostalgic bouncing DVD logo animation.
"""

from typing import Optional

import numpy as np

from ..core.config import WidgetConfig
from ..core.display import Canvas, draw_sub
from .base import BaseWidget
from .registry import register


@register("bounce")
class BounceWidget(BaseWidget):
    """Bouncing DVD logo animation."""

    BITMAP = [
        [1, 1, 1, 1, 1, 1, 0, 0, 0, 1, 1, 1, 1, 1, 0],
        [0, 0, 1, 1, 0, 1, 0, 0, 0, 1, 0, 0, 0, 1, 1],
        [1, 0, 0, 1, 0, 1, 1, 0, 1, 1, 0, 1, 0, 0, 1],
        [1, 0, 1, 1, 0, 0, 1, 0, 1, 0, 0, 1, 0, 1, 1],
        [1, 1, 1, 0, 0, 0, 1, 1, 1, 0, 0, 1, 1, 1, 0],
        [0, 0, 0, 0, 0, 0, 0, 1, 0, 0, 0, 0, 0, 0, 0],
        [0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0],
        [1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1],
        [0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0],
    ]

    def __init__(self, config: WidgetConfig):
        super().__init__(config)

        color = int(self.prop("color", 255))
        self._logo = Canvas((np.array(self.BITMAP, dtype=np.uint8) * color).astype(np.uint8))

        # Logo dimensions
        self.logo_width = self._logo.width
        self.logo_height = self._logo.height

        # Position
        self.x = int(self.prop("x", 0))
        self.y = int(self.prop("y", 0))
        self.speed = max(1, int(self.prop("speed", 1)))

        # Direction (True = positive, False = negative)
        self.dx = True
        self.dy = True

        # Bounds
        self.x_bound = max(0, self.width - self.logo_width)
        self.y_bound = max(0, self.height - self.logo_height)

    @staticmethod
    def _step(pos: int, forward: bool, bound: int, speed: int):
        """Advance one axis, reversing at the edges."""
        if forward:
            pos += speed
            if pos >= bound:
                return bound, False
        else:
            pos -= speed
            if pos <= 0:
                return 0, True
        return pos, forward

    def update(self) -> None:
        """Update logo position and handle bouncing."""
        with self._lock:
            self.x, self.dx = self._step(self.x, self.dx, self.x_bound, self.speed)
            self.y, self.dy = self._step(self.y, self.dy, self.y_bound, self.speed)

    def render(self) -> Optional[Canvas]:
        """Render the logo at its current position."""
        canvas = self.create_canvas()
        with self._lock:
            x, y = self.x, self.y
        draw_sub(canvas, self._logo, x, y, transparent_value=0)
        return self.apply_border(canvas)
