"""
Clock widget

Digital clock formatted with strftime.
"""

import logging
import zoneinfo
from datetime import datetime
from typing import Optional

from ..core.config import WidgetConfig
from ..core.display import Canvas
from ..core.errors import ConfigError
from .base import BaseWidget
from .fonts import draw_text, load_font
from .registry import register

log = logging.getLogger(__name__)

DEFAULT_FORMAT = "%H:%M:%S"


@register("clock")
class ClockWidget(BaseWidget):
    """
    Simple digital clock.

    Properties:
        format: strftime pattern (default "%H:%M:%S")
        timezone: IANA zone name, local time if unset
        font / size: font file and point size
        align: {"h": left|center|right, "v": top|center|bottom}
        blink: replace ":" with " " on every other update
    """

    def __init__(self, config: WidgetConfig):
        super().__init__(config)
        self.format = self.prop("format", DEFAULT_FORMAT)
        self.blink = bool(self.prop("blink", False))
        self.color = int(self.prop("color", 255))

        align = self.prop("align", {}) or {}
        self.h_align = align.get("h", "center")
        self.v_align = align.get("v", "center")

        timezone = self.prop("timezone")
        try:
            self.timezone = zoneinfo.ZoneInfo(timezone) if timezone else None
        except (zoneinfo.ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"clock '{self.name()}': unknown timezone '{timezone}'") from e

        self._font = load_font(self.prop("font"), int(self.prop("size", 10)))
        self._text = ""
        self._blink_on = True

    def now(self) -> datetime:
        return datetime.now(self.timezone)

    def update(self) -> None:
        """Recompute the time string."""
        text = self.now().strftime(self.format)
        with self._lock:
            if self.blink:
                self._blink_on = not self._blink_on
                if not self._blink_on:
                    text = text.replace(":", " ")
            self._text = text

    def render(self) -> Optional[Canvas]:
        canvas = self.create_canvas()
        with self._lock:
            text = self._text
        if text:
            draw_text(
                canvas,
                text,
                self._font,
                h_align=self.h_align,
                v_align=self.v_align,
                fill=self.color,
            )
        return self.apply_border(canvas)
