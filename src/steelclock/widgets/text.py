"""
Text widget

Static label, optionally auto-hidden after a timeout.
"""

from typing import Optional

from ..core.config import WidgetConfig
from ..core.display import Canvas
from .base import BaseWidget
from .fonts import draw_text, load_font
from .registry import register


@register("text")
class TextWidget(BaseWidget):
    """Draws a fixed string. Call set_text() to change it at runtime."""

    def __init__(self, config: WidgetConfig):
        super().__init__(config)
        self._text = str(self.prop("text", ""))
        self.color = int(self.prop("color", 255))

        align = self.prop("align", {}) or {}
        self.h_align = align.get("h", "center")
        self.v_align = align.get("v", "center")

        self._font = load_font(self.prop("font"), int(self.prop("size", 10)))
        self.trigger_auto_hide()

    @property
    def text(self) -> str:
        with self._lock:
            return self._text

    def set_text(self, text: str) -> None:
        with self._lock:
            changed = text != self._text
            self._text = text
        if changed:
            self.trigger_auto_hide()

    def update(self) -> None:
        """Nothing to update - text only changes through set_text()."""

    def render(self) -> Optional[Canvas]:
        if self.should_hide():
            return None

        canvas = self.create_canvas()
        text = self.text
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
