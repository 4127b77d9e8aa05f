"""
SteelClock Widgets

Each built-in widget registers itself under a type tag on import.
"""

from .base import BaseWidget, Position, Style
from .bounce import BounceWidget
from .clock import ClockWidget
from .registry import create_widget, create_widgets, register, registered_types
from .text import TextWidget

__all__ = [
    # Base
    "BaseWidget",
    "Position",
    "Style",
    # Factory
    "register",
    "create_widget",
    "create_widgets",
    "registered_types",
    # Widgets
    "BounceWidget",
    "ClockWidget",
    "TextWidget",
]
