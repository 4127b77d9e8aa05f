"""
SteelClock - widget compositor for SteelSeries OLED displays.

Architecture:
    - Core: Controller, Compositor, Layout, Scheduler, Gateway client
    - Widgets: content producers that render into their own rectangle

Widgets update on their own threads; the render loop composes them into
a 1-bit frame and pushes it to the local GameSense server at a steady rate.

Example:
    from steelclock.core import Controller, load_config

    controller = Controller(lambda: load_config("config.json"))
    controller.start()
"""

__version__ = "1.0.0"
__author__ = "SteelClock Team"

from .core import Compositor, Config, Controller, Display, GameSenseClient, LayoutManager
from .widgets import BaseWidget, register

__all__ = [
    # Core
    "Controller",
    "Compositor",
    "LayoutManager",
    "Display",
    "GameSenseClient",
    "Config",
    # Widgets
    "BaseWidget",
    "register",
]
