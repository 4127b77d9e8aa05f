"""
SteelClock Core - display primitives, gateway client, compositor and controller.
"""

from .batcher import FrameBatcher
from .compositor import Compositor
from .config import Config, EnvSettings, load_config, load_env_settings, validate_config
from .controller import Controller, ControllerState, ReloadResult
from .dedup import FrameDeduplicator
from .display import Canvas, Display, decode, draw_sub, encode, new_canvas, resolution_key
from .errors import (
    ConfigError,
    EncodingError,
    GatewayError,
    GatewayUnavailable,
    NoWidgetsError,
    SteelClockError,
    WidgetRenderError,
    WidgetUpdateError,
)
from .gateway import GameSenseClient, GatewayClient, PreviewClient, create_client, discover_server
from .layout import LayoutManager
from .scheduler import WidgetScheduler

__all__ = [
    "Controller",
    "ControllerState",
    "ReloadResult",
    "Compositor",
    "LayoutManager",
    "WidgetScheduler",
    "FrameDeduplicator",
    "FrameBatcher",
    "Display",
    "Canvas",
    "new_canvas",
    "draw_sub",
    "encode",
    "decode",
    "resolution_key",
    "GatewayClient",
    "GameSenseClient",
    "PreviewClient",
    "create_client",
    "discover_server",
    "Config",
    "EnvSettings",
    "load_config",
    "load_env_settings",
    "validate_config",
    "SteelClockError",
    "ConfigError",
    "NoWidgetsError",
    "GatewayUnavailable",
    "GatewayError",
    "WidgetUpdateError",
    "WidgetRenderError",
    "EncodingError",
]
