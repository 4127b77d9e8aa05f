"""
Widget factory table.

Widget modules register their class under a type tag at import time;
the controller builds widget instances from config entries by tag.
"""

import logging
from typing import Callable, Dict, List, Sequence, Type, TypeVar

from ..core.config import WidgetConfig
from ..core.errors import ConfigError, NoWidgetsError
from .base import BaseWidget

log = logging.getLogger(__name__)

W = TypeVar("W", bound=Type[BaseWidget])

_registry: Dict[str, Type[BaseWidget]] = {}


def register(type_name: str) -> Callable[[W], W]:
    """Class decorator adding a widget class to the factory table."""

    def decorator(cls: W) -> W:
        if type_name in _registry and _registry[type_name] is not cls:
            log.warning(f"Widget type '{type_name}' is being re-registered")
        _registry[type_name] = cls
        return cls

    return decorator


def unregister(type_name: str) -> None:
    _registry.pop(type_name, None)


def registered_types() -> List[str]:
    return sorted(_registry)


def is_registered(type_name: str) -> bool:
    return type_name in _registry


def create_widget(config: WidgetConfig) -> BaseWidget:
    """Instantiate one widget. Raises ConfigError for unknown types."""
    cls = _registry.get(config.type)
    if cls is None:
        raise ConfigError(
            f"unknown widget type '{config.type}' (available: {', '.join(registered_types())})"
        )
    return cls(config)


def create_widgets(configs: Sequence[WidgetConfig]) -> List[BaseWidget]:
    """
    Build all enabled widgets.

    A widget that fails to construct is logged and skipped. Raises
    NoWidgetsError if nothing is enabled, ConfigError if every enabled
    widget failed.
    """
    enabled = [c for c in configs if c.enabled]
    if not enabled:
        raise NoWidgetsError()

    widgets = []
    for config in enabled:
        try:
            widget = create_widget(config)
        except Exception as e:
            log.error(f"Failed to create widget '{config.id}' ({config.type}): {e}")
            continue
        widgets.append(widget)
        log.info(f"Created widget '{config.id}' ({config.type})")

    if not widgets:
        raise ConfigError(f"all {len(enabled)} enabled widget(s) failed to initialize")
    return widgets
