"""
Exception types for SteelClock.

Every error raised by the engine derives from SteelClockError so the
entry point can tell its own failures apart from programming errors.
"""

from typing import Optional


class SteelClockError(Exception):
    """Base class for all SteelClock errors."""


class ConfigError(SteelClockError):
    """Invalid configuration. Raised at load and reload."""


class NoWidgetsError(ConfigError):
    """The configuration enables no widgets."""

    def __init__(self, message: str = "no widgets enabled in configuration"):
        super().__init__(message)


class GatewayUnavailable(SteelClockError):
    """The local GameSense server cannot be discovered or reached."""


class GatewayError(SteelClockError):
    """A single gateway request failed (non-2xx or transport error)."""

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        self.status = status
        self.reason = reason
        details = message
        if status is not None:
            details += f" (HTTP {status})"
        if reason:
            details += f": {reason}"
        super().__init__(details)


class WidgetUpdateError(SteelClockError):
    """Transient failure inside a widget's update()."""


class WidgetRenderError(SteelClockError):
    """Transient failure inside a widget's render()."""


class EncodingError(SteelClockError):
    """Canvas dimensions do not match the display."""
