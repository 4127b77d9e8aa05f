"""
SteelClock Web - read-only FastAPI preview of the display and logs.
"""

from .app import SharedState, WebLogHandler, WidgetInfo, create_app, run_web_server_thread

__all__ = ["create_app", "run_web_server_thread", "SharedState", "WidgetInfo", "WebLogHandler"]
