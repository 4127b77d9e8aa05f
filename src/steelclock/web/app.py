"""
FastAPI application for the SteelClock web preview.

Provides:
- Live display preview via MJPEG streaming
- Real-time log streaming via SSE
- Widget and session status

The preview is read-only: nothing here changes the running session.
"""

import asyncio
import base64
import io
import json
import logging
import os
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, StreamingResponse
from fastapi.templating import Jinja2Templates
from PIL import Image
from sse_starlette.sse import EventSourceResponse

from ..core.display import decode
from ..core.logs import LOG_DATEFMT, LOG_FORMAT

log = logging.getLogger(__name__)

TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), "templates")


@dataclass
class WidgetInfo:
    """Information about a running widget."""

    widget_id: str
    type: str
    x: int
    y: int
    w: int
    h: int
    z: int
    update_interval: float


@dataclass
class SharedState:
    """
    Shared state between the controller and the web server.

    Thread-safe container for the last sent frame, widgets and log messages.
    """

    _frame: Optional[bytes] = None
    _frame_number: int = 0
    _frame_lock: threading.Lock = field(default_factory=threading.Lock)
    _logs: Deque[Dict] = field(default_factory=lambda: deque(maxlen=1000))
    _log_lock: threading.Lock = field(default_factory=threading.Lock)
    _log_total: int = 0
    _widgets: List[WidgetInfo] = field(default_factory=list)
    _widgets_lock: threading.Lock = field(default_factory=threading.Lock)
    state: str = "stopped"
    game_name: str = ""
    display_width: int = 128
    display_height: int = 40
    scale_factor: int = 6

    def set_frame(self, frame: bytes) -> None:
        """Store the last sent frame (thread-safe)."""
        with self._frame_lock:
            self._frame = bytes(frame)
            self._frame_number += 1

    def get_frame(self) -> Optional[bytes]:
        with self._frame_lock:
            return self._frame

    @property
    def frame_number(self) -> int:
        with self._frame_lock:
            return self._frame_number

    def frame_image(self) -> Image.Image:
        """Current frame as an "L" image; black when nothing was sent yet."""
        frame = self.get_frame()
        if frame is None:
            return Image.new("L", (self.display_width, self.display_height), 0)
        return decode(frame, self.display_width, self.display_height).to_image()

    def add_log(self, record: Dict) -> None:
        """Add a log record (thread-safe)."""
        with self._log_lock:
            self._logs.append(record)
            self._log_total += 1

    def get_logs_since(self, total_seen: int) -> Tuple[List[Dict], int]:
        """
        Records added after the first total_seen records, plus the new total.

        Counts every record ever added, so readers stay correct after
        the deque starts dropping old entries.
        """
        with self._log_lock:
            logs = list(self._logs)
            total = self._log_total
        new = total - total_seen
        if new <= 0:
            return [], total
        return (logs[-new:] if new < len(logs) else logs), total

    def get_log_total(self) -> int:
        with self._log_lock:
            return self._log_total

    def set_widgets(self, widgets: List[WidgetInfo]) -> None:
        with self._widgets_lock:
            self._widgets = list(widgets)

    def get_widgets(self) -> List[WidgetInfo]:
        with self._widgets_lock:
            return list(self._widgets)


class WebLogHandler(logging.Handler):
    """
    Logging handler that forwards logs to the web interface.
    """

    def __init__(self, shared_state: SharedState):
        super().__init__()
        self.shared_state = shared_state
        self.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            formatted = self.format(record)
            log_entry = {
                "timestamp": time.time(),
                "time": formatted.split(" : ")[0],
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
                "formatted": formatted,
            }
            self.shared_state.add_log(log_entry)
        except Exception:
            self.handleError(record)


def create_app(shared_state: SharedState) -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title="SteelClock Preview",
        description="Live display preview and log viewer for SteelClock",
        version="1.0.0",
    )

    templates = Jinja2Templates(directory=TEMPLATES_DIR)

    def scaled(img: Image.Image) -> Image.Image:
        return img.resize(
            (
                shared_state.display_width * shared_state.scale_factor,
                shared_state.display_height * shared_state.scale_factor,
            ),
            Image.Resampling.NEAREST,
        )

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request):
        """Main page with the display preview."""
        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "active_page": "display",
                "game_name": shared_state.game_name,
                "display_width": shared_state.display_width * shared_state.scale_factor,
                "display_height": shared_state.display_height * shared_state.scale_factor,
            },
        )

    @app.get("/logs", response_class=HTMLResponse)
    async def logs_page(request: Request):
        """Real-time logs page."""
        return templates.TemplateResponse(request, "logs.html", {"active_page": "logs"})

    @app.get("/stream")
    async def stream_display():
        """MJPEG stream of the current display."""

        async def generate():
            frame_interval = 1.0 / 10

            while True:
                buffer = io.BytesIO()
                scaled(shared_state.frame_image()).save(buffer, format="JPEG", quality=85)
                jpeg_bytes = buffer.getvalue()

                yield (
                    b"--frame\r\n"
                    b"Content-Type: image/jpeg\r\n"
                    b"Content-Length: " + str(len(jpeg_bytes)).encode() + b"\r\n"
                    b"\r\n" + jpeg_bytes + b"\r\n"
                )

                await asyncio.sleep(frame_interval)

        return StreamingResponse(
            generate(),
            media_type="multipart/x-mixed-replace; boundary=frame",
            headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
        )

    @app.get("/api/frame")
    async def get_frame():
        """Get current frame as base64 PNG."""
        buffer = io.BytesIO()
        shared_state.frame_image().save(buffer, format="PNG")
        return {
            "frame": base64.b64encode(buffer.getvalue()).decode(),
            "width": shared_state.display_width,
            "height": shared_state.display_height,
            "frame_number": shared_state.frame_number,
        }

    @app.get("/api/widgets")
    async def get_widgets():
        """Get the widgets of the running session, in render order."""
        return [asdict(w) for w in shared_state.get_widgets()]

    @app.get("/api/status")
    async def get_status():
        return {
            "state": shared_state.state,
            "game_name": shared_state.game_name,
            "frame_number": shared_state.frame_number,
            "width": shared_state.display_width,
            "height": shared_state.display_height,
        }

    @app.get("/api/logs/stream")
    async def stream_logs(request: Request):
        """SSE endpoint for real-time log streaming."""

        async def event_generator():
            seen = 0

            while True:
                if await request.is_disconnected():
                    break

                logs, seen = shared_state.get_logs_since(seen)
                for log_entry in logs:
                    yield {
                        "event": "message",
                        "data": json.dumps(log_entry),
                    }
                await asyncio.sleep(0.1)

        return EventSourceResponse(event_generator())

    return app


def run_web_server_thread(shared_state: SharedState, host: str = "127.0.0.1", port: int = 8000):
    """Run the web server in a background thread."""
    import uvicorn

    app = create_app(shared_state)

    log.info(f"Starting web preview at http://{host}:{port}")

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    server = uvicorn.Server(config)

    def run_server():
        # Create a new event loop for this thread
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        loop.run_until_complete(server.serve())

    thread = threading.Thread(target=run_server, name="steelclock-web", daemon=True)
    thread.start()

    return server, thread
