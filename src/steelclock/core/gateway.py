"""
Device-gateway clients for SteelClock.

GameSenseClient speaks the SteelSeries GameSense HTTP API on the local
machine. PreviewClient keeps frames in memory for the web preview and for
running without the vendor software installed.
"""

import json
import logging
import os
import sys
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Sequence

import requests

from .config import DEFAULT_DISPLAY_HEIGHT, DEFAULT_DISPLAY_WIDTH
from .display import resolution_key
from .errors import GatewayError, GatewayUnavailable

if TYPE_CHECKING:
    from .config import Config, EnvSettings

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
CORE_PROPS_FILENAME = "coreProps.json"
_ENGINE_DIR = ("SteelSeries", "SteelSeries Engine 3")


def core_props_candidates() -> List[Path]:
    """Platform locations of coreProps.json, most specific first."""
    candidates = []
    program_data = os.environ.get("PROGRAMDATA")
    if program_data:
        candidates.append(Path(program_data, *_ENGINE_DIR, CORE_PROPS_FILENAME))
    if sys.platform == "darwin":
        candidates.append(
            Path("/Library/Application Support/SteelSeries Engine 3", CORE_PROPS_FILENAME)
        )
    else:
        candidates.append(Path("C:\\ProgramData", *_ENGINE_DIR, CORE_PROPS_FILENAME))
    return candidates


def _find_core_props(path=None) -> Path:
    if path:
        return Path(path)
    for candidate in core_props_candidates():
        if candidate.is_file():
            return candidate
    raise GatewayUnavailable("cannot find coreProps.json - is SteelSeries Engine 3 installed?")


def discover_server(path=None) -> str:
    """
    Read the gateway address from coreProps.json.

    Returns "host:port". Raises GatewayUnavailable if the file is missing,
    unparseable, or has no valid address.
    """
    props_path = _find_core_props(path)

    try:
        raw = json.loads(props_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise GatewayUnavailable(f"failed to read {props_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise GatewayUnavailable(f"failed to parse {props_path}: {e}") from e

    address = raw.get("address") if isinstance(raw, dict) else None
    if not address or not isinstance(address, str):
        raise GatewayUnavailable(f"no 'address' field in {props_path}")

    parts = address.split(":")
    if len(parts) != 2 or not parts[0]:
        raise GatewayUnavailable(f"invalid address format: {address}")
    if not parts[1].isdigit():
        raise GatewayUnavailable(f"invalid port number: {parts[1]}")

    log.debug(f"Discovered GameSense server at {address}")
    return address


def _frame_ints(frame: bytes) -> List[int]:
    # GameSense wants a JSON array of integers, not a base64 string
    return list(bytes(frame))


class GatewayClient(ABC):
    """Operations the engine needs from a display backend."""

    game_name: str

    @abstractmethod
    def register_game(self, developer: str, deinitialize_timer_ms: int = 0) -> None:
        pass

    @abstractmethod
    def bind_screen_event(self, event_name: str, device_type: str) -> None:
        pass

    @abstractmethod
    def send_screen_data(self, event_name: str, frame: bytes) -> None:
        pass

    @abstractmethod
    def send_screen_data_multi_res(self, event_name: str, frames: Mapping[str, bytes]) -> None:
        pass

    @abstractmethod
    def send_multiple_screen_data(self, event_name: str, frames: Sequence[bytes]) -> None:
        pass

    @abstractmethod
    def send_heartbeat(self) -> None:
        pass

    @abstractmethod
    def remove_game(self) -> None:
        pass

    @abstractmethod
    def supports_multiple_events(self) -> bool:
        pass

    def close(self) -> None:
        """Release transport resources. The registration is left untouched."""


class GameSenseClient(GatewayClient):
    """
    Client for the local GameSense HTTP server.

    Every request is a JSON POST with a bounded timeout. Failures raise
    GatewayError; the client never retries on its own. Instances may be
    shared between the render and heartbeat threads.
    """

    def __init__(
        self,
        game_name: str,
        game_display_name: str,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        width: int = DEFAULT_DISPLAY_WIDTH,
        height: int = DEFAULT_DISPLAY_HEIGHT,
        core_props_path: Optional[str] = None,
    ):
        if base_url is None:
            base_url = "http://" + discover_server(core_props_path)
        self.base_url = base_url.rstrip("/")
        self.game_name = game_name
        self.game_display_name = game_display_name
        self.timeout = timeout
        self.width = width
        self.height = height

        self._session: Optional[requests.Session] = None
        self._session_lock = threading.Lock()

    @property
    def resolution_key(self) -> str:
        return resolution_key(self.width, self.height)

    @property
    def frame_size(self) -> int:
        return (self.width * self.height + 7) // 8

    def _get_session(self) -> requests.Session:
        with self._session_lock:
            if self._session is None:
                self._session = requests.Session()
                self._session.headers.update({"Content-Type": "application/json"})
            return self._session

    @staticmethod
    def _reason(response: requests.Response) -> Optional[str]:
        """Extract the gateway's error text from a response body."""
        try:
            body = response.json()
        except ValueError:
            text = response.text.strip()
            return text or None
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        text = response.text.strip()
        return text or None

    def _post(self, endpoint: str, payload: Dict[str, Any]) -> None:
        url = self.base_url + endpoint
        try:
            response = self._get_session().post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise GatewayError(f"POST {endpoint} failed", reason=str(e)) from e

        if not 200 <= response.status_code < 300:
            raise GatewayError(
                f"POST {endpoint} failed",
                status=response.status_code,
                reason=self._reason(response),
            )

    def _check_frame(self, frame: bytes) -> None:
        if len(frame) != self.frame_size:
            raise GatewayError(
                f"invalid frame size: expected {self.frame_size} bytes, got {len(frame)}"
            )

    def register_game(self, developer: str, deinitialize_timer_ms: int = 0) -> None:
        """Register the game metadata with the gateway."""
        payload: Dict[str, Any] = {
            "game": self.game_name,
            "game_display_name": self.game_display_name,
            "developer": developer,
        }
        if deinitialize_timer_ms > 0:
            payload["deinitialize_timer_length_ms"] = deinitialize_timer_ms

        self._post("/game_metadata", payload)
        log.info(f"Game registered: {self.game_name}")

    def bind_screen_event(self, event_name: str, device_type: str) -> None:
        """Bind a screen handler for event_name, initialised to a blank frame."""
        payload = {
            "game": self.game_name,
            "event": event_name,
            "value_optional": True,
            "handlers": [
                {
                    "device-type": device_type,
                    "zone": "one",
                    "mode": "screen",
                    "datas": [
                        {
                            "has-text": False,
                            "image-data": [0] * self.frame_size,
                        }
                    ],
                }
            ],
        }
        self._post("/bind_game_event", payload)
        log.info(f"Event bound: {event_name} ({device_type})")

    def send_screen_data(self, event_name: str, frame: bytes) -> None:
        self._check_frame(frame)
        self.send_screen_data_multi_res(event_name, {self.resolution_key: frame})

    def send_screen_data_multi_res(self, event_name: str, frames: Mapping[str, bytes]) -> None:
        """Send one frame carrying data for one or more resolutions."""
        if not frames:
            raise GatewayError("no resolution data provided")

        payload = {
            "game": self.game_name,
            "event": event_name,
            "data": {"frame": {key: _frame_ints(data) for key, data in frames.items()}},
        }
        self._post("/game_event", payload)

    def send_multiple_screen_data(self, event_name: str, frames: Sequence[bytes]) -> None:
        """Send several frames in one /multiple_game_events request."""
        if not frames:
            return
        for frame in frames:
            self._check_frame(frame)

        payload = {
            "game": self.game_name,
            "events": [
                {
                    "event": event_name,
                    "data": {"frame": {self.resolution_key: _frame_ints(frame)}},
                }
                for frame in frames
            ],
        }
        self._post("/multiple_game_events", payload)

    def send_heartbeat(self) -> None:
        self._post("/game_heartbeat", {"game": self.game_name})

    def remove_game(self) -> None:
        self._post("/remove_game", {"game": self.game_name})
        log.info(f"Game removed: {self.game_name}")

    def supports_multiple_events(self) -> bool:
        """Check for /multiple_game_events support (200 means supported)."""
        url = self.base_url + "/supports_multiple_game_events"
        try:
            response = self._get_session().get(url, timeout=self.timeout)
        except requests.RequestException as e:
            log.warning(f"Batch support check failed: {e}")
            return False

        supported = response.status_code == 200
        if supported:
            log.info("Multiple event batching supported by GameSense API")
        else:
            log.info("Multiple event batching not supported by GameSense API")
        return supported

    def close(self) -> None:
        with self._session_lock:
            if self._session is not None:
                self._session.close()
                self._session = None


class PreviewClient(GatewayClient):
    """
    In-memory backend.

    Registration calls are no-ops. Sent frames are kept as the latest frame
    and handed to listeners (the web preview subscribes here).
    """

    def __init__(
        self,
        width: int = DEFAULT_DISPLAY_WIDTH,
        height: int = DEFAULT_DISPLAY_HEIGHT,
        game_name: str = "PREVIEW",
    ):
        self.width = width
        self.height = height
        self.game_name = game_name

        self._lock = threading.Lock()
        self._last_frame: Optional[bytes] = None
        self._last_update: float = 0.0
        self._frame_number = 0
        self._listeners: List[Callable[[bytes, int], None]] = []

    @property
    def last_frame(self) -> Optional[bytes]:
        with self._lock:
            return self._last_frame

    @property
    def frame_number(self) -> int:
        with self._lock:
            return self._frame_number

    @property
    def last_update(self) -> float:
        with self._lock:
            return self._last_update

    def add_listener(self, callback: Callable[[bytes, int], None]) -> None:
        """Register callback(frame, frame_number), called on every stored frame."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[bytes, int], None]) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def _store(self, frame: bytes) -> None:
        stored = bytes(frame)
        with self._lock:
            self._last_frame = stored
            self._last_update = time.time()
            self._frame_number += 1
            number = self._frame_number
            listeners = list(self._listeners)

        for callback in listeners:
            try:
                callback(stored, number)
            except Exception as e:
                log.warning(f"Preview listener error: {e}")

    def register_game(self, developer: str, deinitialize_timer_ms: int = 0) -> None:
        log.debug("Preview backend: register_game ignored")

    def bind_screen_event(self, event_name: str, device_type: str) -> None:
        log.debug("Preview backend: bind_screen_event ignored")

    def send_screen_data(self, event_name: str, frame: bytes) -> None:
        self._store(frame)

    def send_screen_data_multi_res(self, event_name: str, frames: Mapping[str, bytes]) -> None:
        # Only the first (main) resolution is previewed
        for data in frames.values():
            self._store(data)
            return

    def send_multiple_screen_data(self, event_name: str, frames: Sequence[bytes]) -> None:
        if frames:
            self._store(frames[-1])

    def send_heartbeat(self) -> None:
        pass

    def remove_game(self) -> None:
        log.debug("Preview backend: remove_game ignored")

    def supports_multiple_events(self) -> bool:
        return False


def create_client(config: "Config", env: Optional["EnvSettings"] = None) -> GatewayClient:
    """Build the backend selected by config.backend."""
    width, height = config.display.width, config.display.height

    if config.backend == "preview":
        log.info(f"Using preview backend ({width}x{height})")
        return PreviewClient(width=width, height=height, game_name=config.game_name)

    core_props_path = config.core_props_path or (env.core_props_path if env else None)
    client = GameSenseClient(
        config.game_name,
        config.game_display_name,
        width=width,
        height=height,
        core_props_path=core_props_path,
    )
    log.info(f"Using GameSense backend at {client.base_url}")
    return client
