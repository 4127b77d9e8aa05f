"""
SteelClock application controller.

Owns the single session (gateway client, widgets, compositor) and performs
every lifecycle transition under one lock. Reload keeps the gateway client
and its registration alive and falls back to the last good configuration
when the new one cannot be started.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence, Tuple

from .compositor import HEARTBEAT_INTERVAL, MAX_SEND_FAILURES, Compositor, FrameListener
from .config import Config, validate_config
from .display import Display
from .errors import GatewayError, SteelClockError
from .gateway import GatewayClient, create_client
from .layout import LayoutManager
from .scheduler import WidgetScheduler

if TYPE_CHECKING:
    from ..widgets.base import BaseWidget
    from .config import EnvSettings, WidgetConfig

log = logging.getLogger(__name__)

DEFAULT_SETTLE_SECONDS = 2.0
DEFAULT_BIND_ATTEMPTS = 5
BIND_BASE_DELAY = 1.0
BIND_MAX_DELAY = 10.0

ClientKey = Tuple[str, str, int, int]


class ControllerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    RELOADING = "reloading"
    RECOVERING = "recovering"
    FATAL_STOPPED = "fatal_stopped"


class ReloadResult(Enum):
    RELOADED = "reloaded"
    REVERTED = "reverted"


@dataclass
class Session:
    """One live pairing of widgets and compositor with a configuration."""

    config: Config
    widgets: List["BaseWidget"]
    layout: LayoutManager
    scheduler: WidgetScheduler
    compositor: Compositor


def backoff_delay(
    attempt: int, base: float = BIND_BASE_DELAY, cap: float = BIND_MAX_DELAY
) -> float:
    """Delay before the given attempt (2 -> base, 3 -> 2*base, ...), capped."""
    if attempt < 2:
        return 0.0
    return min(base * (2 ** (attempt - 2)), cap)


def client_key(config: Config) -> ClientKey:
    """Settings a gateway client is built with; any change needs a new client."""
    return (config.game_name, config.backend, config.display.width, config.display.height)


class Controller:
    """
    The SteelClock lifecycle state machine.

    Responsibilities:
    - Build the gateway client, register the game and bind the screen event
    - Build widgets, layout, scheduler and compositor for a configuration
    - Reload without re-registering, rolling back to the last good config
    - Switch to failover_backend when the gateway keeps rejecting frames
    - Tear down, unregistering only when configured to

    The configuration source is injected as config_loader so the caller
    decides where configs come from (file, tests, defaults).
    """

    def __init__(
        self,
        config_loader: Callable[[], Config],
        client_factory: Optional[Callable[[Config], GatewayClient]] = None,
        widget_factory: Optional[Callable[[Sequence["WidgetConfig"]], List["BaseWidget"]]] = None,
        env: Optional["EnvSettings"] = None,
        settle_seconds: Optional[float] = None,
        bind_attempts: int = DEFAULT_BIND_ATTEMPTS,
        bind_base_delay: float = BIND_BASE_DELAY,
        bind_max_delay: float = BIND_MAX_DELAY,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        flush_on_stop: bool = False,
        max_send_failures: int = MAX_SEND_FAILURES,
    ):
        self._config_loader = config_loader
        self._client_factory = client_factory or (lambda cfg: create_client(cfg, env))
        if widget_factory is None:
            from ..widgets import create_widgets

            widget_factory = create_widgets
        self._widget_factory = widget_factory

        if settle_seconds is None:
            settle_seconds = env.settle_seconds if env is not None else DEFAULT_SETTLE_SECONDS
        self.settle_seconds = settle_seconds
        self.bind_attempts = max(1, bind_attempts)
        self.bind_base_delay = bind_base_delay
        self.bind_max_delay = bind_max_delay
        self.heartbeat_interval = heartbeat_interval
        self.flush_on_stop = flush_on_stop
        self.max_send_failures = max_send_failures

        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._state = ControllerState.STOPPED

        self._client: Optional[GatewayClient] = None
        # (game_name, backend, width, height) the client was built for
        self._client_key: Optional[ClientKey] = None
        # (event_name, device_type) currently bound on the client
        self._bound: Optional[Tuple[str, str]] = None

        self._session: Optional[Session] = None
        self._last_good: Optional[Config] = None
        self._frame_listeners: List[FrameListener] = []

        self.last_error: Optional[Exception] = None

    # --- Accessors ---

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def active_config(self) -> Optional[Config]:
        session = self._session
        return session.config if session else None

    @property
    def last_good_config(self) -> Optional[Config]:
        return self._last_good

    @property
    def compositor(self) -> Optional[Compositor]:
        session = self._session
        return session.compositor if session else None

    @property
    def widgets(self) -> List["BaseWidget"]:
        session = self._session
        return list(session.widgets) if session else []

    @property
    def client(self) -> Optional[GatewayClient]:
        return self._client

    def add_frame_listener(self, callback: FrameListener) -> None:
        """Receive every sent frame, across reloads."""
        with self._lock:
            self._frame_listeners.append(callback)
            if self._session:
                self._session.compositor.add_frame_listener(callback)

    # --- Session building ---

    def _ensure_client(self, config: Config) -> None:
        """Create and register a client unless the current one fits config."""
        key = client_key(config)
        if self._client is not None and self._client_key == key:
            return

        if self._client is not None:
            log.info(f"Client settings changed ({self._client_key} -> {key}), recreating client...")
            self._drop_client()

        client = self._client_factory(config)
        try:
            client.register_game(config.developer, config.deinitialize_timer_ms)
        except Exception:
            client.close()
            raise

        self._client = client
        self._client_key = key
        self._bound = None

    def _drop_client(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self._client_key = None
        self._bound = None

    def _bind_with_retry(self, config: Config) -> None:
        """Bind the screen event, retrying with exponential backoff."""
        event, device_type = config.event_name, config.resolution_token

        for attempt in range(1, self.bind_attempts + 1):
            if attempt > 1:
                delay = backoff_delay(attempt, self.bind_base_delay, self.bind_max_delay)
                log.info(
                    f"Retrying bind in {delay:.1f}s... (attempt {attempt}/{self.bind_attempts})"
                )
                if self._cancel.wait(delay):
                    raise GatewayError("bind cancelled")
            try:
                self._client.bind_screen_event(event, device_type)
            except GatewayError as e:
                log.warning(f"Failed to bind event {event}: {e}")
                if attempt == self.bind_attempts:
                    raise
                continue
            self._bound = (event, device_type)
            return

    def _start_session(self, config: Config) -> Session:
        """Build and start a session, reusing the client where possible."""
        self._ensure_client(config)
        if self._bound != (config.event_name, config.resolution_token):
            self._bind_with_retry(config)

        from ..widgets.fonts import set_bundled_font_url

        set_bundled_font_url(config.bundled_font_url)

        widgets = self._widget_factory(config.widgets)
        log.info(f"Created {len(widgets)} widget(s)")

        display = Display.from_config(config.display)
        layout = LayoutManager(display, widgets)
        scheduler = WidgetScheduler(widgets)
        compositor = Compositor(
            self._client,
            layout,
            scheduler,
            config,
            heartbeat_interval=self.heartbeat_interval,
            max_failures=self.max_send_failures,
        )
        if config.failover_backend and config.failover_backend != config.backend:
            compositor.on_failure = lambda: self._on_backend_failure(compositor)
        for callback in self._frame_listeners:
            compositor.add_frame_listener(callback)

        try:
            compositor.start()
        except Exception:
            compositor.stop()
            raise

        return Session(config, widgets, layout, scheduler, compositor)

    # --- Transitions ---

    def start(self) -> None:
        """
        STOPPED -> STARTING -> RUNNING.

        Any failure leaves the controller FATAL_STOPPED and propagates.
        """
        with self._lock:
            if self._state not in (ControllerState.STOPPED, ControllerState.FATAL_STOPPED):
                raise SteelClockError(f"cannot start while {self._state.value}")

            self._state = ControllerState.STARTING
            self._cancel.clear()
            log.info("Starting SteelClock...")

            try:
                config = validate_config(self._config_loader())
                log.info(f"Config loaded: {config.game_name} ({config.game_display_name})")
                self._session = self._start_session(config)
            except Exception as e:
                self.last_error = e
                self._drop_client()
                self._session = None
                self._state = ControllerState.FATAL_STOPPED
                log.error(f"Startup failed: {e}")
                raise

            self._last_good = config
            self._state = ControllerState.RUNNING
            log.info("SteelClock started successfully")

    def reload(self, config: Optional[Config] = None) -> ReloadResult:
        """
        RUNNING -> RELOADING -> RUNNING.

        The new configuration is validated before anything is torn down; a
        ConfigError leaves the running session untouched and propagates.
        If the new session fails to start, the last good configuration is
        restarted (RECOVERING) and REVERTED is returned. If that fails too,
        the controller ends FATAL_STOPPED and the error propagates.
        """
        with self._lock:
            if self._state != ControllerState.RUNNING:
                raise SteelClockError(f"cannot reload while {self._state.value}")

            self._state = ControllerState.RELOADING
            log.info("Reloading configuration...")

            try:
                if config is None:
                    config = self._config_loader()
                new_config = validate_config(config)
            except Exception as e:
                self.last_error = e
                self._state = ControllerState.RUNNING
                log.error(f"Reload rejected, keeping current configuration: {e}")
                raise

            # Stop widgets and loops but keep the client and its registration
            if self._session is not None:
                self._session.compositor.stop(flush_on_stop=self.flush_on_stop)
                self._session = None

            if self.settle_seconds > 0:
                # Let the gateway process the teardown before new bindings
                self._cancel.wait(self.settle_seconds)

            try:
                self._session = self._start_session(new_config)
            except Exception as e:
                self.last_error = e
                log.error(f"Failed to start new configuration: {e}")
                return self._recover(e)

            self._last_good = new_config
            self._state = ControllerState.RUNNING
            log.info("Configuration reloaded")
            return ReloadResult.RELOADED

    def _recover(self, cause: Exception) -> ReloadResult:
        """Restart from the last good configuration. Caller holds the lock."""
        self._state = ControllerState.RECOVERING

        if self._last_good is None:
            self._drop_client()
            self._state = ControllerState.FATAL_STOPPED
            raise cause

        log.info("Reverting to previous configuration...")
        try:
            self._session = self._start_session(self._last_good)
        except Exception as e:
            self.last_error = e
            self._session = None
            self._drop_client()
            self._state = ControllerState.FATAL_STOPPED
            log.error(f"Recovery failed: {e}")
            raise

        self._state = ControllerState.RUNNING
        log.warning("Reverted to previous configuration")
        return ReloadResult.REVERTED

    def _on_backend_failure(self, compositor: Compositor) -> None:
        # Called from the render thread, which fail_over() has to join
        threading.Thread(
            target=self.fail_over,
            args=(compositor,),
            name="steelclock-failover",
            daemon=True,
        ).start()

    def fail_over(self, compositor: Optional[Compositor] = None) -> bool:
        """
        Restart the running session on its failover_backend.

        Ignored unless the controller is RUNNING and, when compositor is
        given, that compositor still belongs to the active session. Returns
        True if the session now runs on the failover backend. If that
        session cannot be started the controller ends FATAL_STOPPED.
        """
        with self._lock:
            session = self._session
            if self._state != ControllerState.RUNNING or session is None:
                return False
            if compositor is not None and session.compositor is not compositor:
                return False

            config = session.config
            fallback = config.failover_backend
            if not fallback or fallback == config.backend:
                return False

            log.warning(f"Backend {config.backend} keeps failing, switching to {fallback}...")
            session.compositor.stop(flush_on_stop=False)
            self._session = None

            failover_config = config.model_copy(update={"backend": fallback})
            try:
                self._session = self._start_session(failover_config)
            except Exception as e:
                self.last_error = e
                self._drop_client()
                self._state = ControllerState.FATAL_STOPPED
                log.error(f"Failed to switch to {fallback} backend: {e}")
                return False

            log.info(f"Switched to {fallback} backend")
            return True

    def stop(self) -> None:
        """
        Any state -> STOPPED.

        The game is unregistered only if the active configuration sets
        unregister_on_exit; the client is dropped either way.
        """
        # Wake any bind retry or settle wait before taking the lock
        self._cancel.set()

        with self._lock:
            config = self.active_config or self._last_good

            if self._session is not None:
                self._session.compositor.stop(flush_on_stop=self.flush_on_stop)
                self._session = None

            if self._client is not None:
                if config is not None and config.unregister_on_exit:
                    log.info("Unregistering from GameSense (unregister_on_exit=true)...")
                    try:
                        self._client.remove_game()
                    except SteelClockError as e:
                        log.warning(f"Failed to unregister game: {e}")
                else:
                    log.info("Keeping GameSense registration (unregister_on_exit=false)")
                self._drop_client()

            self._state = ControllerState.STOPPED
            log.info("SteelClock stopped")
