#!/usr/bin/env python3
"""
SteelClock - Main Entry Point

Drives the OLED screen of SteelSeries peripherals with a set of widgets.

Usage:
    python -m steelclock
    python -m steelclock -config path/to/config.json
    python -m steelclock -console -web   # log to stderr, serve the preview

Send SIGHUP to reload the configuration (where the platform has it);
SIGINT or SIGTERM stops the program.
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

from steelclock import __version__
from steelclock.core import Controller, ControllerState, ReloadResult
from steelclock.core.config import (
    CONFIG_FILENAME,
    Config,
    default_config,
    find_app_dir,
    load_config,
    load_env_settings,
)
from steelclock.core.errors import ConfigError, SteelClockError
from steelclock.core.logs import setup_logging

log = logging.getLogger("steelclock")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="steelclock",
        description="SteelClock - widget display for SteelSeries OLED screens",
    )
    parser.add_argument(
        "-config",
        "--config",
        dest="config",
        default=None,
        help="Path to config file (default: config.json in the app directory)",
    )
    parser.add_argument(
        "-console",
        "--console",
        dest="console",
        action="store_true",
        help="Log to stderr as well as the log file",
    )
    parser.add_argument(
        "-web",
        "--web",
        dest="web",
        action="store_true",
        help="Serve the read-only web preview",
    )
    parser.add_argument(
        "-log-level",
        "--log-level",
        dest="log_level",
        default=None,
        help="Log level (default: INFO, or STEELCLOCK_LOG_LEVEL)",
    )
    parser.add_argument(
        "-version", "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser.parse_args(argv)


def make_config_loader(config_path: Path, explicit: bool):
    """Loader for the controller: the config file, or built-in defaults if none exists."""

    def loader() -> Config:
        if explicit or config_path.exists():
            return load_config(config_path)
        log.warning(f"No config file at {config_path}; using the default configuration")
        return default_config()

    return loader


def setup_web(controller: Controller, host: str, port: int):
    """Wire the web preview to the controller and start it."""
    from steelclock.web import SharedState, WebLogHandler, run_web_server_thread

    config = controller.active_config
    shared_state = SharedState(
        game_name=config.game_name,
        display_width=config.display.width,
        display_height=config.display.height,
    )

    logging.getLogger().addHandler(WebLogHandler(shared_state))
    controller.add_frame_listener(shared_state.set_frame)
    refresh_web_state(controller, shared_state)

    run_web_server_thread(shared_state, host, port)
    return shared_state


def refresh_web_state(controller: Controller, shared_state) -> None:
    from steelclock.web import WidgetInfo

    shared_state.state = controller.state.value
    config = controller.active_config
    if config is None:
        shared_state.set_widgets([])
        return

    shared_state.game_name = config.game_name
    widgets = []
    for widget in controller.widgets:
        pos = widget.position()
        widgets.append(
            WidgetInfo(
                widget_id=widget.name(),
                type=widget.config.type,
                x=pos.x,
                y=pos.y,
                w=pos.w,
                h=pos.h,
                z=pos.z,
                update_interval=widget.update_interval(),
            )
        )
    shared_state.set_widgets(widgets)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    env = load_env_settings()

    app_dir = find_app_dir()
    config_path = Path(args.config) if args.config else app_dir / CONFIG_FILENAME
    log_dir = Path(env.log_dir) if env.log_dir else app_dir

    setup_logging(log_dir, args.log_level or env.log_level, console=args.console)

    log.info("=" * 50)
    log.info(f"SteelClock {__version__} starting (app dir: {app_dir})")
    log.info("=" * 50)

    controller = Controller(make_config_loader(config_path, explicit=bool(args.config)), env=env)

    stop_requested = threading.Event()
    reload_requested = threading.Event()

    def on_stop(signum, frame):
        log.info(f"Received signal {signum}, shutting down...")
        stop_requested.set()

    def on_reload(signum, frame):
        log.info("Received SIGHUP, reloading configuration...")
        reload_requested.set()

    signal.signal(signal.SIGINT, on_stop)
    signal.signal(signal.SIGTERM, on_stop)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, on_reload)

    try:
        controller.start()
    except SteelClockError as e:
        log.critical(f"Startup failed: {e}")
        print(f"steelclock: startup failed: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        log.exception(f"Startup failed: {e}")
        print(f"steelclock: startup failed: {e!r}", file=sys.stderr)
        return 1

    shared_state = None
    web_config = controller.active_config.web
    if args.web or web_config.enabled:
        shared_state = setup_web(controller, web_config.host, web_config.port)

    exit_code = 0
    try:
        while not stop_requested.wait(0.5):
            if controller.state == ControllerState.FATAL_STOPPED:
                log.critical(f"Engine stopped: {controller.last_error}")
                exit_code = 1
                break
            if not reload_requested.is_set():
                continue
            reload_requested.clear()

            try:
                result = controller.reload()
            except ConfigError as e:
                log.error(f"Reload failed, keeping current configuration: {e}")
                continue
            except Exception as e:
                log.critical(f"Reload failed and recovery was not possible: {e}")
                exit_code = 1
                break

            if result == ReloadResult.REVERTED:
                log.warning(f"Reload failed ({controller.last_error}); reverted to previous config")
            if shared_state is not None:
                refresh_web_state(controller, shared_state)
    finally:
        if controller.state != ControllerState.STOPPED:
            controller.stop()

    log.info("SteelClock shutdown complete.")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
