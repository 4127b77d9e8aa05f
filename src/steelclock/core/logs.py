"""
Logging setup and panic isolation for SteelClock.

Two files live in the log directory: steelclock.log (rotating operational
log) and panic.log (append-only record of task crashes with stack traces).
"""

import logging
import logging.handlers
import sys
import threading
import traceback
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s : %(levelname)-8s : (%(name)s) %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
LOG_FILENAME = "steelclock.log"
PANIC_FILENAME = "panic.log"
LOG_MAX_BYTES = 1024 * 1024
LOG_BACKUP_COUNT = 3

NOISY_LOGGERS = (
    "apscheduler",
    "urllib3",
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
    "sse_starlette",
)

# Where guarded() writes crash reports; None disables the file
_panic_path: Optional[Path] = None
_panic_lock = threading.Lock()


def set_panic_log(path: Optional[Path]) -> None:
    """Set the panic log file used by guarded()."""
    global _panic_path
    _panic_path = Path(path) if path is not None else None


def get_panic_log() -> Optional[Path]:
    return _panic_path


def setup_logging(
    log_dir: Optional[Path] = None, level: str = "INFO", console: bool = False
) -> None:
    """
    Configure the root logger.

    Adds a rotating file handler when log_dir is given and a stderr handler
    in console mode (or when no file is available).
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / LOG_FILENAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        set_panic_log(log_dir / PANIC_FILENAME)

    if console or log_dir is None:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    # Suppress noisy third-party loggers
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def write_panic(context: str, exc: BaseException) -> None:
    """Append a crash report to the panic log and log it at CRITICAL."""
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    log.critical(f"Panic in {context}: {exc}")

    if _panic_path is None:
        return

    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    entry = f"[{timestamp}] panic in {context}: {exc!r}\n{stack}\n"
    with _panic_lock:
        try:
            _panic_path.parent.mkdir(parents=True, exist_ok=True)
            with open(_panic_path, "a", encoding="utf-8") as f:
                f.write(entry)
        except OSError as e:
            log.error(f"Failed to write panic log {_panic_path}: {e}")


@contextmanager
def guarded(context: str):
    """
    Run a task body; any exception escaping it is recorded and swallowed.

    The task then ends normally, so one crashing widget or loop never takes
    down the process.

    Example:
        with guarded("widget clock"):
            run_loop()
    """
    try:
        yield
    except Exception as e:
        write_panic(context, e)
