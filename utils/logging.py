"""Logging for ani-reel using loguru.

Two sinks: stderr (WARNING by default, DEBUG with --debug) and a rotating
ani-reel.log in the data directory. Records carry the thread name because
download workers, the progress tracker and the preloader log concurrently.

Modules call get_logger(__name__) at import time; the first call installs
default sinks so library use without the CLI still logs somewhere sane.
"""

import sys
import threading

from loguru import logger as _base_logger

from models.config import LogSettings, settings

LOG_FILE_NAME = "ani-reel.log"

_CONSOLE_FORMAT = (
    "<level>{level: <8}</level> | <cyan>{extra[name]}</cyan> "
    "<dim>[{thread.name}]</dim> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {thread.name} | {extra[name]}:{function}:{line} - {message}"

_lock = threading.Lock()
_initialized = False


def configure_logging(debug: bool = False, log: LogSettings | None = None) -> None:
    """Install the console and file sinks once per process.

    Args:
        debug: Log DEBUG to the console instead of the configured level
        log: Sink settings (defaults to settings.log)
    """
    global _initialized

    with _lock:
        if _initialized:
            return

        log = log or settings.log
        _base_logger.remove()
        _base_logger.configure(extra={"name": "ani-reel"})

        _base_logger.add(
            sys.stderr,
            format=_CONSOLE_FORMAT,
            level="DEBUG" if debug else log.console_level,
        )

        try:
            log.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            _base_logger.warning(f"File logging disabled, cannot create {log.log_dir}: {e}")
        else:
            _base_logger.add(
                log.log_dir / LOG_FILE_NAME,
                format=_FILE_FORMAT,
                level="DEBUG",
                rotation=log.rotation,
                retention=log.retention,
                compression="zip",
            )

        _initialized = True


def reset_logging() -> None:
    """Forget the current configuration so the next call reconfigures sinks."""
    global _initialized
    with _lock:
        _initialized = False


def get_logger(name: str):
    """Logger bound to a module name (typically __name__)."""
    if not _initialized:
        configure_logging()
    return _base_logger.bind(name=name)
