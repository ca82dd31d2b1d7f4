from __future__ import annotations

import logging
import sys
import threading
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fontshelf_app.utils.paths import app_root

_LOGGER_NAME = "fontshelf_app"

# Libraries whose records end up in our log file too. fontTools reports
# malformed tables through its own loggers while parsing.
_LIBRARY_LOGGERS = {
    "fontTools": logging.WARNING,
    "watchdog": logging.WARNING,
}

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def log_path() -> Path:
    p = app_root() / "logs"
    p.mkdir(parents=True, exist_ok=True)
    return p / "fontshelf.log"


def setup_logging(level: int = logging.INFO, *, console: bool = True) -> logging.Logger:
    """
    Configure the application logger once per process.

    Records go to a rotating file under the app root and, unless console is
    False, to stderr. Calling it again is a no-op.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(level)
    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    handlers: list[logging.Handler] = [
        RotatingFileHandler(log_path(), maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    ]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    for h in handlers:
        h.setLevel(level)
        h.setFormatter(fmt)
        logger.addHandler(h)

    for name, lib_level in _LIBRARY_LOGGERS.items():
        lib = logging.getLogger(name)
        lib.setLevel(max(lib_level, level))
        lib.propagate = False
        for h in handlers:
            lib.addHandler(h)

    logger.info("Logging to %s", log_path())
    return logger


def teardown_logging() -> None:
    """Detach and close every handler setup_logging installed."""
    for name in (_LOGGER_NAME, *_LIBRARY_LOGGERS):
        lg = logging.getLogger(name)
        for h in list(lg.handlers):
            lg.removeHandler(h)
            if name == _LOGGER_NAME:
                h.close()
        lg.setLevel(logging.NOTSET)
        lg.propagate = True


def get_logger() -> logging.Logger:
    return logging.getLogger(_LOGGER_NAME)


def install_excepthooks() -> None:
    """Send uncaught exceptions, including those on scan and watch threads, to the log."""
    logger = get_logger()

    def _fmt(exc_type, exc, tb) -> str:
        return "".join(traceback.format_exception(exc_type, exc, tb))

    def _sys_hook(exc_type, exc, tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        logger.critical("Uncaught exception:\n%s", _fmt(exc_type, exc, tb))

    def _thread_hook(args):
        logger.critical(
            "Uncaught exception in thread %s:\n%s",
            getattr(args.thread, "name", "?"),
            _fmt(args.exc_type, args.exc_value, args.exc_traceback),
        )

    sys.excepthook = _sys_hook
    threading.excepthook = _thread_hook
