from __future__ import annotations

import logging
import os
import sys
import threading
from logging import FileHandler
from logging.handlers import TimedRotatingFileHandler


APP_LOG_NAME = "grower.log"
ERROR_LOG_NAME = "errors.log"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_DATEFMT = "%Y-%m-%d %H:%M:%S"

_orig_excepthook = None  # type: ignore[var-annotated]
_setup_lock = threading.Lock()


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)) or default)
    except ValueError:
        return default


def _is_writable_dir(path: str) -> bool:
    try:
        os.makedirs(path, exist_ok=True)
        probe = os.path.join(path, ".write-test")
        with open(probe, "a", encoding="utf-8"):
            pass
        os.remove(probe)
        return True
    except OSError:
        return False


def _pick_logs_dir() -> str:
    """First writable of: GROWER_LOG_DIR, ./logs, XDG state, ~/.cache, /tmp."""
    candidates: list[str] = []
    env_dir = os.getenv("GROWER_LOG_DIR")
    if env_dir:
        candidates.append(env_dir)
    candidates.append(os.path.join(os.getcwd(), "logs"))
    xdg_state = os.getenv("XDG_STATE_HOME")
    home = os.path.expanduser("~")
    if xdg_state:
        candidates.append(os.path.join(xdg_state, "grower", "logs"))
    elif home:
        candidates.append(os.path.join(home, ".local", "state", "grower", "logs"))
    if home:
        candidates.append(os.path.join(home, ".cache", "grower", "logs"))
    candidates.append(os.path.join("/tmp", f"grower-{os.getpid()}", "logs"))
    for d in candidates:
        if _is_writable_dir(d):
            return d
    return "/tmp"


class _NonErrorFilter(logging.Filter):
    """Keeps ERROR and CRITICAL out of the app log; they go to the error log."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < logging.ERROR


def setup_logging(level: str = "INFO") -> str:
    """Configure the root logger and return the directory logs are written to.

    Handlers: console, a daily-rotated app log (below ERROR) and a
    daily-rotated error log with longer retention. Unhandled exceptions in
    the main thread and in worker threads are logged before the default
    hook runs.
    """
    global _orig_excepthook

    logs_dir = _pick_logs_dir()

    root = logging.getLogger()
    root.setLevel(level.upper())

    fmt = os.getenv("GROWER_LOG_FORMAT", DEFAULT_FORMAT)
    datefmt = os.getenv("GROWER_LOG_DATEFMT", DEFAULT_DATEFMT)
    formatter = logging.Formatter(fmt=fmt, datefmt=datefmt)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)

    app_retention = _int_env("LOG_RETENTION_DAYS", 14)
    app_log: FileHandler = TimedRotatingFileHandler(
        os.path.join(logs_dir, APP_LOG_NAME), when="midnight", interval=1, backupCount=app_retention, encoding="utf-8"
    )
    app_log.addFilter(_NonErrorFilter())
    app_log.setFormatter(formatter)

    err_retention = _int_env("ERROR_LOG_RETENTION_DAYS", 90)
    error_log: FileHandler = TimedRotatingFileHandler(
        os.path.join(logs_dir, ERROR_LOG_NAME), when="midnight", interval=1, backupCount=err_retention, encoding="utf-8"
    )
    error_log.setLevel(logging.ERROR)
    error_log.setFormatter(formatter)

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.addHandler(console_handler)
    root.addHandler(app_log)
    root.addHandler(error_log)

    # aiosqlite logs every statement at DEBUG
    logging.getLogger("aiosqlite").setLevel(logging.INFO)
    logging.captureWarnings(True)

    with _setup_lock:
        if _orig_excepthook is None:
            _orig_excepthook = sys.excepthook

            def _log_excepthook(exc_type, exc, tb):
                try:
                    logging.getLogger("unhandled").error("Unhandled exception", exc_info=(exc_type, exc, tb))
                finally:
                    _orig_excepthook(exc_type, exc, tb)  # type: ignore[misc]

            sys.excepthook = _log_excepthook  # type: ignore[assignment]

            def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
                logging.getLogger("threading").error(
                    "Unhandled thread exception in %s",
                    getattr(args.thread, "name", "thread"),
                    exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
                )

            threading.excepthook = _thread_excepthook

    return logs_dir
