# src/iqps/utils/logging_config.py
"""
Centralized logging configuration for IQPS.

Usage:
    from iqps.utils.logging_config import Logger, LogFiles

    Logger.info("Paper 12 approved", file=LogFiles.LIFECYCLE)
    Logger.error("Copy failed", file=LogFiles.ERROR)

    # Log to the default file (logs/iqps.log)
    Logger.info("General message")

Configuration via environment variables:
    IQPS_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (default: INFO)
    IQPS_LOG_DIR: Base directory for log files (default: logs/)
    IQPS_LOG_MAX_BYTES: Max size per log file in bytes (default: 10MB)
    IQPS_LOG_BACKUP_COUNT: Number of rotated files to keep (default: 5)
"""

from __future__ import annotations

import inspect
import os
import threading
import traceback
import uuid
from contextvars import ContextVar
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

import yaml

_trace_id_var: ContextVar[Optional[str]] = ContextVar("iqps_trace_id", default=None)

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_FILE = "iqps.log"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_BACKUP_COUNT = 5
DEFAULT_FORMAT = "{timestamp} [{level}] [{trace_id}] {filename}:{lineno} - {message}"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_CONFIG_FILE = Path(__file__).parent / "log_config.yaml"

LOG_LEVELS = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}


class _LogFilesMeta(type):
    """Allows attribute access like LogFiles.LIFECYCLE."""

    def __getattr__(cls, name: str) -> str:
        files = cls._load()
        key = name.lower()
        if key in files:
            return files[key]
        raise AttributeError(f"Log file '{name}' not found in config")


class LogFiles(metaclass=_LogFilesMeta):
    """
    Log file paths, relative to the log directory.

    Defaults live here; `log_config.yaml` next to this module may override or
    add entries under its `files` section.
    """

    _files: Optional[Dict[str, str]] = None

    @classmethod
    def _load(cls) -> Dict[str, str]:
        if cls._files is not None:
            return cls._files

        files = {
            "api": "api/api.log",
            "search": "api/search.log",
            "lifecycle": "lifecycle/lifecycle.log",
            "import": "import/import.log",
            "notify": "notify/notify.log",
            "error": "errors/error.log",
        }
        if LOG_CONFIG_FILE.exists():
            with open(LOG_CONFIG_FILE, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
            files.update({str(k).lower(): str(v) for k, v in (config.get("files") or {}).items()})

        cls._files = files
        return files

    @classmethod
    def get(cls, name: str) -> str:
        return cls._load().get(name.lower(), f"{name}/{name}.log")


_config: dict = {}
_initialized = False
_handlers: Dict[str, RotatingFileHandler] = {}
_handlers_lock = threading.Lock()


def _get_config() -> dict:
    return {
        "level": os.environ.get("IQPS_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        "base_dir": os.environ.get("IQPS_LOG_DIR", DEFAULT_LOG_DIR),
        "max_bytes": int(os.environ.get("IQPS_LOG_MAX_BYTES", DEFAULT_MAX_BYTES)),
        "backup_count": int(os.environ.get("IQPS_LOG_BACKUP_COUNT", DEFAULT_BACKUP_COUNT)),
    }


def _get_handler(file_path: str) -> RotatingFileHandler:
    with _handlers_lock:
        handler = _handlers.get(file_path)
        if handler is None:
            path = Path(file_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                filename=str(path),
                maxBytes=_config.get("max_bytes", DEFAULT_MAX_BYTES),
                backupCount=_config.get("backup_count", DEFAULT_BACKUP_COUNT),
                encoding="utf-8",
            )
            _handlers[file_path] = handler
        return handler


def _resolve_file_path(file: Optional[str]) -> str:
    base_dir = _config.get("base_dir", DEFAULT_LOG_DIR)
    return str(Path(base_dir) / (file or DEFAULT_LOG_FILE))


def _should_log(level: str) -> bool:
    current = _config.get("level", DEFAULT_LOG_LEVEL)
    return LOG_LEVELS.get(level, 0) >= LOG_LEVELS.get(current, 0)


def _write_log(level: str, message: str, file: Optional[str] = None) -> None:
    if not _should_log(level):
        return

    # Skip _write_log and the public Logger method
    frame = inspect.currentframe()
    caller = frame.f_back.f_back if frame and frame.f_back else None
    filename = os.path.basename(caller.f_code.co_filename) if caller else "unknown"
    lineno = caller.f_lineno if caller else 0

    line = DEFAULT_FORMAT.format(
        timestamp=datetime.now().strftime(DEFAULT_DATE_FORMAT),
        level=level,
        trace_id=_trace_id_var.get() or "-",
        filename=filename,
        lineno=lineno,
        message=message,
    )

    handler = _get_handler(_resolve_file_path(file))
    record_text = line + "\n"
    handler.acquire()
    try:
        if handler.stream is None:
            handler.stream = handler._open()
        handler.stream.write(record_text)
        handler.stream.flush()
    finally:
        handler.release()


class Logger:
    """
    Static logger writing to per-concern files.

    Initialised lazily from the environment on first use; call `Logger.init()`
    at startup to override settings.
    """

    @staticmethod
    def init(
        level: Optional[str] = None,
        base_dir: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        global _initialized, _config

        if _initialized:
            return

        _config = _get_config()
        if level:
            _config["level"] = level.upper()
        if base_dir:
            _config["base_dir"] = base_dir
        if max_bytes:
            _config["max_bytes"] = max_bytes
        if backup_count:
            _config["backup_count"] = backup_count

        _initialized = True

    @staticmethod
    def _ensure_init() -> None:
        if not _initialized:
            Logger.init()

    @staticmethod
    def debug(message: str, file: Optional[str] = None) -> None:
        Logger._ensure_init()
        _write_log("DEBUG", message, file)

    @staticmethod
    def info(message: str, file: Optional[str] = None) -> None:
        Logger._ensure_init()
        _write_log("INFO", message, file)

    @staticmethod
    def warning(message: str, file: Optional[str] = None) -> None:
        Logger._ensure_init()
        _write_log("WARNING", message, file)

    @staticmethod
    def error(message: str, file: Optional[str] = None) -> None:
        Logger._ensure_init()
        _write_log("ERROR", message, file)

    @staticmethod
    def exception(message: str, exc: BaseException, file: Optional[str] = None) -> None:
        """Log an error with its traceback. Tracebacks only ever go to log files."""
        Logger._ensure_init()
        detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()
        _write_log("ERROR", f"{message}: {exc}\n{detail}", file)

    @staticmethod
    def set_level(level: str) -> None:
        Logger._ensure_init()
        _config["level"] = level.upper()

    @staticmethod
    def close() -> None:
        """Close all file handlers and reset, so the next call re-reads the environment."""
        global _initialized
        with _handlers_lock:
            for handler in _handlers.values():
                handler.close()
            _handlers.clear()
        _initialized = False


# ============================================================================
# Trace ID Management
# ============================================================================


def generate_trace_id() -> str:
    return f"req-{uuid.uuid4().hex[:12]}"


def set_trace_id(trace_id: Optional[str] = None) -> str:
    """Set the trace id for the current request context and return it."""
    tid = trace_id or generate_trace_id()
    _trace_id_var.set(tid)
    return tid


def get_trace_id() -> Optional[str]:
    return _trace_id_var.get()


def clear_trace_id() -> None:
    _trace_id_var.set(None)
