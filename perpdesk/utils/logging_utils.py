from __future__ import annotations

import logging
import os
import threading
import time
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, Dict, Optional

from perpdesk.core.logging import LOG_FORMAT


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def setup_app_logger(logger_name: str,
                     *,
                     log_level: str = "INFO",
                     log_file: Optional[str] = None,
                     log_max_bytes: Optional[int] = None,
                     log_backup_count: Optional[int] = None,
                     disable_console_logging: Optional[bool] = None) -> Dict[str, Any]:
    """Attach a rotating file handler to ``logger_name``.

    Environment variables LOG_LEVEL, LOG_FILE, LOG_MAX_BYTES, LOG_BACKUP_COUNT
    and DISABLE_CONSOLE_LOGGING take precedence over the arguments.
    """
    level_str = os.environ.get("LOG_LEVEL", log_level or "INFO")
    level = getattr(logging, level_str.upper(), logging.INFO)

    file_path = os.environ.get("LOG_FILE", log_file or f"logs/{logger_name}.log")
    d = os.path.dirname(file_path)
    if d:
        os.makedirs(d, exist_ok=True)

    max_bytes = _env_int("LOG_MAX_BYTES", 10 * 1024 * 1024 if log_max_bytes is None else int(log_max_bytes))
    backup_count = _env_int("LOG_BACKUP_COUNT", 5 if log_backup_count is None else int(log_backup_count))

    env_disable = os.environ.get("DISABLE_CONSOLE_LOGGING")
    if env_disable is not None:
        disable_console = env_disable == "1"
    else:
        disable_console = bool(disable_console_logging) if disable_console_logging is not None else False

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    fmt = logging.Formatter(LOG_FORMAT)

    has_file = False
    for h in list(logger.handlers):
        if isinstance(h, RotatingFileHandler):
            has_file = True
            h.setFormatter(fmt)
        elif isinstance(h, logging.StreamHandler):
            if disable_console:
                logger.removeHandler(h)
            else:
                h.setFormatter(fmt)

    if not has_file:
        fh = RotatingFileHandler(file_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(fmt)
        logger.addHandler(fh)
    logger.propagate = False

    return {
        "file": file_path,
        "level": level_str,
        "max_bytes": max_bytes,
        "backup_count": backup_count,
        "disable_console": disable_console,
    }


class RateLimitedLogger:
    """Lets one message per key through every ``interval`` seconds."""

    def __init__(self,
                 min_interval_seconds: Optional[Dict[str, float]] = None,
                 now_fn: Callable[[], float] = time.time) -> None:
        self.last_log_times: Dict[str, float] = {}
        self.min_intervals = min_interval_seconds or {
            "default": 60,
            "halted": 60,
            "quote": 0,
        }
        self._now = now_fn
        self._lock = threading.Lock()

    def should_log(self, log_type: str, key: str = "") -> bool:
        slot = f"{log_type}:{key}"
        interval = self.min_intervals.get(log_type, self.min_intervals.get("default", 60))
        now = self._now()
        with self._lock:
            last_time = self.last_log_times.get(slot)
            if last_time is None or now - last_time >= interval:
                self.last_log_times[slot] = now
                return True
        return False

    def reset(self, log_type: str, key: str = "") -> None:
        with self._lock:
            self.last_log_times.pop(f"{log_type}:{key}", None)
