from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable


@dataclass
class TimeProvider:
    now_fn: Callable[[], float] = time.time
    sleep_fn: Callable[[float], None] = time.sleep

    def now(self) -> float:
        return float(self.now_fn())

    def now_ms(self) -> int:
        return int(self.now() * 1000)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self.sleep_fn(seconds)

    def wait(self, event: threading.Event, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early when ``event`` is set."""
        if seconds <= 0 or event.is_set():
            return event.is_set()
        if self.sleep_fn is time.sleep:
            return event.wait(seconds)
        self.sleep(seconds)
        return event.is_set()

    def utc_day(self) -> date:
        return datetime.fromtimestamp(self.now(), tz=timezone.utc).date()

    def utc_day_start(self) -> float:
        d = self.utc_day()
        return datetime(d.year, d.month, d.day, tzinfo=timezone.utc).timestamp()


_TIMEFRAME_UNITS = {"m": 60, "h": 3600, "d": 86400, "w": 604800}


def timeframe_seconds(timeframe: str) -> int:
    """Convert a candle interval like ``15m`` / ``4h`` / ``1d`` to seconds."""
    tf = timeframe.strip()
    if len(tf) < 2 or tf[-1] not in _TIMEFRAME_UNITS or not tf[:-1].isdigit():
        raise ValueError(f"unsupported timeframe: {timeframe!r}")
    n = int(tf[:-1])
    if n <= 0:
        raise ValueError(f"unsupported timeframe: {timeframe!r}")
    return n * _TIMEFRAME_UNITS[tf[-1]]
