from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque


@dataclass
class RateLimiter:
    """Sliding-window limiter: at most ``max_actions`` per ``window_s`` seconds."""

    max_actions: int
    window_s: float = 1.0
    now_fn: Callable[[], float] = time.monotonic
    sleep_fn: Callable[[float], None] = time.sleep
    _times: Deque[float] = field(default_factory=deque)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def _evict(self, now: float) -> None:
        cutoff = now - self.window_s
        while self._times and self._times[0] <= cutoff:
            self._times.popleft()

    def allow(self) -> bool:
        with self._lock:
            now = self.now_fn()
            self._evict(now)
            if len(self._times) < self.max_actions:
                self._times.append(now)
                return True
            return False

    def wait_time(self) -> float:
        with self._lock:
            now = self.now_fn()
            self._evict(now)
            if len(self._times) < self.max_actions:
                return 0.0
            return max(0.0, self._times[0] + self.window_s - now)

    def acquire(self) -> None:
        """Block until a slot is free, then take it."""
        while not self.allow():
            self.sleep_fn(max(self.wait_time(), 0.001))


# Documented venue limits per account
ORDER_OPS_PER_SEC = 10
READ_OPS_PER_SEC = 20
