from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict


@dataclass
class Counter:
    _value: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def inc(self, n: int = 1) -> None:
        with self._lock:
            self._value += n

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


@dataclass
class Gauge:
    _value: float = 0.0
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def set(self, v: float) -> None:
        with self._lock:
            self._value = float(v)

    @property
    def value(self) -> float:
        with self._lock:
            return self._value


def metric_name(name: str, symbol: str | None = None) -> str:
    return f"{name}.{symbol}" if symbol else name


class Metrics:
    """Process-local counters and gauges shared by all loops of one context."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._counters: Dict[str, Counter] = {}
        self._gauges: Dict[str, Gauge] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, symbol: str | None = None) -> Counter:
        key = metric_name(name, symbol)
        with self._lock:
            if key not in self._counters:
                self._counters[key] = Counter()
            return self._counters[key]

    def gauge(self, name: str, symbol: str | None = None) -> Gauge:
        key = metric_name(name, symbol)
        with self._lock:
            if key not in self._gauges:
                self._gauges[key] = Gauge()
            return self._gauges[key]

    def incr(self, name: str, symbol: str | None = None, n: int = 1) -> None:
        if self.enabled:
            self.counter(name, symbol).inc(n)

    def observe(self, name: str, value: float, symbol: str | None = None) -> None:
        if self.enabled:
            self.gauge(name, symbol).set(value)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            counters = dict(self._counters)
            gauges = dict(self._gauges)
        out: Dict[str, float] = {k: float(c.value) for k, c in counters.items()}
        out.update({k: g.value for k, g in gauges.items()})
        return out
