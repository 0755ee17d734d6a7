from __future__ import annotations

import signal
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from perpdesk.core.clock import TimeProvider
from perpdesk.core.logging import FieldLogger
from perpdesk.core.types import CycleResult


@dataclass
class LoopSummary:
    cycles: int = 0
    error_cycles: int = 0
    last_result: Optional[CycleResult] = None
    stopped: bool = False


class CycleScheduler:
    """Runs a cycle function every ``interval`` seconds until stopped.

    Stop requests interrupt the wait between cycles; a running cycle always
    completes. The interval is wall-clock and not adjusted for cycle latency.
    No cycle starts once ``duration`` has elapsed, except the first.
    """

    def __init__(self, clock: TimeProvider, logger: FieldLogger, name: str = "loop") -> None:
        self.clock = clock
        self.logger = logger
        self.name = name

    def run(self,
            cycle: Callable[[], CycleResult],
            interval: float,
            duration: Optional[float] = None,
            stop: Optional[threading.Event] = None) -> LoopSummary:
        stop = stop or threading.Event()
        summary = LoopSummary()
        started = self.clock.now()
        while not stop.is_set():
            try:
                result = cycle()
            except Exception as e:  # one bad cycle never ends the loop
                self.logger.exception("cycle_crashed", loop=self.name, error=str(e))
                result = CycleResult(timestamp=self.clock.now(), kind=self.name, status="error", errors=[str(e)])
            summary.cycles += 1
            summary.last_result = result
            if result.status == "error":
                summary.error_cycles += 1
            if stop.is_set():
                break
            wait = interval
            if duration is not None:
                remaining = duration - (self.clock.now() - started)
                if remaining <= 0:
                    break
                wait = min(interval, remaining)
            if self.clock.wait(stop, wait):
                break
            if duration is not None and self.clock.now() - started >= duration:
                break
        summary.stopped = stop.is_set()
        self.logger.info("loop_end", loop=self.name, cycles=summary.cycles, error_cycles=summary.error_cycles)
        return summary


def install_sigint(stop: threading.Event, logger: FieldLogger):
    """Route SIGINT to ``stop``; returns the previous handler for restoring."""
    def _sigint(_signum, _frame):
        logger.warn("shutdown_requested")
        stop.set()

    old = signal.getsignal(signal.SIGINT)
    signal.signal(signal.SIGINT, _sigint)
    return old


def run_concurrently(targets: List[Callable[[threading.Event], LoopSummary]],
                     stop: threading.Event,
                     logger: FieldLogger) -> List[LoopSummary]:
    """Run each loop on its own thread sharing one stop flag."""
    results: List[Optional[LoopSummary]] = [None] * len(targets)

    def _runner(i: int, fn: Callable[[threading.Event], LoopSummary]) -> None:
        try:
            results[i] = fn(stop)
        except Exception as e:
            logger.exception("loop_thread_failed", index=i, error=str(e))
            results[i] = LoopSummary(stopped=True)

    threads = [threading.Thread(target=_runner, args=(i, fn), name=f"loop-{i}", daemon=True) for i, fn in enumerate(targets)]
    for t in threads:
        t.start()
    # join with a timeout so the main thread keeps receiving SIGINT
    while any(t.is_alive() for t in threads):
        for t in threads:
            t.join(timeout=0.5)
    return [r or LoopSummary() for r in results]
