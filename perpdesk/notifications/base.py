from __future__ import annotations

from typing import Iterable

from perpdesk.core.logging import FieldLogger
from perpdesk.core.types import CycleResult, Signal, Trade


class CycleObserver:
    """Receives events after a cycle has completed. Override what you need."""

    def on_signal(self, signal: Signal) -> None:
        pass

    def on_trade(self, trade: Trade) -> None:
        pass

    def on_cycle(self, result: CycleResult) -> None:
        pass


def notify_observers(observers: Iterable[CycleObserver], result: CycleResult, logger: FieldLogger) -> None:
    """Post a finished cycle to every observer; observer failures are logged only."""
    for obs in observers:
        name = type(obs).__name__
        try:
            for sig in result.signals:
                if sig.action != "hold":
                    obs.on_signal(sig)
            for trade in result.trades:
                obs.on_trade(trade)
            obs.on_cycle(result)
        except Exception as e:  # observers never break the loop
            logger.error("observer_failed", observer=name, error=str(e))
