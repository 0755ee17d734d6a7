from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from perpdesk.core.types import Signal

CENTS = Decimal("0.01")


@dataclass
class PositionSizer:
    """USD size for entries: ``equity * size_pct / 100``.

    Leverage is set on the exchange, so it is never multiplied in here.
    """

    size_pct: Decimal

    def usd_size(self, equity: Decimal) -> Decimal:
        return (equity * self.size_pct / Decimal(100)).quantize(CENTS, rounding=ROUND_DOWN)

    def size(self, signal: Signal, equity: Decimal, min_notional: Optional[Decimal]) -> Signal:
        if not signal.is_entry:
            return signal
        usd = self.usd_size(equity)
        floor = min_notional if min_notional is not None else Decimal(0)
        if usd <= 0 or usd <= floor:
            return signal.downgrade(f"below minimum size: ${usd} <= ${floor}")
        return Signal(
            action=signal.action,
            symbol=signal.symbol,
            reason=signal.reason,
            confidence=signal.confidence,
            rsi=signal.rsi,
            usd=usd,
        )
