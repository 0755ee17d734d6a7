from __future__ import annotations

from decimal import Decimal
from typing import Optional, Sequence

from perpdesk.core.config import StrategyConfig
from perpdesk.core.types import CLOSE, HOLD, LONG, SHORT, Position, Signal

HUNDRED = Decimal(100)
# Reversal exits use fixed extremes regardless of the entry thresholds
REVERSAL_OVERBOUGHT = Decimal(70)
REVERSAL_OVERSOLD = Decimal(30)


def wilder_rsi(closes: Sequence[Decimal], period: int) -> Optional[Decimal]:
    """RSI of the last close using Wilder smoothing.

    Seeds the averages with the simple mean of the first ``period`` changes,
    then applies ``avg = (avg * (period - 1) + x) / period`` for the rest.
    Returns None when fewer than ``period + 1`` closes are available.
    """
    if period < 1 or len(closes) < period + 1:
        return None
    p = Decimal(period)
    changes = [Decimal(closes[i]) - Decimal(closes[i - 1]) for i in range(1, len(closes))]
    seed = changes[:period]
    avg_gain = sum((c for c in seed if c > 0), Decimal(0)) / p
    avg_loss = sum((-c for c in seed if c < 0), Decimal(0)) / p
    for c in changes[period:]:
        gain = c if c > 0 else Decimal(0)
        loss = -c if c < 0 else Decimal(0)
        avg_gain = (avg_gain * (p - 1) + gain) / p
        avg_loss = (avg_loss * (p - 1) + loss) / p
    if avg_loss == 0:
        return Decimal(50) if avg_gain == 0 else HUNDRED
    rs = avg_gain / avg_loss
    return HUNDRED - HUNDRED / (Decimal(1) + rs)


def _confidence(distance: Decimal, span: Decimal) -> float:
    if span <= 0:
        return 0.5
    frac = max(Decimal(0), min(Decimal(1), distance / span))
    return float(Decimal("0.5") + Decimal("0.5") * frac)


class SignalEngine:
    """Maps RSI and the current position of an asset to one Signal."""

    def __init__(self, config: StrategyConfig) -> None:
        self.cfg = config

    @property
    def history_needed(self) -> int:
        return self.cfg.signals.period + 1

    def rsi(self, closes: Sequence[Decimal]) -> Optional[Decimal]:
        return wilder_rsi(closes, self.cfg.signals.period)

    def entry(self, symbol: str, rsi: Decimal) -> Signal:
        sig = self.cfg.signals
        if self.cfg.is_long_eligible(symbol) and rsi <= sig.long_entry:
            return Signal(LONG, symbol, f"RSI {rsi:.2f} <= {sig.long_entry}",
                          confidence=_confidence(sig.long_entry - rsi, sig.long_entry), rsi=rsi)
        if self.cfg.is_short_eligible(symbol) and rsi >= sig.short_entry:
            return Signal(SHORT, symbol, f"RSI {rsi:.2f} >= {sig.short_entry}",
                          confidence=_confidence(rsi - sig.short_entry, HUNDRED - sig.short_entry), rsi=rsi)
        return Signal(HOLD, symbol, f"RSI {rsi:.2f} inside entry band", rsi=rsi)

    def exit(self, position: Position, rsi: Optional[Decimal]) -> Signal:
        """Exit priority: stop-loss, take-profit, RSI reversal, hold."""
        risk = self.cfg.risk
        symbol = position.symbol
        pnl = position.pnl_pct
        if risk.stop_loss_pct is not None and pnl <= -risk.stop_loss_pct:
            return Signal(CLOSE, symbol, f"stop-loss: pnl {pnl:.2f}% <= -{risk.stop_loss_pct}%", confidence=1.0, rsi=rsi)
        if risk.take_profit_pct is not None and pnl >= risk.take_profit_pct:
            return Signal(CLOSE, symbol, f"take-profit: pnl {pnl:.2f}% >= {risk.take_profit_pct}%", confidence=1.0, rsi=rsi)
        if rsi is not None:
            if position.side == LONG and rsi >= REVERSAL_OVERBOUGHT:
                return Signal(CLOSE, symbol, f"RSI reversal: {rsi:.2f} >= {REVERSAL_OVERBOUGHT}", confidence=0.8, rsi=rsi)
            if position.side == SHORT and rsi <= REVERSAL_OVERSOLD:
                return Signal(CLOSE, symbol, f"RSI reversal: {rsi:.2f} <= {REVERSAL_OVERSOLD}", confidence=0.8, rsi=rsi)
        return Signal(HOLD, symbol, f"holding {position.side}, pnl {pnl:.2f}%", rsi=rsi)

    def apply_position_limit(self, signal: Signal, open_positions: int, has_position: bool) -> Signal:
        if not signal.is_entry:
            return signal
        if has_position:
            return signal.downgrade(f"position already open for {signal.symbol}")
        if open_positions >= self.cfg.risk.max_positions:
            return signal.downgrade(f"max positions reached ({open_positions}/{self.cfg.risk.max_positions})")
        return signal

    def evaluate(self, symbol: str, closes: Sequence[Decimal], position: Optional[Position],
                 open_positions: int) -> Signal:
        rsi = self.rsi(closes)
        if position is not None and position.size != 0:
            return self.exit(position, rsi)
        if rsi is None:
            return Signal(HOLD, symbol, f"insufficient history: {len(closes)} < {self.history_needed} closes")
        return self.apply_position_limit(self.entry(symbol, rsi), open_positions, has_position=False)
