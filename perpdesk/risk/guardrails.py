from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from perpdesk.core.types import (
    CAUSE_DAILY_LOSS,
    CAUSE_MAX_INVENTORY,
    CAUSE_STOP_LOSS,
    HALTED,
    ZERO,
    InventoryState,
    RiskVerdict,
)


@dataclass
class RiskLimits:
    max_inventory_usd: Optional[Decimal] = None
    stop_loss_pct: Optional[Decimal] = None
    daily_loss_limit_usd: Optional[Decimal] = None


class RiskGuard:
    """Evaluates hard stops in fixed priority order; the first match wins."""

    def __init__(self, limits: RiskLimits) -> None:
        self.limits = limits

    def evaluate(self, state: InventoryState) -> RiskVerdict:
        lim = self.limits
        if lim.max_inventory_usd is not None and abs(state.inventory_usd) >= lim.max_inventory_usd:
            return RiskVerdict(HALTED, CAUSE_MAX_INVENTORY)
        if lim.stop_loss_pct is not None and state.inventory_usd != 0 and state.position_pnl_pct <= -lim.stop_loss_pct:
            return RiskVerdict(HALTED, CAUSE_STOP_LOSS)
        if lim.daily_loss_limit_usd is not None and state.daily_pnl <= -lim.daily_loss_limit_usd:
            return RiskVerdict(HALTED, CAUSE_DAILY_LOSS)
        return RiskVerdict()


@dataclass
class DailyPnlTracker:
    """Daily PnL for one (symbol, account) pair, reset at the UTC day boundary.

    daily = realized since UTC midnight + (unrealized now - unrealized at the
    first observation of the day).
    """

    symbol: str
    day: Optional[date] = None
    unrealized_baseline: Decimal = ZERO

    def roll(self, today: date, unrealized: Decimal) -> bool:
        """Start a new day if ``today`` differs; returns True on rollover."""
        if self.day == today:
            return False
        self.day = today
        self.unrealized_baseline = unrealized
        return True

    def daily_pnl(self, realized_today: Decimal, unrealized: Decimal) -> Decimal:
        return realized_today + (unrealized - self.unrealized_baseline)
