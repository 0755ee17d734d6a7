from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

ZERO = Decimal("0")

# Signal actions
LONG = "long"
SHORT = "short"
CLOSE = "close"
HOLD = "hold"

# Risk states and causes
ACTIVE = "ACTIVE"
HALTED = "HALTED"
CAUSE_NONE = "none"
CAUSE_MAX_INVENTORY = "max_inventory"
CAUSE_STOP_LOSS = "stop_loss"
CAUSE_DAILY_LOSS = "daily_loss_limit"


@dataclass
class SymbolMeta:
    symbol: str
    venue: str
    kind: str
    tick: Decimal
    size_decimals: int
    min_qty: Optional[Decimal] = None
    min_notional: Optional[Decimal] = None


@dataclass
class SpreadSnapshot:
    bid: Decimal
    ask: Decimal
    mid: Decimal
    spread_bps: Decimal


@dataclass
class Candle:
    open_time: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal = ZERO


@dataclass
class Order:
    oid: Optional[int]
    symbol: str
    side: str
    qty: Decimal
    price: Optional[Decimal]
    tif: str
    flags: Dict[str, bool]
    status: str
    filled_qty: Decimal = ZERO
    avg_price: Optional[Decimal] = None


@dataclass
class Position:
    symbol: str
    size: Decimal
    entry_price: Decimal
    mark_price: Decimal
    unrealized_pnl: Decimal = ZERO
    leverage: Optional[int] = None

    @property
    def side(self) -> str:
        return LONG if self.size > 0 else SHORT

    @property
    def notional_usd(self) -> Decimal:
        # signed: positive when long
        return self.size * self.mark_price

    @property
    def pnl_pct(self) -> Decimal:
        entry_notional = abs(self.size) * self.entry_price
        if entry_notional <= 0:
            return ZERO
        return self.unrealized_pnl / entry_notional * Decimal(100)


@dataclass
class InventoryState:
    symbol: str
    inventory_usd: Decimal = ZERO
    realized_pnl: Decimal = ZERO
    unrealized_pnl: Decimal = ZERO
    daily_pnl: Decimal = ZERO
    position_pnl_pct: Decimal = ZERO
    day: Optional[date] = None

    @classmethod
    def from_position(cls, symbol: str, position: Optional[Position], **extra) -> "InventoryState":
        if position is None or position.size == 0:
            return cls(symbol=symbol, **extra)
        return cls(
            symbol=symbol,
            inventory_usd=position.notional_usd,
            unrealized_pnl=position.unrealized_pnl,
            position_pnl_pct=position.pnl_pct,
            **extra,
        )


@dataclass
class Quote:
    bid_price: Decimal
    ask_price: Decimal
    size: Decimal
    spread_bps: Decimal
    skew_bps: Decimal
    mid: Decimal
    level: int = 0


@dataclass
class Signal:
    action: str
    symbol: str
    reason: str
    confidence: float = 0.0
    rsi: Optional[Decimal] = None
    size: Optional[Decimal] = None
    usd: Optional[Decimal] = None

    @property
    def is_entry(self) -> bool:
        return self.action in (LONG, SHORT)

    def downgrade(self, reason: str) -> "Signal":
        return Signal(action=HOLD, symbol=self.symbol, reason=reason, confidence=0.0, rsi=self.rsi)


@dataclass
class RiskVerdict:
    state: str = ACTIVE
    cause: str = CAUSE_NONE

    @property
    def halted(self) -> bool:
        return self.state == HALTED


@dataclass
class Trade:
    symbol: str
    action: str
    usd: Optional[Decimal] = None
    size: Optional[Decimal] = None
    order: Optional[Order] = None
    dry_run: bool = False


@dataclass
class CycleResult:
    timestamp: float
    kind: str
    status: str
    action: Optional[str] = None
    quotes: List[Quote] = field(default_factory=list)
    signals: List[Signal] = field(default_factory=list)
    trades: List[Trade] = field(default_factory=list)
    orders_placed: List[Order] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    skipped: bool = False
    reason: Optional[str] = None
    verdict: Optional[RiskVerdict] = None

    @property
    def ok(self) -> bool:
        return not self.errors
