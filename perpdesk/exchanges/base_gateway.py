from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from decimal import ROUND_DOWN, Decimal
from typing import Dict, List, Optional, Tuple

from perpdesk.core.errors import OrderError
from perpdesk.core.types import Candle, Order, Position, SpreadSnapshot, SymbolMeta
from perpdesk.risk.limits import ORDER_OPS_PER_SEC, READ_OPS_PER_SEC, RateLimiter


def quantize_size(qty: Decimal, size_decimals: int) -> Decimal:
    quantum = Decimal(1).scaleb(-size_decimals)
    return qty.quantize(quantum, rounding=ROUND_DOWN)


def spread_from_book(bid: Decimal, ask: Decimal) -> SpreadSnapshot:
    if bid <= 0 or ask <= 0:
        raise OrderError(f"empty book side: bid={bid} ask={ask}")
    mid = (bid + ask) / Decimal(2)
    return SpreadSnapshot(bid=bid, ask=ask, mid=mid, spread_bps=(ask - bid) / mid * Decimal(10000))


class OrderGateway(ABC):
    """Market data and order capability for one trading account.

    Implementations call ``_read_slot()`` before every read and wrap every
    order mutation in ``with self._mutation():``. Loops sharing one gateway
    then stay within venue limits and never interleave order changes.
    """

    def __init__(self,
                 order_limiter: Optional[RateLimiter] = None,
                 read_limiter: Optional[RateLimiter] = None) -> None:
        self._order_limiter = order_limiter or RateLimiter(ORDER_OPS_PER_SEC, 1.0)
        self._read_limiter = read_limiter or RateLimiter(READ_OPS_PER_SEC, 1.0)
        self._mutation_lock = threading.RLock()

    def _read_slot(self) -> None:
        self._read_limiter.acquire()

    def _mutation(self) -> "threading.RLock":
        self._order_limiter.acquire()
        return self._mutation_lock

    def normalize_symbol(self, raw_symbol: str) -> str:
        return raw_symbol.strip().upper()

    # Market data
    @abstractmethod
    def symbol_meta(self, symbol: str) -> SymbolMeta:
        raise NotImplementedError

    @abstractmethod
    def price(self, symbol: str) -> Decimal:
        raise NotImplementedError

    @abstractmethod
    def spread(self, symbol: str) -> SpreadSnapshot:
        raise NotImplementedError

    @abstractmethod
    def candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        raise NotImplementedError

    # Account
    @abstractmethod
    def positions(self) -> Dict[str, Position]:
        raise NotImplementedError

    def position(self, symbol: str) -> Optional[Position]:
        return self.positions().get(symbol)

    @abstractmethod
    def equity(self) -> Decimal:
        raise NotImplementedError

    @abstractmethod
    def open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        raise NotImplementedError

    @abstractmethod
    def realized_pnl(self, symbol: str, since_ts: float) -> Decimal:
        raise NotImplementedError

    # Orders
    @abstractmethod
    def limit_buy(self, symbol: str, price: Decimal, size: Decimal, post_only: bool = True) -> Order:
        raise NotImplementedError

    @abstractmethod
    def limit_sell(self, symbol: str, price: Decimal, size: Decimal, post_only: bool = True) -> Order:
        raise NotImplementedError

    @abstractmethod
    def buy(self, symbol: str, size: Optional[Decimal] = None, usd: Optional[Decimal] = None,
            price: Optional[Decimal] = None) -> Order:
        raise NotImplementedError

    @abstractmethod
    def sell(self, symbol: str, size: Optional[Decimal] = None, usd: Optional[Decimal] = None,
             price: Optional[Decimal] = None) -> Order:
        raise NotImplementedError

    @abstractmethod
    def close(self, symbol: str, size: Optional[Decimal] = None) -> Optional[Order]:
        raise NotImplementedError

    @abstractmethod
    def cancel_all(self, symbol: Optional[str] = None) -> int:
        raise NotImplementedError

    @abstractmethod
    def set_leverage(self, symbol: str, leverage: int, cross: bool = True) -> None:
        raise NotImplementedError

    def quote(self, symbol: str, bid: Decimal, ask: Decimal, size: Decimal,
              cancel_existing: bool = True) -> Tuple[Order, Order]:
        """Replace resting orders with one post-only bid and one post-only ask."""
        if ask <= bid:
            raise OrderError(f"crossed quote: bid={bid} ask={ask}", symbol)
        with self._mutation_lock:
            if cancel_existing:
                self.cancel_all(symbol)
            bid_order = self.limit_buy(symbol, bid, size, post_only=True)
            ask_order = self.limit_sell(symbol, ask, size, post_only=True)
        return bid_order, ask_order

    def size_from_usd(self, symbol: str, usd: Decimal, price: Optional[Decimal] = None) -> Decimal:
        px = price if price is not None else self.price(symbol)
        if px <= 0:
            raise OrderError(f"no price for {symbol}", symbol)
        meta = self.symbol_meta(symbol)
        return quantize_size(usd / px, meta.size_decimals)
