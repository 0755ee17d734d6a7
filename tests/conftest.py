from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from perpdesk.app.context import EngineContext
from perpdesk.core.clock import TimeProvider
from perpdesk.core.metrics import Metrics
from perpdesk.core.persistence import StateStore
from perpdesk.core.types import Candle, Order, Position, SpreadSnapshot, SymbolMeta
from perpdesk.exchanges.base_gateway import OrderGateway, quantize_size, spread_from_book
from perpdesk.risk.limits import RateLimiter

# 2023-11-14 22:13:20 UTC
T0 = 1_700_000_000.0


class ManualClock(TimeProvider):
    """Clock that only moves when something sleeps."""

    def __init__(self, start: float = T0) -> None:
        super().__init__()
        self.t = start
        self.sleeps: List[float] = []

    def now(self) -> float:
        return self.t

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.t += seconds

    def wait(self, event, seconds: float) -> bool:
        self.sleep(seconds)
        return event.is_set()


class FakeGateway(OrderGateway):
    """In-memory venue: one book shared by all symbols, fills market orders at mid."""

    def __init__(self, bid: str = "99.99", ask: str = "100.01", tick: str = "0.01", size_decimals: int = 4) -> None:
        super().__init__(order_limiter=RateLimiter(10_000), read_limiter=RateLimiter(10_000))
        self.bid = Decimal(bid)
        self.ask = Decimal(ask)
        self.tick = Decimal(tick)
        self.size_decimals = size_decimals
        self.pos: Dict[str, Position] = {}
        self.equity_usd = Decimal("1000")
        self.realized = Decimal("0")
        self.closes: Dict[str, List[Decimal]] = {}
        self.resting: List[Order] = []
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self._oid = 0

    def _check(self, op: str, symbol: Optional[str] = None) -> None:
        err = self.fail.get(f"{op}:{symbol}") or self.fail.get(op)
        if err is not None:
            raise err

    def _next_oid(self) -> int:
        self._oid += 1
        return self._oid

    def ops(self) -> List[str]:
        return [c[0] for c in self.calls]

    def symbol_meta(self, symbol: str) -> SymbolMeta:
        return SymbolMeta(symbol=symbol, venue="fake", kind="perp", tick=self.tick,
                          size_decimals=self.size_decimals, min_notional=Decimal("10"))

    def price(self, symbol: str) -> Decimal:
        self._check("price", symbol)
        return (self.bid + self.ask) / 2

    def spread(self, symbol: str) -> SpreadSnapshot:
        self._check("spread", symbol)
        return spread_from_book(self.bid, self.ask)

    def candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        self._check("candles", symbol)
        closes = self.closes.get(symbol, [])[-limit:]
        return [Candle(open_time=i, open=c, high=c, low=c, close=c) for i, c in enumerate(closes)]

    def positions(self) -> Dict[str, Position]:
        self._check("positions")
        return dict(self.pos)

    def equity(self) -> Decimal:
        self._check("equity")
        return self.equity_usd

    def open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        return [o for o in self.resting if symbol is None or o.symbol == symbol]

    def realized_pnl(self, symbol: str, since_ts: float) -> Decimal:
        return self.realized

    def _rest(self, op: str, symbol: str, price: Decimal, size: Decimal, post_only: bool) -> Order:
        self.calls.append((op, symbol, price, size, post_only))
        self._check(op, symbol)
        order = Order(oid=self._next_oid(), symbol=symbol, side="BUY" if op == "limit_buy" else "SELL",
                      qty=size, price=price, tif="Alo" if post_only else "Gtc",
                      flags={"post_only": post_only}, status="resting")
        self.resting.append(order)
        return order

    def limit_buy(self, symbol, price, size, post_only=True):
        return self._rest("limit_buy", symbol, price, size, post_only)

    def limit_sell(self, symbol, price, size, post_only=True):
        return self._rest("limit_sell", symbol, price, size, post_only)

    def _fill(self, op: str, symbol: str, size, usd, price) -> Order:
        self.calls.append((op, symbol, size, usd))
        self._check(op, symbol)
        px = price if price is not None else self.price(symbol)
        qty = size if size is not None else quantize_size(usd / px, self.size_decimals)
        sign = Decimal(1) if op == "buy" else Decimal(-1)
        self.pos[symbol] = Position(symbol=symbol, size=sign * qty, entry_price=px, mark_price=px)
        return Order(oid=self._next_oid(), symbol=symbol, side=op.upper(), qty=qty, price=None, tif="Ioc",
                     flags={"market": True}, status="filled", filled_qty=qty, avg_price=px)

    def buy(self, symbol, size=None, usd=None, price=None):
        return self._fill("buy", symbol, size, usd, price)

    def sell(self, symbol, size=None, usd=None, price=None):
        return self._fill("sell", symbol, size, usd, price)

    def close(self, symbol, size=None):
        self.calls.append(("close", symbol))
        self._check("close", symbol)
        pos = self.pos.pop(symbol, None)
        if pos is None:
            return None
        return Order(oid=self._next_oid(), symbol=symbol, side="SELL" if pos.size > 0 else "BUY",
                     qty=abs(pos.size), price=None, tif="Ioc", flags={"reduce_only": True}, status="filled")

    def cancel_all(self, symbol=None):
        self.calls.append(("cancel_all", symbol))
        self._check("cancel_all", symbol)
        keep = [o for o in self.resting if symbol is not None and o.symbol != symbol]
        n = len(self.resting) - len(keep)
        self.resting = keep
        return n

    def set_leverage(self, symbol, leverage, cross=True):
        self.calls.append(("set_leverage", symbol, leverage, cross))
        self._check("set_leverage", symbol)


class RecordingObserver:
    def __init__(self):
        self.signals = []
        self.trades = []
        self.cycles = []

    def on_signal(self, signal):
        self.signals.append(signal)

    def on_trade(self, trade):
        self.trades.append(trade)

    def on_cycle(self, result):
        self.cycles.append(result)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def ctx(gateway, clock, observer):
    c = EngineContext(gateway=gateway, clock=clock, metrics=Metrics(), store=StateStore(), observers=[observer])
    yield c
    c.close()
