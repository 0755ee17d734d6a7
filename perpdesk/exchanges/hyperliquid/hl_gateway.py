from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from hyperliquid.exchange import Exchange
from hyperliquid.info import Info

from perpdesk.core.clock import TimeProvider, timeframe_seconds
from perpdesk.core.errors import OrderError
from perpdesk.core.types import ZERO, Candle, Order, Position, SpreadSnapshot, SymbolMeta
from perpdesk.exchanges.base_gateway import OrderGateway, spread_from_book
from perpdesk.exchanges.hyperliquid.hl_common import (
    book_levels,
    check_cancel_response,
    infer_tick_from_l2,
    parse_order_response,
    tick_from_rules,
    translate_errors,
)
from perpdesk.risk.limits import RateLimiter

# Hyperliquid rejects orders below 10 USD notional
MIN_ORDER_NOTIONAL = Decimal("10")
DEFAULT_SLIPPAGE = 0.05


class HyperliquidGateway(OrderGateway):
    def __init__(self, address: str, info: Info, exchange: Exchange,
                 clock: Optional[TimeProvider] = None,
                 order_limiter: Optional[RateLimiter] = None,
                 read_limiter: Optional[RateLimiter] = None,
                 slippage: float = DEFAULT_SLIPPAGE) -> None:
        super().__init__(order_limiter=order_limiter, read_limiter=read_limiter)
        self.address = address
        self.info = info
        self.exchange = exchange
        self.clock = clock or TimeProvider()
        self.slippage = slippage
        self._meta_cache: Dict[str, SymbolMeta] = {}

    def normalize_symbol(self, raw_symbol: str) -> str:
        """Map ``btc`` / ``BTC-PERP`` / ``btcusdt`` style input to the venue coin name."""
        candidate = raw_symbol.strip()
        for name in (candidate, candidate.upper()):
            if name in self.info.name_to_coin:
                return name
        upper = candidate.upper()
        for suffix in ("-PERP", "USDT", "USDC", "USD"):
            if upper.endswith(suffix) and len(upper) > len(suffix):
                base = upper[: -len(suffix)]
                if base in self.info.name_to_coin:
                    return base
        raise OrderError(f"unknown symbol: {candidate}", candidate)

    # Market data

    def symbol_meta(self, symbol: str) -> SymbolMeta:
        cached = self._meta_cache.get(symbol)
        if cached is not None:
            return cached
        self._read_slot()
        with translate_errors(symbol):
            asset = self.info.name_to_asset(symbol)
            size_decimals = int(self.info.asset_to_sz_decimals[asset])
            l2 = self.info.l2_snapshot(symbol)
        tick = infer_tick_from_l2(l2)
        if tick is None:
            bids, _ = book_levels(l2)
            ref = Decimal(str(bids[0]["px"])) if bids else ZERO
            tick = tick_from_rules(ref, size_decimals)
        meta = SymbolMeta(
            symbol=symbol,
            venue="hyperliquid",
            kind="perp",
            tick=tick,
            size_decimals=size_decimals,
            min_qty=Decimal(1).scaleb(-size_decimals),
            min_notional=MIN_ORDER_NOTIONAL,
        )
        self._meta_cache[symbol] = meta
        return meta

    def price(self, symbol: str) -> Decimal:
        self._read_slot()
        with translate_errors(symbol):
            mids = self.info.all_mids()
        raw = mids.get(symbol)
        if raw is None:
            raise OrderError(f"no mid price for {symbol}", symbol)
        return Decimal(str(raw))

    def spread(self, symbol: str) -> SpreadSnapshot:
        self._read_slot()
        with translate_errors(symbol):
            bids, asks = book_levels(self.info.l2_snapshot(symbol))
        bid = Decimal(str(bids[0]["px"])) if bids else ZERO
        ask = Decimal(str(asks[0]["px"])) if asks else ZERO
        return spread_from_book(bid, ask)

    def candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        """Closed candles only, oldest first."""
        step_ms = timeframe_seconds(timeframe) * 1000
        end_ms = self.clock.now_ms()
        start_ms = end_ms - step_ms * (limit + 1)
        self._read_slot()
        with translate_errors(symbol):
            raw = self.info.candles_snapshot(symbol, timeframe, start_ms, end_ms) or []
        out = []
        for c in raw:
            if int(c.get("T", 0)) > end_ms:
                continue
            out.append(Candle(
                open_time=int(c["t"]),
                open=Decimal(str(c["o"])),
                high=Decimal(str(c["h"])),
                low=Decimal(str(c["l"])),
                close=Decimal(str(c["c"])),
                volume=Decimal(str(c.get("v", "0"))),
            ))
        out.sort(key=lambda c: c.open_time)
        return out[-limit:]

    # Account

    def _user_state(self) -> Dict[str, Any]:
        self._read_slot()
        with translate_errors():
            return self.info.user_state(self.address) or {}

    def positions(self) -> Dict[str, Position]:
        out: Dict[str, Position] = {}
        for it in self._user_state().get("assetPositions") or []:
            pos = (it or {}).get("position") or {}
            size = Decimal(str(pos.get("szi", "0")))
            if size == 0:
                continue
            coin = str(pos.get("coin"))
            entry = Decimal(str(pos.get("entryPx") or "0"))
            value = abs(Decimal(str(pos.get("positionValue") or "0")))
            mark = value / abs(size) if value > 0 else entry
            lev = (pos.get("leverage") or {}).get("value")
            out[coin] = Position(
                symbol=coin,
                size=size,
                entry_price=entry,
                mark_price=mark,
                unrealized_pnl=Decimal(str(pos.get("unrealizedPnl") or "0")),
                leverage=int(lev) if lev is not None else None,
            )
        return out

    def equity(self) -> Decimal:
        summary = self._user_state().get("marginSummary") or {}
        return Decimal(str(summary.get("accountValue", "0")))

    def open_orders(self, symbol: Optional[str] = None) -> List[Order]:
        self._read_slot()
        with translate_errors(symbol):
            raw = self.info.open_orders(self.address) or []
        out = []
        for o in raw:
            coin = str(o.get("coin"))
            if symbol is not None and coin != symbol:
                continue
            out.append(Order(
                oid=int(o["oid"]),
                symbol=coin,
                side="BUY" if o.get("side") == "B" else "SELL",
                qty=Decimal(str(o.get("sz", "0"))),
                price=Decimal(str(o["limitPx"])) if o.get("limitPx") is not None else None,
                tif="Gtc",
                flags={},
                status="resting",
            ))
        return out

    def realized_pnl(self, symbol: str, since_ts: float) -> Decimal:
        self._read_slot()
        with translate_errors(symbol):
            fills = self.info.user_fills_by_time(self.address, int(since_ts * 1000)) or []
        total = ZERO
        for f in fills:
            if f.get("coin") != symbol:
                continue
            total += Decimal(str(f.get("closedPnl", "0"))) - Decimal(str(f.get("fee", "0")))
        return total

    # Orders

    def _limit(self, symbol: str, is_buy: bool, price: Decimal, size: Decimal, post_only: bool,
               reduce_only: bool = False) -> Order:
        if size <= 0:
            raise OrderError(f"order size must be positive, got {size}", symbol)
        # Alo = add liquidity only (post-only)
        tif = "Alo" if post_only else "Gtc"
        order_type: Dict[str, Any] = {"limit": {"tif": tif}}
        with self._mutation():
            with translate_errors(symbol):
                resp = self.exchange.order(symbol, is_buy, float(size), float(price), order_type, reduce_only=reduce_only)
        return parse_order_response(
            resp, symbol, "BUY" if is_buy else "SELL", size, price, tif,
            {"post_only": post_only, "reduce_only": reduce_only},
        )

    def limit_buy(self, symbol: str, price: Decimal, size: Decimal, post_only: bool = True) -> Order:
        return self._limit(symbol, True, price, size, post_only)

    def limit_sell(self, symbol: str, price: Decimal, size: Decimal, post_only: bool = True) -> Order:
        return self._limit(symbol, False, price, size, post_only)

    def _market(self, symbol: str, is_buy: bool, size: Optional[Decimal], usd: Optional[Decimal],
                price: Optional[Decimal]) -> Order:
        if size is None:
            if usd is None:
                raise OrderError("either size or usd is required", symbol)
            size = self.size_from_usd(symbol, usd, price)
        if size <= 0:
            raise OrderError(f"order size rounds to zero for {symbol}", symbol)
        if price is not None:
            return self._limit(symbol, is_buy, price, size, post_only=False)
        with self._mutation():
            with translate_errors(symbol):
                resp = self.exchange.market_open(symbol, is_buy, float(size), None, self.slippage)
        return parse_order_response(resp, symbol, "BUY" if is_buy else "SELL", size, None, "Ioc", {"market": True})

    def buy(self, symbol: str, size: Optional[Decimal] = None, usd: Optional[Decimal] = None,
            price: Optional[Decimal] = None) -> Order:
        return self._market(symbol, True, size, usd, price)

    def sell(self, symbol: str, size: Optional[Decimal] = None, usd: Optional[Decimal] = None,
             price: Optional[Decimal] = None) -> Order:
        return self._market(symbol, False, size, usd, price)

    def close(self, symbol: str, size: Optional[Decimal] = None) -> Optional[Order]:
        pos = self.position(symbol)
        if pos is None:
            return None
        qty = abs(pos.size) if size is None else min(abs(size), abs(pos.size))
        with self._mutation():
            with translate_errors(symbol):
                resp = self.exchange.market_close(symbol, float(qty), None, self.slippage)
        if resp is None:
            return None
        side = "SELL" if pos.size > 0 else "BUY"
        return parse_order_response(resp, symbol, side, qty, None, "Ioc", {"reduce_only": True})

    def cancel_all(self, symbol: Optional[str] = None) -> int:
        opens = self.open_orders(symbol)
        if not opens:
            return 0
        requests_ = [{"coin": o.symbol, "oid": o.oid} for o in opens]
        with self._mutation():
            with translate_errors(symbol):
                resp = self.exchange.bulk_cancel(requests_)
        check_cancel_response(resp, symbol or "*")
        return len(requests_)

    def set_leverage(self, symbol: str, leverage: int, cross: bool = True) -> None:
        with self._mutation():
            with translate_errors(symbol):
                resp = self.exchange.update_leverage(int(leverage), symbol, cross)
        if not isinstance(resp, dict) or resp.get("status") != "ok":
            raise OrderError(f"leverage update failed: {resp!r}", symbol)

