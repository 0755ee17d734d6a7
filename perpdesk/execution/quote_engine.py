from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal
from typing import List, Optional

from perpdesk.core.config import MMConfig
from perpdesk.core.types import InventoryState, Quote, SpreadSnapshot
from perpdesk.exchanges.base_gateway import quantize_size

BPS = Decimal(10000)
TWO = Decimal(2)


def round_to_tick(px: Decimal, tick: Decimal, rounding: str) -> Decimal:
    if tick <= 0:
        return px
    return (px / tick).to_integral_value(rounding=rounding) * tick


class QuoteEngine:
    """Two-sided quotes around the mid, skewed against current inventory.

    Long inventory shifts both sides down so the ask fills first; short
    inventory shifts both up. The spread never drops below
    ``max(min_spread_bps, 2 * min_edge_bps)`` and rounding to tick only
    widens it.
    """

    def __init__(self, config: MMConfig) -> None:
        self.cfg = config
        self.mm = config.market_making

    @property
    def spread_floor_bps(self) -> Decimal:
        return max(self.mm.min_spread_bps, TWO * self.cfg.execution.min_edge_bps)

    @property
    def max_skew_bps(self) -> Decimal:
        return self.mm.max_inventory_usd / Decimal(100) * self.mm.skew_per_100_usd

    def skew_bps(self, inventory_usd: Decimal) -> Decimal:
        cap = self.mm.max_inventory_usd
        clamped = max(-cap, min(cap, inventory_usd))
        return clamped / Decimal(100) * self.mm.skew_per_100_usd

    def compute(self, mid: Decimal, inventory: InventoryState, tick: Decimal = Decimal("0"),
                size_decimals: Optional[int] = None, level: int = 0) -> Quote:
        if mid <= 0:
            raise ValueError(f"mid price must be positive, got {mid}")
        half_spread = (self.mm.base_spread_bps / BPS) * mid / TWO * Decimal(level + 1)
        skew_bps = self.skew_bps(inventory.inventory_usd)
        skew_amount = (skew_bps / BPS) * mid

        bid = mid - half_spread - skew_amount
        ask = mid + half_spread - skew_amount

        floor_bps = self.spread_floor_bps
        if (ask - bid) / mid * BPS < floor_bps:
            center = mid - skew_amount
            half_floor = (floor_bps / BPS) * mid / TWO
            bid = center - half_floor
            ask = center + half_floor

        # away from mid
        bid = round_to_tick(bid, tick, ROUND_FLOOR)
        ask = round_to_tick(ask, tick, ROUND_CEILING)

        size = self.mm.order_size_usd / mid
        if size_decimals is not None:
            size = quantize_size(size, size_decimals)

        return Quote(
            bid_price=bid,
            ask_price=ask,
            size=size,
            spread_bps=(ask - bid) / mid * BPS,
            skew_bps=skew_bps,
            mid=mid,
            level=level,
        )

    def ladder(self, mid: Decimal, inventory: InventoryState, tick: Decimal = Decimal("0"),
               size_decimals: Optional[int] = None) -> List[Quote]:
        return [self.compute(mid, inventory, tick, size_decimals, level=k) for k in range(self.mm.levels)]


def keep_passive(quote: Quote, book: SpreadSnapshot, tick: Decimal) -> Quote:
    """Pull quote sides that would cross the live book back to the touch.

    A post-only bid at or above the best ask (or ask at or below the best
    bid) is rejected by the venue, so clamp it one tick inside. This can
    only widen the quote.
    """
    step = tick if tick > 0 else Decimal(0)
    bid, ask = quote.bid_price, quote.ask_price
    if book.ask > 0 and bid >= book.ask:
        bid = book.ask - step if step > 0 else book.bid
    if book.bid > 0 and ask <= book.bid:
        ask = book.bid + step if step > 0 else book.ask
    if bid == quote.bid_price and ask == quote.ask_price:
        return quote
    return Quote(
        bid_price=bid,
        ask_price=ask,
        size=quote.size,
        spread_bps=(ask - bid) / quote.mid * BPS,
        skew_bps=quote.skew_bps,
        mid=quote.mid,
        level=quote.level,
    )
