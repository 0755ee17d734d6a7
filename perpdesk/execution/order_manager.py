from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from perpdesk.core.errors import AuthError, PerpDeskError
from perpdesk.core.logging import FieldLogger
from perpdesk.core.types import Order, Quote
from perpdesk.exchanges.base_gateway import OrderGateway


@dataclass
class OrderParams:
    post_only: bool = True
    cancel_existing: bool = True


@dataclass
class PlacementResult:
    orders: List[Order] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    cancelled: int = 0


class OrderManager:
    """Places quote ladders for one symbol and records per-order failures."""

    def __init__(self, gateway: OrderGateway, symbol: str, params: Optional[OrderParams] = None,
                 logger: Optional[FieldLogger] = None) -> None:
        self.gw = gateway
        self.symbol = symbol
        self.params = params or OrderParams()
        self.logger = logger or FieldLogger(name="perpdesk.orders")

    def _record(self, result: PlacementResult, what: str, exc: PerpDeskError) -> None:
        msg = f"{what}: {type(exc).__name__}: {exc}"
        result.errors.append(msg)
        self.logger.error("order_failed", symbol=self.symbol, op=what, error=str(exc), kind=type(exc).__name__)

    def cancel_all(self) -> PlacementResult:
        result = PlacementResult()
        try:
            result.cancelled = self.gw.cancel_all(self.symbol)
        except AuthError:
            raise
        except PerpDeskError as e:
            self._record(result, "cancel_all", e)
        return result

    def place_ladder(self, quotes: List[Quote], bid_enabled: bool = True, ask_enabled: bool = True) -> PlacementResult:
        """Replace resting orders with the given ladder.

        Level 0 goes through the gateway's atomic ``quote`` when both sides
        are enabled; deeper levels and one-sided quotes use single limits.
        """
        result = PlacementResult()
        if not quotes or not (bid_enabled or ask_enabled):
            return result
        top, rest = quotes[0], quotes[1:]
        single_sided = not (bid_enabled and ask_enabled)
        if single_sided or not self.params.post_only:
            if self.params.cancel_existing:
                cancelled = self.cancel_all()
                result.errors.extend(cancelled.errors)
                result.cancelled = cancelled.cancelled
                if cancelled.errors:
                    return result
            rest = quotes
        else:
            try:
                bid_order, ask_order = self.gw.quote(
                    self.symbol, top.bid_price, top.ask_price, top.size,
                    cancel_existing=self.params.cancel_existing,
                )
                result.orders.extend([bid_order, ask_order])
            except AuthError:
                raise
            except PerpDeskError as e:
                self._record(result, "quote", e)
                # a failed top level leaves the book in an unknown state
                return result
        for q in rest:
            if bid_enabled:
                self._place(result, "limit_buy", q)
            if ask_enabled:
                self._place(result, "limit_sell", q)
        return result

    def _place(self, result: PlacementResult, op: str, q: Quote) -> None:
        price = q.bid_price if op == "limit_buy" else q.ask_price
        try:
            order = getattr(self.gw, op)(self.symbol, price, q.size, post_only=self.params.post_only)
            result.orders.append(order)
        except AuthError:
            raise
        except PerpDeskError as e:
            self._record(result, f"{op}[L{q.level}]", e)
