from __future__ import annotations

import threading
from decimal import Decimal
from typing import List, Optional, Tuple

from perpdesk.app.context import EngineContext
from perpdesk.app.scheduler import CycleScheduler, LoopSummary
from perpdesk.core.config import MMConfig
from perpdesk.core.errors import PerpDeskError
from perpdesk.core.types import CycleResult, InventoryState, Quote, RiskVerdict
from perpdesk.execution.order_manager import OrderManager, OrderParams
from perpdesk.execution.quote_engine import QuoteEngine, keep_passive
from perpdesk.notifications.base import notify_observers
from perpdesk.risk.guardrails import DailyPnlTracker, RiskGuard, RiskLimits
from perpdesk.utils.logging_utils import RateLimitedLogger

KIND = "market_maker"

# CycleResult.status
STATUS_QUOTED = "quoted"
STATUS_DRY_RUN = "dry_run"
STATUS_ERROR = "error"

# CycleResult.action
ACTION_PLACED = "placed_orders"
ACTION_WOULD_QUOTE = "would_quote"
ACTION_CANCEL_ALL = "cancel_all"


class MarketMakerLoop:
    def __init__(self, ctx: EngineContext, config: MMConfig) -> None:
        config.symbol = ctx.gateway.normalize_symbol(config.symbol)
        self.ctx = ctx
        self.cfg = config
        self.symbol = config.symbol
        self.dry_run = config.flags.dry_run
        self.logger = ctx.logger.child(f"mm.{config.symbol}")
        self.engine = QuoteEngine(config)
        self.guard = RiskGuard(RiskLimits(
            max_inventory_usd=config.market_making.max_inventory_usd,
            stop_loss_pct=config.risk.stop_loss_pct,
            daily_loss_limit_usd=config.risk.daily_loss_limit_usd,
        ))
        self.daily = DailyPnlTracker(symbol=config.symbol)
        self.orders = OrderManager(
            ctx.gateway, config.symbol,
            OrderParams(post_only=config.execution.post_only, cancel_existing=True),
            logger=self.logger,
        )
        self._throttle = RateLimitedLogger(now_fn=ctx.clock.now)
        self._halt_cause: Optional[str] = None

    def _inventory(self) -> InventoryState:
        gw = self.ctx.gateway
        position = gw.position(self.symbol)
        unrealized = position.unrealized_pnl if position is not None else Decimal("0")
        self.daily.roll(self.ctx.clock.utc_day(), unrealized)
        realized = gw.realized_pnl(self.symbol, self.ctx.clock.utc_day_start())
        state = InventoryState.from_position(self.symbol, position, realized_pnl=realized, day=self.daily.day)
        state.daily_pnl = self.daily.daily_pnl(realized, state.unrealized_pnl)
        return state

    def _sides_allowed(self, inventory_usd: Decimal) -> Tuple[bool, bool]:
        cap = self.cfg.risk.max_position_usd
        if cap is None:
            return True, True
        step = self.cfg.market_making.order_size_usd
        return inventory_usd + step <= cap, inventory_usd - step >= -cap

    def _halt(self, result: CycleResult, verdict: RiskVerdict, state: InventoryState) -> CycleResult:
        result.status = verdict.cause
        result.action = ACTION_CANCEL_ALL
        self._halt_cause = verdict.cause
        if self._throttle.should_log("halted", verdict.cause):
            self.logger.warn("risk_halt", symbol=self.symbol, cause=verdict.cause,
                             inventory_usd=state.inventory_usd, pnl_pct=state.position_pnl_pct,
                             daily_pnl=state.daily_pnl)
        if not self.dry_run:
            cancelled = self.orders.cancel_all()
            result.errors.extend(cancelled.errors)
        return result

    def run_once(self) -> CycleResult:
        result = CycleResult(timestamp=self.ctx.clock.now(), kind=KIND, status=STATUS_ERROR)
        try:
            result = self._cycle(result)
        except PerpDeskError as e:
            result.errors.append(f"{type(e).__name__}: {e}")
            self.logger.error("cycle_error", symbol=self.symbol, error=str(e), kind=type(e).__name__)
        except Exception as e:
            result.errors.append(f"unexpected: {type(e).__name__}: {e}")
            self.logger.exception("cycle_crashed", symbol=self.symbol, error=str(e))
        if result.errors:
            result.status = STATUS_ERROR
            self.ctx.metrics.incr("mm.errors", self.symbol)
        self.ctx.metrics.incr("mm.cycles", self.symbol)
        self.ctx.store.record_cycle(result)
        notify_observers(self.ctx.observers, result, self.logger)
        return result

    def _cycle(self, result: CycleResult) -> CycleResult:
        gw = self.ctx.gateway
        book = gw.spread(self.symbol)
        state = self._inventory()
        self.ctx.metrics.observe("mm.inventory_usd", float(state.inventory_usd), self.symbol)

        verdict = self.guard.evaluate(state)
        result.verdict = verdict
        if verdict.halted:
            return self._halt(result, verdict, state)
        if self._halt_cause is not None:
            self.logger.info("risk_resume", symbol=self.symbol, previous_cause=self._halt_cause)
            self._throttle.reset("halted", self._halt_cause)
            self._halt_cause = None

        meta = gw.symbol_meta(self.symbol)
        quotes: List[Quote] = [
            keep_passive(q, book, meta.tick)
            for q in self.engine.ladder(book.mid, state, meta.tick, meta.size_decimals)
        ]
        result.quotes = quotes
        if self.cfg.flags.log_quotes:
            for q in quotes:
                self.logger.info("quote", symbol=self.symbol, quote_level=q.level, bid=q.bid_price, ask=q.ask_price,
                                 size=q.size, spread_bps=q.spread_bps.quantize(Decimal("0.01")),
                                 skew_bps=q.skew_bps, inventory_usd=state.inventory_usd)

        if quotes[0].size <= 0:
            result.errors.append(f"order size rounds to zero at mid {book.mid}")
            return result

        bid_ok, ask_ok = self._sides_allowed(state.inventory_usd)
        if self.dry_run:
            result.status = STATUS_DRY_RUN
            result.action = ACTION_WOULD_QUOTE
            return result

        placed = self.orders.place_ladder(quotes, bid_enabled=bid_ok, ask_enabled=ask_ok)
        result.orders_placed = placed.orders
        result.errors.extend(placed.errors)
        result.status = STATUS_QUOTED
        result.action = ACTION_PLACED
        self.ctx.metrics.incr("mm.orders", self.symbol, len(placed.orders))
        return result

    def run_loop(self, duration: Optional[float] = None, stop: Optional[threading.Event] = None) -> LoopSummary:
        scheduler = CycleScheduler(self.ctx.clock, self.logger, name=f"mm.{self.symbol}")
        self.logger.info("mm_start", symbol=self.symbol, dry_run=self.dry_run,
                         interval=self.cfg.market_making.requote_interval_sec, duration=duration)
        try:
            return scheduler.run(self.run_once, self.cfg.market_making.requote_interval_sec, duration, stop)
        finally:
            if not self.dry_run:
                self.shutdown()

    def shutdown(self) -> None:
        cancelled = self.orders.cancel_all()
        self.logger.info("mm_shutdown", symbol=self.symbol, cancelled=cancelled.cancelled, errors=cancelled.errors)
