from __future__ import annotations

import threading
from decimal import Decimal
from typing import Dict, Optional, Set

from perpdesk.app.context import EngineContext
from perpdesk.app.scheduler import CycleScheduler, LoopSummary
from perpdesk.core.config import StrategyConfig
from perpdesk.core.errors import PerpDeskError
from perpdesk.core.types import CLOSE, HOLD, LONG, SHORT, CycleResult, Position, Signal, Trade
from perpdesk.notifications.base import notify_observers
from perpdesk.strategy.signals import SignalEngine
from perpdesk.strategy.sizing import PositionSizer

KIND = "strategy"

STATUS_OK = "ok"
STATUS_DRY_RUN = "dry_run"
STATUS_SKIPPED = "skipped"
STATUS_ERROR = "error"


class StrategyLoop:
    """Timeframe-gated RSI strategy over one symbol or a long/short basket."""

    def __init__(self, ctx: EngineContext, config: StrategyConfig) -> None:
        gw = ctx.gateway
        if config.symbol is not None:
            config.symbol = gw.normalize_symbol(config.symbol)
        config.long_assets = [gw.normalize_symbol(s) for s in config.long_assets]
        config.short_assets = [gw.normalize_symbol(s) for s in config.short_assets]
        self.ctx = ctx
        self.cfg = config
        self.dry_run = config.flags.dry_run
        self.logger = ctx.logger.child(f"strategy.{config.name}")
        self.signals = SignalEngine(config)
        self.sizer = PositionSizer(config.position.size_pct)
        # enough candles for the Wilder averages to settle
        self.history_limit = max(config.signals.period * 3, config.signals.period + 1)
        self._leverage_set: Set[str] = set()

    def _gate(self, now: float) -> Optional[str]:
        last = self.ctx.store.last_run(self.cfg.name)
        if last is None:
            return None
        elapsed = now - last
        window = self.cfg.timeframe_seconds
        if elapsed < window:
            return f"timeframe {self.cfg.timeframe} not elapsed: next evaluation in {int(window - elapsed)}s"
        return None

    def run(self, force: bool = False) -> CycleResult:
        now = self.ctx.clock.now()
        if not force:
            reason = self._gate(now)
            if reason is not None:
                self.logger.debug("strategy_skipped", reason=reason)
                return CycleResult(timestamp=now, kind=KIND, status=STATUS_SKIPPED, skipped=True, reason=reason)

        result = CycleResult(timestamp=now, kind=KIND, status=STATUS_DRY_RUN if self.dry_run else STATUS_OK)
        assets = self.cfg.assets()
        try:
            positions = {s: p for s, p in self.ctx.gateway.positions().items() if s in assets}
        except PerpDeskError as e:
            # nothing evaluated; leave last_run untouched so the next poll retries
            result.errors.append(f"positions: {type(e).__name__}: {e}")
            result.status = STATUS_ERROR
            self.logger.error("positions_failed", error=str(e), kind=type(e).__name__)
            return self._finish(result)

        equity: Optional[Decimal] = None
        for symbol in assets:
            try:
                if equity is None and symbol not in positions:
                    equity = self.ctx.gateway.equity()
                signal = self._evaluate(symbol, positions, equity or Decimal(0))
                result.signals.append(signal)
                trade = self._execute(signal, positions.get(symbol))
                if trade is not None:
                    result.trades.append(trade)
                    self._apply_trade(trade, positions)
            except PerpDeskError as e:
                result.errors.append(f"{symbol}: {type(e).__name__}: {e}")
                self.logger.error("asset_failed", symbol=symbol, error=str(e), kind=type(e).__name__)
            except Exception as e:
                result.errors.append(f"{symbol}: unexpected: {type(e).__name__}: {e}")
                self.logger.exception("asset_crashed", symbol=symbol, error=str(e))

        if result.errors:
            result.status = STATUS_ERROR
        self.ctx.store.set_last_run(self.cfg.name, now)
        return self._finish(result)

    def _finish(self, result: CycleResult) -> CycleResult:
        self.ctx.metrics.incr("strategy.cycles", self.cfg.name)
        if result.errors:
            self.ctx.metrics.incr("strategy.errors", self.cfg.name, len(result.errors))
        self.ctx.metrics.incr("strategy.trades", self.cfg.name, len(result.trades))
        self.logger.info(
            "strategy_cycle",
            status=result.status,
            signals=[f"{s.symbol}:{s.action}" for s in result.signals],
            trades=len(result.trades),
            errors=len(result.errors),
        )
        self.ctx.store.record_cycle(result)
        notify_observers(self.ctx.observers, result, self.logger)
        return result

    def _evaluate(self, symbol: str, positions: Dict[str, Position], equity: Decimal) -> Signal:
        candles = self.ctx.gateway.candles(symbol, self.cfg.timeframe, self.history_limit)
        closes = [c.close for c in candles]
        signal = self.signals.evaluate(symbol, closes, positions.get(symbol), open_positions=len(positions))
        if signal.is_entry:
            meta = self.ctx.gateway.symbol_meta(symbol)
            signal = self.sizer.size(signal, equity, meta.min_notional)
        self.logger.info("signal", symbol=symbol, action=signal.action, rsi=signal.rsi, reason=signal.reason,
                         confidence=round(signal.confidence, 3), usd=signal.usd)
        return signal

    def _ensure_leverage(self, symbol: str) -> None:
        if symbol in self._leverage_set:
            return
        self.ctx.gateway.set_leverage(symbol, self.cfg.position.leverage, cross=True)
        self._leverage_set.add(symbol)
        self.logger.info("leverage_set", symbol=symbol, leverage=self.cfg.position.leverage)

    def _execute(self, signal: Signal, position: Optional[Position]) -> Optional[Trade]:
        if signal.action == HOLD:
            return None
        if signal.action == CLOSE:
            size = abs(position.size) if position is not None else None
            if self.dry_run:
                return Trade(signal.symbol, CLOSE, size=size, dry_run=True)
            order = self.ctx.gateway.close(signal.symbol)
            return Trade(signal.symbol, CLOSE, size=size, order=order)

        if self.dry_run:
            return Trade(signal.symbol, signal.action, usd=signal.usd, dry_run=True)
        self._ensure_leverage(signal.symbol)
        if signal.action == LONG:
            order = self.ctx.gateway.buy(signal.symbol, usd=signal.usd)
        else:
            order = self.ctx.gateway.sell(signal.symbol, usd=signal.usd)
        return Trade(signal.symbol, signal.action, usd=signal.usd, size=order.qty, order=order)

    def _apply_trade(self, trade: Trade, positions: Dict[str, Position]) -> None:
        """Track the open-position count within one cycle."""
        if trade.action == CLOSE:
            positions.pop(trade.symbol, None)
        elif trade.action in (LONG, SHORT):
            sign = Decimal(1) if trade.action == LONG else Decimal(-1)
            positions[trade.symbol] = Position(
                symbol=trade.symbol,
                size=sign * (trade.size or Decimal(0)),
                entry_price=Decimal(0),
                mark_price=Decimal(0),
            )

    def run_loop(self, duration: Optional[float] = None, stop: Optional[threading.Event] = None,
                 poll_interval: Optional[float] = None) -> LoopSummary:
        interval = poll_interval or max(1.0, min(60.0, self.cfg.timeframe_seconds / 4))
        scheduler = CycleScheduler(self.ctx.clock, self.logger, name=f"strategy.{self.cfg.name}")
        self.logger.info("strategy_start", name=self.cfg.name, assets=self.cfg.assets(),
                         timeframe=self.cfg.timeframe, dry_run=self.dry_run, poll_interval=interval)
        return scheduler.run(self.run, interval, duration, stop)
