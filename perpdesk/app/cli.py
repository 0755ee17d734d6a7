from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from dataclasses import asdict, is_dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, List, Optional

from perpdesk.app.context import EngineContext, build_hyperliquid_context
from perpdesk.app.scheduler import install_sigint, run_concurrently
from perpdesk.core.config import TelemetryParams, load_credentials, load_mm_config, load_strategy_config
from perpdesk.core.errors import FATAL_ERRORS, PerpDeskError
from perpdesk.core.persistence import dumps_safe
from perpdesk.notifications.base import CycleObserver
from perpdesk.notifications.telegram import TelegramNotifier, TelegramTarget
from perpdesk.strategy.market_maker import MarketMakerLoop
from perpdesk.strategy.rsi_strategy import StrategyLoop

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_STARTUP = 2

ContextFactory = Callable[[argparse.Namespace, Optional[TelemetryParams]], EngineContext]


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"not a number: {value}") from e


def _emit(obj: Any) -> None:
    if is_dataclass(obj) and not isinstance(obj, type):
        obj = asdict(obj)
    print(json.dumps(json.loads(dumps_safe(obj)), ensure_ascii=False, indent=2))


def _observers(args: argparse.Namespace) -> List[CycleObserver]:
    if getattr(args, "notify", False):
        target = TelegramTarget.from_env()
        if target is not None:
            return [TelegramNotifier(target)]
    return []


def default_context(args: argparse.Namespace, telemetry: Optional[TelemetryParams] = None) -> EngineContext:
    creds = load_credentials(args.credentials)
    return build_hyperliquid_context(creds, telemetry, state_db=args.state_db, observers=_observers(args))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="perpdesk", description="Perpetual-futures market maker and RSI strategy runner")
    p.add_argument("--credentials", default="credentials.json", help="credentials JSON (HL_* env vars override)")
    p.add_argument("--state-db", default="state/perpdesk.db", help="SQLite state store")
    p.add_argument("--notify", action="store_true", help="post events to Telegram (TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID)")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("price", help="mid price and spread")
    sp.add_argument("symbol")

    sub.add_parser("status", help="account equity, positions and open orders")
    sub.add_parser("positions", help="open positions")

    sp = sub.add_parser("orders", help="resting orders")
    sp.add_argument("symbol", nargs="?")

    tp = sub.add_parser("trade", help="manual orders")
    tsub = tp.add_subparsers(dest="trade_command", required=True)
    for side in ("buy", "sell"):
        t = tsub.add_parser(side)
        t.add_argument("symbol")
        amount = t.add_mutually_exclusive_group(required=True)
        amount.add_argument("--usd", type=_decimal)
        amount.add_argument("--size", type=_decimal)
        t.add_argument("--price", type=_decimal, help="limit price; market order when omitted")
    t = tsub.add_parser("close")
    t.add_argument("symbol")
    t.add_argument("--size", type=_decimal)
    tsub.add_parser("close-all")

    rp = sub.add_parser("run", help="evaluate the RSI strategy")
    rp.add_argument("--config", required=True)
    rp.add_argument("--loop", action="store_true", help="keep polling until interrupted")
    rp.add_argument("--dry-run", action="store_true")
    rp.add_argument("--force", action="store_true", help="ignore the timeframe gate")
    rp.add_argument("--duration", type=float, default=None)

    mp = sub.add_parser("mm", help="run the market maker")
    mp.add_argument("--config", required=True, action="append", help="repeat for one loop per symbol")
    mp.add_argument("--dry-run", action="store_true")
    mp.add_argument("--once", action="store_true")
    mp.add_argument("--duration", type=float, default=None)
    return p


def _cmd_price(ctx: EngineContext, args: argparse.Namespace) -> int:
    _emit({"symbol": args.symbol, **asdict(ctx.gateway.spread(args.symbol))})
    return EXIT_OK


def _cmd_status(ctx: EngineContext, args: argparse.Namespace) -> int:
    gw = ctx.gateway
    positions = gw.positions()
    _emit({
        "equity": gw.equity(),
        "positions": len(positions),
        "exposure_usd": sum((p.notional_usd for p in positions.values()), Decimal(0)),
        "unrealized_pnl": sum((p.unrealized_pnl for p in positions.values()), Decimal(0)),
        "open_orders": len(gw.open_orders()),
    })
    return EXIT_OK


def _cmd_positions(ctx: EngineContext, args: argparse.Namespace) -> int:
    _emit([dict(asdict(p), side=p.side, pnl_pct=p.pnl_pct) for p in ctx.gateway.positions().values()])
    return EXIT_OK


def _cmd_orders(ctx: EngineContext, args: argparse.Namespace) -> int:
    _emit(ctx.gateway.open_orders(args.symbol))
    return EXIT_OK


def _cmd_trade(ctx: EngineContext, args: argparse.Namespace) -> int:
    gw = ctx.gateway
    if args.trade_command == "buy":
        _emit(gw.buy(args.symbol, size=args.size, usd=args.usd, price=args.price))
    elif args.trade_command == "sell":
        _emit(gw.sell(args.symbol, size=args.size, usd=args.usd, price=args.price))
    elif args.trade_command == "close":
        order = gw.close(args.symbol, args.size)
        _emit(order if order is not None else {"symbol": args.symbol, "closed": False, "reason": "no position"})
    else:
        cancelled = gw.cancel_all()
        closed = [gw.close(symbol) for symbol in sorted(gw.positions())]
        _emit({"cancelled": cancelled, "closed": closed})
    return EXIT_OK


def _cmd_run(ctx: EngineContext, args: argparse.Namespace, cfg) -> int:
    if args.dry_run:
        cfg.flags.dry_run = True
    loop = StrategyLoop(ctx, cfg)
    if not args.loop:
        result = loop.run(force=args.force)
        _emit(result)
        return EXIT_FAILED if result.errors else EXIT_OK
    if args.force:
        loop.run(force=True)
    stop = threading.Event()
    old = install_sigint(stop, ctx.logger)
    try:
        summary = loop.run_loop(duration=args.duration, stop=stop)
    finally:
        signal.signal(signal.SIGINT, old)
    _emit({"cycles": summary.cycles, "error_cycles": summary.error_cycles, "stopped": summary.stopped})
    return EXIT_OK


def _cmd_mm(ctx: EngineContext, args: argparse.Namespace, cfgs) -> int:
    loops = []
    for cfg in cfgs:
        if args.dry_run:
            cfg.flags.dry_run = True
        loops.append(MarketMakerLoop(ctx, cfg))
    if args.once:
        results = [loop.run_once() for loop in loops]
        _emit(results)
        return EXIT_FAILED if any(r.errors for r in results) else EXIT_OK
    stop = threading.Event()
    old = install_sigint(stop, ctx.logger)
    try:
        summaries = run_concurrently(
            [lambda ev, lp=lp: lp.run_loop(duration=args.duration, stop=ev) for lp in loops],
            stop, ctx.logger,
        )
    finally:
        signal.signal(signal.SIGINT, old)
    _emit([{"symbol": lp.symbol, "cycles": s.cycles, "error_cycles": s.error_cycles} for lp, s in zip(loops, summaries)])
    return EXIT_OK


def main(argv: Optional[List[str]] = None, context_factory: ContextFactory = default_context) -> int:
    args = build_parser().parse_args(argv)
    try:
        # configs first so a bad file fails before any network call
        strategy_cfg = load_strategy_config(args.config) if args.command == "run" else None
        mm_cfgs = [load_mm_config(path) for path in args.config] if args.command == "mm" else []
        telemetry = strategy_cfg.telemetry if strategy_cfg is not None else (mm_cfgs[0].telemetry if mm_cfgs else None)
        ctx = context_factory(args, telemetry)
    except FATAL_ERRORS as e:
        print(f"startup failed: {type(e).__name__}: {e}", file=sys.stderr)
        return EXIT_STARTUP

    try:
        if getattr(args, "symbol", None):
            args.symbol = ctx.gateway.normalize_symbol(args.symbol)
        if args.command == "price":
            return _cmd_price(ctx, args)
        if args.command == "status":
            return _cmd_status(ctx, args)
        if args.command == "positions":
            return _cmd_positions(ctx, args)
        if args.command == "orders":
            return _cmd_orders(ctx, args)
        if args.command == "trade":
            return _cmd_trade(ctx, args)
        if args.command == "run":
            return _cmd_run(ctx, args, strategy_cfg)
        return _cmd_mm(ctx, args, mm_cfgs)
    except FATAL_ERRORS as e:
        print(f"startup failed: {type(e).__name__}: {e}", file=sys.stderr)
        return EXIT_STARTUP
    except PerpDeskError as e:
        print(f"{args.command} failed: {type(e).__name__}: {e}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        ctx.close()


if __name__ == "__main__":
    raise SystemExit(main())
