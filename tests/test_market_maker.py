import threading
from decimal import Decimal

from perpdesk.core.config import parse_mm_config
from perpdesk.core.errors import AuthError, OrderError, TransientNetworkError
from perpdesk.core.types import Position
from perpdesk.strategy.market_maker import MarketMakerLoop


def _cfg(dry_run=False, **risk):
    return parse_mm_config({
        "symbol": "BTC",
        "market_making": {
            "base_spread_bps": 30,
            "min_spread_bps": 15,
            "order_size_usd": 50,
            "max_inventory_usd": 300,
            "skew_per_100_usd": 5,
            "requote_interval_sec": 5,
        },
        "risk": risk,
        "flags": {"dry_run": dry_run},
    })


def _long(gateway, size, entry="100", mark="100", upnl="0"):
    gateway.pos["BTC"] = Position(symbol="BTC", size=Decimal(size), entry_price=Decimal(entry),
                                  mark_price=Decimal(mark), unrealized_pnl=Decimal(upnl))


def test_quoted_cycle_places_both_sides(ctx, gateway):
    result = MarketMakerLoop(ctx, _cfg()).run_once()
    assert result.status == "quoted"
    assert result.action == "placed_orders"
    assert result.ok
    assert gateway.ops() == ["cancel_all", "limit_buy", "limit_sell"]
    _, _, bid, size, post_only = gateway.calls[1]
    assert bid == Decimal("99.85") and size == Decimal("0.5") and post_only
    assert gateway.calls[2][2] == Decimal("100.15")
    assert len(result.orders_placed) == 2
    assert ctx.metrics.snapshot()["mm.orders.BTC"] == 2.0


def test_config_symbol_is_normalized(ctx, gateway):
    cfg = _cfg()
    cfg.symbol = "btc"
    loop = MarketMakerLoop(ctx, cfg)
    assert loop.symbol == "BTC"
    loop.run_once()
    assert gateway.calls[0] == ("cancel_all", "BTC")


def test_inventory_skews_live_quotes(ctx, gateway):
    _long(gateway, "2")
    result = MarketMakerLoop(ctx, _cfg()).run_once()
    q = result.quotes[0]
    assert q.bid_price == Decimal("99.75")
    assert q.ask_price == Decimal("100.05")


def test_dry_run_never_touches_orders(ctx, gateway):
    result = MarketMakerLoop(ctx, _cfg(dry_run=True)).run_once()
    assert result.status == "dry_run"
    assert result.action == "would_quote"
    assert len(result.quotes) == 1
    assert gateway.ops() == []


def test_max_inventory_halts_and_cancels(ctx, gateway):
    _long(gateway, "3")
    result = MarketMakerLoop(ctx, _cfg()).run_once()
    assert result.status == "max_inventory"
    assert result.action == "cancel_all"
    assert result.verdict.halted
    assert gateway.ops() == ["cancel_all"]
    assert result.quotes == []


def test_stop_loss_and_daily_loss(ctx, gateway):
    _long(gateway, "1", entry="100", mark="97", upnl="-3")
    loop = MarketMakerLoop(ctx, _cfg(stop_loss_pct=2))
    assert loop.run_once().status == "stop_loss"

    gateway.pos.clear()
    gateway.realized = Decimal("-60")
    loop = MarketMakerLoop(ctx, _cfg(daily_loss_limit_usd=50))
    assert loop.run_once().status == "daily_loss_limit"


def test_resumes_after_halt_clears(ctx, gateway):
    loop = MarketMakerLoop(ctx, _cfg())
    _long(gateway, "3")
    assert loop.run_once().status == "max_inventory"
    gateway.pos.clear()
    assert loop.run_once().status == "quoted"


def test_position_cap_quotes_one_side(ctx, gateway):
    _long(gateway, "2")
    result = MarketMakerLoop(ctx, _cfg(max_position_usd=220)).run_once()
    assert result.status == "quoted"
    assert gateway.ops() == ["cancel_all", "limit_sell"]


def test_failed_cancel_blocks_one_sided_requote(ctx, gateway):
    _long(gateway, "1")
    gateway.fail["cancel_all"] = TransientNetworkError("timeout")
    result = MarketMakerLoop(ctx, _cfg(max_position_usd=120)).run_once()
    assert result.status == "error"
    assert gateway.ops() == ["cancel_all"]
    assert result.orders_placed == []
    assert "cancel_all: TransientNetworkError" in result.errors[0]


def test_market_data_failure_is_error_cycle(ctx, gateway, observer):
    gateway.fail["spread"] = TransientNetworkError("timeout")
    result = MarketMakerLoop(ctx, _cfg()).run_once()
    assert result.status == "error"
    assert "TransientNetworkError" in result.errors[0]
    assert gateway.ops() == []
    assert observer.cycles == [result]
    events = list(ctx.store.iter_events("cycle.market_maker"))
    assert events[-1].data["status"] == "error"


def test_rejected_order_is_recorded(ctx, gateway):
    gateway.fail["limit_sell"] = OrderError("post only would cross", "BTC")
    result = MarketMakerLoop(ctx, _cfg()).run_once()
    assert result.status == "error"
    assert any("OrderError" in e for e in result.errors)


def test_auth_failure_surfaces_as_error(ctx, gateway):
    gateway.fail["cancel_all"] = AuthError("signature mismatch")
    result = MarketMakerLoop(ctx, _cfg()).run_once()
    assert result.status == "error"
    assert "AuthError" in result.errors[0]


def test_run_loop_for_duration_then_cancels(ctx, gateway, clock):
    summary = MarketMakerLoop(ctx, _cfg()).run_loop(duration=12)
    assert summary.cycles == 3
    assert summary.error_cycles == 0
    assert clock.sleeps == [5.0, 5.0, 2.0]
    assert gateway.calls[-1] == ("cancel_all", "BTC")


def test_run_loop_honours_stop(ctx, gateway, observer):
    stop = threading.Event()
    observer.on_cycle = lambda result: stop.set()
    summary = MarketMakerLoop(ctx, _cfg(dry_run=True)).run_loop(stop=stop)
    assert summary.cycles == 1
    assert summary.stopped
    assert gateway.ops() == []
