from datetime import date
from decimal import Decimal

from perpdesk.core.types import InventoryState
from perpdesk.risk.guardrails import DailyPnlTracker, RiskGuard, RiskLimits
from perpdesk.risk.limits import RateLimiter


def _guard():
    return RiskGuard(RiskLimits(
        max_inventory_usd=Decimal("300"),
        stop_loss_pct=Decimal("2"),
        daily_loss_limit_usd=Decimal("50"),
    ))


def _state(inv="0", pnl_pct="0", daily="0"):
    return InventoryState(symbol="BTC", inventory_usd=Decimal(inv),
                          position_pnl_pct=Decimal(pnl_pct), daily_pnl=Decimal(daily))


def test_active_within_limits():
    verdict = _guard().evaluate(_state(inv="150", pnl_pct="-1", daily="-10"))
    assert not verdict.halted
    assert verdict.state == "ACTIVE" and verdict.cause == "none"


def test_max_inventory_is_inclusive_and_symmetric():
    assert _guard().evaluate(_state(inv="300")).cause == "max_inventory"
    assert _guard().evaluate(_state(inv="-300")).cause == "max_inventory"
    assert not _guard().evaluate(_state(inv="299.99")).halted


def test_priority_order():
    g = _guard()
    assert g.evaluate(_state(inv="400", pnl_pct="-5", daily="-100")).cause == "max_inventory"
    assert g.evaluate(_state(inv="100", pnl_pct="-5", daily="-100")).cause == "stop_loss"
    assert g.evaluate(_state(inv="100", pnl_pct="-1", daily="-100")).cause == "daily_loss_limit"


def test_stop_loss_needs_open_inventory():
    assert not _guard().evaluate(_state(inv="0", pnl_pct="-9")).halted
    assert _guard().evaluate(_state(inv="-50", pnl_pct="-2")).cause == "stop_loss"


def test_unset_limits_never_halt():
    g = RiskGuard(RiskLimits())
    assert not g.evaluate(_state(inv="1000000", pnl_pct="-99", daily="-1000000")).halted


def test_daily_tracker_resets_at_utc_boundary():
    tracker = DailyPnlTracker(symbol="BTC")
    assert tracker.roll(date(2024, 5, 1), Decimal("-4"))
    assert not tracker.roll(date(2024, 5, 1), Decimal("-10"))
    # realized since midnight plus the move in unrealized since the first look
    assert tracker.daily_pnl(Decimal("-20"), Decimal("-10")) == Decimal("-26")

    assert tracker.roll(date(2024, 5, 2), Decimal("-10"))
    assert tracker.daily_pnl(Decimal("0"), Decimal("-10")) == 0


def test_rate_limiter_window():
    t = [0.0]
    rl = RateLimiter(max_actions=2, window_s=1.0, now_fn=lambda: t[0])
    assert rl.allow()
    assert rl.allow()
    assert not rl.allow()
    assert rl.wait_time() == 1.0
    t[0] = 1.0
    assert rl.allow()


def test_rate_limiter_acquire_sleeps_until_free():
    t = [0.0]
    slept = []

    def sleep(s):
        slept.append(s)
        t[0] += s

    rl = RateLimiter(max_actions=1, window_s=0.5, now_fn=lambda: t[0], sleep_fn=sleep)
    rl.acquire()
    rl.acquire()
    assert slept == [0.5]
    assert t[0] == 0.5
