from decimal import Decimal

import pytest

from perpdesk.core.config import parse_strategy_config
from perpdesk.core.types import Position
from perpdesk.strategy.signals import SignalEngine, wilder_rsi
from perpdesk.strategy.sizing import PositionSizer


def _cfg(**overrides):
    raw = {
        "name": "rsi",
        "symbol": "BTC",
        "timeframe": "1h",
        "signals": {"period": 14, "long_entry": 30, "short_entry": 70},
        "position": {"size_pct": 10},
        "risk": {"stop_loss_pct": 5, "take_profit_pct": 10, "max_positions": 1},
        "flags": {"allow_shorts": True},
    }
    raw.update(overrides)
    return parse_strategy_config(raw)


def _series(changes, start="1000"):
    closes = [Decimal(start)]
    for c in changes:
        closes.append(closes[-1] + Decimal(c))
    return closes


def _pos(size, upnl, entry="100"):
    return Position(symbol="BTC", size=Decimal(size), entry_price=Decimal(entry),
                    mark_price=Decimal(entry), unrealized_pnl=Decimal(upnl))


# one gain and thirteen losses: RSI = 100 * gain / (gain + losses)
RSI_29_8 = _series(["29.8"] + ["-5.4"] * 13)
RSI_30_2 = _series(["30.2"] + ["-5.4"] * 12 + ["-5.0"])


def test_rsi_needs_period_plus_one_closes():
    assert wilder_rsi(_series(["1"] * 13), 14) is None
    assert wilder_rsi(_series(["1"] * 14), 14) == Decimal("100")


def test_rsi_extremes():
    assert wilder_rsi(_series(["-1"] * 20), 14) == Decimal("0")
    assert wilder_rsi(_series(["0"] * 20), 14) == Decimal("50")


def test_rsi_simple_seed_then_wilder_smoothing():
    changes = ["1", "-1"] * 7
    assert wilder_rsi(_series(changes), 14) == Decimal("50")
    # avg_gain = (0.5 * 13 + 2) / 14, avg_loss = 0.5 * 13 / 14
    rsi = wilder_rsi(_series(changes + ["2"]), 14)
    assert abs(rsi - Decimal("56.6667")) < Decimal("0.001")


def test_entry_threshold_boundary_series():
    engine = SignalEngine(_cfg())
    low = engine.evaluate("BTC", RSI_29_8, None, open_positions=0)
    assert abs(low.rsi - Decimal("29.8")) < Decimal("1e-9")
    assert low.action == "long"
    high = engine.evaluate("BTC", RSI_30_2, None, open_positions=0)
    assert abs(high.rsi - Decimal("30.2")) < Decimal("1e-9")
    assert high.action == "hold"


def test_entry_thresholds_are_inclusive():
    engine = SignalEngine(_cfg())
    assert engine.entry("BTC", Decimal("30")).action == "long"
    assert engine.entry("BTC", Decimal("70")).action == "short"
    assert engine.entry("BTC", Decimal("50")).action == "hold"


def test_entry_confidence_scales_with_distance():
    engine = SignalEngine(_cfg())
    assert engine.entry("BTC", Decimal("30")).confidence == 0.5
    assert engine.entry("BTC", Decimal("0")).confidence == 1.0
    assert engine.entry("BTC", Decimal("85")).confidence == 0.75


def test_shorts_disabled_for_single_symbol():
    engine = SignalEngine(_cfg(flags={}))
    assert engine.entry("BTC", Decimal("90")).action == "hold"


def test_basket_eligibility():
    cfg = _cfg(symbol=None, long_assets=["BTC"], short_assets=["DOGE"], flags={})
    engine = SignalEngine(cfg)
    assert engine.entry("BTC", Decimal("90")).action == "hold"
    assert engine.entry("DOGE", Decimal("10")).action == "hold"
    assert engine.entry("DOGE", Decimal("90")).action == "short"


def test_insufficient_history_holds():
    sig = SignalEngine(_cfg()).evaluate("BTC", _series(["-1"] * 5), None, open_positions=0)
    assert sig.action == "hold"
    assert "insufficient history" in sig.reason


@pytest.mark.parametrize("size,upnl,rsi,reason", [
    ("1", "-6", "80", "stop-loss"),
    ("1", "12", "10", "take-profit"),
    ("1", "1", "72", "reversal"),
    ("-1", "1", "25", "reversal"),
])
def test_exit_rules(size, upnl, rsi, reason):
    sig = SignalEngine(_cfg()).exit(_pos(size, upnl), Decimal(rsi))
    assert sig.action == "close"
    assert reason in sig.reason


def test_exit_confidence_and_hold():
    engine = SignalEngine(_cfg())
    assert engine.exit(_pos("1", "-6"), Decimal("50")).confidence == 1.0
    assert engine.exit(_pos("1", "1"), Decimal("72")).confidence == 0.8
    held = engine.exit(_pos("1", "1"), Decimal("50"))
    assert held.action == "hold"
    # short with high RSI is not a reversal
    assert engine.exit(_pos("-1", "1"), Decimal("80")).action == "hold"


def test_open_position_never_gets_entry():
    sig = SignalEngine(_cfg()).evaluate("BTC", RSI_29_8, _pos("1", "0"), open_positions=1)
    assert sig.action == "hold"


def test_position_limit_downgrades_entry():
    engine = SignalEngine(_cfg(symbol=None, long_assets=["BTC", "ETH"]))
    sig = engine.evaluate("ETH", RSI_29_8, None, open_positions=1)
    assert sig.action == "hold"
    assert "max positions" in sig.reason


def test_sizer_uses_equity_fraction():
    sizer = PositionSizer(Decimal("10"))
    assert sizer.usd_size(Decimal("1234.567")) == Decimal("123.45")
    long_sig = SignalEngine(_cfg()).entry("BTC", Decimal("20"))
    sized = sizer.size(long_sig, Decimal("1000"), Decimal("10"))
    assert sized.action == "long"
    assert sized.usd == Decimal("100.00")
    assert sized.confidence == long_sig.confidence


def test_sizer_downgrades_below_minimum():
    long_sig = SignalEngine(_cfg()).entry("BTC", Decimal("20"))
    sized = PositionSizer(Decimal("10")).size(long_sig, Decimal("50"), Decimal("10"))
    assert sized.action == "hold"
    assert sized.reason == "below minimum size: $5.00 <= $10"


def test_sizer_requires_size_above_minimum():
    long_sig = SignalEngine(_cfg()).entry("BTC", Decimal("20"))
    sizer = PositionSizer(Decimal("10"))
    at_floor = sizer.size(long_sig, Decimal("100"), Decimal("10"))
    assert at_floor.action == "hold"
    assert at_floor.reason == "below minimum size: $10.00 <= $10"
    assert sizer.size(long_sig, Decimal("100.10"), Decimal("10")).usd == Decimal("10.01")


def test_sizer_passes_non_entries_through():
    hold = SignalEngine(_cfg()).entry("BTC", Decimal("50"))
    assert PositionSizer(Decimal("10")).size(hold, Decimal("0"), None) is hold
