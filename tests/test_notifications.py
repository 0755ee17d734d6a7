from decimal import Decimal

import requests

from perpdesk.core.logging import FieldLogger
from perpdesk.core.types import CycleResult, Signal, Trade
from perpdesk.notifications.base import CycleObserver, notify_observers
from perpdesk.notifications.telegram import TelegramNotifier, TelegramTarget, split_long_message


class FakeResponse:
    def __init__(self, status=200):
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")


class FakeSession:
    def __init__(self, status=200):
        self.status = status
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        return FakeResponse(self.status)


def _notifier(status=200):
    session = FakeSession(status)
    return TelegramNotifier(TelegramTarget("tok", "42"), timeout=3.0, session=session), session


def test_target_from_env(monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "42")
    assert TelegramTarget.from_env() is None
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "tok")
    assert TelegramTarget.from_env() == TelegramTarget("tok", "42")


def test_split_long_message():
    assert split_long_message("short") == ["short"]
    text = "\n".join("line %03d" % i for i in range(100))
    parts = split_long_message(text, max_len=100)
    assert all(len(p) <= 100 for p in parts)
    assert "".join(parts) == text
    assert split_long_message("x" * 250, max_len=100) == ["x" * 100, "x" * 100, "x" * 50]


def test_send_posts_to_bot_api():
    notifier, session = _notifier()
    assert notifier.send("hello")
    url, body, timeout = session.posts[0]
    assert url == "https://api.telegram.org/bottok/sendMessage"
    assert body["chat_id"] == "42" and body["text"] == "hello"
    assert timeout == 3.0


def test_send_failure_returns_false():
    notifier, _ = _notifier(status=500)
    assert notifier.send("hello") is False


def test_cycle_events_formatting():
    notifier, session = _notifier()
    result = CycleResult(
        timestamp=0.0, kind="strategy", status="error",
        signals=[Signal("long", "BTC", "RSI 21.00 <= 30", rsi=Decimal("21")), Signal("hold", "ETH", "band")],
        trades=[Trade("BTC", "long", usd=Decimal("100.00"), dry_run=True)],
        errors=["ETH: TransientNetworkError: timeout"],
    )
    notify_observers([notifier], result, FieldLogger(name="perpdesk.test.notify"))
    texts = [body["text"] for _, body, _ in session.posts]
    assert texts[0] == "[signal] BTC LONG rsi=21.00 (RSI 21.00 <= 30)"
    assert texts[1] == "[trade] (dry-run) BTC long $100.00"
    assert texts[2].startswith("[strategy] cycle finished with 1 error(s)")
    assert len(texts) == 3


def test_failing_observer_does_not_stop_others():
    class Broken(CycleObserver):
        def on_cycle(self, result):
            raise RuntimeError("boom")

    seen = []

    class Ok(CycleObserver):
        def on_cycle(self, result):
            seen.append(result.status)

    result = CycleResult(timestamp=0.0, kind="market_maker", status="quoted")
    notify_observers([Broken(), Ok()], result, FieldLogger(name="perpdesk.test.notify"))
    assert seen == ["quoted"]
