from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Optional

import requests

from perpdesk.core.logging import FieldLogger
from perpdesk.core.types import CycleResult, Signal, Trade
from perpdesk.notifications.base import CycleObserver

TELEGRAM_API = "https://api.telegram.org"
TELEGRAM_MAX_LEN = 3900  # below the 4096 hard limit


@dataclass(frozen=True)
class TelegramTarget:
    bot_token: str
    chat_id: str

    @classmethod
    def from_env(cls) -> Optional["TelegramTarget"]:
        token = os.environ.get("TELEGRAM_BOT_TOKEN", "").strip()
        chat = os.environ.get("TELEGRAM_CHAT_ID", "").strip()
        if not token or not chat:
            return None
        return cls(bot_token=token, chat_id=chat)


def split_long_message(text: str, max_len: int = TELEGRAM_MAX_LEN) -> List[str]:
    if len(text) <= max_len:
        return [text]
    parts: List[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > max_len:
            if current:
                parts.append(current)
                current = ""
            parts.append(line[:max_len])
            line = line[max_len:]
        if len(current) + len(line) > max_len:
            parts.append(current)
            current = ""
        current += line
    if current:
        parts.append(current)
    return parts


class TelegramNotifier(CycleObserver):
    """Posts signals, trades and failed cycles to a Telegram chat."""

    def __init__(self, target: TelegramTarget, logger: Optional[FieldLogger] = None,
                 timeout: float = 10.0, session: Optional[requests.Session] = None) -> None:
        self.target = target
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or FieldLogger(name="perpdesk.telegram")

    def send(self, text: str) -> bool:
        url = f"{TELEGRAM_API}/bot{self.target.bot_token}/sendMessage"
        ok = True
        for chunk in split_long_message(text):
            try:
                resp = self.session.post(
                    url,
                    json={"chat_id": self.target.chat_id, "text": chunk, "disable_web_page_preview": True},
                    timeout=self.timeout,
                )
                resp.raise_for_status()
            except requests.RequestException as e:
                self.logger.warn("telegram_send_failed", error=str(e))
                ok = False
        return ok

    def on_signal(self, signal: Signal) -> None:
        rsi = f" rsi={signal.rsi:.2f}" if signal.rsi is not None else ""
        self.send(f"[signal] {signal.symbol} {signal.action.upper()}{rsi} ({signal.reason})")

    def on_trade(self, trade: Trade) -> None:
        tag = " (dry-run)" if trade.dry_run else ""
        amount = f"${trade.usd}" if trade.usd is not None else f"{trade.size}"
        status = f" status={trade.order.status}" if trade.order is not None else ""
        self.send(f"[trade]{tag} {trade.symbol} {trade.action} {amount}{status}")

    def on_cycle(self, result: CycleResult) -> None:
        if result.errors:
            lines = "\n".join(f"- {e}" for e in result.errors)
            self.send(f"[{result.kind}] cycle finished with {len(result.errors)} error(s):\n{lines}")
