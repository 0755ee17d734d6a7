from __future__ import annotations

from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Dict, Iterator, Optional, Tuple

import requests
from hyperliquid.utils.error import ClientError, ServerError

from perpdesk.core.errors import (
    AuthError,
    InsufficientFundsError,
    OrderError,
    TransientNetworkError,
)
from perpdesk.core.types import Order

PERP_MAX_DECIMALS = 6
MAX_SIG_FIGS = 5

_AUTH_MARKERS = ("does not exist", "signature", "not authorized", "unauthorized")
_FUNDS_MARKERS = ("insufficient",)


def book_levels(l2: Dict[str, Any]) -> Tuple[list, list]:
    levels = l2.get("levels") or []
    bids = levels[0] if len(levels) > 0 else []
    asks = levels[1] if len(levels) > 1 else []
    return bids, asks


def infer_tick_from_l2(l2: Dict[str, Any]) -> Optional[Decimal]:
    bids, asks = book_levels(l2)
    diffs = []
    for side in (bids[:10], asks[:10]):
        pxs = sorted({Decimal(str(lvl["px"])) for lvl in side}, reverse=True)
        diffs.extend(abs(pxs[i] - pxs[i + 1]) for i in range(len(pxs) - 1))
    diffs = [d for d in diffs if d > 0]
    return min(diffs) if diffs else None


def tick_from_rules(reference_px: Decimal, size_decimals: int) -> Decimal:
    """Smallest increment allowed by the venue: at most 5 significant figures
    and at most ``6 - szDecimals`` decimals for perps."""
    decimals_tick = Decimal(1).scaleb(-max(0, PERP_MAX_DECIMALS - size_decimals))
    if reference_px <= 0:
        return decimals_tick
    sig_tick = Decimal(1).scaleb(reference_px.adjusted() - (MAX_SIG_FIGS - 1))
    return max(decimals_tick, sig_tick)


def classify_error_message(message: str, symbol: Optional[str] = None) -> Exception:
    low = message.lower()
    if any(m in low for m in _AUTH_MARKERS):
        return AuthError(message)
    if any(m in low for m in _FUNDS_MARKERS):
        return InsufficientFundsError(message, symbol)
    return OrderError(message, symbol)


@contextmanager
def translate_errors(symbol: Optional[str] = None) -> Iterator[None]:
    """Map SDK and transport exceptions onto the engine's error taxonomy."""
    try:
        yield
    except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
        raise TransientNetworkError(f"network error: {e}") from e
    except ServerError as e:
        raise TransientNetworkError(f"server error {e.status_code}: {e.message}") from e
    except ClientError as e:
        status = getattr(e, "status_code", None)
        message = str(getattr(e, "error_message", e))
        if status in (401, 403):
            raise AuthError(message) from e
        if status == 429:
            raise TransientNetworkError(f"rate limited: {message}") from e
        raise classify_error_message(message, symbol) from e


def parse_order_response(resp: Any, symbol: str, side: str, qty: Decimal, price: Optional[Decimal],
                         tif: str, flags: Dict[str, bool]) -> Order:
    """Turn an exchange.order() response into an Order or raise."""
    if not isinstance(resp, dict):
        raise OrderError(f"unexpected order response: {resp!r}", symbol)
    if resp.get("status") != "ok":
        raise classify_error_message(str(resp.get("response")), symbol)
    statuses = ((resp.get("response") or {}).get("data") or {}).get("statuses") or []
    if not statuses:
        raise OrderError(f"order response without status: {resp!r}", symbol)
    st = statuses[0]
    if isinstance(st, dict) and "error" in st:
        raise classify_error_message(str(st["error"]), symbol)
    order = Order(oid=None, symbol=symbol, side=side, qty=qty, price=price, tif=tif, flags=flags, status="unknown")
    if isinstance(st, dict) and "resting" in st:
        order.oid = int(st["resting"]["oid"])
        order.status = "resting"
    elif isinstance(st, dict) and "filled" in st:
        f = st["filled"]
        order.oid = int(f["oid"]) if f.get("oid") is not None else None
        order.status = "filled"
        order.filled_qty = Decimal(str(f.get("totalSz", "0")))
        order.avg_price = Decimal(str(f["avgPx"])) if f.get("avgPx") is not None else None
    return order


def check_cancel_response(resp: Any, symbol: str) -> None:
    if not isinstance(resp, dict) or resp.get("status") != "ok":
        raise classify_error_message(str(resp.get("response") if isinstance(resp, dict) else resp), symbol)
    statuses = ((resp.get("response") or {}).get("data") or {}).get("statuses") or []
    for st in statuses:
        if isinstance(st, dict) and "error" in st:
            raise OrderError(str(st["error"]), symbol)
