import os

import pytest
from eth_account import Account
from hyperliquid.info import Info
from hyperliquid.utils import constants

from perpdesk.exchanges.hyperliquid.hl_gateway import HyperliquidGateway

pytestmark = pytest.mark.skipif(os.environ.get("HL_ONLINE", "0") != "1",
                                reason="Set HL_ONLINE=1 to run connectivity test")


@pytest.fixture(scope="module")
def gateway():
    info = Info(constants.TESTNET_API_URL, skip_ws=True)
    # read-only: a throwaway address with no exchange client is enough
    address = Account.create().address
    return HyperliquidGateway(address, info, exchange=None)


def test_info_connectivity(gateway):
    pm = gateway.info.meta()
    assert isinstance(pm, dict) and "universe" in pm


def test_market_data(gateway):
    snap = gateway.spread("BTC")
    assert snap.bid < snap.ask
    meta = gateway.symbol_meta("BTC")
    assert meta.tick > 0
    candles = gateway.candles("BTC", "1h", 20)
    assert 0 < len(candles) <= 20
    assert candles == sorted(candles, key=lambda c: c.open_time)


def test_empty_account(gateway):
    assert gateway.positions() == {}
    assert gateway.equity() == 0
