"""
conftest.py - Shared pytest fixtures for lending tests

Provides common fixtures used across unit, conformance and functional tests:
- Oracles with fresh quotes
- Markets (empty, initialized, funded, with an open borrow)
- FakeView over empty pools
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from lending import Asset, LendingMarket, StaticPriceOracle

from tests.fake_view import FakeView
from tests.helpers import T0, make_pool


# =============================================================================
# ORACLE FIXTURES
# =============================================================================

@pytest.fixture
def oracle():
    """SOL at 100, USDC at 1, published at T0."""
    source = StaticPriceOracle()
    source.update_prices({Asset.SOL: Decimal("100"), Asset.USDC: Decimal("1")}, T0)
    return source


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def empty_market(oracle):
    """Market with no pools."""
    return LendingMarket("test", oracle=oracle, initial_time=T0, test_mode=True)


@pytest.fixture
def market(empty_market):
    """
    Both pools initialized with decimals 0, threshold 0.8, close factor 0.5,
    bonus 5%, no interest. alice holds 100 SOL; bob and carol hold 100,000 USDC.
    """
    for asset in Asset:
        empty_market.init_pool(asset, 0, "0.8", "0.5", "0.05", "0")
    for wallet in ("alice", "bob", "carol"):
        empty_market.register_wallet(wallet)
    empty_market.issue("alice", Asset.SOL, 100)
    empty_market.issue("bob", Asset.USDC, 100_000)
    empty_market.issue("carol", Asset.USDC, 100_000)
    return empty_market


@pytest.fixture
def funded_market(market):
    """alice has 10 SOL (1,000 USD) deposited; bob supplies 10,000 USDC."""
    market.deposit("alice", Asset.SOL, 10)
    market.deposit("bob", Asset.USDC, 10_000)
    return market


@pytest.fixture
def borrowed_market(funded_market):
    """alice has borrowed her full 800 USDC capacity (health factor exactly 1)."""
    funded_market.borrow("alice", Asset.USDC, 800)
    return funded_market


# =============================================================================
# VIEW FIXTURES
# =============================================================================

@pytest.fixture
def pools():
    return {asset: make_pool(asset) for asset in Asset}


@pytest.fixture
def fake_view(pools):
    """Empty pools, no positions, alice funded with 1,000 USDC."""
    return FakeView(pools=pools, balances={'alice': {Asset.USDC: 1000}}, time=T0)


@pytest.fixture
def later():
    """Helper returning T0 plus a number of seconds."""
    return lambda seconds: T0 + timedelta(seconds=seconds)
