"""
Tests for the transact() dispatcher.

transact() routes a named operation to its handler with the same
PendingTransaction the handler would have returned directly.

Test coverage:
- Each user-facing operation routes to its handler
- Operation names are accepted as strings
- Non-user operations and missing parameters are rejected
- max_age_seconds is passed through to price-reading handlers
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from lending import (
    Asset, Operation, StaticPriceOracle, StalePrice,
    compute_borrow, compute_deposit, compute_liquidation, compute_repay, compute_withdraw,
    transact,
)
from tests.fake_view import FakeView
from tests.helpers import T0, make_pool, make_position


def pool_with(asset, deposits=0, borrowed=0):
    return make_pool(
        asset,
        total_deposits=deposits, total_deposit_shares=deposits,
        total_borrowed=borrowed, total_borrowed_shares=borrowed,
    )


@pytest.fixture
def view():
    """alice: 10 SOL collateral, 400 USDC debt."""
    return FakeView(
        pools={
            Asset.SOL: pool_with(Asset.SOL, deposits=10),
            Asset.USDC: pool_with(Asset.USDC, deposits=10_000, borrowed=400),
        },
        positions={'alice': make_position("alice", sol={'deposited': 10}, usdc={'borrowed': 400})},
        time=T0,
    )


@pytest.fixture
def crashed():
    oracle = StaticPriceOracle()
    oracle.update_prices({Asset.SOL: Decimal("45"), Asset.USDC: Decimal("1")}, T0)
    return oracle


# ============================================================================
# Routing
# ============================================================================

class TestRouting:
    """Each operation matches a direct handler call."""

    def test_deposit(self, view, oracle):
        pending = transact(view, oracle, Operation.DEPOSIT, user_id="alice", asset=Asset.SOL, amount=5)
        assert pending == compute_deposit(view, "alice", Asset.SOL, 5)

    def test_withdraw(self, view, oracle):
        pending = transact(view, oracle, Operation.WITHDRAW, user_id="alice", asset=Asset.SOL, amount=1)
        assert pending == compute_withdraw(view, oracle, "alice", Asset.SOL, 1)

    def test_borrow(self, oracle):
        view = FakeView(
            pools={
                Asset.SOL: pool_with(Asset.SOL, deposits=10),
                Asset.USDC: pool_with(Asset.USDC, deposits=10_000),
            },
            positions={'alice': make_position("alice", sol={'deposited': 10})},
            time=T0,
        )
        pending = transact(view, oracle, Operation.BORROW, user_id="alice", asset=Asset.USDC, amount=100)
        assert pending == compute_borrow(view, oracle, "alice", Asset.USDC, 100)

    def test_repay(self, view, oracle):
        pending = transact(view, oracle, Operation.REPAY, user_id="alice", asset=Asset.USDC, amount=100)
        assert pending == compute_repay(view, "alice", Asset.USDC, 100)

    def test_liquidate(self, view, crashed):
        pending = transact(
            view, crashed, Operation.LIQUIDATE,
            liquidator_id="carol", user_id="alice",
            collateral_asset=Asset.SOL, borrowed_asset=Asset.USDC,
        )
        assert pending == compute_liquidation(view, crashed, "carol", "alice", Asset.SOL, Asset.USDC)

    def test_operation_name_accepted(self, view, oracle):
        pending = transact(view, oracle, "REPAY", user_id="alice", asset="usdc", amount=100)
        assert pending.origin.operation is Operation.REPAY


# ============================================================================
# Rejections
# ============================================================================

class TestRejections:

    @pytest.mark.parametrize("operation", [Operation.TRANSFER, Operation.INIT_POOL, Operation.OPEN_POSITION])
    def test_non_user_operations(self, view, oracle, operation):
        with pytest.raises(ValueError, match="cannot be submitted"):
            transact(view, oracle, operation, user_id="alice", asset=Asset.SOL, amount=1)

    def test_unknown_operation_name(self, view, oracle):
        with pytest.raises(ValueError):
            transact(view, oracle, "flash_loan", user_id="alice")

    def test_missing_parameter(self, view, oracle):
        with pytest.raises(ValueError, match="'amount'"):
            transact(view, oracle, Operation.DEPOSIT, user_id="alice", asset=Asset.SOL)

    def test_missing_liquidation_parameters(self, view, crashed):
        with pytest.raises(ValueError, match="'collateral_asset', 'borrowed_asset'"):
            transact(view, crashed, Operation.LIQUIDATE, liquidator_id="carol", user_id="alice")


# ============================================================================
# Price age
# ============================================================================

class TestMaxAge:

    def test_default_age_applies(self, view, oracle):
        view._time = T0 + timedelta(seconds=150)
        with pytest.raises(StalePrice):
            transact(view, oracle, Operation.WITHDRAW, user_id="alice", asset=Asset.SOL, amount=1)

    def test_age_passed_through(self, view, oracle):
        view._time = T0 + timedelta(seconds=150)
        pending = transact(
            view, oracle, Operation.WITHDRAW,
            user_id="alice", asset=Asset.SOL, amount=1, max_age_seconds=200,
        )
        assert pending.moves[0].quantity == 1

    def test_age_ignored_by_deposit(self, view, oracle):
        pending = transact(
            view, oracle, Operation.DEPOSIT,
            user_id="alice", asset=Asset.SOL, amount=1, max_age_seconds=5,
        )
        assert pending.moves[0].quantity == 1
