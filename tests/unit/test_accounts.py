"""
test_accounts.py - Unit tests for Pool and Position records

Tests:
- Pool parameter validation and Decimal coercion
- Zero-amount / zero-share invariant
- Position leg selection by Asset
- Flattened state dict
"""

import pytest
from decimal import Decimal

from lending import Asset, Pool, Position, PositionLeg, MAX_AMOUNT, open_position, to_state_dict
from tests.helpers import T0, make_pool, make_position


class TestPool:

    def test_fractions_coerced_to_decimal(self):
        pool = make_pool(Asset.SOL, liquidation_threshold="0.75", interest_rate=0)
        assert pool.liquidation_threshold == Decimal("0.75")
        assert isinstance(pool.interest_rate, Decimal)

    @pytest.mark.parametrize("threshold", ["0", "1.01", "-0.5"])
    def test_threshold_range(self, threshold):
        with pytest.raises(ValueError, match="liquidation_threshold"):
            make_pool(Asset.SOL, liquidation_threshold=threshold)

    def test_threshold_of_one_allowed(self):
        assert make_pool(Asset.SOL, liquidation_threshold="1").liquidation_threshold == 1

    @pytest.mark.parametrize("close_factor", ["0", "1.5"])
    def test_close_factor_range(self, close_factor):
        with pytest.raises(ValueError, match="liquidation_close_factor"):
            make_pool(Asset.SOL, liquidation_close_factor=close_factor)

    def test_negative_bonus_rejected(self):
        with pytest.raises(ValueError, match="liquidation_bonus"):
            make_pool(Asset.SOL, liquidation_bonus="-0.01")

    def test_negative_rate_rejected(self):
        with pytest.raises(ValueError, match="interest_rate"):
            make_pool(Asset.SOL, interest_rate="-0.01")

    @pytest.mark.parametrize("decimals", [-1, 19])
    def test_decimals_range(self, decimals):
        with pytest.raises(ValueError, match="decimals"):
            make_pool(Asset.SOL, decimals=decimals)

    def test_amount_and_shares_zero_together(self):
        with pytest.raises(ValueError, match="out of sync"):
            make_pool(Asset.USDC, total_deposits=100, total_deposit_shares=0)
        with pytest.raises(ValueError, match="out of sync"):
            make_pool(Asset.USDC, total_borrowed=0, total_borrowed_shares=5)

    def test_totals_bounded_by_u64(self):
        with pytest.raises(ValueError, match="out of range"):
            make_pool(Asset.USDC, total_deposits=MAX_AMOUNT + 1, total_deposit_shares=1)

    def test_available_liquidity(self):
        pool = make_pool(
            Asset.USDC,
            total_deposits=1000, total_deposit_shares=1000,
            total_borrowed=300, total_borrowed_shares=300,
        )
        assert pool.available_liquidity == 700

    def test_with_totals_keeps_parameters(self):
        pool = make_pool(Asset.USDC, liquidation_bonus="0.1")
        grown = pool.with_totals(total_deposits=10, total_deposit_shares=10)
        assert grown.liquidation_bonus == Decimal("0.1")
        assert grown.total_deposits == 10
        assert pool.total_deposits == 0


class TestPosition:

    def test_open_position_is_empty(self):
        position = open_position("alice", T0)
        assert position.last_updated == T0
        assert all(leg.is_empty() for leg in position.legs().values())
        assert not position.has_debt()

    def test_empty_user_rejected(self):
        with pytest.raises(ValueError):
            Position(user_id="")

    def test_leg_selection_by_asset(self):
        position = make_position("alice", sol={'deposited': 10}, usdc={'borrowed': 800})
        assert position.leg(Asset.SOL).deposited_amount == 10
        assert position.leg(Asset.USDC).borrowed_amount == 800
        assert position.has_debt()

    def test_with_leg_replaces_only_that_leg(self):
        position = make_position("alice", sol={'deposited': 10})
        updated = position.with_leg(Asset.USDC, PositionLeg(borrowed_amount=5, borrowed_shares=5))
        assert updated.sol == position.sol
        assert updated.usdc.borrowed_amount == 5
        assert position.usdc.is_empty()

    def test_negative_leg_rejected(self):
        with pytest.raises(ValueError):
            PositionLeg(deposited_amount=-1)

    def test_to_state_dict(self):
        position = make_position("alice", sol={'deposited': 10}, usdc={'borrowed': 800})
        state = to_state_dict(position)
        assert state['user_id'] == "alice"
        assert state['deposited_sol'] == 10
        assert state['deposited_sol_shares'] == 10
        assert state['borrowed_usdc'] == 800
        assert state['borrowed_usdc_shares'] == 800
        assert state['borrowed_sol'] == 0
        assert state['last_updated'] == T0
