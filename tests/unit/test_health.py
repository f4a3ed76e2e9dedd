"""
test_health.py - Unit tests for collateral valuation and health factor

Tests:
- Unit conversions with decimals
- Collateral value with accrued interest per pool
- Health factor, zero-debt positions and the liquidation boundary
- Missing prices and pools
- Precision of boundary checks on worker threads
"""

import threading
import pytest
from datetime import timedelta
from decimal import Decimal, getcontext

from lending import (
    Asset, Price, StaticPriceOracle, HEALTH_STATUS_HEALTHY, HEALTH_STATUS_LIQUIDATABLE,
    StalePrice, PoolNotInitialized, ArithmeticOverflow,
    calculate_collateral_value, calculate_borrowed_value, calculate_health, assess_position,
)
from lending.health import value_of, amount_for_value, assets_to_price, fetch_prices
from tests.helpers import T0, make_pool, make_position


PRICES = {Asset.SOL: Price(Decimal("100"), T0), Asset.USDC: Price(Decimal("1"), T0)}


class TestConversions:

    def test_value_of_whole_units(self):
        assert value_of(10, PRICES[Asset.SOL], 0) == Decimal("1000")

    def test_value_of_minor_units(self):
        assert value_of(1_500_000, PRICES[Asset.USDC], 6) == Decimal("1.5")

    def test_amount_for_value_floors(self):
        assert amount_for_value(Decimal("0.9999999"), PRICES[Asset.USDC], 6) == 999_999
        assert amount_for_value(Decimal("450"), Price(Decimal("90"), T0), 0) == 5
        assert amount_for_value(Decimal("449.99"), Price(Decimal("90"), T0), 0) == 4

    def test_amount_for_non_positive_value(self):
        assert amount_for_value(Decimal("0"), PRICES[Asset.USDC], 6) == 0

    def test_amount_overflow(self):
        with pytest.raises(ArithmeticOverflow):
            amount_for_value(Decimal("1e30"), PRICES[Asset.USDC], 6)


class TestValuation:

    def test_collateral_value_sums_legs(self, pools):
        position = make_position("alice", sol={'deposited': 10}, usdc={'deposited': 500})
        assert calculate_collateral_value(position, pools, PRICES, T0) == Decimal("1500")

    def test_collateral_accrues_at_each_pool_rate(self):
        pools = {
            Asset.SOL: make_pool(Asset.SOL, interest_rate=Decimal("0.001")),
            Asset.USDC: make_pool(Asset.USDC),
        }
        position = make_position("alice", sol={'deposited': 10}, usdc={'deposited': 500})
        now = T0 + timedelta(seconds=1000)
        # SOL: floor(10 * e) = 27 → 2700; USDC has no interest
        assert calculate_collateral_value(position, pools, PRICES, now) == Decimal("3200")

    def test_borrowed_value_not_accrued(self):
        pools = {asset: make_pool(asset, interest_rate=Decimal("0.001")) for asset in Asset}
        position = make_position("alice", usdc={'borrowed': 800})
        now = T0 + timedelta(seconds=1000)
        assert calculate_borrowed_value(position, pools, PRICES) == Decimal("800")
        assert calculate_collateral_value(position, pools, PRICES, now) == Decimal("0")

    def test_empty_legs_need_no_price(self, pools):
        position = make_position("alice", usdc={'deposited': 500})
        prices = {Asset.USDC: PRICES[Asset.USDC]}
        assert calculate_collateral_value(position, pools, prices, T0) == Decimal("500")

    def test_missing_price_is_stale(self, pools):
        position = make_position("alice", sol={'deposited': 1})
        with pytest.raises(StalePrice):
            calculate_collateral_value(position, pools, {}, T0)

    def test_missing_pool(self):
        position = make_position("alice", usdc={'borrowed': 1})
        with pytest.raises(PoolNotInitialized):
            calculate_borrowed_value(position, {}, PRICES)

    def test_missing_price_with_pool_present(self, pools):
        position = make_position("alice", usdc={'borrowed': 1})
        with pytest.raises(StalePrice):
            calculate_borrowed_value(position, pools, {Asset.SOL: PRICES[Asset.SOL]})

    def test_missing_pool_with_price_present(self):
        position = make_position("alice", sol={'deposited': 1})
        with pytest.raises(PoolNotInitialized):
            calculate_collateral_value(position, {Asset.USDC: make_pool(Asset.USDC)}, PRICES, T0)


class TestHealth:

    def test_exactly_one_is_healthy(self):
        report = calculate_health(Decimal("1000"), Decimal("800"), Decimal("0.8"))
        assert report.health_factor == Decimal("1")
        assert report.status == HEALTH_STATUS_HEALTHY
        assert report.risk_adjusted_collateral == Decimal("800")

    def test_below_one_is_liquidatable(self):
        report = calculate_health(Decimal("900"), Decimal("800"), Decimal("0.8"))
        assert report.health_factor == Decimal("0.9")
        assert report.status == HEALTH_STATUS_LIQUIDATABLE
        assert not report.is_healthy

    def test_no_debt_is_healthy_without_factor(self):
        report = calculate_health(Decimal("0"), Decimal("0"), Decimal("0.8"))
        assert report.health_factor is None
        assert report.is_healthy

    def test_assess_position(self, pools):
        position = make_position("alice", sol={'deposited': 10}, usdc={'borrowed': 900})
        report = assess_position(position, pools, PRICES, Decimal("0.8"), T0)
        assert report.collateral_value == Decimal("1000")
        assert report.borrowed_value == Decimal("900")
        assert report.status == HEALTH_STATUS_LIQUIDATABLE


class TestPriceCollection:

    def test_assets_to_price(self):
        position = make_position("alice", sol={'deposited': 10})
        assert assets_to_price(position) == {Asset.SOL}
        assert assets_to_price(position, Asset.USDC) == {Asset.SOL, Asset.USDC}
        assert assets_to_price(None, Asset.USDC) == {Asset.USDC}

    def test_fetch_prices(self):
        oracle = StaticPriceOracle(dict(PRICES))
        prices = fetch_prices(oracle, {Asset.SOL, Asset.USDC}, 100, T0)
        assert prices == PRICES

    def test_fetch_prices_stale(self):
        oracle = StaticPriceOracle(dict(PRICES))
        with pytest.raises(StalePrice):
            fetch_prices(oracle, {Asset.SOL}, 100, T0 + timedelta(seconds=101))


class TestPrecision:
    """Boundary health factors need more than the default 28 digits."""

    # Collateral value 9999999999900000000.99999999999 against a debt of
    # 9999999999900000001: liquidatable only when nothing is rounded.
    POSITION = make_position(
        "alice",
        sol={'deposited': 10 ** 19 + 1},
        usdc={'borrowed': 9_999_999_999_900_000_001},
    )
    BOUNDARY_PRICES = {
        Asset.SOL: Price(Decimal("0.99999999999"), T0),
        Asset.USDC: Price(Decimal("1"), T0),
    }

    def assess(self):
        pools = {asset: make_pool(asset, liquidation_threshold=Decimal("1")) for asset in Asset}
        return assess_position(self.POSITION, pools, self.BOUNDARY_PRICES, Decimal("1"), T0)

    def test_boundary_on_main_thread(self):
        assert self.assess().status == HEALTH_STATUS_LIQUIDATABLE

    def test_boundary_on_worker_thread(self):
        results = []
        worker = threading.Thread(target=lambda: results.append(self.assess()))
        worker.start()
        worker.join()

        assert len(results) == 1
        assert results[0].status == HEALTH_STATUS_LIQUIDATABLE
        assert results[0].health_factor < Decimal("1")

    def test_worker_thread_context(self):
        precisions = []
        worker = threading.Thread(target=lambda: precisions.append(getcontext().prec))
        worker.start()
        worker.join()
        assert precisions == [50]
