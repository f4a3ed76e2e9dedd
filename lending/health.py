"""
health.py - Collateral valuation and health factor

PURE FUNCTIONS - every input is explicit: position snapshot, pool
snapshots, oracle quotes and the current time. Nothing here reads a
MarketView.

Key Formulas:
    value(amount)         = amount * price / 10**decimals
    collateral_value      = sum(value(accrued deposit) for each asset)
    borrowed_value        = sum(value(borrowed amount) for each asset)
    risk_adjusted         = collateral_value * liquidation_threshold
    health_factor         = risk_adjusted / borrowed_value   (None when no debt)

A position with no debt is always healthy; the division is never attempted.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, Iterable, Mapping, Optional, Set

from .core import Asset, MAX_AMOUNT, ArithmeticOverflow, PoolNotInitialized, StalePrice
from .accounts import Pool, Position
from .interest import accrue
from .pricing_source import Price, PriceOracle


# Type aliases
PriceDict = Mapping[Asset, Price]
PoolDict = Mapping[Asset, Pool]


HEALTH_STATUS_HEALTHY = "HEALTHY"
HEALTH_STATUS_LIQUIDATABLE = "LIQUIDATABLE"

ONE = Decimal("1")


@dataclass(frozen=True, slots=True)
class HealthReport:
    """
    Immutable result of a health evaluation.

    health_factor is None when the position has no debt.
    """
    collateral_value: Decimal
    borrowed_value: Decimal
    liquidation_threshold: Decimal
    risk_adjusted_collateral: Decimal
    health_factor: Optional[Decimal]
    status: str

    @property
    def is_healthy(self) -> bool:
        return self.status == HEALTH_STATUS_HEALTHY


# ============================================================================
# UNIT CONVERSIONS
# ============================================================================

def value_of(amount: int, price: Price, decimals: int) -> Decimal:
    """Quote-currency value of an amount in minor units."""
    return Decimal(amount) * price.value / (Decimal(10) ** decimals)


def amount_for_value(value: Decimal, price: Price, decimals: int) -> int:
    """
    Minor units of an asset worth value, rounded down.

    Raises:
        ArithmeticOverflow: if the amount does not fit MAX_AMOUNT
    """
    if value <= 0:
        return 0
    raw = value * (Decimal(10) ** decimals) / price.value
    amount = int(raw.to_integral_value(rounding=ROUND_FLOOR))
    if amount > MAX_AMOUNT:
        raise ArithmeticOverflow(f"Amount {amount} exceeds {MAX_AMOUNT}")
    return amount


# ============================================================================
# PRICE COLLECTION
# ============================================================================

def assets_to_price(position: Optional[Position], *extra: Asset) -> Set[Asset]:
    """Assets whose quotes are needed to value a position (plus extra)."""
    assets: Set[Asset] = set(extra)
    if position is not None:
        for asset, leg in position.legs().items():
            if leg.deposited_amount or leg.borrowed_amount:
                assets.add(asset)
    return assets


def fetch_prices(
    oracle: PriceOracle,
    assets: Iterable[Asset],
    max_age_seconds: int,
    now: datetime,
) -> Dict[Asset, Price]:
    """
    Fetch fresh quotes for several assets.

    Raises:
        StalePrice: if any quote is missing or too old
    """
    return {
        asset: oracle.get_price(asset, max_age_seconds, now)
        for asset in sorted(assets, key=lambda a: a.value)
    }


def _require_price(prices: PriceDict, asset: Asset) -> Price:
    if asset not in prices:
        raise StalePrice(f"No price available for {asset.value}")
    return prices[asset]


def _require_pool(pools: PoolDict, asset: Asset) -> Pool:
    if asset not in pools:
        raise PoolNotInitialized(f"No pool for {asset.value}")
    return pools[asset]


# ============================================================================
# VALUATION
# ============================================================================

def accrued_deposit(position: Position, asset: Asset, pool: Pool, now: datetime) -> int:
    """Deposited amount of one leg grown by its pool's interest rate."""
    return accrue(
        position.leg(asset).deposited_amount,
        pool.interest_rate,
        position.last_updated,
        now,
    )


def calculate_collateral_value(
    position: Position,
    pools: PoolDict,
    prices: PriceDict,
    now: datetime,
) -> Decimal:
    """
    Value of all deposit legs, each accrued at its own pool's rate.

    Legs with nothing deposited need neither a pool nor a price.
    """
    total = Decimal("0")
    for asset, leg in position.legs().items():
        if leg.deposited_amount == 0:
            continue
        pool = _require_pool(pools, asset)
        price = _require_price(prices, asset)
        total += value_of(accrued_deposit(position, asset, pool, now), price, pool.decimals)
    return total


def calculate_borrowed_value(
    position: Position,
    pools: PoolDict,
    prices: PriceDict,
) -> Decimal:
    """Value of all borrowed legs."""
    total = Decimal("0")
    for asset, leg in position.legs().items():
        if leg.borrowed_amount == 0:
            continue
        pool = _require_pool(pools, asset)
        price = _require_price(prices, asset)
        total += value_of(leg.borrowed_amount, price, pool.decimals)
    return total


# ============================================================================
# HEALTH FACTOR
# ============================================================================

def calculate_health(
    collateral_value: Decimal,
    borrowed_value: Decimal,
    liquidation_threshold: Decimal,
) -> HealthReport:
    """
    Health factor from already-computed values.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Returns:
        HealthReport; LIQUIDATABLE only when there is debt and the factor is
        strictly below 1.
    """
    risk_adjusted = collateral_value * liquidation_threshold
    if borrowed_value <= 0:
        return HealthReport(
            collateral_value=collateral_value,
            borrowed_value=borrowed_value,
            liquidation_threshold=liquidation_threshold,
            risk_adjusted_collateral=risk_adjusted,
            health_factor=None,
            status=HEALTH_STATUS_HEALTHY,
        )
    factor = risk_adjusted / borrowed_value
    return HealthReport(
        collateral_value=collateral_value,
        borrowed_value=borrowed_value,
        liquidation_threshold=liquidation_threshold,
        risk_adjusted_collateral=risk_adjusted,
        health_factor=factor,
        status=HEALTH_STATUS_HEALTHY if factor >= ONE else HEALTH_STATUS_LIQUIDATABLE,
    )


def assess_position(
    position: Position,
    pools: PoolDict,
    prices: PriceDict,
    liquidation_threshold: Decimal,
    now: datetime,
) -> HealthReport:
    """Value a position and compute its health factor in one step."""
    return calculate_health(
        calculate_collateral_value(position, pools, prices, now),
        calculate_borrowed_value(position, pools, prices),
        liquidation_threshold,
    )
