"""
liquidate.py - Liquidation of undercollateralized positions

A liquidator repays part of an unhealthy user's debt in borrowed_asset and
receives the equivalent value of the user's collateral_asset plus a bonus.

Key Formulas (collateral pool's parameters throughout):
    health            = collateral_value * threshold / borrowed_value
    liquidation_value = min(borrowed_value * close_factor, borrowed_value)
    repay_amount      = min(floor(liquidation_value in borrowed units), borrowed leg)
    seize_value       = repaid_value * bonus + repaid_value
    seize_amount      = min(floor(seize_value in collateral units), deposited leg)

Liquidation is partial: a user that is still unhealthy afterwards can be
liquidated again.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal

from ..core import (
    Asset, MarketView, Move, PendingTransaction, PoolUpdate, PositionUpdate,
    Operation, TransactionOrigin, DEFAULT_MAX_PRICE_AGE_SECONDS,
    NotUndercollateralized, NothingToLiquidate,
    build_transaction, treasury_wallet,
)
from ..accounts import Pool, Position
from ..health import (
    HealthReport, PoolDict, PriceDict,
    amount_for_value, assess_position, assets_to_price, fetch_prices, value_of,
)
from ..pricing_source import PriceOracle
from ..shares import remove_borrow, remove_deposit
from .common import load_pools


@dataclass(frozen=True, slots=True)
class LiquidationPlan:
    """
    Amounts of a liquidation, before any record is touched.

    Attributes:
        report: Health of the position before liquidation
        liquidation_value: Debt value the liquidator may cover
        repay_amount: Borrowed-asset units the liquidator pays in
        repaid_value: Value of repay_amount
        seize_value: repaid_value plus the bonus
        seize_amount: Collateral-asset units the liquidator receives
    """
    report: HealthReport
    liquidation_value: Decimal
    repay_amount: int
    repaid_value: Decimal
    seize_value: Decimal
    seize_amount: int


def calculate_liquidation_value(borrowed_value: Decimal, close_factor: Decimal) -> Decimal:
    """Debt value coverable in one liquidation; never more than the debt."""
    return min(borrowed_value * close_factor, borrowed_value)


def calculate_seize_value(repaid_value: Decimal, bonus: Decimal) -> Decimal:
    return repaid_value * bonus + repaid_value


def plan_liquidation(
    position: Position,
    pools: PoolDict,
    prices: PriceDict,
    collateral_asset: Asset,
    borrowed_asset: Asset,
    now,
) -> LiquidationPlan:
    """
    Size a liquidation.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Raises:
        NotUndercollateralized: if the position's health factor is >= 1
            (including a position with no debt)
        NothingToLiquidate: if the user has no borrowed_asset debt or no
            collateral_asset deposit, or the amounts round down to zero
    """
    collateral_pool = pools[collateral_asset]
    borrowed_pool = pools[borrowed_asset]

    report = assess_position(position, pools, prices, collateral_pool.liquidation_threshold, now)
    if report.is_healthy:
        raise NotUndercollateralized(
            f"{position.user_id} is not undercollateralized "
            f"(health factor {report.health_factor})"
        )

    borrowed_leg = position.leg(borrowed_asset)
    if borrowed_leg.borrowed_amount == 0:
        raise NothingToLiquidate(f"{position.user_id} has no {borrowed_asset.value} debt")
    if position.leg(collateral_asset).deposited_amount == 0:
        raise NothingToLiquidate(
            f"{position.user_id} has no {collateral_asset.value} collateral"
        )

    liquidation_value = calculate_liquidation_value(
        report.borrowed_value, collateral_pool.liquidation_close_factor
    )
    repay_amount = min(
        amount_for_value(liquidation_value, prices[borrowed_asset], borrowed_pool.decimals),
        borrowed_leg.borrowed_amount,
    )
    if repay_amount == 0:
        raise NothingToLiquidate(
            f"Liquidation value {liquidation_value} is below one unit of {borrowed_asset.value}"
        )

    repaid_value = value_of(repay_amount, prices[borrowed_asset], borrowed_pool.decimals)
    seize_value = calculate_seize_value(repaid_value, collateral_pool.liquidation_bonus)
    seize_amount = min(
        amount_for_value(seize_value, prices[collateral_asset], collateral_pool.decimals),
        position.leg(collateral_asset).deposited_amount,
    )
    if seize_amount == 0:
        raise NothingToLiquidate(
            f"Seize value {seize_value} is below one unit of {collateral_asset.value}"
        )

    return LiquidationPlan(
        report=report,
        liquidation_value=liquidation_value,
        repay_amount=repay_amount,
        repaid_value=repaid_value,
        seize_value=seize_value,
        seize_amount=seize_amount,
    )


def compute_liquidation(
    view: MarketView,
    oracle: PriceOracle,
    liquidator_id: str,
    user_id: str,
    collateral_asset: Asset,
    borrowed_asset: Asset,
    max_age_seconds: int = DEFAULT_MAX_PRICE_AGE_SECONDS,
) -> PendingTransaction:
    """
    Liquidate part of an unhealthy position.

    Two moves: liquidator → borrowed treasury (repay_amount), then collateral
    treasury → liquidator (seize_amount). When both assets are the same the
    pool update is composed on a single record.

    Args:
        view: Read-only market access
        oracle: Price source
        liquidator_id: Wallet paying the debt and receiving collateral
        user_id: Owner of the unhealthy position
        collateral_asset: Asset seized
        borrowed_asset: Asset repaid
        max_age_seconds: Maximum age of each oracle quote

    Returns:
        PendingTransaction; the liquidator's balance is checked at commit.

    Example:
        pending = compute_liquidation(market, oracle, "keeper", "alice",
                                      Asset.SOL, Asset.USDC)
        market.commit(pending)
    """
    collateral_asset = Asset.parse(collateral_asset)
    borrowed_asset = Asset.parse(borrowed_asset)
    now = view.current_time

    position = view.load_position(user_id)
    assets = assets_to_price(position, collateral_asset, borrowed_asset)
    pools = load_pools(view, assets)
    prices = fetch_prices(oracle, assets, max_age_seconds, now)

    plan = plan_liquidation(position, pools, prices, collateral_asset, borrowed_asset, now)

    # Repay first; the seizure sees the pool as the repayment left it.
    borrowed_pool = pools[borrowed_asset]
    new_borrow_leg, total_borrowed, total_borrowed_shares = remove_borrow(
        position.leg(borrowed_asset),
        plan.repay_amount,
        borrowed_pool.total_borrowed,
        borrowed_pool.total_borrowed_shares,
    )
    repaid_pool = borrowed_pool.with_totals(
        total_borrowed=total_borrowed, total_borrowed_shares=total_borrowed_shares
    )
    repaid_position = position.with_leg(borrowed_asset, new_borrow_leg)

    collateral_pool = repaid_pool if collateral_asset is borrowed_asset else pools[collateral_asset]
    new_deposit_leg, total_deposits, total_deposit_shares = remove_deposit(
        repaid_position.leg(collateral_asset),
        plan.seize_amount,
        collateral_pool.total_deposits,
        collateral_pool.total_deposit_shares,
    )
    seized_pool = collateral_pool.with_totals(
        total_deposits=total_deposits, total_deposit_shares=total_deposit_shares
    )
    new_position = repaid_position.with_leg(collateral_asset, new_deposit_leg)

    pool_updates = _pool_updates(pools, repaid_pool, seized_pool)

    moves = [
        Move(
            quantity=plan.repay_amount,
            asset=borrowed_asset,
            decimals=borrowed_pool.decimals,
            source=liquidator_id,
            dest=treasury_wallet(borrowed_asset),
            contract_id=f"liquidate_{user_id}_repay_{borrowed_asset.value}",
        ),
        Move(
            quantity=plan.seize_amount,
            asset=collateral_asset,
            decimals=collateral_pool.decimals,
            source=treasury_wallet(collateral_asset),
            dest=liquidator_id,
            contract_id=f"liquidate_{user_id}_seize_{collateral_asset.value}",
        ),
    ]
    return build_transaction(
        view,
        moves,
        pool_updates,
        [PositionUpdate(position, new_position)],
        origin=TransactionOrigin(Operation.LIQUIDATE, liquidator_id, subject=user_id),
    )


def _pool_updates(pools: PoolDict, repaid_pool: Pool, seized_pool: Pool):
    if repaid_pool.asset is seized_pool.asset:
        return [PoolUpdate(pools[seized_pool.asset], seized_pool)]
    return [
        PoolUpdate(pools[repaid_pool.asset], repaid_pool),
        PoolUpdate(pools[seized_pool.asset], seized_pool),
    ]
