"""
borrow.py - Borrow and Repay

Borrow moves tokens out of a pool treasury against the user's collateral.
Repay returns them and cancels borrow shares.

Borrow checks, in order:
    1. amount <= floor(collateral_value * threshold / price * 10**decimals)
       (OverBorrowableAmount) - the borrowable amount in the borrowed asset
    2. risk_adjusted_collateral / (existing + new debt value) >= 1
       (InsufficientCollateral) - the position stays healthy overall

The threshold is always the one of the pool being borrowed from. Collateral
value includes accrued interest on every deposit leg.
"""

from __future__ import annotations

from ..core import (
    Asset, MarketView, Move, PendingTransaction, PoolUpdate, PositionUpdate,
    Operation, TransactionOrigin, DEFAULT_MAX_PRICE_AGE_SECONDS,
    InsufficientCollateral, OverBorrowableAmount, OverRepay,
    build_transaction, treasury_wallet,
)
from ..health import (
    amount_for_value, assets_to_price, calculate_borrowed_value,
    calculate_collateral_value, calculate_health, fetch_prices,
)
from ..pricing_source import PriceOracle
from ..shares import add_borrow, remove_borrow
from .common import contract_id, load_pools, validate_amount


def compute_borrow(
    view: MarketView,
    oracle: PriceOracle,
    user_id: str,
    asset: Asset,
    amount: int,
    max_age_seconds: int = DEFAULT_MAX_PRICE_AGE_SECONDS,
) -> PendingTransaction:
    """
    Borrow amount of asset against the user's collateral.

    Args:
        view: Read-only market access
        oracle: Price source for every asset in the position plus asset
        user_id: Borrowing wallet
        asset: Asset borrowed
        amount: Minor units to borrow (positive)
        max_age_seconds: Maximum age of each oracle quote

    Returns:
        PendingTransaction with the treasury → user transfer. Pool liquidity
        is checked at commit (InsufficientBalance on the treasury).

    Raises:
        PositionNotFound: if the user has no position
        StalePrice: if a required quote is missing or too old
        OverBorrowableAmount: if amount exceeds the borrowable amount
        InsufficientCollateral: if existing plus new debt would leave the
            health factor below 1
    """
    asset = Asset.parse(asset)
    amount = validate_amount(amount)

    pool = view.load_pool(asset)
    position = view.load_position(user_id)
    now = view.current_time

    assets = assets_to_price(position, asset)
    pools = load_pools(view, assets)
    prices = fetch_prices(oracle, assets, max_age_seconds, now)

    collateral_value = calculate_collateral_value(position, pools, prices, now)
    borrowable_value = collateral_value * pool.liquidation_threshold
    borrowable_amount = amount_for_value(borrowable_value, prices[asset], pool.decimals)
    if amount > borrowable_amount:
        raise OverBorrowableAmount(
            f"{user_id} can borrow at most {borrowable_amount} {asset.value}, requested {amount}"
        )

    new_leg, total_borrowed, total_shares = add_borrow(
        position.leg(asset), amount, pool.total_borrowed, pool.total_borrowed_shares
    )
    new_pool = pool.with_totals(total_borrowed=total_borrowed, total_borrowed_shares=total_shares)
    new_position = position.with_leg(asset, new_leg)

    report = calculate_health(
        collateral_value,
        calculate_borrowed_value(new_position, pools, prices),
        pool.liquidation_threshold,
    )
    if not report.is_healthy:
        raise InsufficientCollateral(
            f"Borrowing {amount} {asset.value} leaves {user_id} at health factor "
            f"{report.health_factor:.4f}"
        )

    moves = [
        Move(
            quantity=amount,
            asset=asset,
            decimals=pool.decimals,
            source=treasury_wallet(asset),
            dest=user_id,
            contract_id=contract_id(Operation.BORROW, user_id, asset),
        )
    ]
    return build_transaction(
        view,
        moves,
        [PoolUpdate(pool, new_pool)],
        [PositionUpdate(position, new_position)],
        origin=TransactionOrigin(Operation.BORROW, user_id),
    )


def compute_repay(
    view: MarketView,
    user_id: str,
    asset: Asset,
    amount: int,
) -> PendingTransaction:
    """
    Repay amount of borrowed asset.

    The leg is selected by asset; repaying USDC only ever touches the USDC
    borrow leg. Repaying the whole leg cancels all of its shares.

    Raises:
        PositionNotFound: if the user has no position
        OverRepay: if amount exceeds the user's borrowed amount of asset
    """
    asset = Asset.parse(asset)
    amount = validate_amount(amount)

    pool = view.load_pool(asset)
    position = view.load_position(user_id)
    leg = position.leg(asset)

    if amount > leg.borrowed_amount:
        raise OverRepay(
            f"{user_id} cannot repay {amount} {asset.value}: only {leg.borrowed_amount} borrowed"
        )

    new_leg, total_borrowed, total_shares = remove_borrow(
        leg, amount, pool.total_borrowed, pool.total_borrowed_shares
    )
    new_pool = pool.with_totals(total_borrowed=total_borrowed, total_borrowed_shares=total_shares)
    new_position = position.with_leg(asset, new_leg)

    moves = [
        Move(
            quantity=amount,
            asset=asset,
            decimals=pool.decimals,
            source=user_id,
            dest=treasury_wallet(asset),
            contract_id=contract_id(Operation.REPAY, user_id, asset),
        )
    ]
    return build_transaction(
        view,
        moves,
        [PoolUpdate(pool, new_pool)],
        [PositionUpdate(position, new_position)],
        origin=TransactionOrigin(Operation.REPAY, user_id),
    )
