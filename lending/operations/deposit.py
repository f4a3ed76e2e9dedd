"""
deposit.py - Deposit and Withdraw

Deposit moves tokens from the user's wallet into the pool treasury and mints
deposit shares. Withdraw burns shares and moves tokens back, refusing when
the remaining collateral would no longer cover the user's debt.

Key Formulas:
    minted = amount                                        (empty pool)
    minted = amount * total_deposit_shares // total_deposits
    burned = amount * total_deposit_shares // total_deposits
"""

from __future__ import annotations
from dataclasses import replace

from ..core import (
    Asset, MarketView, Move, PendingTransaction, PoolUpdate, PositionUpdate,
    Operation, TransactionOrigin, DEFAULT_MAX_PRICE_AGE_SECONDS,
    EmptyPool, InsufficientCollateral, OverWithdraw,
    build_transaction, treasury_wallet,
)
from ..accounts import open_position
from ..health import assess_position, assets_to_price, fetch_prices
from ..pricing_source import PriceOracle
from ..shares import add_deposit, remove_deposit
from .common import contract_id, load_pools, validate_amount


def compute_deposit(
    view: MarketView,
    user_id: str,
    asset: Asset,
    amount: int,
) -> PendingTransaction:
    """
    Deposit amount of asset as collateral.

    Opens the user's position on first deposit and stamps last_updated with
    the current time.

    Args:
        view: Read-only market access
        user_id: Depositing wallet
        asset: Asset deposited
        amount: Minor units to deposit (positive)

    Returns:
        PendingTransaction with the user → treasury transfer and the pool and
        position updates. The user's balance is checked at commit.

    Example:
        # First deposit into an empty pool mints shares 1:1
        pending = compute_deposit(market, "alice", Asset.USDC, 1000)
        market.commit(pending)
    """
    asset = Asset.parse(asset)
    amount = validate_amount(amount)

    pool = view.load_pool(asset)
    existing = view.find_position(user_id)
    position = existing if existing is not None else open_position(user_id)

    new_leg, total_deposits, total_shares = add_deposit(
        position.leg(asset), amount, pool.total_deposits, pool.total_deposit_shares
    )
    new_pool = pool.with_totals(total_deposits=total_deposits, total_deposit_shares=total_shares)
    new_position = replace(position.with_leg(asset, new_leg), last_updated=view.current_time)

    moves = [
        Move(
            quantity=amount,
            asset=asset,
            decimals=pool.decimals,
            source=user_id,
            dest=treasury_wallet(asset),
            contract_id=contract_id(Operation.DEPOSIT, user_id, asset),
        )
    ]
    return build_transaction(
        view,
        moves,
        [PoolUpdate(pool, new_pool)],
        [PositionUpdate(existing, new_position)],
        origin=TransactionOrigin(Operation.DEPOSIT, user_id),
    )


def compute_withdraw(
    view: MarketView,
    oracle: PriceOracle,
    user_id: str,
    asset: Asset,
    amount: int,
    max_age_seconds: int = DEFAULT_MAX_PRICE_AGE_SECONDS,
) -> PendingTransaction:
    """
    Withdraw amount of deposited asset.

    When the user has debt, the position is re-valued after the withdrawal
    (with accrued interest, at the withdrawn pool's liquidation threshold);
    prices are only needed in that case.

    Raises:
        PositionNotFound: if the user has no position
        EmptyPool: if the pool holds no deposits
        OverWithdraw: if amount exceeds the user's deposited amount
        InsufficientCollateral: if the remaining collateral would leave the
            health factor below 1
        StalePrice: if a required quote is missing or too old
    """
    asset = Asset.parse(asset)
    amount = validate_amount(amount)

    pool = view.load_pool(asset)
    position = view.load_position(user_id)
    leg = position.leg(asset)

    if pool.total_deposits == 0:
        raise EmptyPool(f"{asset.value} pool has no deposits")
    if amount > leg.deposited_amount:
        raise OverWithdraw(
            f"{user_id} cannot withdraw {amount} {asset.value}: only {leg.deposited_amount} deposited"
        )

    new_leg, total_deposits, total_shares = remove_deposit(
        leg, amount, pool.total_deposits, pool.total_deposit_shares
    )
    new_pool = pool.with_totals(total_deposits=total_deposits, total_deposit_shares=total_shares)
    new_position = position.with_leg(asset, new_leg)

    if new_position.has_debt():
        now = view.current_time
        assets = assets_to_price(new_position)
        pools = load_pools(view, assets)
        pools[asset] = new_pool
        prices = fetch_prices(oracle, assets, max_age_seconds, now)
        report = assess_position(new_position, pools, prices, pool.liquidation_threshold, now)
        if not report.is_healthy:
            raise InsufficientCollateral(
                f"Withdrawing {amount} {asset.value} leaves {user_id} at health factor "
                f"{report.health_factor:.4f}"
            )

    moves = [
        Move(
            quantity=amount,
            asset=asset,
            decimals=pool.decimals,
            source=treasury_wallet(asset),
            dest=user_id,
            contract_id=contract_id(Operation.WITHDRAW, user_id, asset),
        )
    ]
    return build_transaction(
        view,
        moves,
        [PoolUpdate(pool, new_pool)],
        [PositionUpdate(position, new_position)],
        origin=TransactionOrigin(Operation.WITHDRAW, user_id),
    )
