"""
lending - Collateralized Lending Ledger

Pooled two-asset lending: users deposit collateral, borrow against it, repay,
and can be liquidated when their health factor drops below 1.

Usage:
    from datetime import datetime
    from lending import Asset, LendingMarket, StaticPriceOracle

    t0 = datetime(2024, 1, 1)
    oracle = StaticPriceOracle()
    oracle.update_prices({Asset.SOL: 150, Asset.USDC: 1}, t0)

    market = LendingMarket("main", oracle=oracle, initial_time=t0)
    market.init_pool(Asset.SOL, 9, "0.8", "0.5", "0.05", "0")
    market.init_pool(Asset.USDC, 6, "0.8", "0.5", "0.05", "0")

    market.register_wallet("alice")
    market.issue("alice", Asset.SOL, 10 * 10**9)
    market.deposit("alice", Asset.SOL, 10 * 10**9)

    # Seed USDC liquidity, then borrow against the SOL
    market.register_wallet("bob")
    market.issue("bob", Asset.USDC, 5_000 * 10**6)
    market.deposit("bob", Asset.USDC, 5_000 * 10**6)
    market.borrow("alice", Asset.USDC, 1_000 * 10**6)

    print(market.health("alice", Asset.USDC))
"""

# Core types
from .core import (
    Asset,
    MarketView,
    Clock,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    PoolUpdate,
    PositionUpdate,
    Operation,
    ExecuteResult,
    build_transaction,
    treasury_wallet,
    SYSTEM_WALLET,
    MAX_AMOUNT,
    DEFAULT_MAX_PRICE_AGE_SECONDS,
    LendingError,
    InsufficientCollateral,
    OverBorrowableAmount,
    OverRepay,
    OverWithdraw,
    NotUndercollateralized,
    NothingToLiquidate,
    EmptyPool,
    DivisionByZero,
    StalePrice,
    InvalidPrice,
    ArithmeticOverflow,
    InsufficientBalance,
    TransferRuleViolation,
    StaleState,
    PoolNotInitialized,
    PositionNotFound,
    WalletNotRegistered,
)

# Records
from .accounts import Pool, Position, PositionLeg, open_position, to_state_dict

# Arithmetic
from .shares import shares_to_mint, shares_to_burn, amount_for_shares
from .interest import WAD, exp_wad, calculate_accrued_amount

# Prices and health
from .pricing_source import Price, PriceOracle, StaticPriceOracle, TimeSeriesPriceOracle
from .health import (
    HealthReport,
    HEALTH_STATUS_HEALTHY,
    HEALTH_STATUS_LIQUIDATABLE,
    calculate_collateral_value,
    calculate_borrowed_value,
    calculate_health,
    assess_position,
)

# Operations
from .operations import (
    compute_deposit,
    compute_withdraw,
    compute_borrow,
    compute_repay,
    compute_liquidation,
    plan_liquidation,
    LiquidationPlan,
    transact,
)

# Market
from .market import LendingMarket

# Configuration
from .config import MarketConfig, PoolConfig, load_config, create_market
from .logging_setup import configure_logging


__all__ = [
    # Core
    'Asset',
    'MarketView',
    'Clock',
    'Move',
    'Transaction',
    'PendingTransaction',
    'TransactionOrigin',
    'PoolUpdate',
    'PositionUpdate',
    'Operation',
    'ExecuteResult',
    'build_transaction',
    'treasury_wallet',
    'SYSTEM_WALLET',
    'MAX_AMOUNT',
    'DEFAULT_MAX_PRICE_AGE_SECONDS',
    # Errors
    'LendingError',
    'InsufficientCollateral',
    'OverBorrowableAmount',
    'OverRepay',
    'OverWithdraw',
    'NotUndercollateralized',
    'NothingToLiquidate',
    'EmptyPool',
    'DivisionByZero',
    'StalePrice',
    'InvalidPrice',
    'ArithmeticOverflow',
    'InsufficientBalance',
    'TransferRuleViolation',
    'StaleState',
    'PoolNotInitialized',
    'PositionNotFound',
    'WalletNotRegistered',
    # Records
    'Pool',
    'Position',
    'PositionLeg',
    'open_position',
    'to_state_dict',
    # Arithmetic
    'shares_to_mint',
    'shares_to_burn',
    'amount_for_shares',
    'WAD',
    'exp_wad',
    'calculate_accrued_amount',
    # Prices and health
    'Price',
    'PriceOracle',
    'StaticPriceOracle',
    'TimeSeriesPriceOracle',
    'HealthReport',
    'HEALTH_STATUS_HEALTHY',
    'HEALTH_STATUS_LIQUIDATABLE',
    'calculate_collateral_value',
    'calculate_borrowed_value',
    'calculate_health',
    'assess_position',
    # Operations
    'compute_deposit',
    'compute_withdraw',
    'compute_borrow',
    'compute_repay',
    'compute_liquidation',
    'plan_liquidation',
    'LiquidationPlan',
    'transact',
    # Market
    'LendingMarket',
    # Configuration
    'MarketConfig',
    'PoolConfig',
    'load_config',
    'create_market',
    'configure_logging',
]

__version__ = '1.0.0'
