"""
Operations module - Handlers that turn a user request into a PendingTransaction.

Every handler is a pure function of a MarketView (and, where collateral is
valued, a PriceOracle). None of them mutates anything; the market commits
the returned PendingTransaction atomically.

- Deposit / Withdraw: deposit.py
- Borrow / Repay: borrow.py
- Liquidate: liquidate.py

transact() routes a named Operation to its handler.
"""

from __future__ import annotations
from typing import Any, Dict, Tuple

from ..core import Operation, MarketView, PendingTransaction
from ..pricing_source import PriceOracle

from .common import validate_amount
from .deposit import compute_deposit, compute_withdraw
from .borrow import compute_borrow, compute_repay
from .liquidate import (
    LiquidationPlan,
    calculate_liquidation_value,
    calculate_seize_value,
    compute_liquidation,
    plan_liquidation,
)


# Required keyword arguments per operation.
_REQUIRED: Dict[Operation, Tuple[str, ...]] = {
    Operation.DEPOSIT: ('user_id', 'asset', 'amount'),
    Operation.WITHDRAW: ('user_id', 'asset', 'amount'),
    Operation.BORROW: ('user_id', 'asset', 'amount'),
    Operation.REPAY: ('user_id', 'asset', 'amount'),
    Operation.LIQUIDATE: ('liquidator_id', 'user_id', 'collateral_asset', 'borrowed_asset'),
}


def transact(
    view: MarketView,
    oracle: PriceOracle,
    operation: Operation,
    **kwargs: Any,
) -> PendingTransaction:
    """
    Build the pending transaction for a named operation.

    This is the unified entry point for all user-facing operations, routing
    to the appropriate handler based on operation.

    Args:
        view: Read-only market access
        oracle: Price source (ignored by Deposit and Repay)
        operation: Operation or its name:
            - DEPOSIT / WITHDRAW / BORROW / REPAY: requires 'user_id', 'asset', 'amount'
            - LIQUIDATE: requires 'liquidator_id', 'user_id', 'collateral_asset',
              'borrowed_asset'
        **kwargs: Operation parameters; 'max_age_seconds' is passed through
            to the handlers that read prices

    Returns:
        PendingTransaction ready for commit

    Raises:
        ValueError: if the operation is not user-facing or a required
            parameter is missing

    Example:
        pending = transact(market, oracle, Operation.BORROW,
                           user_id="alice", asset=Asset.USDC, amount=500)
        market.commit(pending)
    """
    if not isinstance(operation, Operation):
        operation = Operation(str(operation).lower())
    required = _REQUIRED.get(operation)
    if required is None:
        raise ValueError(f"Operation {operation.value} cannot be submitted through transact")
    missing = [name for name in required if kwargs.get(name) is None]
    if missing:
        raise ValueError(
            f"Missing {', '.join(repr(m) for m in missing)} parameter for {operation.value}"
        )

    price_kwargs = {}
    if kwargs.get('max_age_seconds') is not None:
        price_kwargs['max_age_seconds'] = kwargs['max_age_seconds']

    if operation is Operation.DEPOSIT:
        return compute_deposit(view, kwargs['user_id'], kwargs['asset'], kwargs['amount'])
    elif operation is Operation.WITHDRAW:
        return compute_withdraw(
            view, oracle, kwargs['user_id'], kwargs['asset'], kwargs['amount'], **price_kwargs
        )
    elif operation is Operation.BORROW:
        return compute_borrow(
            view, oracle, kwargs['user_id'], kwargs['asset'], kwargs['amount'], **price_kwargs
        )
    elif operation is Operation.REPAY:
        return compute_repay(view, kwargs['user_id'], kwargs['asset'], kwargs['amount'])
    else:
        return compute_liquidation(
            view,
            oracle,
            kwargs['liquidator_id'],
            kwargs['user_id'],
            kwargs['collateral_asset'],
            kwargs['borrowed_asset'],
            **price_kwargs,
        )


__all__ = [
    'validate_amount',
    'compute_deposit',
    'compute_withdraw',
    'compute_borrow',
    'compute_repay',
    'LiquidationPlan',
    'calculate_liquidation_value',
    'calculate_seize_value',
    'plan_liquidation',
    'compute_liquidation',
    'transact',
]
