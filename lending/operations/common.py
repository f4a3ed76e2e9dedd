"""
Helpers shared by the operation handlers.
"""

from __future__ import annotations
from typing import Dict, Iterable

from ..core import Asset, MarketView, MAX_AMOUNT, Operation, ArithmeticOverflow
from ..accounts import Pool


def validate_amount(amount: int) -> int:
    """
    Check an operation amount: a positive int within the u64 range.

    Raises:
        ValueError: if amount is not a positive int
        ArithmeticOverflow: if amount exceeds MAX_AMOUNT
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"amount must be an int in minor units, got {type(amount).__name__}")
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")
    if amount > MAX_AMOUNT:
        raise ArithmeticOverflow(f"amount {amount} exceeds {MAX_AMOUNT}")
    return amount


def load_pools(view: MarketView, assets: Iterable[Asset]) -> Dict[Asset, Pool]:
    """Load the pool snapshot of every asset in assets."""
    return {asset: view.load_pool(asset) for asset in assets}


def contract_id(operation: Operation, user_id: str, asset: Asset) -> str:
    return f"{operation.value}_{user_id}_{asset.value}"
