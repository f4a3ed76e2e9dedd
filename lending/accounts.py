"""
accounts.py - Pool and Position records

Both records are frozen dataclasses. Operation handlers load a snapshot,
build a new version with dataclasses.replace(), and hand both to the market
inside a PoolUpdate / PositionUpdate. Nothing is mutated in place.

Pool:
    Global per-asset book: deposits, borrows, their share counts and the
    risk parameters set at initialization.

Position:
    One per user. Holds a PositionLeg for each Asset plus the time of the
    last interest accrual.
"""

from __future__ import annotations
from dataclasses import dataclass, replace, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional, Any

from .core import Asset, MAX_AMOUNT


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _check_amount(name: str, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be int, got {type(value)}")
    if value < 0 or value > MAX_AMOUNT:
        raise ValueError(f"{name} out of range: {value}")


# ============================================================================
# POOL
# ============================================================================

@dataclass(frozen=True, slots=True)
class Pool:
    """
    Immutable snapshot of a pool ("bank").

    Amount fields are minor units of the asset. Risk parameters are fractions:
        liquidation_threshold: share of collateral value usable against debt
        liquidation_close_factor: share of debt repayable per liquidation
        liquidation_bonus: extra collateral awarded to a liquidator
        interest_rate: continuous growth rate per second applied to deposits

    Invariant: a share total is zero exactly when its amount total is zero.
    """
    asset: Asset
    decimals: int
    liquidation_threshold: Decimal
    liquidation_close_factor: Decimal
    liquidation_bonus: Decimal
    interest_rate: Decimal
    total_deposits: int = 0
    total_deposit_shares: int = 0
    total_borrowed: int = 0
    total_borrowed_shares: int = 0

    def __post_init__(self):
        for name in ('liquidation_threshold', 'liquidation_close_factor',
                     'liquidation_bonus', 'interest_rate'):
            object.__setattr__(self, name, _as_decimal(getattr(self, name)))

        if not isinstance(self.asset, Asset):
            raise ValueError(f"asset must be Asset, got {self.asset!r}")
        if not 0 <= self.decimals <= 18:
            raise ValueError(f"decimals must be between 0 and 18, got {self.decimals}")
        if not Decimal("0") < self.liquidation_threshold <= Decimal("1"):
            raise ValueError(
                f"liquidation_threshold must be in (0, 1], got {self.liquidation_threshold}"
            )
        if not Decimal("0") < self.liquidation_close_factor <= Decimal("1"):
            raise ValueError(
                f"liquidation_close_factor must be in (0, 1], got {self.liquidation_close_factor}"
            )
        if self.liquidation_bonus < Decimal("0"):
            raise ValueError(f"liquidation_bonus cannot be negative, got {self.liquidation_bonus}")
        if self.interest_rate < Decimal("0"):
            raise ValueError(f"interest_rate cannot be negative, got {self.interest_rate}")

        _check_amount("total_deposits", self.total_deposits)
        _check_amount("total_deposit_shares", self.total_deposit_shares)
        _check_amount("total_borrowed", self.total_borrowed)
        _check_amount("total_borrowed_shares", self.total_borrowed_shares)

        if (self.total_deposits == 0) != (self.total_deposit_shares == 0):
            raise ValueError(
                f"{self.asset.value} pool deposit totals out of sync: "
                f"{self.total_deposits} amount vs {self.total_deposit_shares} shares"
            )
        if (self.total_borrowed == 0) != (self.total_borrowed_shares == 0):
            raise ValueError(
                f"{self.asset.value} pool borrow totals out of sync: "
                f"{self.total_borrowed} amount vs {self.total_borrowed_shares} shares"
            )

    @property
    def available_liquidity(self) -> int:
        """Deposits not currently lent out."""
        return max(self.total_deposits - self.total_borrowed, 0)

    def with_totals(self, **totals: int) -> 'Pool':
        """Return a copy with some of the four totals replaced."""
        return replace(self, **totals)


# ============================================================================
# POSITION
# ============================================================================

@dataclass(frozen=True, slots=True)
class PositionLeg:
    """A user's holdings in a single pool."""
    deposited_amount: int = 0
    deposited_shares: int = 0
    borrowed_amount: int = 0
    borrowed_shares: int = 0

    def __post_init__(self):
        _check_amount("deposited_amount", self.deposited_amount)
        _check_amount("deposited_shares", self.deposited_shares)
        _check_amount("borrowed_amount", self.borrowed_amount)
        _check_amount("borrowed_shares", self.borrowed_shares)

    def is_empty(self) -> bool:
        return not (self.deposited_amount or self.deposited_shares
                    or self.borrowed_amount or self.borrowed_shares)


@dataclass(frozen=True, slots=True)
class Position:
    """
    Immutable snapshot of a user's position.

    Legs are addressed through leg(asset) / with_leg(asset, leg) so that the
    choice between the SOL and USDC leg is always an exhaustive match on the
    Asset enum.
    """
    user_id: str
    sol: PositionLeg = field(default_factory=PositionLeg)
    usdc: PositionLeg = field(default_factory=PositionLeg)
    last_updated: Optional[datetime] = None

    def __post_init__(self):
        if not self.user_id or not self.user_id.strip():
            raise ValueError("Position user_id cannot be empty")

    def leg(self, asset: Asset) -> PositionLeg:
        if asset is Asset.SOL:
            return self.sol
        if asset is Asset.USDC:
            return self.usdc
        raise ValueError(f"Unknown asset {asset!r}")

    def with_leg(self, asset: Asset, leg: PositionLeg) -> 'Position':
        if asset is Asset.SOL:
            return replace(self, sol=leg)
        if asset is Asset.USDC:
            return replace(self, usdc=leg)
        raise ValueError(f"Unknown asset {asset!r}")

    def legs(self) -> Dict[Asset, PositionLeg]:
        return {Asset.SOL: self.sol, Asset.USDC: self.usdc}

    def has_debt(self) -> bool:
        return any(leg.borrowed_amount > 0 for leg in self.legs().values())


def open_position(user_id: str, opened_at: Optional[datetime] = None) -> Position:
    """Create an empty position for a user."""
    return Position(user_id=user_id, last_updated=opened_at)


def to_state_dict(position: Position) -> Dict[str, Any]:
    """
    Flatten a position into a plain dict, e.g. for reporting.

    Keys follow the asset symbol: deposited_sol, deposited_sol_shares, ...
    """
    state: Dict[str, Any] = {'user_id': position.user_id, 'last_updated': position.last_updated}
    for asset, leg in position.legs().items():
        symbol = asset.value.lower()
        state[f'deposited_{symbol}'] = leg.deposited_amount
        state[f'deposited_{symbol}_shares'] = leg.deposited_shares
        state[f'borrowed_{symbol}'] = leg.borrowed_amount
        state[f'borrowed_{symbol}_shares'] = leg.borrowed_shares
    return state
