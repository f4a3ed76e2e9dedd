"""
shares.py - Share bookkeeping with checked integer arithmetic

A share is a proportional claim on a pool total. Every conversion here is
integer floor division; truncation always favours the pool.

Key Formulas:
    minted = amount                                  (total_amount == 0, bootstrap)
    minted = amount * total_shares // total_amount   (otherwise)
    burned = amount * total_shares // total_amount   (total_amount must be > 0)
    amount = shares * total_amount // total_shares   (0 when total_shares == 0)

All results are bounded by MAX_AMOUNT; leaving that range raises
ArithmeticOverflow instead of wrapping.
"""

from __future__ import annotations
from typing import Tuple

from .core import (
    MAX_AMOUNT, MAX_INTERMEDIATE,
    ArithmeticOverflow, DivisionByZero, EmptyPool,
)
from .accounts import PositionLeg


# ============================================================================
# CHECKED ARITHMETIC
# ============================================================================

def checked_add(a: int, b: int) -> int:
    result = a + b
    if result > MAX_AMOUNT:
        raise ArithmeticOverflow(f"{a} + {b} exceeds {MAX_AMOUNT}")
    return result


def checked_sub(a: int, b: int) -> int:
    if b > a:
        raise ArithmeticOverflow(f"{a} - {b} underflows")
    return a - b


def mul_div_floor(a: int, b: int, denominator: int) -> int:
    """
    Compute floor(a * b / denominator) with a double-width intermediate.

    Raises:
        DivisionByZero: if denominator is zero
        ArithmeticOverflow: if the product or the result leaves its range
    """
    if denominator == 0:
        raise DivisionByZero(f"{a} * {b} / 0")
    product = a * b
    if product > MAX_INTERMEDIATE:
        raise ArithmeticOverflow(f"{a} * {b} exceeds {MAX_INTERMEDIATE}")
    result = product // denominator
    if result > MAX_AMOUNT:
        raise ArithmeticOverflow(f"{a} * {b} / {denominator} exceeds {MAX_AMOUNT}")
    return result


# ============================================================================
# SHARE CONVERSIONS
# ============================================================================

def shares_to_mint(amount: int, total_amount: int, total_shares: int) -> int:
    """
    Shares issued for adding amount to a pool total.

    An empty pool is bootstrapped 1:1 and never reaches the division.
    """
    if total_amount == 0:
        return amount
    return mul_div_floor(amount, total_shares, total_amount)


def shares_to_burn(amount: int, total_amount: int, total_shares: int) -> int:
    """
    Shares cancelled for removing amount from a pool total.

    Uses the totals before the removal.

    Raises:
        EmptyPool: if the pool total is zero
    """
    if total_amount == 0:
        raise EmptyPool("Cannot burn shares against an empty pool total")
    return mul_div_floor(amount, total_shares, total_amount)


def amount_for_shares(shares: int, total_amount: int, total_shares: int) -> int:
    """Amount a share count is redeemable for (floor)."""
    if total_shares == 0:
        return 0
    return mul_div_floor(shares, total_amount, total_shares)


# ============================================================================
# LEG + TOTAL UPDATES
# ============================================================================
#
# Each function returns the new (leg, total_amount, total_shares) triple.
# Removals that empty a leg burn every share the leg still holds so the leg
# is left at exactly zero; otherwise the proportional burn is capped at the
# leg's own shares.

def add_deposit(
    leg: PositionLeg, amount: int, total_amount: int, total_shares: int,
) -> Tuple[PositionLeg, int, int]:
    minted = shares_to_mint(amount, total_amount, total_shares)
    new_leg = PositionLeg(
        deposited_amount=checked_add(leg.deposited_amount, amount),
        deposited_shares=checked_add(leg.deposited_shares, minted),
        borrowed_amount=leg.borrowed_amount,
        borrowed_shares=leg.borrowed_shares,
    )
    return new_leg, checked_add(total_amount, amount), checked_add(total_shares, minted)


def remove_deposit(
    leg: PositionLeg, amount: int, total_amount: int, total_shares: int,
) -> Tuple[PositionLeg, int, int]:
    burned = shares_to_burn(amount, total_amount, total_shares)
    if amount == leg.deposited_amount:
        burned = leg.deposited_shares
    burned = min(burned, leg.deposited_shares)
    new_leg = PositionLeg(
        deposited_amount=checked_sub(leg.deposited_amount, amount),
        deposited_shares=checked_sub(leg.deposited_shares, burned),
        borrowed_amount=leg.borrowed_amount,
        borrowed_shares=leg.borrowed_shares,
    )
    return new_leg, checked_sub(total_amount, amount), checked_sub(total_shares, burned)


def add_borrow(
    leg: PositionLeg, amount: int, total_amount: int, total_shares: int,
) -> Tuple[PositionLeg, int, int]:
    minted = shares_to_mint(amount, total_amount, total_shares)
    new_leg = PositionLeg(
        deposited_amount=leg.deposited_amount,
        deposited_shares=leg.deposited_shares,
        borrowed_amount=checked_add(leg.borrowed_amount, amount),
        borrowed_shares=checked_add(leg.borrowed_shares, minted),
    )
    return new_leg, checked_add(total_amount, amount), checked_add(total_shares, minted)


def remove_borrow(
    leg: PositionLeg, amount: int, total_amount: int, total_shares: int,
) -> Tuple[PositionLeg, int, int]:
    burned = shares_to_burn(amount, total_amount, total_shares)
    if amount == leg.borrowed_amount:
        burned = leg.borrowed_shares
    burned = min(burned, leg.borrowed_shares)
    new_leg = PositionLeg(
        deposited_amount=leg.deposited_amount,
        deposited_shares=leg.deposited_shares,
        borrowed_amount=checked_sub(leg.borrowed_amount, amount),
        borrowed_shares=checked_sub(leg.borrowed_shares, burned),
    )
    return new_leg, checked_sub(total_amount, amount), checked_sub(total_shares, burned)
