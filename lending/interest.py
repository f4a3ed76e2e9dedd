"""
interest.py - Deterministic continuous-compounding interest

Deposits grow as deposited * e^(rate * elapsed_seconds). The exponential is
evaluated with integers only so every platform produces the same result:

    1. x is carried at 1e18 fixed point (WAD) and widened to 1e36 internally
    2. range reduction: x / 2^k <= 1
    3. Taylor series of e^(x / 2^k) until the next term truncates to zero
    4. k squarings restore e^x

The result is floored back to WAD precision.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Optional

from .core import MAX_AMOUNT, ArithmeticOverflow


WAD = 10 ** 18

# Internal precision of the series.
_SCALE = 10 ** 36
_WIDEN = _SCALE // WAD

# e^135 is about 4.3e58; beyond that no u64 deposit can hold the result.
MAX_EXP_INPUT = 135 * WAD


def to_wad(value: Decimal) -> int:
    """Convert a non-negative Decimal to WAD fixed point, rounding down."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if value < 0:
        raise ValueError(f"Fixed-point value cannot be negative, got {value}")
    return int((value * WAD).to_integral_value(rounding=ROUND_FLOOR))


def exp_wad(x: int) -> int:
    """
    e^(x / WAD) in WAD fixed point, using integer arithmetic only.

    Args:
        x: Exponent in WAD fixed point (non-negative)

    Returns:
        floor(e^(x / WAD) * WAD), up to the truncation of the series

    Raises:
        ValueError: if x is negative
        ArithmeticOverflow: if x exceeds MAX_EXP_INPUT
    """
    if x < 0:
        raise ValueError(f"exp_wad requires a non-negative exponent, got {x}")
    if x > MAX_EXP_INPUT:
        raise ArithmeticOverflow(f"Exponent {x} exceeds {MAX_EXP_INPUT}")
    if x == 0:
        return WAD

    r = x * _WIDEN
    k = 0
    while r > _SCALE:
        r //= 2
        k += 1

    total = _SCALE
    term = _SCALE
    n = 1
    while True:
        term = term * r // (_SCALE * n)
        if term == 0:
            break
        total += term
        n += 1

    for _ in range(k):
        total = total * total // _SCALE

    return total // _WIDEN


def elapsed_seconds(last_updated: Optional[datetime], now: datetime) -> int:
    """
    Whole seconds between last accrual and now.

    A position that has never accrued has zero elapsed time.

    Raises:
        ValueError: if now is before last_updated
    """
    if last_updated is None:
        return 0
    seconds = (now - last_updated).total_seconds()
    if seconds < 0:
        raise ValueError(
            f"Elapsed time cannot be negative: last_updated {last_updated} is after {now}"
        )
    return int(seconds)


def calculate_accrued_amount(deposited: int, interest_rate: Decimal, elapsed: int) -> int:
    """
    Deposited amount grown by continuous compounding.

    PURE FUNCTION - All inputs explicit, no hidden state.

        accrued = floor(deposited * e^(interest_rate * elapsed))

    Args:
        deposited: Amount in minor units
        interest_rate: Growth rate per second
        elapsed: Seconds since the last accrual

    Returns:
        The grown amount (equal to deposited when rate or elapsed is zero)

    Raises:
        ValueError: if elapsed is negative
        ArithmeticOverflow: if the grown amount does not fit MAX_AMOUNT
    """
    if elapsed < 0:
        raise ValueError(f"elapsed cannot be negative, got {elapsed}")
    if deposited == 0 or elapsed == 0:
        return deposited
    rate_wad = to_wad(interest_rate)
    if rate_wad == 0:
        return deposited

    growth = exp_wad(rate_wad * elapsed)
    accrued = deposited * growth // WAD
    if accrued > MAX_AMOUNT:
        raise ArithmeticOverflow(f"Accrued amount {accrued} exceeds {MAX_AMOUNT}")
    return accrued


def accrue(
    deposited: int,
    interest_rate: Decimal,
    last_updated: Optional[datetime],
    now: datetime,
) -> int:
    """Convenience wrapper: accrue from a last-updated time to now."""
    return calculate_accrued_amount(
        deposited, interest_rate, elapsed_seconds(last_updated, now)
    )
