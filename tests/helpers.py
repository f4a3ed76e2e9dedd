"""
helpers.py - Builders shared by the lending tests

- make_pool / make_position: records with whole-token units
- snapshot: everything a rejected operation must leave untouched
- build_market / apply_step: randomized operation sequences
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Tuple

from lending import Asset, LendingMarket, Pool, Position, PositionLeg, StaticPriceOracle


T0 = datetime(2025, 1, 1)


def make_pool(asset: Asset, **overrides) -> Pool:
    """Pool with whole-token units (decimals 0) and round risk parameters."""
    params = dict(
        asset=asset,
        decimals=0,
        liquidation_threshold=Decimal("0.8"),
        liquidation_close_factor=Decimal("0.5"),
        liquidation_bonus=Decimal("0.05"),
        interest_rate=Decimal("0"),
    )
    params.update(overrides)
    return Pool(**params)


def make_position(user_id: str, last_updated=T0, **legs: Dict[str, int]) -> Position:
    """
    Position from leg keyword dicts, with shares equal to amounts by default.

    Example:
        make_position("alice", sol={'deposited': 10}, usdc={'borrowed': 800})
    """
    built = {}
    for name, values in legs.items():
        deposited = values.get('deposited', 0)
        borrowed = values.get('borrowed', 0)
        built[name] = PositionLeg(
            deposited_amount=deposited,
            deposited_shares=values.get('deposited_shares', deposited),
            borrowed_amount=borrowed,
            borrowed_shares=values.get('borrowed_shares', borrowed),
        )
    return Position(user_id=user_id, last_updated=last_updated, **built)


def snapshot(market: LendingMarket) -> Dict[str, Any]:
    return {
        'balances': {w: dict(b) for w, b in market.balances.items()},
        'pools': dict(market.pools),
        'positions': dict(market.positions),
        'log': len(market.transaction_log),
        'intents': set(market.seen_intent_ids),
    }


# =============================================================================
# RANDOMIZED SCENARIOS
# =============================================================================

USERS = ("alice", "bob", "carol")


def build_market(sol_rate: str = "0.0001"):
    """
    Fresh test-mode market for property tests (fixtures do not mix with @given).

    Returns:
        (market, oracle) with both pools initialized, SOL at 100 and USDC at 1,
        every user holding 1,000 SOL and 100,000 USDC.
    """
    oracle = StaticPriceOracle()
    oracle.update_prices({Asset.SOL: Decimal("100"), Asset.USDC: Decimal("1")}, T0)
    market = LendingMarket("prop", oracle=oracle, initial_time=T0, test_mode=True)
    market.init_pool(Asset.SOL, 0, "0.8", "0.5", "0.05", sol_rate)
    market.init_pool(Asset.USDC, 0, "0.8", "0.5", "0.05", "0")
    for user in USERS:
        market.register_wallet(user)
        market.issue(user, Asset.SOL, 1_000)
        market.issue(user, Asset.USDC, 100_000)
    return market, oracle


def apply_step(market: LendingMarket, oracle: StaticPriceOracle, step: Tuple) -> None:
    """
    Apply one generated step. Lending operations may raise LendingError.

    Steps:
        ("deposit" | "withdraw" | "borrow" | "repay", user, asset, amount)
        ("liquidate", liquidator, user, collateral_asset, borrowed_asset)
        ("price", sol_price)   - republish quotes at the current time
        ("wait", seconds)      - advance the clock and republish quotes
    """
    kind = step[0]
    if kind == "price":
        oracle.update_price(Asset.SOL, Decimal(step[1]), market.current_time)
        oracle.update_price(Asset.USDC, Decimal("1"), market.current_time)
    elif kind == "wait":
        market.advance_time(market.current_time + timedelta(seconds=step[1]))
        for asset in Asset:
            quote = oracle.prices[asset]
            oracle.update_price(asset, quote.value, market.current_time)
    elif kind == "liquidate":
        _, liquidator, user, collateral, borrowed = step
        market.liquidate(liquidator, user, collateral, borrowed)
    else:
        _, user, asset, amount = step
        getattr(market, kind)(user, asset, amount)
