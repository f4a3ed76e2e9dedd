#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Lending Market Step by Step

A walk through one borrower's life in a SOL/USDC market: supply, borrow,
a price crash, liquidation and recovery. Each step builds on the previous
one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Setup         - Configured pools, wallets and an oracle
  4-5:  Supplying     - Deposits and pool shares
  6-7:  Borrowing     - Borrowing capacity and the health factor
  8-9:  Liquidation   - Price crash, partial liquidation
  10:   History       - Rebuilding the market before the crash

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from datetime import timedelta
from decimal import Decimal
from pathlib import Path
import sys

from lending import (
    Asset, LendingMarket, LendingError, TimeSeriesPriceOracle,
    configure_logging, create_market, load_config, treasury_wallet,
)


CONFIG_PATH = Path(__file__).parent / "market.yaml"

SOL = 10 ** 9
USDC = 10 ** 6

# Global state for interactive mode
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def fmt(amount: int, asset: Asset) -> str:
    scale = SOL if asset is Asset.SOL else USDC
    return f"{Decimal(amount) / scale:,.4f} {asset.value}"


def show_position(market: LendingMarket, user_id: str):
    position = market.load_position(user_id)
    for asset, leg in position.legs().items():
        print(f"  {asset.value:5} deposited {fmt(leg.deposited_amount, asset):>22}"
              f"   borrowed {fmt(leg.borrowed_amount, asset):>22}")


def show_health(market: LendingMarket, user_id: str):
    report = market.health(user_id, Asset.SOL)
    print(f"  collateral value : {report.collateral_value:,.2f} USD")
    print(f"  borrowed value   : {report.borrowed_value:,.2f} USD")
    factor = "n/a (no debt)" if report.health_factor is None else f"{report.health_factor:.4f}"
    print(f"  health factor    : {factor}  [{report.status}]")


# ============================================================================
# SETUP (Steps 1-3)
# ============================================================================

def step_01_load_config():
    step_header(1, "Configuration",
        "Pools and wallets come from market.yaml.")
    cfg = load_config(CONFIG_PATH)
    configure_logging(cfg.log_level)
    print(f"Market:        {cfg.name}")
    print(f"Max quote age: {cfg.max_price_age_seconds}s")
    for pool in cfg.pools:
        print(f"Pool {pool.asset.value:5} decimals={pool.decimals} "
              f"threshold={pool.liquidation_threshold} "
              f"close_factor={pool.liquidation_close_factor} "
              f"bonus={pool.liquidation_bonus} rate={pool.interest_rate}/s")
    wait_for_enter()
    return cfg


def step_02_create_market(cfg):
    step_header(2, "The Market",
        "Every configured pool starts empty with its own treasury wallet.")
    start = cfg.initial_time
    oracle = TimeSeriesPriceOracle({
        Asset.SOL: [(start, Decimal("150")), (start + timedelta(hours=1), Decimal("100"))],
        Asset.USDC: [(start, Decimal("1")), (start + timedelta(hours=1), Decimal("1"))],
    })
    market = create_market(cfg, oracle)
    print(repr(market))
    print(f"Wallets: {sorted(market.list_wallets())}")
    wait_for_enter()
    return market


def step_03_fund_wallets(market: LendingMarket):
    step_header(3, "Funding",
        "Tokens enter the market from the system wallet.")
    market.issue("alice", Asset.SOL, 20 * SOL)
    market.issue("bob", Asset.USDC, 20_000 * USDC)
    market.issue("carol", Asset.USDC, 2_000 * USDC)
    for wallet in ("alice", "bob", "carol"):
        print(f"  {wallet:6} {fmt(market.get_balance(wallet, Asset.SOL), Asset.SOL):>22}"
              f" {fmt(market.get_balance(wallet, Asset.USDC), Asset.USDC):>22}")
    wait_for_enter()


# ============================================================================
# SUPPLYING (Steps 4-5)
# ============================================================================

def step_04_deposit(market: LendingMarket):
    step_header(4, "Deposits",
        "A deposit moves tokens to the treasury and mints pool shares.")
    market.deposit("alice", Asset.SOL, 10 * SOL)
    market.deposit("bob", Asset.USDC, 10_000 * USDC)
    show_position(market, "alice")
    pool = market.load_pool(Asset.USDC)
    print(f"\n  USDC pool: {fmt(pool.total_deposits, Asset.USDC)} in "
          f"{pool.total_deposit_shares:,} shares")
    wait_for_enter()


def step_05_solvency(market: LendingMarket):
    step_header(5, "Solvency",
        "Pool totals always equal the sum of positions.")
    result = market.verify_solvency()
    print(f"  valid: {result['valid']}")
    for asset, totals in result['pools'].items():
        print(f"  {asset}: {totals}")
    wait_for_enter()


# ============================================================================
# BORROWING (Steps 6-7)
# ============================================================================

def step_06_borrow_limit(market: LendingMarket):
    step_header(6, "Borrowing Capacity",
        "Collateral value times the liquidation threshold caps the loan.")
    section_header("Try to borrow 1,300 USDC against 1,500 USD of SOL")
    try:
        market.borrow("alice", Asset.USDC, 1_300 * USDC)
    except LendingError as exc:
        print(f"  REJECTED: {type(exc).__name__}: {exc}")
    section_header("Borrow 1,000 USDC instead")
    market.borrow("alice", Asset.USDC, 1_000 * USDC)
    show_position(market, "alice")
    wait_for_enter()


def step_07_health(market: LendingMarket):
    step_header(7, "Health Factor",
        "health = collateral * threshold / debt; below 1 is liquidatable.")
    show_health(market, "alice")
    wait_for_enter()


# ============================================================================
# LIQUIDATION (Steps 8-9)
# ============================================================================

def step_08_crash(market: LendingMarket):
    step_header(8, "Price Crash",
        "One hour later SOL trades at 100.")
    market.advance_time(market.current_time + timedelta(hours=1))
    print(f"  time: {market.current_time}")
    show_health(market, "alice")
    wait_for_enter()


def step_09_liquidate(market: LendingMarket):
    step_header(9, "Liquidation",
        "carol repays half the debt and seizes SOL worth 105% of it.")
    tx = market.liquidate("carol", "alice", Asset.SOL, Asset.USDC)
    print(repr(tx))
    section_header("After")
    show_position(market, "alice")
    show_health(market, "alice")
    print(f"\n  carol SOL: {fmt(market.get_balance('carol', Asset.SOL), Asset.SOL)}")
    print(f"  treasury USDC: "
          f"{fmt(market.get_balance(treasury_wallet(Asset.USDC), Asset.USDC), Asset.USDC)}")
    wait_for_enter()


# ============================================================================
# HISTORY (Step 10)
# ============================================================================

def step_10_history(market: LendingMarket, start):
    step_header(10, "History",
        "clone_at() rebuilds the market at any earlier time from the log.")
    before = market.clone_at(start)
    print(repr(before))
    show_position(before, "alice")
    print(f"\n  transactions then: {len(before.transaction_log)}, now: {len(market.transaction_log)}")


def main():
    print("""
    ========================================================================
                     LENDING MARKET TUTORIAL
    ========================================================================
    """)
    cfg = step_01_load_config()
    market = step_02_create_market(cfg)
    step_03_fund_wallets(market)
    step_04_deposit(market)
    step_05_solvency(market)
    step_06_borrow_limit(market)
    step_07_health(market)
    step_08_crash(market)
    step_09_liquidate(market)
    step_10_history(market, cfg.initial_time)

    print("""
    SUMMARY

      - Deposits mint shares 1:1 in an empty pool, proportionally after
      - Borrowing is capped by collateral value times the threshold
      - Liquidation is partial: close factor of the debt, plus a bonus
      - Every change is one atomic transaction in the audit log

    Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
