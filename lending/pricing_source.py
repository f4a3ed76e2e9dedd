"""
pricing_source.py - Price oracle adapters with a freshness contract

Provides the price inputs for collateral valuation. Acquiring prices is the
caller's business; these adapters only store quotes and enforce their age.

Classes:
- Price: a single quote (value in the quote currency per whole token)
- PriceOracle: Protocol defining the oracle interface
- StaticPriceOracle: one quote per asset, replaced on update
- TimeSeriesPriceOracle: historical quotes, latest at or before "now"

A quote older than max_age_seconds raises StalePrice. There is no retry;
the caller must resubmit with a fresher feed.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import logging
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

from .core import Asset, StalePrice, InvalidPrice

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Price:
    """
    A quote for one whole token of an asset.

    Attributes:
        value: Price in the quote currency (e.g. USD) per whole token
        publish_time: When the feed published the quote
    """
    value: Decimal
    publish_time: datetime

    def __post_init__(self):
        if not isinstance(self.value, Decimal):
            object.__setattr__(self, 'value', Decimal(str(self.value)))

    def age_seconds(self, now: datetime) -> Decimal:
        return Decimal(str((now - self.publish_time).total_seconds()))


def check_price(asset: Asset, price: Optional[Price], max_age_seconds: int, now: datetime) -> Price:
    """
    Enforce the freshness contract on a quote.

    Raises:
        StalePrice: if there is no quote or it is older than max_age_seconds
        InvalidPrice: if the quote is not strictly positive
    """
    if price is None:
        raise StalePrice(f"No price available for {asset.value}")
    age = price.age_seconds(now)
    if age > max_age_seconds:
        logger.warning(
            "Rejecting %s price published at %s: %ss old, max %ss",
            asset.value, price.publish_time, age, max_age_seconds,
        )
        raise StalePrice(
            f"{asset.value} price is {age}s old, older than the {max_age_seconds}s limit"
        )
    if price.value <= 0:
        raise InvalidPrice(f"{asset.value} price must be positive, got {price.value}")
    return price


@runtime_checkable
class PriceOracle(Protocol):
    """
    Protocol for price oracles.

    get_price returns a quote no older than max_age_seconds at time now, or
    raises StalePrice.
    """

    def get_price(self, asset: Asset, max_age_seconds: int, now: datetime) -> Price:
        ...


class StaticPriceOracle:
    """
    Oracle holding the latest quote per asset.

    Quotes are replaced by update_price(); their publish time is kept so the
    freshness contract still applies.
    """

    def __init__(self, prices: Optional[Dict[Asset, Price]] = None):
        self.prices: Dict[Asset, Price] = dict(prices or {})

    def get_price(self, asset: Asset, max_age_seconds: int, now: datetime) -> Price:
        return check_price(asset, self.prices.get(asset), max_age_seconds, now)

    def update_price(self, asset: Asset, value: Decimal, publish_time: datetime) -> None:
        """Replace the quote for an asset."""
        self.prices[asset] = Price(value, publish_time)

    def update_prices(self, values: Dict[Asset, Decimal], publish_time: datetime) -> None:
        """Replace several quotes published at the same time."""
        for asset, value in values.items():
            self.update_price(asset, value, publish_time)

    def __repr__(self):
        return f"StaticPriceOracle({len(self.prices)} prices)"


class TimeSeriesPriceOracle:
    """
    Oracle with historical quotes.

    Returns the most recent quote published at or before the requested time,
    so a backtest can replay a price path while the freshness contract is
    still enforced against each point in time.
    """

    def __init__(self, price_paths: Optional[Dict[Asset, List[Tuple[datetime, Decimal]]]] = None):
        """
        Args:
            price_paths: Optional dict mapping assets to (publish_time, value) lists.

        Example:
            oracle = TimeSeriesPriceOracle({
                Asset.SOL: [(t0, Decimal("150")), (t1, Decimal("140"))],
                Asset.USDC: [(t0, Decimal("1"))],
            })
        """
        self.price_history: Dict[Asset, List[Tuple[datetime, Decimal]]] = {}
        if price_paths:
            for asset, path in price_paths.items():
                if not path:
                    continue
                self.price_history[asset] = sorted(
                    ((ts, Decimal(str(v))) for ts, v in path), key=lambda x: x[0]
                )

    def add_price(self, asset: Asset, publish_time: datetime, value: Decimal) -> None:
        """Record a quote, keeping history sorted by publish time."""
        history = self.price_history.setdefault(asset, [])
        history.append((publish_time, Decimal(str(value))))
        history.sort(key=lambda x: x[0])

    def latest_before(self, asset: Asset, now: datetime) -> Optional[Price]:
        """Latest quote at or before now, or None."""
        history = self.price_history.get(asset)
        if not history:
            return None
        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, now)
        if idx == 0:
            return None
        ts, value = history[idx - 1]
        return Price(value, ts)

    def get_price(self, asset: Asset, max_age_seconds: int, now: datetime) -> Price:
        return check_price(asset, self.latest_before(asset, now), max_age_seconds, now)

    def __repr__(self):
        total = sum(len(history) for history in self.price_history.values())
        return f"TimeSeriesPriceOracle({len(self.price_history)} assets, {total} observations)"
