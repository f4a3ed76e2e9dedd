"""
fake_view.py - Test Helper for MarketView

Provides a minimal MarketView implementation for testing operation handlers
without requiring a full LendingMarket instance.
"""

from __future__ import annotations
from datetime import datetime
from typing import Dict, Optional

from lending import Asset, Pool, Position, PoolNotInitialized, PositionNotFound, WalletNotRegistered


class FakeView:
    """
    Minimal MarketView implementation for testing operation handlers.

    Example:
        view = FakeView(
            pools={Asset.USDC: usdc_pool},
            positions={'alice': alice_position},
            balances={'alice': {Asset.USDC: 1000}},
            time=datetime(2025, 1, 1),
        )
    """

    def __init__(
        self,
        pools: Optional[Dict[Asset, Pool]] = None,
        positions: Optional[Dict[str, Position]] = None,
        balances: Optional[Dict[str, Dict[Asset, int]]] = None,
        time: Optional[datetime] = None,
        sequence: int = 0,
    ):
        self._pools = dict(pools or {})
        self._positions = dict(positions or {})
        self._balances = balances or {}
        self._time = time or datetime(2025, 1, 1)
        self._sequence = sequence

    @property
    def current_time(self) -> datetime:
        return self._time

    def get_balance(self, wallet_id: str, asset: Asset) -> int:
        if wallet_id not in self._balances:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        return self._balances[wallet_id].get(asset, 0)

    def load_pool(self, asset: Asset) -> Pool:
        if asset not in self._pools:
            raise PoolNotInitialized(f"Pool {asset.value} not initialized")
        return self._pools[asset]

    def load_position(self, user_id: str) -> Position:
        if user_id not in self._positions:
            raise PositionNotFound(f"No position for {user_id}")
        return self._positions[user_id]

    def find_position(self, user_id: str) -> Optional[Position]:
        return self._positions.get(user_id)

    @property
    def next_sequence(self) -> int:
        return self._sequence
