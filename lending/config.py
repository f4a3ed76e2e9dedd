"""Configuration loader: reads market.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from dotenv import load_dotenv

from .core import Asset, DEFAULT_MAX_PRICE_AGE_SECONDS
from .market import LendingMarket
from .pricing_source import PriceOracle

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PoolConfig:
    asset: Asset
    decimals: int
    liquidation_threshold: Decimal
    liquidation_close_factor: Decimal = Decimal("0.5")
    liquidation_bonus: Decimal = Decimal("0.05")
    interest_rate: Decimal = Decimal("0")


@dataclass(frozen=True)
class MarketConfig:
    name: str = "main"
    max_price_age_seconds: int = DEFAULT_MAX_PRICE_AGE_SECONDS
    initial_time: Optional[datetime] = None
    pools: Tuple[PoolConfig, ...] = ()
    wallets: Tuple[str, ...] = ()
    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _decimal(raw: Any, name: str) -> Decimal:
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"{name} is not a number: {raw!r}") from None


def _build_pool(symbol: str, raw: Dict[str, Any]) -> PoolConfig:
    if "decimals" not in raw:
        raise ValueError(f"Pool '{symbol}' has no decimals")
    if "liquidation_threshold" not in raw:
        raise ValueError(f"Pool '{symbol}' has no liquidation_threshold")
    return PoolConfig(
        asset=Asset.parse(symbol),
        decimals=int(raw["decimals"]),
        liquidation_threshold=_decimal(raw["liquidation_threshold"], f"{symbol}.liquidation_threshold"),
        liquidation_close_factor=_decimal(
            raw.get("liquidation_close_factor", "0.5"), f"{symbol}.liquidation_close_factor"
        ),
        liquidation_bonus=_decimal(raw.get("liquidation_bonus", "0.05"), f"{symbol}.liquidation_bonus"),
        interest_rate=_decimal(raw.get("interest_rate", "0"), f"{symbol}.interest_rate"),
    )


def _build_pools(raw: Dict[str, Any]) -> Tuple[PoolConfig, ...]:
    return tuple(_build_pool(symbol, cfg or {}) for symbol, cfg in raw.items())


def _build_time(raw: Any) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw))


def _build_market(raw: Dict[str, Any]) -> MarketConfig:
    market_raw = raw.get("market", {}) or {}
    return MarketConfig(
        name=str(market_raw.get("name", "main")),
        max_price_age_seconds=int(
            market_raw.get("max_price_age_seconds", DEFAULT_MAX_PRICE_AGE_SECONDS)
        ),
        initial_time=_build_time(market_raw.get("initial_time")),
        pools=_build_pools(raw.get("pools", {}) or {}),
        wallets=tuple(str(w) for w in raw.get("wallets", []) or []),
        log_level=str((raw.get("logging", {}) or {}).get("level", "INFO")),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: Union[str, Path, None] = None) -> MarketConfig:
    """Load and validate market configuration from YAML + .env.

    Args:
        config_path: Path to the YAML file. Defaults to ``market.yaml`` in
            the current working directory.
    """
    load_dotenv()

    if config_path is None:
        config_path = Path.cwd() / "market.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)
    cfg = _build_market(raw)

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: MarketConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.name:
        raise ValueError("Market name cannot be empty")
    if cfg.max_price_age_seconds < 0:
        raise ValueError("max_price_age_seconds cannot be negative")
    if not cfg.pools:
        raise ValueError("At least one pool must be configured")

    seen = set()
    for pool in cfg.pools:
        if pool.asset in seen:
            raise ValueError(f"Pool '{pool.asset.value}' configured twice")
        seen.add(pool.asset)
        if not 0 <= pool.decimals <= 18:
            raise ValueError(f"Pool '{pool.asset.value}' decimals must be between 0 and 18")
        if not Decimal("0") < pool.liquidation_threshold <= Decimal("1"):
            raise ValueError(f"Pool '{pool.asset.value}' liquidation_threshold must be in (0, 1]")
        if not Decimal("0") < pool.liquidation_close_factor <= Decimal("1"):
            raise ValueError(f"Pool '{pool.asset.value}' liquidation_close_factor must be in (0, 1]")
        if pool.liquidation_bonus < 0:
            raise ValueError(f"Pool '{pool.asset.value}' liquidation_bonus cannot be negative")
        if pool.interest_rate < 0:
            raise ValueError(f"Pool '{pool.asset.value}' interest_rate cannot be negative")

    if len(set(cfg.wallets)) != len(cfg.wallets):
        raise ValueError("Wallets must be unique")


def create_market(cfg: MarketConfig, oracle: Optional[PriceOracle] = None) -> LendingMarket:
    """Build a market with every configured pool initialized and wallet registered."""
    market = LendingMarket(
        cfg.name,
        oracle=oracle,
        initial_time=cfg.initial_time,
        max_price_age_seconds=cfg.max_price_age_seconds,
    )
    for pool in cfg.pools:
        market.init_pool(
            pool.asset,
            decimals=pool.decimals,
            liquidation_threshold=pool.liquidation_threshold,
            liquidation_close_factor=pool.liquidation_close_factor,
            liquidation_bonus=pool.liquidation_bonus,
            interest_rate=pool.interest_rate,
        )
    for wallet in cfg.wallets:
        market.register_wallet(wallet)
    return market
