"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import Asset
from .numeric import to_decimal

logger = logging.getLogger(__name__)

# 4-byte selectors for the read-only views the engine calls.
DEFAULT_SELECTORS: dict[str, str] = {
    "balanceOf": "0x70a08231",
    "totalSupply": "0x18160ddd",
    "decimals": "0x313ce567",
    "getTotalAmounts": "0xc4a7761e",
    "latestRoundData": "0xfeaf968c",
}

DEFAULT_HARVEST_QUERY = """\
query Harvests($vault: String!, $from: BigInt!, $to: BigInt!) {
  collectFees(
    where: {vault: $vault, timestamp_gte: $from, timestamp_lte: $to}
    orderBy: timestamp
    orderDirection: asc
    first: 1000
  ) {
    id
    timestamp
    strategy
    feesToVault0
    feesToVault1
    transactionHash
  }
}"""

DEFAULT_SNAPSHOT_QUERY = """\
query Snapshots($vault: String!, $from: BigInt!, $to: BigInt!) {
  snapshots(
    where: {vault: $vault, timestamp_gte: $from, timestamp_lte: $to}
    orderBy: timestamp
    orderDirection: asc
    first: 1000
  ) {
    timestamp
    strategy
    totalAmount0
    totalAmount1
  }
}"""

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    poll_interval_seconds: int = 300
    cycle_deadline_seconds: float = 120.0
    inception_timestamp: int = 0
    first_period_days: Decimal = Decimal(7)
    apr_min: Decimal = Decimal(0)
    apr_max: Decimal = Decimal(20)
    withdrawal_tolerance: Decimal = Decimal("0.001")
    lookback_days: int = 90


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    blocks_per_day: int = 7200
    max_log_block_range: int = 648000
    selectors: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SELECTORS))


@dataclass(frozen=True)
class IndexConfig:
    endpoints: tuple[str, ...] = ()
    timeout: int = 15
    harvest_query: str = DEFAULT_HARVEST_QUERY
    snapshot_query: str = DEFAULT_SNAPSHOT_QUERY
    range_query: str = ""


@dataclass(frozen=True)
class VaultConfig:
    address: str = ""
    share_decimals: int = 18


@dataclass(frozen=True)
class AssetConfig:
    symbol: str = ""
    token_address: str = ""
    decimals: int = 18
    min_price: Decimal = Decimal(0)
    max_price: Decimal = Decimal(10**9)
    default_price: Decimal = Decimal(0)
    oracle_address: str = ""
    oracle_decimals: int = 8
    pyth_feed_id: str = ""
    coingecko_id: str = ""


@dataclass(frozen=True)
class StrategyConfig:
    id: str = ""
    share_token: str = ""
    pool_address: str = ""
    share_decimals: int = 18
    harvest_topic: str = ""
    # Pool token order, e.g. (AssetA, AssetB) for token0/token1.
    assets: tuple[Asset, ...] = ()


@dataclass(frozen=True)
class PriceSourcesConfig:
    pyth_hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    coingecko_url: str = "https://api.coingecko.com/api/v3/simple/price"
    timeout: int = 10


@dataclass(frozen=True)
class RangeSplitConfig:
    base_ticks: int = 2000
    limit_ticks: int = 4000


@dataclass(frozen=True)
class TelegramConfig:
    enabled: bool = False
    alert_bot_token: str = ""
    log_bot_token: str = ""
    chat_id: str = ""


@dataclass(frozen=True)
class NotificationsConfig:
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    assets: dict[Asset, AssetConfig] = field(default_factory=dict)
    strategies: tuple[StrategyConfig, ...] = ()
    price_sources: PriceSourcesConfig = field(default_factory=PriceSourcesConfig)
    range_split: RangeSplitConfig = field(default_factory=RangeSplitConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


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


def _parse_asset(name: str) -> Asset:
    try:
        return Asset(name)
    except ValueError:
        raise ValueError(f"Unknown asset '{name}'") from None


def _endpoints(raw: Any) -> tuple[str, ...]:
    """Endpoint lists may come from env as a comma-separated string."""
    if isinstance(raw, str):
        raw = raw.split(",")
    return tuple(e.strip() for e in raw or [] if e and e.strip())


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_engine(raw: dict[str, Any]) -> EngineConfig:
    return EngineConfig(
        poll_interval_seconds=int(raw.get("poll_interval_seconds", 300)),
        cycle_deadline_seconds=float(raw.get("cycle_deadline_seconds", 120.0)),
        inception_timestamp=int(raw.get("inception_timestamp", 0)),
        first_period_days=to_decimal(raw.get("first_period_days", 7)),
        apr_min=to_decimal(raw.get("apr_min", 0)),
        apr_max=to_decimal(raw.get("apr_max", 20)),
        withdrawal_tolerance=to_decimal(raw.get("withdrawal_tolerance", "0.001")),
        lookback_days=int(raw.get("lookback_days", 90)),
    )


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    selectors = dict(DEFAULT_SELECTORS)
    selectors.update(raw.get("selectors", {}) or {})
    return ChainConfig(
        rpc_endpoints=_endpoints(raw.get("rpc_endpoints", [])),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        blocks_per_day=int(raw.get("blocks_per_day", 7200)),
        max_log_block_range=int(raw.get("max_log_block_range", 648000)),
        selectors=selectors,
    )


def _build_index(raw: dict[str, Any]) -> IndexConfig:
    return IndexConfig(
        endpoints=_endpoints(raw.get("endpoints", [])),
        timeout=int(raw.get("timeout", 15)),
        harvest_query=raw.get("harvest_query") or DEFAULT_HARVEST_QUERY,
        snapshot_query=raw.get("snapshot_query") or DEFAULT_SNAPSHOT_QUERY,
        range_query=raw.get("range_query", "") or "",
    )


def _build_vault(raw: dict[str, Any]) -> VaultConfig:
    return VaultConfig(
        address=raw.get("address", ""),
        share_decimals=int(raw.get("share_decimals", 18)),
    )


def _build_assets(raw: dict[str, Any]) -> dict[Asset, AssetConfig]:
    assets: dict[Asset, AssetConfig] = {}
    for name, cfg in raw.items():
        assets[_parse_asset(name)] = AssetConfig(
            symbol=cfg.get("symbol", name),
            token_address=cfg.get("token_address", ""),
            decimals=int(cfg.get("decimals", 18)),
            min_price=to_decimal(cfg.get("min_price", 0)),
            max_price=to_decimal(cfg.get("max_price", 10**9)),
            default_price=to_decimal(cfg.get("default_price", 0)),
            oracle_address=cfg.get("oracle_address", ""),
            oracle_decimals=int(cfg.get("oracle_decimals", 8)),
            pyth_feed_id=cfg.get("pyth_feed_id", ""),
            coingecko_id=cfg.get("coingecko_id", ""),
        )
    return assets


def _build_strategies(raw: list[dict[str, Any]]) -> tuple[StrategyConfig, ...]:
    strategies: list[StrategyConfig] = []
    for s in raw:
        strategies.append(
            StrategyConfig(
                id=str(s.get("id", "")),
                share_token=s.get("share_token", ""),
                pool_address=s.get("pool_address", ""),
                share_decimals=int(s.get("share_decimals", 18)),
                harvest_topic=s.get("harvest_topic", ""),
                assets=tuple(_parse_asset(a) for a in s.get("assets", [])),
            )
        )
    return tuple(strategies)


def _build_price_sources(raw: dict[str, Any]) -> PriceSourcesConfig:
    return PriceSourcesConfig(
        pyth_hermes_url=raw.get("pyth_hermes_url", PriceSourcesConfig.pyth_hermes_url),
        coingecko_url=raw.get("coingecko_url", PriceSourcesConfig.coingecko_url),
        timeout=int(raw.get("timeout", 10)),
    )


def _build_range_split(raw: dict[str, Any]) -> RangeSplitConfig:
    return RangeSplitConfig(
        base_ticks=int(raw.get("base_ticks", 2000)),
        limit_ticks=int(raw.get("limit_ticks", 4000)),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    tg = raw.get("telegram", {})
    return NotificationsConfig(
        telegram=TelegramConfig(
            enabled=bool(tg.get("enabled", False)),
            alert_bot_token=tg.get("alert_bot_token", ""),
            log_bot_token=tg.get("log_bot_token", ""),
            chat_id=str(tg.get("chat_id", "")),
        ),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        engine=_build_engine(raw.get("engine", {})),
        chain=_build_chain(raw.get("chain", {})),
        index=_build_index(raw.get("index", {})),
        vault=_build_vault(raw.get("vault", {})),
        assets=_build_assets(raw.get("assets", {})),
        strategies=_build_strategies(raw.get("strategies", [])),
        price_sources=_build_price_sources(raw.get("price_sources", {})),
        range_split=_build_range_split(raw.get("range_split", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.vault.address:
        raise ValueError("Vault address must be configured")
    if not cfg.chain.rpc_endpoints:
        raise ValueError("At least one RPC endpoint must be configured")
    if not cfg.assets:
        raise ValueError("At least one asset must be configured")
    if cfg.engine.apr_min > cfg.engine.apr_max:
        raise ValueError("engine.apr_min must not exceed engine.apr_max")

    for asset, asset_cfg in cfg.assets.items():
        if not asset_cfg.token_address:
            raise ValueError(f"Asset '{asset.value}' has no token address")
        if asset_cfg.min_price > asset_cfg.max_price:
            raise ValueError(f"Asset '{asset.value}' has an empty price band")

    seen: set[str] = set()
    for strategy in cfg.strategies:
        if not strategy.id:
            raise ValueError("Every strategy needs an id")
        if strategy.id in seen:
            raise ValueError(f"Duplicate strategy id '{strategy.id}'")
        seen.add(strategy.id)
        if not strategy.share_token or not strategy.pool_address:
            raise ValueError(
                f"Strategy '{strategy.id}' needs share_token and pool_address"
            )
        for asset in strategy.assets:
            if asset not in cfg.assets:
                raise ValueError(
                    f"Strategy '{strategy.id}' references unknown asset '{asset.value}'"
                )
