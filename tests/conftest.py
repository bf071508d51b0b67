"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from decimal import Decimal
from pathlib import Path

import pytest

from vault_reconciler.config import (
    AppConfig,
    AssetConfig,
    ChainConfig,
    EngineConfig,
    IndexConfig,
    NotificationsConfig,
    StrategyConfig,
    TelegramConfig,
    VaultConfig,
)
from vault_reconciler.models import (
    Asset,
    AssetAmount,
    Location,
    LocationBalance,
    PriceQuote,
    Strategy,
    VaultSnapshot,
    sum_amounts,
    zero_amounts,
)

VAULT = "0x" + "01" * 20
SHARE_TOKEN = "0x" + "d4" * 20
POOL = "0x" + "e5" * 20
HARVEST_TOPIC = "0x" + "ab" * 32
TOKEN_A = "0x" + "a1" * 20
TOKEN_B = "0x" + "b2" * 20
TOKEN_C = "0x" + "c3" * 20
ORACLE_A = "0x" + "f0" * 20


def amounts(**quantities) -> dict[Asset, AssetAmount]:
    """``amounts(A=1, B=2)`` → per-asset map with zeros for the rest."""
    result = zero_amounts()
    for key, qty in quantities.items():
        asset = Asset(f"Asset{key}")
        result[asset] = AssetAmount(asset, Decimal(str(qty)))
    return result


def make_snapshot(
    liquid: dict[Asset, AssetAmount],
    deployed: dict[str, dict[Asset, AssetAmount]] | None = None,
    total_shares: Decimal | int = 1000,
    prices: dict[Asset, Decimal] | None = None,
) -> VaultSnapshot:
    """Snapshot built straight from attributed balances, no chain reads."""
    deployed = deployed or {}
    prices = prices or {Asset.ASSET_A: Decimal(2), Asset.ASSET_B: Decimal(1), Asset.ASSET_C: Decimal(10)}
    locations = [LocationBalance(Location.vault_liquid(), liquid)]
    locations += [LocationBalance(Location.deployed(sid), a) for sid, a in sorted(deployed.items())]
    per_asset = sum_amounts(*(loc.amounts for loc in locations))
    total_usd = sum(
        (per_asset[a].quantity * prices.get(a, Decimal(0)) for a in Asset.ordered()), Decimal(0)
    )
    return VaultSnapshot(
        total_assets_usd=total_usd,
        total_shares=Decimal(total_shares),
        per_asset_holdings=per_asset,
        per_location_balances=tuple(locations),
        prices={a: PriceQuote(a, p, "test") for a, p in prices.items()},
        strategies=tuple(
            Strategy(sid, Decimal(1), Decimal(1), a) for sid, a in sorted(deployed.items())
        ),
        timestamp=1_700_000_000,
    )


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_asset_configs() -> dict[Asset, AssetConfig]:
    return {
        Asset.ASSET_A: AssetConfig(
            symbol="WETH",
            token_address=TOKEN_A,
            decimals=18,
            min_price=Decimal(100),
            max_price=Decimal(100000),
            default_price=Decimal(2500),
            oracle_address=ORACLE_A,
            oracle_decimals=8,
            pyth_feed_id="aaa111",
            coingecko_id="ethereum",
        ),
        Asset.ASSET_B: AssetConfig(
            symbol="USDC",
            token_address=TOKEN_B,
            decimals=6,
            min_price=Decimal("0.9"),
            max_price=Decimal("1.1"),
            default_price=Decimal(1),
            pyth_feed_id="bbb222",
            coingecko_id="usd-coin",
        ),
        Asset.ASSET_C: AssetConfig(
            symbol="WBTC",
            token_address=TOKEN_C,
            decimals=8,
            min_price=Decimal(1000),
            max_price=Decimal(1000000),
            default_price=Decimal(60000),
        ),
    }


@pytest.fixture()
def sample_strategy_config() -> StrategyConfig:
    return StrategyConfig(
        id="s1",
        share_token=SHARE_TOKEN,
        pool_address=POOL,
        share_decimals=18,
        harvest_topic=HARVEST_TOPIC,
        assets=(Asset.ASSET_A, Asset.ASSET_B),
    )


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
    )


@pytest.fixture()
def sample_app_config(
    sample_asset_configs: dict[Asset, AssetConfig],
    sample_strategy_config: StrategyConfig,
    sample_chain_config: ChainConfig,
) -> AppConfig:
    return AppConfig(
        engine=EngineConfig(cycle_deadline_seconds=5.0, lookback_days=30),
        chain=sample_chain_config,
        index=IndexConfig(endpoints=("https://index.example.com",)),
        vault=VaultConfig(address=VAULT),
        assets=sample_asset_configs,
        strategies=(sample_strategy_config,),
        notifications=NotificationsConfig(
            telegram=TelegramConfig(
                enabled=True,
                alert_bot_token="fake-alert-token",
                log_bot_token="fake-log-token",
                chat_id="12345",
            ),
        ),
    )


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def scenario_a_snapshot() -> VaultSnapshot:
    """Liquid {A:100, B:50}; one strategy attributes {A:200}; 1000 shares."""
    return make_snapshot(
        liquid=amounts(A=100, B=50),
        deployed={"s1": amounts(A=200)},
        total_shares=1000,
    )


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    engine:
      poll_interval_seconds: 60
      cycle_deadline_seconds: 30
      first_period_days: 7
      apr_min: 0
      apr_max: 20
      withdrawal_tolerance: "0.002"
    chain:
      rpc_endpoints: ["https://rpc.example.com", "https://rpc2.example.com"]
      rpc_timeout: 10
    index:
      endpoints: ["https://index.example.com"]
    vault:
      address: "0xVAULT"
    assets:
      AssetA:
        symbol: WETH
        token_address: "0xA"
        decimals: 18
        min_price: 100
        max_price: 100000
        default_price: 2500
        pyth_feed_id: "aaa"
      AssetB:
        symbol: USDC
        token_address: "0xB"
        decimals: 6
        min_price: "0.9"
        max_price: "1.1"
    strategies:
      - id: s1
        share_token: "0xSHARE"
        pool_address: "0xPOOL"
        assets: [AssetA, AssetB]
    range_split:
      base_ticks: 1000
      limit_ticks: 3000
    notifications:
      telegram:
        enabled: true
        alert_bot_token: "tok1"
        log_bot_token: "tok2"
        chat_id: 999
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


@pytest.fixture()
def amounts_of():
    return amounts


@pytest.fixture()
def snapshot_factory():
    return make_snapshot
