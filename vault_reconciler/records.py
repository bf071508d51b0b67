"""Pure parsing functions for index records and raw logs, no I/O."""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, Sequence

from .chains.evm.abi import decode_words, hex_to_int
from .config import AssetConfig, StrategyConfig
from .models import Asset, AssetAmount, FeeHarvestEvent, TvlPoint, zero_amounts
from .numeric import SafeDecimal, to_decimal


def parse_token_amounts(
    raw_values: Sequence[Any],
    assets: Sequence[Asset],
    asset_configs: Mapping[Asset, AssetConfig],
) -> dict[Asset, AssetAmount]:
    """Map raw integer token amounts (pool token order) to whole units.

    Missing or unparseable values count as zero.
    """
    amounts = zero_amounts()
    for asset, raw in zip(assets, raw_values):
        decimals = asset_configs.get(asset, AssetConfig()).decimals
        value = SafeDecimal.of(raw if raw not in (None, "") else 0, f"{asset.value} amount")
        amounts[asset] = amounts[asset] + AssetAmount(asset, value.value.scaleb(-decimals))
    return amounts


def usd_value(amounts: Mapping[Asset, AssetAmount], prices: Mapping[Asset, Decimal]) -> SafeDecimal:
    total = SafeDecimal.of(0)
    for asset in Asset.ordered():
        if asset in amounts:
            total = total + SafeDecimal.of(amounts[asset].quantity) * prices.get(asset, Decimal(0))
    return total


def parse_harvest_record(
    record: Mapping[str, Any],
    strategy: StrategyConfig,
    asset_configs: Mapping[Asset, AssetConfig],
) -> FeeHarvestEvent:
    """Parse a harvest record from the event index.

    Example record::

        {"timestamp": "1700000000", "feesToVault0": "1000000",
         "feesToVault1": "0", "transactionHash": "0xabc"}
    """
    raw = [record.get(f"feesToVault{i}") for i in range(len(strategy.assets))]
    return FeeHarvestEvent(
        timestamp=int(to_decimal(record.get("timestamp", 0))),
        strategy_id=strategy.id,
        fees_by_asset=parse_token_amounts(raw, strategy.assets, asset_configs),
        tx_hash=str(record.get("transactionHash") or record.get("id") or ""),
    )


def parse_harvest_log(
    log: Mapping[str, Any],
    strategy: StrategyConfig,
    asset_configs: Mapping[Asset, AssetConfig],
) -> FeeHarvestEvent:
    """Parse a raw fee-collection log (first data words = fees per pool token)."""
    words = decode_words(log.get("data", ""))
    return FeeHarvestEvent(
        timestamp=hex_to_int(log["timestamp"]),
        strategy_id=strategy.id,
        fees_by_asset=parse_token_amounts(words, strategy.assets, asset_configs),
        tx_hash=str(log.get("transactionHash", "")),
    )


def parse_harvest(
    record: Mapping[str, Any],
    strategy: StrategyConfig,
    asset_configs: Mapping[Asset, AssetConfig],
) -> FeeHarvestEvent:
    """Dispatch on record shape: raw logs carry ``topics`` and ``data``."""
    if "topics" in record and "data" in record:
        return parse_harvest_log(record, strategy, asset_configs)
    return parse_harvest_record(record, strategy, asset_configs)


def parse_tvl_record(
    record: Mapping[str, Any],
    strategy: StrategyConfig,
    asset_configs: Mapping[Asset, AssetConfig],
    prices: Mapping[Asset, Decimal],
) -> TvlPoint:
    """Price a historical holdings snapshot at the current prices."""
    raw = [record.get(f"totalAmount{i}") for i in range(len(strategy.assets))]
    amounts = parse_token_amounts(raw, strategy.assets, asset_configs)
    return TvlPoint(
        timestamp=int(to_decimal(record.get("timestamp", 0))),
        tvl_usd=usd_value(amounts, prices).value,
    )
