"""Integration tests for snapshot aggregation: chain reads mocked at the gateway."""
from __future__ import annotations

import asyncio
import dataclasses
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from vault_reconciler.config import AppConfig, IndexConfig
from vault_reconciler.errors import DataUnavailable
from vault_reconciler.models import Asset, Location
from vault_reconciler.oracles import PriceOracleResolver
from vault_reconciler.services.aggregator import PositionAggregator

E18 = 10**18
NOW = 1_700_000_000
PRICES = {Asset.ASSET_A: Decimal(2500), Asset.ASSET_B: Decimal(1), Asset.ASSET_C: Decimal(60000)}


class FixedPrices:
    name = "fixed"

    async def try_resolve(self, asset: Asset):
        return PRICES.get(asset)


def make_gateway(config: AppConfig, strategy_supply: int = 100 * E18, total_amounts=None):
    """Vault: liquid {A:100, B:50}, 1000 shares; holds 50/100 of a pool with {A:400}."""
    assets = config.assets
    strategy = config.strategies[0]
    vault = config.vault.address
    balances = {
        (assets[Asset.ASSET_A].token_address, vault): 100 * E18,
        (assets[Asset.ASSET_B].token_address, vault): 50 * 10**6,
        (strategy.share_token, vault): 50 * E18,
        (assets[Asset.ASSET_A].token_address, strategy.pool_address): 400 * E18,
    }
    supplies = {vault: 1000 * E18, strategy.share_token: strategy_supply}

    async def get_token_balance(token, holder):
        return balances.get((token, holder), 0)

    async def get_total_supply(token):
        return supplies[token]

    async def call_contract(target, method, args=()):
        assert method == "getTotalAmounts"
        if isinstance(total_amounts, Exception):
            raise total_amounts
        return total_amounts or [400 * E18, 0]

    gateway = AsyncMock()
    gateway.get_token_balance.side_effect = get_token_balance
    gateway.get_total_supply.side_effect = get_total_supply
    gateway.call_contract.side_effect = call_contract
    return gateway


def make_aggregator(config: AppConfig, gateway) -> PositionAggregator:
    resolver = PriceOracleResolver([FixedPrices()], config.assets)
    return PositionAggregator(config, gateway, resolver, clock=lambda: NOW)


class TestAggregate:
    @pytest.mark.asyncio
    async def test_liquid_plus_attributed(self, sample_app_config: AppConfig) -> None:
        aggregator = make_aggregator(sample_app_config, make_gateway(sample_app_config))

        snapshot = await aggregator.aggregate()

        assert snapshot.holding(Asset.ASSET_A) == Decimal(300)
        assert snapshot.holding(Asset.ASSET_B) == Decimal(50)
        assert snapshot.holding(Asset.ASSET_C) == 0
        assert snapshot.total_shares == Decimal(1000)
        assert snapshot.total_assets_usd == Decimal(300 * 2500 + 50)
        assert snapshot.location_usd(Location.deployed("s1")) == Decimal(200 * 2500)
        assert snapshot.timestamp == NOW
        assert snapshot.strategies[0].holdings_source == "total-amounts"
        assert snapshot.prices[Asset.ASSET_A].source == "fixed"

    @pytest.mark.asyncio
    async def test_holdings_conserved_across_locations(self, sample_app_config: AppConfig) -> None:
        snapshot = await make_aggregator(
            sample_app_config, make_gateway(sample_app_config)
        ).aggregate()

        for asset in Asset.ordered():
            by_location = sum(
                (b.quantity(asset) for b in snapshot.per_location_balances), Decimal(0)
            )
            assert by_location == snapshot.holding(asset)

    @pytest.mark.asyncio
    async def test_zero_strategy_shares_attribute_nothing(self, sample_app_config: AppConfig) -> None:
        gateway = make_gateway(sample_app_config, strategy_supply=0)
        snapshot = await make_aggregator(sample_app_config, gateway).aggregate()

        deployed = [b for b in snapshot.per_location_balances if not b.location.is_liquid]
        assert all(b.quantity(a) == 0 for b in deployed for a in Asset.ordered())
        assert snapshot.holding(Asset.ASSET_A) == Decimal(100)
        assert snapshot.anomalies == ()

    @pytest.mark.asyncio
    async def test_idempotent_with_unchanged_state(self, sample_app_config: AppConfig) -> None:
        aggregator = make_aggregator(sample_app_config, make_gateway(sample_app_config))
        assert await aggregator.aggregate() == await aggregator.aggregate()

    @pytest.mark.asyncio
    async def test_total_amounts_failure_reads_raw_pool_balances(
        self, sample_app_config: AppConfig
    ) -> None:
        gateway = make_gateway(sample_app_config, total_amounts=DataUnavailable("reverted"))
        snapshot = await make_aggregator(sample_app_config, gateway).aggregate()

        assert snapshot.strategies[0].holdings_source == "raw-balances"
        assert snapshot.holding(Asset.ASSET_A) == Decimal(300)

    @pytest.mark.asyncio
    async def test_short_total_amounts_is_unavailable(self, sample_app_config: AppConfig) -> None:
        gateway = make_gateway(sample_app_config, total_amounts=[400 * E18])
        with pytest.raises(DataUnavailable):
            await make_aggregator(sample_app_config, gateway).aggregate()

    @pytest.mark.asyncio
    async def test_failed_read_yields_no_snapshot(self, sample_app_config: AppConfig) -> None:
        gateway = make_gateway(sample_app_config)
        gateway.get_total_supply.side_effect = DataUnavailable("All RPC endpoints failed")
        with pytest.raises(DataUnavailable):
            await make_aggregator(sample_app_config, gateway).aggregate()

    @pytest.mark.asyncio
    async def test_range_allocation_from_index(self, sample_app_config: AppConfig) -> None:
        config = dataclasses.replace(
            sample_app_config,
            index=IndexConfig(endpoints=("https://index.example.com",), range_query="query"),
        )
        gateway = make_gateway(config)
        gateway.query_index.return_value = {
            "vault": {"fullRangeWeight": "60", "baseAmount0": "3", "limitAmount0": "1"}
        }

        snapshot = await make_aggregator(config, gateway).aggregate()

        allocation = snapshot.strategies[0].range_allocation
        assert allocation is not None
        assert allocation.full_range_pct == Decimal(60)
        assert allocation.base_pct == Decimal(30)
        assert not allocation.estimated
        variables = gateway.query_index.call_args[0][1]
        assert variables == {"vault": config.strategies[0].share_token.lower()}

    @pytest.mark.asyncio
    async def test_failed_read_cancels_pending_reads(self, sample_app_config: AppConfig) -> None:
        gateway = make_gateway(sample_app_config)
        vault = sample_app_config.vault.address
        share_token = sample_app_config.strategies[0].share_token
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def slow_balance(token, holder):
            if token == share_token:
                started.set()
                try:
                    await asyncio.sleep(10)
                except asyncio.CancelledError:
                    cancelled.set()
                    raise
            return 0

        async def total_supply(token):
            if token == vault:
                await started.wait()
                raise DataUnavailable("All RPC endpoints failed")
            return 100 * E18

        gateway.get_token_balance.side_effect = slow_balance
        gateway.get_total_supply.side_effect = total_supply

        with pytest.raises(DataUnavailable):
            await make_aggregator(sample_app_config, gateway).aggregate()
        assert cancelled.is_set()
