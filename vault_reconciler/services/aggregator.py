"""PositionAggregator: vault-liquid + attributed strategy holdings in one snapshot."""
from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Callable

from ..concurrency import gather_or_cancel
from ..config import AppConfig, StrategyConfig
from ..errors import ComputationAnomaly, DataUnavailable
from ..interfaces.chain import ChainGateway
from ..models import (
    Asset,
    AssetAmount,
    Location,
    LocationBalance,
    RangeAllocation,
    Strategy,
    VaultSnapshot,
    sum_amounts,
    zero_amounts,
)
from ..numeric import SafeDecimal, scale_down
from ..oracles.resolver import PriceOracleResolver
from .allocation import parse_range_record

logger = logging.getLogger(__name__)

HOLDINGS_TOTAL_AMOUNTS = "total-amounts"
HOLDINGS_RAW_BALANCES = "raw-balances"


class PositionAggregator:
    """Build a :class:`VaultSnapshot` from live chain reads and prices."""

    def __init__(
        self,
        config: AppConfig,
        gateway: ChainGateway,
        resolver: PriceOracleResolver,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._gateway = gateway
        self._resolver = resolver
        self._clock = clock
        self._vault = config.vault.address

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _decimals(self, asset: Asset) -> int:
        return self._config.assets[asset].decimals

    async def _read_liquid(self) -> dict[Asset, AssetAmount]:
        assets = sorted(self._config.assets, key=lambda a: a.value)
        raw = await gather_or_cancel(
            *(
                self._gateway.get_token_balance(
                    self._config.assets[a].token_address, self._vault
                )
                for a in assets
            )
        )
        liquid = zero_amounts()
        for asset, value in zip(assets, raw):
            liquid[asset] = AssetAmount(asset, scale_down(value, self._decimals(asset)))
        return liquid

    async def _read_pool_holdings(
        self, strategy: StrategyConfig
    ) -> tuple[dict[Asset, AssetAmount], str]:
        """Pooled token totals, preferring the derived ``getTotalAmounts`` view.

        That view depends on pool state that can be stale; when it fails the
        raw token balances held at the pool address are read instead.
        """
        try:
            raw = await self._gateway.call_contract(strategy.share_token, "getTotalAmounts")
            source = HOLDINGS_TOTAL_AMOUNTS
        except DataUnavailable as e:
            logger.warning(
                "getTotalAmounts failed for strategy %s, reading raw pool balances: %s",
                strategy.id,
                e,
            )
            raw = await gather_or_cancel(
                *(
                    self._gateway.get_token_balance(
                        self._config.assets[a].token_address, strategy.pool_address
                    )
                    for a in strategy.assets
                )
            )
            source = HOLDINGS_RAW_BALANCES

        if len(raw) < len(strategy.assets):
            raise DataUnavailable(
                f"Strategy {strategy.id} returned {len(raw)} amounts "
                f"for {len(strategy.assets)} pool tokens"
            )

        holdings = zero_amounts()
        for asset, value in zip(strategy.assets, raw):
            holdings[asset] = AssetAmount(asset, scale_down(value, self._decimals(asset)))
        return holdings, source

    async def _read_range_allocation(self, strategy: StrategyConfig) -> RangeAllocation | None:
        query = self._config.index.range_query
        if not query:
            return None
        try:
            data = await self._gateway.query_index(
                query, {"vault": strategy.share_token.lower()}
            )
        except DataUnavailable as e:
            logger.info("Range state for %s unavailable: %s", strategy.id, e)
            return None
        record = data.get("vault")
        if not record:
            return None
        return parse_range_record(record, len(strategy.assets), self._config.range_split)

    async def _read_strategy(self, strategy: StrategyConfig) -> Strategy:
        share_balance, total_shares, (holdings, source), allocation = await gather_or_cancel(
            self._gateway.get_token_balance(strategy.share_token, self._vault),
            self._gateway.get_total_supply(strategy.share_token),
            self._read_pool_holdings(strategy),
            self._read_range_allocation(strategy),
        )
        result = Strategy(
            id=strategy.id,
            share_balance=scale_down(share_balance, strategy.share_decimals),
            total_shares=scale_down(total_shares, strategy.share_decimals),
            total_holdings=holdings,
            holdings_source=source,
            range_allocation=allocation,
        )
        logger.debug(
            "Strategy %s: %s / %s shares (%s)",
            strategy.id,
            result.share_balance,
            result.total_shares,
            source,
        )
        return result

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def aggregate(self) -> VaultSnapshot:
        """Read everything and assemble one snapshot.

        Raises:
            DataUnavailable: if any required read exhausted its sources. No
                partial snapshot is ever returned.
        """
        liquid, total_supply, strategies = await gather_or_cancel(
            self._read_liquid(),
            self._gateway.get_total_supply(self._vault),
            gather_or_cancel(*(self._read_strategy(s) for s in self._config.strategies)),
        )
        return await self.build_snapshot(
            liquid, scale_down(total_supply, self._config.vault.share_decimals), strategies
        )

    async def build_snapshot(
        self,
        liquid: dict[Asset, AssetAmount],
        total_shares: Decimal,
        strategies: list[Strategy] | tuple[Strategy, ...],
    ) -> VaultSnapshot:
        """Combine already-read balances into a priced snapshot."""
        ordered = sorted(strategies, key=lambda s: s.id)
        locations = [LocationBalance(Location.vault_liquid(), liquid)]
        anomalies: list[ComputationAnomaly] = []

        for strategy in ordered:
            if strategy.ownership.anomalous:
                anomalies.append(ComputationAnomaly(f"strategy {strategy.id}", "ownership ratio"))
            locations.append(
                LocationBalance(Location.deployed(strategy.id), strategy.attributed_holdings())
            )

        per_asset = sum_amounts(*(loc.amounts for loc in locations))
        prices = await self._resolver.resolve_all(self._config.assets)

        total_usd = SafeDecimal.of(0, "total assets usd")
        for asset in Asset.ordered():
            quote = prices.get(asset)
            if quote is None:
                continue
            total_usd = total_usd + SafeDecimal.of(per_asset[asset].quantity) * quote.price
        if total_usd.anomalous:
            anomalies.append(ComputationAnomaly("total assets usd", "non-finite intermediate"))

        snapshot = VaultSnapshot(
            total_assets_usd=total_usd.value,
            total_shares=total_shares,
            per_asset_holdings=per_asset,
            per_location_balances=tuple(locations),
            prices=prices,
            strategies=tuple(ordered),
            timestamp=int(self._clock()),
            anomalies=tuple(anomalies),
        )
        logger.info(
            "Snapshot: $%s across %d locations, %s shares",
            snapshot.total_assets_usd,
            len(locations),
            snapshot.total_shares,
        )
        return snapshot
