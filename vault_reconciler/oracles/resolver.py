"""PriceOracleResolver: ordered, sanity-checked price fallback chain."""
from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Iterable, Sequence

from ..config import AssetConfig
from ..errors import OutOfRangeValue
from ..interfaces.price_source import PriceSource
from ..models import Asset, PriceQuote
from ..numeric import SafeDecimal

logger = logging.getLogger(__name__)

FALLBACK_SOURCE = "fallback-default"


def validate_price(asset: Asset, price: Decimal, cfg: AssetConfig) -> Decimal:
    """Return ``price`` if it is finite and inside the asset's band.

    Raises:
        OutOfRangeValue: for non-finite or out-of-band prices.
    """
    checked = SafeDecimal.of(price, f"{asset.value} price")
    if checked.anomalous or not cfg.min_price <= checked.value <= cfg.max_price:
        raise OutOfRangeValue(f"{asset.value} price", price, cfg.min_price, cfg.max_price)
    return checked.value


class PriceOracleResolver:
    """Resolve a USD price per asset from the first source that validates."""

    def __init__(
        self, sources: Sequence[PriceSource], assets: dict[Asset, AssetConfig]
    ) -> None:
        self._sources = list(sources)
        self._assets = assets

    @property
    def source_names(self) -> list[str]:
        return [s.name for s in self._sources]

    async def resolve_price_usd(self, asset: Asset) -> PriceQuote:
        cfg = self._assets.get(asset, AssetConfig())

        for source in self._sources:
            try:
                candidate = await source.try_resolve(asset)
            except Exception as e:
                logger.warning("Price source %s failed for %s: %s", source.name, asset.value, e)
                continue
            if candidate is None:
                logger.debug("Price source %s has no price for %s", source.name, asset.value)
                continue
            try:
                price = validate_price(asset, candidate, cfg)
            except OutOfRangeValue as e:
                logger.warning("Discarding %s price from %s: %s", asset.value, source.name, e)
                continue
            logger.info("Price %s: $%s (%s)", asset.value, price, source.name)
            return PriceQuote(asset, price, source.name)

        logger.warning(
            "No price source validated for %s, using default $%s",
            asset.value,
            cfg.default_price,
        )
        return PriceQuote(asset, cfg.default_price, FALLBACK_SOURCE)

    async def resolve_all(self, assets: Iterable[Asset]) -> dict[Asset, PriceQuote]:
        ordered = sorted(set(assets), key=lambda a: a.value)
        quotes = await asyncio.gather(*(self.resolve_price_usd(a) for a in ordered))
        return dict(zip(ordered, quotes))
