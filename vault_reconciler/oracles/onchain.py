"""On-chain price feed (Chainlink-style ``latestRoundData``)."""
from __future__ import annotations

import logging
from decimal import Decimal

from ..chains.evm.abi import to_signed
from ..config import AssetConfig
from ..errors import DataUnavailable
from ..interfaces.chain import ChainGateway
from ..models import Asset
from ..numeric import scale_down

logger = logging.getLogger(__name__)


class OnChainOracle:
    """Read an aggregator's latest answer through the chain gateway."""

    name = "on-chain-oracle"

    def __init__(self, gateway: ChainGateway, assets: dict[Asset, AssetConfig]) -> None:
        self._gateway = gateway
        self._assets = assets

    async def try_resolve(self, asset: Asset) -> Decimal | None:
        cfg = self._assets.get(asset)
        if cfg is None or not cfg.oracle_address:
            return None

        try:
            words = await self._gateway.call_contract(cfg.oracle_address, "latestRoundData")
        except DataUnavailable as e:
            logger.warning("On-chain oracle for %s unavailable: %s", asset.value, e)
            return None

        # (roundId, answer, startedAt, updatedAt, answeredInRound)
        if len(words) < 2:
            logger.warning("On-chain oracle for %s returned %d words", asset.value, len(words))
            return None
        return scale_down(to_signed(words[1]), cfg.oracle_decimals)
