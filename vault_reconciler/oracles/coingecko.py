"""CoinGecko simple-price API, the secondary market-data source."""
import logging
import ssl
from decimal import Decimal

import aiohttp
import certifi

from ..config import AssetConfig, PriceSourcesConfig
from ..models import Asset
from ..numeric import to_decimal

logger = logging.getLogger(__name__)


class CoinGeckoOracle:
    """Fetch USD prices from CoinGecko's ``simple/price`` endpoint."""

    name = "coingecko"

    def __init__(
        self, config: PriceSourcesConfig, assets: dict[Asset, AssetConfig]
    ) -> None:
        self.url = config.coingecko_url
        self.timeout = config.timeout
        self.coin_ids = {
            asset: cfg.coingecko_id for asset, cfg in assets.items() if cfg.coingecko_id
        }

    async def try_resolve(self, asset: Asset) -> Decimal | None:
        coin_id = self.coin_ids.get(asset)
        if not coin_id:
            return None

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    self.url,
                    params={"ids": coin_id, "vs_currencies": "usd"},
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching %s from CoinGecko: HTTP %s",
                            coin_id,
                            response.status,
                        )
                        return None
                    data = await response.json()
        except Exception as e:
            logger.error("Error fetching %s from CoinGecko: %s", coin_id, e)
            return None

        usd = data.get(coin_id, {}).get("usd") if isinstance(data, dict) else None
        if usd is None:
            logger.warning("CoinGecko returned no USD price for %s", coin_id)
            return None
        return to_decimal(usd)
