"""Pyth Network price oracle service."""
import logging
import ssl
from decimal import Decimal

import aiohttp
import certifi

from ..config import AssetConfig, PriceSourcesConfig
from ..models import Asset

logger = logging.getLogger(__name__)


class PythOracle:
    """Fetch prices from the Pyth Network Hermes API."""

    name = "pyth"

    def __init__(
        self, config: PriceSourcesConfig, assets: dict[Asset, AssetConfig]
    ) -> None:
        self.hermes_url = config.pyth_hermes_url
        self.timeout = config.timeout
        self.price_feeds = {
            asset: cfg.pyth_feed_id for asset, cfg in assets.items() if cfg.pyth_feed_id
        }

    async def fetch_prices(self, assets: list[Asset] | None = None) -> dict[Asset, Decimal]:
        """Fetch current prices from Pyth Network.

        Args:
            assets: Optional list of assets to fetch. If None, fetches all
                    configured feeds.
        """
        prices: dict[Asset, Decimal] = {}

        feeds = self.price_feeds
        if assets is not None:
            feeds = {k: v for k, v in self.price_feeds.items() if k in assets}

        feed_ids = sorted(set(feeds.values()))
        if not feed_ids:
            return prices

        query_params = "&".join([f"ids[]={fid}" for fid in feed_ids])
        url = f"{self.hermes_url}?{query_params}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    url, timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching prices from Pyth: HTTP %s", response.status
                        )
                        return prices

                    data = await response.json()
                    parsed = data.get("parsed", [])

                    # Reverse mapping from feed ID to assets; Hermes returns
                    # ids without the 0x prefix.
                    id_to_assets: dict[str, list[Asset]] = {}
                    for asset, feed_id in feeds.items():
                        key = feed_id.lower().removeprefix("0x")
                        id_to_assets.setdefault(key, []).append(asset)

                    for item in parsed:
                        feed_id = str(item.get("id", "")).lower().removeprefix("0x")
                        price_data = item.get("price", {})
                        price_raw = int(price_data.get("price", 0))
                        expo = int(price_data.get("expo", 0))

                        price = Decimal(price_raw).scaleb(expo)

                        for asset in id_to_assets.get(feed_id, []):
                            prices[asset] = price

                    for asset, price in sorted(prices.items(), key=lambda kv: kv[0].value):
                        logger.debug("Pyth price %s: $%s", asset.value, price)

        except Exception as e:
            logger.error("Error fetching prices from Pyth: %s", e)

        return prices

    async def try_resolve(self, asset: Asset) -> Decimal | None:
        prices = await self.fetch_prices([asset])
        return prices.get(asset)
