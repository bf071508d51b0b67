"""Event-index (GraphQL subgraph) client with endpoint fallback."""
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import IndexConfig
from ...errors import DataUnavailable

logger = logging.getLogger(__name__)


class EventIndexClient:
    """Query a historical event index, trying endpoints in priority order."""

    def __init__(self, config: IndexConfig) -> None:
        self.endpoints = list(config.endpoints)
        self.timeout = config.timeout

    @property
    def configured(self) -> bool:
        return bool(self.endpoints)

    async def query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Run a GraphQL query and return its ``data`` object."""
        payload = {"query": query, "variables": variables}
        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for url in self.endpoints:
            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        url,
                        json=payload,
                        headers={"Content-Type": "application/json"},
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        if response.status != 200:
                            raise RuntimeError(f"HTTP {response.status}")
                        result = await response.json()
                        if not isinstance(result, dict):
                            raise RuntimeError(f"Malformed response: {result!r}")
                        if result.get("errors"):
                            raise RuntimeError(f"GraphQL errors: {result['errors']}")
                        data = result.get("data")
                        if not isinstance(data, dict):
                            raise RuntimeError("Response has no data")
                        return data
            except Exception as e:
                last_error = e
                logger.warning("Index endpoint %s failed: %s", url, e)

        raise DataUnavailable(f"All index endpoints failed. Last error: {last_error}")
