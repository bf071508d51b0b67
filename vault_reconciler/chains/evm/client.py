"""EVM JSON-RPC client with fallback support."""
import logging
import ssl
from typing import Any, Callable

import aiohttp
import certifi

from ...config import ChainConfig
from ...errors import DataUnavailable
from .abi import hex_to_int

logger = logging.getLogger(__name__)


class EvmClient:
    """EVM JSON-RPC client with automatic endpoint fallback."""

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.current_rpc_index = 0

    async def rpc_call(
        self,
        method: str,
        params: list[Any],
        parse: Callable[[Any], Any] | None = None,
    ) -> Any:
        """Make RPC call with fallback to alternative endpoints.

        Timeouts, transport errors, non-200 statuses, JSON-RPC errors and
        responses without a ``result`` all count as endpoint failures. When
        ``parse`` is given it runs inside the retry loop, so a result it
        rejects also moves on to the next endpoint.
        """
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        if response.status != 200:
                            raise RuntimeError(f"HTTP {response.status}")
                        result = await response.json()
                        if not isinstance(result, dict):
                            raise RuntimeError(f"Malformed response: {result!r}")
                        if "error" in result:
                            raise RuntimeError(f"RPC Error: {result['error']}")
                        if "result" not in result:
                            raise RuntimeError("Response has no result")

                        value = result["result"]
                        if parse is not None:
                            value = parse(value)

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return value
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed for %s: %s", rpc_url, method, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise DataUnavailable(f"All RPC endpoints failed for {method}. Last error: {last_error}")

    async def eth_call(
        self, to: str, data: str, parse: Callable[[Any], Any] | None = None
    ) -> Any:
        return await self.rpc_call(
            "eth_call", [{"to": to, "data": data}, "latest"], parse=parse
        )

    async def block_number(self) -> int:
        return await self.rpc_call("eth_blockNumber", [], parse=hex_to_int)

    async def get_block_timestamp(self, block_number: int) -> int:
        return await self.rpc_call(
            "eth_getBlockByNumber", [hex(block_number), False], parse=_block_timestamp
        )

    async def get_logs(
        self,
        address: str,
        topics: list[str | None],
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        """Fetch raw logs for one contract over an inclusive block range."""
        return await self.rpc_call(
            "eth_getLogs",
            [
                {
                    "address": address,
                    "topics": topics,
                    "fromBlock": hex(from_block),
                    "toBlock": hex(to_block),
                }
            ],
            parse=_log_list,
        )


def _block_timestamp(block: Any) -> int:
    if not isinstance(block, dict) or "timestamp" not in block:
        raise ValueError(f"Malformed block: {block!r}")
    return hex_to_int(block["timestamp"])


def _log_list(result: Any) -> list[dict[str, Any]]:
    if not isinstance(result, list):
        raise ValueError(f"Malformed eth_getLogs result: {result!r}")
    for log in result:
        # Pending logs carry a null blockNumber and cannot be timestamped.
        if not isinstance(log, dict) or log.get("blockNumber") is None:
            raise ValueError(f"Malformed log entry: {log!r}")
        hex_to_int(log["blockNumber"])
    return result
