"""ChainDataGateway: resilient reads from RPC nodes and the event index."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from ...concurrency import gather_or_cancel
from ...config import ChainConfig, IndexConfig
from ...errors import DataUnavailable
from .abi import decode_words, encode_call, hex_to_int
from .client import EvmClient
from .index import EventIndexClient

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class EventQuery:
    """What to fetch, from the index and (as fallback) from raw logs.

    ``record_key`` names the list inside the GraphQL ``data`` object.
    ``contract``/``topic`` drive the ``eth_getLogs`` fallback; leave them
    empty for records that only exist in the index (e.g. TVL snapshots).
    """

    record_key: str
    query: str
    variables: dict[str, Any] = field(default_factory=dict)
    contract: str = ""
    topic: str = ""


class ChainDataGateway:
    """Read-only access to contracts and historical events.

    Every read goes through an ordered endpoint list with a bounded timeout.
    When every endpoint fails the read raises :class:`DataUnavailable`.
    Nothing is cached between calls.
    """

    def __init__(
        self,
        chain_config: ChainConfig,
        index_config: IndexConfig,
        rpc: EvmClient | None = None,
        index: EventIndexClient | None = None,
    ) -> None:
        self._selectors = dict(chain_config.selectors)
        self._blocks_per_day = chain_config.blocks_per_day
        self._max_log_range = chain_config.max_log_block_range
        self.rpc = rpc or EvmClient(chain_config)
        self.index = index or EventIndexClient(index_config)

    # ------------------------------------------------------------------
    # Contract reads
    # ------------------------------------------------------------------

    async def call_contract(
        self, target: str, method: str, args: list[Any] | tuple[Any, ...] = ()
    ) -> list[int]:
        """Call a view method and return its 32-byte result words."""
        selector = self._selectors.get(method)
        if not selector:
            raise ValueError(f"No selector configured for method '{method}'")
        data = encode_call(selector, args)
        return await self.rpc.eth_call(target, data, parse=decode_words)

    async def get_token_balance(self, token: str, holder: str) -> int:
        words = await self.call_contract(token, "balanceOf", [holder])
        return words[0]

    async def get_total_supply(self, token: str) -> int:
        words = await self.call_contract(token, "totalSupply")
        return words[0]

    # ------------------------------------------------------------------
    # Event reads
    # ------------------------------------------------------------------

    async def query_index(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        if not self.index.configured:
            raise DataUnavailable("No event index configured")
        return await self.index.query(query, variables)

    async def query_events(
        self, event_query: EventQuery, from_time: int, to_time: int
    ) -> list[dict[str, Any]]:
        """Fetch event records with ``from_time <= timestamp <= to_time``.

        The index is tried first. If it errors or has nothing, and the query
        names a contract + topic, logs are read directly from the chain over
        a bounded block range.
        """
        index_error: Exception | None = None
        if self.index.configured:
            variables = {**event_query.variables, "from": str(from_time), "to": str(to_time)}
            try:
                data = await self.index.query(event_query.query, variables)
                records = data.get(event_query.record_key) or []
                if records:
                    logger.debug(
                        "Index returned %d %s records", len(records), event_query.record_key
                    )
                    return list(records)
                logger.info("Index has no %s records, trying on-chain logs", event_query.record_key)
            except DataUnavailable as e:
                index_error = e
                logger.warning("Index query for %s failed: %s", event_query.record_key, e)

        if not (event_query.contract and event_query.topic):
            if index_error is not None:
                raise index_error
            if not self.index.configured:
                raise DataUnavailable(f"No source configured for {event_query.record_key}")
            return []

        return await self._query_logs(event_query, from_time, to_time)

    async def _query_logs(
        self, event_query: EventQuery, from_time: int, to_time: int
    ) -> list[dict[str, Any]]:
        latest = await self.rpc.block_number()
        span_days = max(0, to_time - from_time) / SECONDS_PER_DAY
        span_blocks = min(math.ceil(span_days * self._blocks_per_day), self._max_log_range)
        from_block = max(0, latest - span_blocks)

        logger.info(
            "Querying logs for %s from block %d to %d", event_query.contract, from_block, latest
        )
        logs = await self.rpc.get_logs(event_query.contract, [event_query.topic], from_block, latest)

        block_numbers = sorted({hex_to_int(log["blockNumber"]) for log in logs})
        timestamps = await gather_or_cancel(
            *(self.rpc.get_block_timestamp(n) for n in block_numbers)
        )
        ts_by_block = dict(zip(block_numbers, timestamps))

        records: list[dict[str, Any]] = []
        for log in logs:
            ts = ts_by_block[hex_to_int(log["blockNumber"])]
            if from_time <= ts <= to_time:
                records.append({**log, "timestamp": ts})
        logger.info("Found %d %s log records", len(records), event_query.record_key)
        return records
