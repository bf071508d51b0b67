"""Chain gateway protocol: read-only contract and event access."""
from typing import Any, Protocol


class ChainGateway(Protocol):
    """Abstract interface for resilient blockchain reads."""

    async def call_contract(
        self, target: str, method: str, args: list[Any] | tuple[Any, ...] = ()
    ) -> list[int]: ...

    async def get_token_balance(self, token: str, holder: str) -> int: ...

    async def get_total_supply(self, token: str) -> int: ...

    async def query_index(self, query: str, variables: dict[str, Any]) -> dict[str, Any]: ...

    async def query_events(
        self, event_query: Any, from_time: int, to_time: int
    ) -> list[dict[str, Any]]: ...
