"""EVM chain access: JSON-RPC, event index, and the combined gateway."""
from .client import EvmClient
from .gateway import ChainDataGateway, EventQuery
from .index import EventIndexClient

__all__ = ["ChainDataGateway", "EvmClient", "EventIndexClient", "EventQuery"]
