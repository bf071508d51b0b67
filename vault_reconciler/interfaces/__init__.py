"""Protocol interfaces for the reconciliation engine."""
from .chain import ChainGateway
from .notifier import Notifier
from .price_source import PriceSource

__all__ = ["ChainGateway", "Notifier", "PriceSource"]
