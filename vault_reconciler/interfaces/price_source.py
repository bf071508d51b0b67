"""Price source protocol: one link in the price fallback chain."""
from decimal import Decimal
from typing import Protocol

from ..models import Asset


class PriceSource(Protocol):
    """A single USD price source.

    ``try_resolve`` returns ``None`` when the source has no usable price;
    the resolver then moves on to the next source.
    """

    @property
    def name(self) -> str: ...

    async def try_resolve(self, asset: Asset) -> Decimal | None: ...
