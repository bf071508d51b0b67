"""Data models: all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Mapping

from .errors import ComputationAnomaly
from .numeric import ZERO, SafeDecimal, safe_ratio


class Asset(str, Enum):
    """Fungible token types tracked by the vault."""

    ASSET_A = "AssetA"
    ASSET_B = "AssetB"
    ASSET_C = "AssetC"

    @classmethod
    def ordered(cls) -> tuple[Asset, ...]:
        return tuple(sorted(cls, key=lambda a: a.value))


@dataclass(frozen=True)
class AssetAmount:
    """A quantity of one asset, in whole token units."""

    asset: Asset
    quantity: Decimal = ZERO

    def __add__(self, other: AssetAmount) -> AssetAmount:
        if other.asset is not self.asset:
            raise ValueError(f"Cannot add {other.asset.value} to {self.asset.value}")
        return AssetAmount(self.asset, self.quantity + other.quantity)

    def scaled(self, ratio: SafeDecimal | Decimal) -> AssetAmount:
        return AssetAmount(self.asset, (SafeDecimal.of(self.quantity) * ratio).value)


def zero_amounts() -> dict[Asset, AssetAmount]:
    return {asset: AssetAmount(asset) for asset in Asset.ordered()}


def sum_amounts(*groups: Mapping[Asset, AssetAmount]) -> dict[Asset, AssetAmount]:
    """Sum several per-asset maps, in a fixed asset order."""
    totals = zero_amounts()
    for group in groups:
        for asset in Asset.ordered():
            if asset in group:
                totals[asset] = totals[asset] + group[asset]
    return totals


@dataclass(frozen=True)
class Location:
    """Where a balance sits: liquid in the vault or deployed in a strategy."""

    kind: str
    strategy_id: str = ""

    VAULT_LIQUID = "VaultLiquid"
    STRATEGY_DEPLOYED = "StrategyDeployed"

    @classmethod
    def vault_liquid(cls) -> Location:
        return cls(cls.VAULT_LIQUID)

    @classmethod
    def deployed(cls, strategy_id: str) -> Location:
        return cls(cls.STRATEGY_DEPLOYED, strategy_id)

    @property
    def is_liquid(self) -> bool:
        return self.kind == self.VAULT_LIQUID

    def __str__(self) -> str:
        if self.is_liquid:
            return self.kind
        return f"{self.kind}({self.strategy_id})"


@dataclass(frozen=True)
class LocationBalance:
    location: Location
    amounts: Mapping[Asset, AssetAmount] = field(default_factory=zero_amounts)

    def quantity(self, asset: Asset) -> Decimal:
        amount = self.amounts.get(asset)
        return amount.quantity if amount else ZERO


@dataclass(frozen=True)
class RangeAllocation:
    """Percent split of a concentrated-liquidity strategy across its ranges."""

    full_range_pct: Decimal
    base_pct: Decimal
    limit_pct: Decimal
    estimated: bool = False


@dataclass(frozen=True)
class Strategy:
    """The vault's stake in one pooled external position."""

    id: str
    share_balance: Decimal
    total_shares: Decimal
    total_holdings: Mapping[Asset, AssetAmount] = field(default_factory=zero_amounts)
    holdings_source: str = "total-amounts"
    range_allocation: RangeAllocation | None = None

    @property
    def ownership(self) -> SafeDecimal:
        return safe_ratio(self.share_balance, self.total_shares, f"strategy {self.id} ownership")

    def attributed_holdings(self) -> dict[Asset, AssetAmount]:
        ratio = self.ownership
        attributed = zero_amounts()
        for asset in Asset.ordered():
            if asset in self.total_holdings:
                attributed[asset] = self.total_holdings[asset].scaled(ratio)
        return attributed


@dataclass(frozen=True)
class FeeHarvestEvent:
    timestamp: int
    strategy_id: str
    fees_by_asset: Mapping[Asset, AssetAmount] = field(default_factory=dict)
    tx_hash: str = ""


@dataclass(frozen=True)
class TvlPoint:
    timestamp: int
    tvl_usd: Decimal


@dataclass(frozen=True)
class PriceQuote:
    asset: Asset
    price: Decimal
    source: str


@dataclass(frozen=True)
class YieldPeriod:
    start_timestamp: int
    end_timestamp: int
    tvl_at_start: Decimal
    fees_usd: Decimal
    period_apr: Decimal
    accepted: bool = True

    @property
    def period_days(self) -> Decimal:
        return Decimal(self.end_timestamp - self.start_timestamp) / Decimal(86400)


@dataclass(frozen=True)
class YieldReport:
    """Annualized yield; ``apr``/``apy`` are fractions (0.1 == 10%)."""

    apr: Decimal = ZERO
    apy: Decimal = ZERO
    periods: tuple[YieldPeriod, ...] = ()
    anomalies: tuple[ComputationAnomaly, ...] = ()
    per_strategy: Mapping[str, YieldReport] = field(default_factory=dict)

    @property
    def accepted_periods(self) -> tuple[YieldPeriod, ...]:
        return tuple(p for p in self.periods if p.accepted)

    @property
    def insufficient_data(self) -> bool:
        return not self.accepted_periods


@dataclass(frozen=True)
class VaultSnapshot:
    """Complete, consistent, point-in-time view of vault composition."""

    total_assets_usd: Decimal
    total_shares: Decimal
    per_asset_holdings: Mapping[Asset, AssetAmount]
    per_location_balances: tuple[LocationBalance, ...]
    prices: Mapping[Asset, PriceQuote] = field(default_factory=dict)
    strategies: tuple[Strategy, ...] = ()
    timestamp: int = 0
    anomalies: tuple[ComputationAnomaly, ...] = ()

    def holding(self, asset: Asset) -> Decimal:
        amount = self.per_asset_holdings.get(asset)
        return amount.quantity if amount else ZERO

    def price(self, asset: Asset) -> Decimal:
        quote = self.prices.get(asset)
        return quote.price if quote else ZERO

    def liquid_holdings(self) -> dict[Asset, AssetAmount]:
        liquid = [b.amounts for b in self.per_location_balances if b.location.is_liquid]
        return sum_amounts(*liquid)

    @property
    def share_price_usd(self) -> Decimal:
        return safe_ratio(self.total_assets_usd, self.total_shares, "share price").value

    def location_usd(self, location: Location) -> Decimal:
        total = SafeDecimal.of(ZERO)
        for balance in self.per_location_balances:
            if balance.location != location:
                continue
            for asset in Asset.ordered():
                total = total + SafeDecimal.of(balance.quantity(asset)) * self.price(asset)
        return total.value

    def location_weights(self) -> dict[Location, Decimal]:
        """Fraction of total USD value held at each location."""
        return {
            b.location: safe_ratio(self.location_usd(b.location), self.total_assets_usd).value
            for b in self.per_location_balances
        }


@dataclass(frozen=True)
class WithdrawalPlan:
    shares_requested: Decimal
    per_asset_payout: Mapping[Asset, AssetAmount]
    feasible: bool
    max_feasible_shares: Decimal
    payout_usd: Decimal = ZERO


@dataclass(frozen=True)
class PositionValue:
    shares: Decimal
    value_usd: Decimal
    percent_of_supply: Decimal
