"""YieldReconciler: harvest events to annualized APR/APY."""
from __future__ import annotations

import bisect
import logging
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from ..config import EngineConfig
from ..errors import ComputationAnomaly
from ..models import Asset, FeeHarvestEvent, TvlPoint, YieldPeriod, YieldReport
from ..numeric import ZERO, SafeDecimal
from ..records import usd_value

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365
SECONDS_PER_DAY = 86400


def apr_to_apy(apr: Decimal | SafeDecimal) -> SafeDecimal:
    """Daily-compounded APY from a simple APR (fractions, not percent)."""
    rate = SafeDecimal.of(apr, "apr")
    if rate.anomalous or rate.value <= ZERO:
        return SafeDecimal(ZERO, rate.anomalous, "apy")
    daily = SafeDecimal.of(1) + rate / DAYS_PER_YEAR
    return (daily ** DAYS_PER_YEAR - 1).with_label("apy")


def dedupe_events(events: Iterable[FeeHarvestEvent]) -> list[FeeHarvestEvent]:
    """Sort ascending by timestamp, dropping repeats of the same transaction."""
    seen: set[tuple[str, str]] = set()
    unique: list[FeeHarvestEvent] = []
    for event in sorted(events, key=lambda e: (e.timestamp, e.tx_hash)):
        if event.tx_hash:
            key = (event.strategy_id, event.tx_hash)
            if key in seen:
                logger.debug("Dropping duplicate harvest %s", event.tx_hash)
                continue
            seen.add(key)
        unique.append(event)
    return unique


class TvlHistory:
    """Lookup of TVL at a point in time from sparse samples."""

    def __init__(self, points: Iterable[TvlPoint], fallback: Decimal = ZERO) -> None:
        self._points = sorted(points, key=lambda p: p.timestamp)
        self._timestamps = [p.timestamp for p in self._points]
        self._fallback = fallback

    def at(self, timestamp: int) -> Decimal:
        """Latest sample at or before ``timestamp``; else the first one after.

        With no samples at all, the current TVL passed as ``fallback``.
        """
        if not self._points:
            return self._fallback
        idx = bisect.bisect_right(self._timestamps, timestamp)
        if idx > 0:
            return self._points[idx - 1].tvl_usd
        return self._points[0].tvl_usd


class YieldReconciler:
    """Partition harvests into periods and combine them into one APR."""

    def __init__(self, config: EngineConfig) -> None:
        self._inception = config.inception_timestamp
        self._first_period_seconds = int(config.first_period_days * SECONDS_PER_DAY)
        self._apr_min = config.apr_min
        self._apr_max = config.apr_max

    def _period_start(self, first_timestamp: int) -> int:
        if 0 < self._inception < first_timestamp:
            return self._inception
        return first_timestamp - self._first_period_seconds

    def _build_period(
        self,
        start: int,
        event: FeeHarvestEvent,
        tvl: TvlHistory,
        prices: Mapping[Asset, Decimal],
        anomalies: list[ComputationAnomaly],
    ) -> YieldPeriod:
        end = event.timestamp
        fees = usd_value(event.fees_by_asset, prices)
        tvl_at_start = SafeDecimal.of(tvl.at(start), "tvl at start")

        def rejected(reason: str, apr: Decimal = ZERO) -> YieldPeriod:
            logger.debug("Rejecting period %d..%d: %s", start, end, reason)
            return YieldPeriod(start, end, tvl_at_start.value, fees.value, apr, accepted=False)

        def anomaly(detail: str) -> YieldPeriod:
            anomalies.append(ComputationAnomaly(f"period {start}..{end}", detail))
            return rejected("computation anomaly")

        if end <= start:
            return rejected("non-positive duration")
        if fees.anomalous or tvl_at_start.anomalous:
            return anomaly("non-finite fees or TVL clamped to 0")
        if tvl_at_start.value <= ZERO:
            return rejected("no TVL at period start")

        days = SafeDecimal.of(end - start, "period days") / SECONDS_PER_DAY
        period_return = fees / tvl_at_start
        apr = (period_return * DAYS_PER_YEAR / days).with_label("period apr")

        if apr.anomalous:
            return anomaly("non-finite APR clamped to 0")
        if not self._apr_min <= apr.value <= self._apr_max:
            logger.info(
                "Discarding period ending %d: APR %s outside [%s, %s]",
                end,
                apr.value,
                self._apr_min,
                self._apr_max,
            )
            return rejected("outside sanity band", apr.value)

        return YieldPeriod(start, end, tvl_at_start.value, fees.value, apr.value)

    def compute_yield(
        self,
        events: Iterable[FeeHarvestEvent],
        historical_tvl: Iterable[TvlPoint],
        prices: Mapping[Asset, Decimal],
        current_tvl: Decimal = ZERO,
    ) -> YieldReport:
        """Recency-weighted APR/APY over the harvest history.

        No surviving periods is a normal "insufficient data" result with
        ``apr == apy == 0``.
        """
        ordered = dedupe_events(events)
        if not ordered:
            return YieldReport()

        tvl = TvlHistory(historical_tvl, fallback=current_tvl)
        anomalies: list[ComputationAnomaly] = []
        periods: list[YieldPeriod] = []

        start = self._period_start(ordered[0].timestamp)
        for event in ordered:
            periods.append(self._build_period(start, event, tvl, prices, anomalies))
            start = event.timestamp

        survivors = [p for p in periods if p.accepted]
        weighted = SafeDecimal.of(0, "weighted apr")
        total_weight = 0
        for weight, period in enumerate(survivors, start=1):
            weighted = weighted + SafeDecimal.of(period.period_apr) * weight
            total_weight += weight

        apr = weighted / total_weight if total_weight else SafeDecimal.of(0)
        apy = apr_to_apy(apr)
        if apr.anomalous or apy.anomalous:
            anomalies.append(ComputationAnomaly("aggregate yield", "clamped to 0"))

        logger.info(
            "Yield: %d/%d periods accepted, APR %s, APY %s",
            len(survivors),
            len(periods),
            apr.value,
            apy.value,
        )
        return YieldReport(
            apr=apr.value,
            apy=apy.value,
            periods=tuple(periods),
            anomalies=tuple(anomalies),
        )

    def compute_strategy_yields(
        self,
        histories: Mapping[str, tuple[Sequence[FeeHarvestEvent], Sequence[TvlPoint], Decimal]],
        prices: Mapping[Asset, Decimal],
    ) -> dict[str, YieldReport]:
        """One report per strategy from ``{id: (events, tvl_points, current_tvl)}``."""
        return {
            sid: self.compute_yield(events, tvl_points, prices, current_tvl=current_tvl)
            for sid, (events, tvl_points, current_tvl) in sorted(histories.items())
        }


def combine_strategy_yields(
    reports: Mapping[str, YieldReport],
    strategy_tvl_usd: Mapping[str, Decimal],
    idle_tvl_usd: Decimal = ZERO,
) -> YieldReport:
    """Vault-level yield from per-strategy reports.

    APR is annual fees over total capital: each strategy's APR weighted by
    the vault's USD in it, with idle (liquid) capital earning nothing. When
    there is no capital at all, the simple mean of positive strategy APRs.
    """
    ids = sorted(reports)
    total = SafeDecimal.of(idle_tvl_usd, "vault tvl")
    annual_fees = SafeDecimal.of(0, "annual fees")
    for sid in ids:
        tvl = strategy_tvl_usd.get(sid, ZERO)
        total = total + tvl
        annual_fees = annual_fees + SafeDecimal.of(reports[sid].apr) * tvl

    if total.value > ZERO:
        apr = annual_fees / total
    else:
        positive = [reports[sid].apr for sid in ids if reports[sid].apr > ZERO]
        apr = SafeDecimal.of(sum(positive, ZERO)) / len(positive) if positive else SafeDecimal.of(0)

    anomalies: list[ComputationAnomaly] = []
    for sid in ids:
        anomalies.extend(reports[sid].anomalies)
    apy = apr_to_apy(apr)
    if apr.anomalous or apy.anomalous:
        anomalies.append(ComputationAnomaly("combined yield", "clamped to 0"))

    periods: Sequence[YieldPeriod] = sorted(
        (p for sid in ids for p in reports[sid].periods), key=lambda p: p.end_timestamp
    )
    return YieldReport(
        apr=apr.value,
        apy=apy.value,
        periods=tuple(periods),
        anomalies=tuple(anomalies),
        per_strategy={sid: reports[sid] for sid in ids},
    )
