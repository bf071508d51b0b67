"""Refresh scheduling, published engine state and the consumer read API."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

from ..chains.evm import ChainDataGateway, EventQuery
from ..concurrency import gather_or_cancel
from ..config import AppConfig, StrategyConfig
from ..errors import DataUnavailable
from ..interfaces.chain import ChainGateway
from ..interfaces.notifier import Notifier
from ..models import (
    FeeHarvestEvent,
    Location,
    PositionValue,
    TvlPoint,
    VaultSnapshot,
    WithdrawalPlan,
    YieldReport,
)
from ..notifications import TelegramNotifier
from ..numeric import ZERO
from ..oracles import CoinGeckoOracle, OnChainOracle, PriceOracleResolver, PythOracle
from ..records import parse_harvest, parse_tvl_record, usd_value
from .aggregator import PositionAggregator
from .withdrawal import WithdrawalPlanner
from .yield_reconciler import YieldReconciler, combine_strategy_yields

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class PublishedState:
    """Everything one successful cycle produced, published as a unit."""

    snapshot: VaultSnapshot | None = None
    yield_report: YieldReport = field(default_factory=YieldReport)
    published_at: int = 0


class EngineState:
    """Latest published results, owned and written by the refresh task only."""

    def __init__(self) -> None:
        self._published = PublishedState()
        self.last_error = ""
        self.consecutive_failures = 0

    @property
    def published(self) -> PublishedState:
        return self._published

    @property
    def stale(self) -> bool:
        return self._published.snapshot is None or self.consecutive_failures > 0

    def publish(self, state: PublishedState) -> None:
        self._published = state
        self.last_error = ""
        self.consecutive_failures = 0

    def mark_failed(self, error: str) -> None:
        self.last_error = error
        self.consecutive_failures += 1


class VaultReader:
    """Synchronous, side-effect-free queries against the published state."""

    def __init__(self, state: EngineState, planner: WithdrawalPlanner) -> None:
        self._state = state
        self._planner = planner

    def get_snapshot(self) -> VaultSnapshot | None:
        return self._state.published.snapshot

    def get_yield(self) -> YieldReport:
        return self._state.published.yield_report

    def is_stale(self) -> bool:
        return self._state.stale

    def _require_snapshot(self) -> VaultSnapshot:
        snapshot = self._state.published.snapshot
        if snapshot is None:
            raise DataUnavailable("No snapshot has been published yet")
        return snapshot

    def plan_withdrawal(self, shares: Any) -> WithdrawalPlan:
        return self._planner.plan_withdrawal(shares, self._require_snapshot())

    def position_value(self, shares: Any) -> PositionValue:
        return self._planner.position_value(shares, self._require_snapshot())


class Engine:
    """Runs refresh cycles and publishes snapshot + yield atomically."""

    def __init__(
        self,
        config: AppConfig,
        gateway: ChainGateway | None = None,
        resolver: PriceOracleResolver | None = None,
        notifiers: list[Notifier] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._clock = clock

        self._gateway: ChainGateway = gateway or ChainDataGateway(config.chain, config.index)
        if resolver is None:
            resolver = PriceOracleResolver(
                [
                    OnChainOracle(self._gateway, config.assets),
                    PythOracle(config.price_sources, config.assets),
                    CoinGeckoOracle(config.price_sources, config.assets),
                ],
                config.assets,
            )
        self._resolver = resolver
        self._aggregator = PositionAggregator(config, self._gateway, resolver, clock)
        self._reconciler = YieldReconciler(config.engine)
        self._planner = WithdrawalPlanner(config.engine.withdrawal_tolerance)

        self.state = EngineState()
        self.reader = VaultReader(self.state, self._planner)
        self._lock = asyncio.Lock()

        if notifiers is None:
            notifiers = []
            if config.notifications.telegram.enabled:
                notifiers.append(TelegramNotifier(config.notifications.telegram))
        self._notifiers = notifiers

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _history_window(self, now: int) -> tuple[int, int]:
        inception = self._config.engine.inception_timestamp
        if inception > 0:
            return inception, now
        return now - self._config.engine.lookback_days * SECONDS_PER_DAY, now

    def _harvest_query(self, strategy: StrategyConfig) -> EventQuery:
        return EventQuery(
            record_key="collectFees",
            query=self._config.index.harvest_query,
            variables={"vault": strategy.share_token.lower()},
            contract=strategy.share_token,
            topic=strategy.harvest_topic,
        )

    def _snapshot_query(self, strategy: StrategyConfig) -> EventQuery:
        return EventQuery(
            record_key="snapshots",
            query=self._config.index.snapshot_query,
            variables={"vault": strategy.share_token.lower()},
        )

    async def _fetch_records(
        self, event_query: EventQuery, strategy_id: str, window: tuple[int, int]
    ) -> list[dict[str, Any]] | None:
        try:
            return await self._gateway.query_events(event_query, *window)
        except DataUnavailable as e:
            logger.warning("%s for strategy %s unavailable: %s", event_query.record_key, strategy_id, e)
            return None

    def _parse_events(
        self, records: list[dict[str, Any]], strategy: StrategyConfig
    ) -> list[FeeHarvestEvent]:
        events: list[FeeHarvestEvent] = []
        for record in records:
            try:
                events.append(parse_harvest(record, strategy, self._config.assets))
            except (KeyError, ValueError, TypeError, ArithmeticError) as e:
                logger.warning("Skipping malformed harvest record for %s: %s", strategy.id, e)
        return events

    def _parse_tvl(
        self, records: list[dict[str, Any]], strategy: StrategyConfig, prices: dict
    ) -> list[TvlPoint]:
        points: list[TvlPoint] = []
        for record in records:
            try:
                points.append(parse_tvl_record(record, strategy, self._config.assets, prices))
            except (KeyError, ValueError, TypeError, ArithmeticError) as e:
                logger.warning("Skipping malformed TVL record for %s: %s", strategy.id, e)
        return points

    def _reconcile_yield(
        self,
        snapshot: VaultSnapshot,
        history: list[tuple[list[dict[str, Any]] | None, list[dict[str, Any]] | None]],
    ) -> YieldReport:
        prices = {asset: quote.price for asset, quote in snapshot.prices.items()}
        previous = self.state.published.yield_report.per_strategy
        strategies = {s.id: s for s in snapshot.strategies}

        reports: dict[str, YieldReport] = {}
        inputs = {}
        for cfg, (harvests, tvl_records) in zip(self._config.strategies, history):
            if harvests is None:
                # Keep the last known figure rather than reporting a false zero.
                reports[cfg.id] = previous.get(cfg.id, YieldReport())
                continue
            current_tvl = ZERO
            if cfg.id in strategies:
                current_tvl = usd_value(strategies[cfg.id].total_holdings, prices).value
            inputs[cfg.id] = (
                self._parse_events(harvests, cfg),
                self._parse_tvl(tvl_records or [], cfg, prices),
                current_tvl,
            )
        reports.update(self._reconciler.compute_strategy_yields(inputs, prices))

        strategy_tvl = {
            sid: snapshot.location_usd(Location.deployed(sid)) for sid in reports
        }
        return combine_strategy_yields(
            reports, strategy_tvl, idle_tvl_usd=snapshot.location_usd(Location.vault_liquid())
        )

    # ------------------------------------------------------------------
    # Refresh cycle
    # ------------------------------------------------------------------

    async def _run_cycle(self) -> PublishedState:
        now = int(self._clock())
        window = self._history_window(now)

        async def strategy_history(strategy: StrategyConfig):
            return await gather_or_cancel(
                self._fetch_records(self._harvest_query(strategy), strategy.id, window),
                self._fetch_records(self._snapshot_query(strategy), strategy.id, window),
            )

        snapshot, history = await gather_or_cancel(
            self._aggregator.aggregate(),
            gather_or_cancel(*(strategy_history(s) for s in self._config.strategies)),
        )
        report = self._reconcile_yield(snapshot, list(history))
        return PublishedState(snapshot=snapshot, yield_report=report, published_at=now)

    async def refresh(self) -> bool:
        """Run one cycle and publish it. Returns True if a new state was published.

        A call made while another cycle is running returns False straight
        away. A failed or overdue cycle is discarded and the previous state
        stays published, marked stale.
        """
        if self._lock.locked():
            logger.info("Refresh already in progress, skipping")
            return False

        async with self._lock:
            was_stale = self.state.consecutive_failures > 0
            try:
                published = await asyncio.wait_for(
                    self._run_cycle(), timeout=self._config.engine.cycle_deadline_seconds
                )
            except asyncio.TimeoutError:
                await self._on_failure(
                    f"Refresh exceeded {self._config.engine.cycle_deadline_seconds}s deadline"
                )
                return False
            except DataUnavailable as e:
                await self._on_failure(f"Data unavailable: {e}")
                return False
            except Exception as e:
                logger.exception("Refresh cycle failed unexpectedly")
                await self._on_failure(f"Refresh failed: {type(e).__name__}: {e}")
                return False

            self.state.publish(published)
            logger.info("Published snapshot at %d", published.published_at)
            if was_stale:
                await self._send_log("✅ Vault data recovered\n\n" + self.format_summary())
            return True

    async def _on_failure(self, error: str) -> None:
        first_failure = self.state.consecutive_failures == 0
        self.state.mark_failed(error)
        logger.error("Refresh discarded (%d in a row): %s", self.state.consecutive_failures, error)
        if first_failure:
            await self._send_alert(
                f"⚠️ Vault data stale\n\n{error}\n\nLast good snapshot kept.\n{self._now_str()} UTC",
                subject="⚠️ Vault data stale",
            )

    async def run_continuous(self, interval_seconds: int | None = None) -> None:
        """Run the refresh loop forever on a fixed interval."""
        interval = interval_seconds or self._config.engine.poll_interval_seconds
        logger.info("Starting refresh loop (every %d seconds)", interval)

        while True:
            try:
                await self.refresh()
                await asyncio.sleep(interval)
            except Exception as e:
                logger.error("Error in refresh loop: %s", e)
                await asyncio.sleep(60)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _pct(fraction: Decimal) -> str:
        return f"{float(fraction) * 100:.2f}%"

    def format_summary(self) -> str:
        snapshot = self.reader.get_snapshot()
        if snapshot is None:
            return f"No snapshot available.\n{self.state.last_error}".strip()

        report = self.reader.get_yield()
        lines = [
            f"TVL: ${float(snapshot.total_assets_usd):,.2f}",
            f"Shares: {float(snapshot.total_shares):,.4f} · "
            f"Share price: ${float(snapshot.share_price_usd):,.6f}",
            "",
        ]
        for location, weight in snapshot.location_weights().items():
            lines.append(
                f"{location}: ${float(snapshot.location_usd(location)):,.2f} ({self._pct(weight)})"
            )
        lines.append("")
        for asset, amount in snapshot.per_asset_holdings.items():
            quote = snapshot.prices.get(asset)
            if quote is None:
                continue
            lines.append(
                f"{asset.value}: {float(amount.quantity):,.4f} @ ${float(quote.price):,.4f} ({quote.source})"
            )
        lines.append("")
        if report.insufficient_data:
            lines.append("APR/APY: insufficient harvest data")
        else:
            lines.append(f"APR: {self._pct(report.apr)} · APY: {self._pct(report.apy)}")
        if self.state.stale:
            lines.append(f"⚠️ Stale: {self.state.last_error}")
        return "\n".join(lines)

    async def send_report(self) -> None:
        report = f"📋 Vault Report\n\n{self.format_summary()}\n\n{self._now_str()} UTC"
        await self._send_alert(report, subject="Vault Report")
        logger.info("Report sent")

    async def _send_log(self, message: str, silent: bool = False) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=silent)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)
