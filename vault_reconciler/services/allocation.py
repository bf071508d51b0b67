"""Split of concentrated liquidity across full-range, base and limit ranges.

Per-position amounts are not always available. The tick-width ratio used
in that case comes from configuration; it is an operator assumption about
how the strategy sizes its ranges, not something the pool guarantees.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping, Sequence

from ..config import RangeSplitConfig
from ..models import RangeAllocation
from ..numeric import ZERO, SafeDecimal, safe_ratio

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)
BASIS_POINTS_SCALE = Decimal(10000)


def normalize_weight_pct(raw: Any) -> Decimal:
    """Full-range weight as a percent.

    Strategies report it either as a percent (``74``) or in 1e6 scale
    (``740000``); anything above 100 is treated as the latter.
    """
    value = SafeDecimal.of(raw, "full range weight")
    if value > HUNDRED:
        value = value / BASIS_POINTS_SCALE
    return min(max(value.value, ZERO), HUNDRED)


def _abs_total(amounts: Sequence[Any]) -> SafeDecimal:
    total = SafeDecimal.of(0)
    for raw in amounts:
        total = total + SafeDecimal.of(raw if raw not in (None, "") else 0)
    return SafeDecimal(abs(total.value), total.anomalous)


def split_range_allocation(
    full_range_weight: Any,
    base_amounts: Sequence[Any],
    limit_amounts: Sequence[Any],
    fallback: RangeSplitConfig,
) -> RangeAllocation:
    """Split the non-full-range remainder between base and limit ranges.

    Uses the actual base/limit amounts when both are valid; otherwise the
    configured tick widths decide the ratio and the result is ``estimated``.
    """
    full_pct = normalize_weight_pct(full_range_weight)
    remaining = HUNDRED - full_pct

    base_value = _abs_total(base_amounts)
    limit_value = _abs_total(limit_amounts)
    in_ranges = base_value + limit_value

    if not in_ranges.anomalous and in_ranges.value > ZERO:
        base_ratio = safe_ratio(base_value, in_ranges)
        return RangeAllocation(
            full_range_pct=full_pct,
            base_pct=(base_ratio * remaining).value,
            limit_pct=((SafeDecimal.of(1) - base_ratio) * remaining).value,
        )

    total_ticks = fallback.base_ticks + fallback.limit_ticks
    if total_ticks <= 0:
        logger.warning("Range split has no tick widths configured; splitting evenly")
        half = remaining / 2
        return RangeAllocation(full_pct, half, remaining - half, estimated=True)

    base_pct = (safe_ratio(fallback.base_ticks, total_ticks) * remaining).value
    logger.debug(
        "No base/limit amounts, estimating split from tick widths %d/%d",
        fallback.base_ticks,
        fallback.limit_ticks,
    )
    return RangeAllocation(full_pct, base_pct, remaining - base_pct, estimated=True)


def parse_range_record(
    record: Mapping[str, Any], pool_tokens: int, fallback: RangeSplitConfig
) -> RangeAllocation:
    """Build an allocation from an index range-state record."""
    base = [record.get(f"baseAmount{i}") for i in range(pool_tokens)]
    limit = [record.get(f"limitAmount{i}") for i in range(pool_tokens)]
    return split_range_allocation(record.get("fullRangeWeight", 0), base, limit, fallback)
