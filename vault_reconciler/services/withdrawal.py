"""WithdrawalPlanner: multi-asset redemption payout and feasibility."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from ..models import Asset, AssetAmount, PositionValue, VaultSnapshot, WithdrawalPlan, zero_amounts
from ..numeric import ZERO, SafeDecimal, safe_ratio

logger = logging.getLogger(__name__)


class WithdrawalPlanner:
    """Plan redemptions against the vault's actual, uneven composition.

    Only vault-liquid balances can pay an immediate redemption; deployed
    capital has to be withdrawn from strategies first, which is out of
    scope here.
    """

    def __init__(self, tolerance: Decimal = Decimal("0.001")) -> None:
        self._tolerance = tolerance

    def max_feasible_shares(self, snapshot: VaultSnapshot) -> Decimal:
        """Largest redemption every asset's liquid balance can cover.

        This is the strict limit with no tolerance applied, so a plan within
        tolerance of the liquid balance can be feasible while asking for
        slightly more than this.
        """
        total_shares = SafeDecimal.of(snapshot.total_shares)
        if total_shares.value <= ZERO:
            return ZERO

        liquid = snapshot.liquid_holdings()
        limit = total_shares
        for asset in Asset.ordered():
            holding = snapshot.holding(asset)
            if holding <= ZERO:
                continue
            per_share = safe_ratio(holding, total_shares)
            redeemable = safe_ratio(liquid[asset].quantity, per_share, f"{asset.value} max shares")
            if redeemable < limit:
                limit = redeemable
        return max(limit.value, ZERO)

    def plan_withdrawal(self, shares_to_redeem: Any, snapshot: VaultSnapshot) -> WithdrawalPlan:
        """Per-asset payout for ``shares_to_redeem`` and whether it can be paid now.

        Insufficient liquidity is reported with ``feasible=False`` and the
        largest redeemable share amount, never raised.
        """
        shares = SafeDecimal.of(shares_to_redeem, "shares to redeem")
        max_shares = self.max_feasible_shares(snapshot)

        if shares.value <= ZERO or snapshot.total_shares <= ZERO:
            return WithdrawalPlan(
                shares_requested=max(shares.value, ZERO),
                per_asset_payout=zero_amounts(),
                feasible=True,
                max_feasible_shares=max_shares,
            )

        ratio = safe_ratio(shares, snapshot.total_shares, "redemption ratio")
        liquid = snapshot.liquid_holdings()
        payout: dict[Asset, AssetAmount] = {}
        payout_usd = SafeDecimal.of(0, "payout usd")
        short: list[Asset] = []

        for asset in Asset.ordered():
            amount = (SafeDecimal.of(snapshot.holding(asset)) * ratio).value
            payout[asset] = AssetAmount(asset, amount)
            payout_usd = payout_usd + SafeDecimal.of(amount) * snapshot.price(asset)
            allowed = SafeDecimal.of(liquid[asset].quantity) * (1 + self._tolerance)
            if amount > allowed.value:
                short.append(asset)

        feasible = not short
        if not feasible:
            logger.info(
                "Redemption of %s shares exceeds liquid %s; max feasible %s",
                shares.value,
                ", ".join(a.value for a in short),
                max_shares,
            )

        return WithdrawalPlan(
            shares_requested=shares.value,
            per_asset_payout=payout,
            feasible=feasible,
            max_feasible_shares=max_shares,
            payout_usd=payout_usd.value,
        )

    @staticmethod
    def position_value(shares: Any, snapshot: VaultSnapshot) -> PositionValue:
        """USD value and supply share of a holder's vault shares."""
        held = SafeDecimal.of(shares, "position shares")
        value = held * snapshot.share_price_usd
        percent = safe_ratio(held, snapshot.total_shares) * 100
        return PositionValue(held.value, value.value, percent.value)
