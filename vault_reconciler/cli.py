"""Command-line interface for the vault reconciliation engine."""
from __future__ import annotations

import argparse
import asyncio
import sys
from decimal import Decimal, InvalidOperation

from .config import load_config
from .logging_setup import configure_logging
from .models import Asset, WithdrawalPlan
from .services import Engine


def _shares(value: str) -> Decimal:
    try:
        shares = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    if not shares.is_finite() or shares < 0:
        raise argparse.ArgumentTypeError(f"shares must be a non-negative number: {value!r}")
    return shares


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="vault-reconciler",
        description="Vault position and yield reconciliation engine",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("refresh", help="Run one refresh cycle and print the summary")
    sub.add_parser("report", help="Run one refresh cycle and send the report")

    run_parser = sub.add_parser("run", help="Continuous refresh loop")
    run_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Refresh interval in seconds (overrides config)",
    )

    plan_parser = sub.add_parser("plan", help="Plan a redemption of SHARES vault shares")
    plan_parser.add_argument("shares", type=_shares, help="Vault shares to redeem")

    return parser


def format_plan(plan: WithdrawalPlan) -> str:
    lines = [f"Redeem {plan.shares_requested} shares (≈ ${float(plan.payout_usd):,.2f})"]
    for asset in Asset.ordered():
        amount = plan.per_asset_payout.get(asset)
        if amount is not None and amount.quantity:
            lines.append(f"  {asset.value}: {amount.quantity}")
    if plan.feasible:
        lines.append("Feasible from vault liquidity")
    else:
        lines.append(f"Not feasible; max redeemable now: {plan.max_feasible_shares} shares")
    return "\n".join(lines)


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command. Returns the process exit code."""
    configure_logging(args.log_level)
    config = load_config(args.config)
    engine = Engine(config)

    if args.command == "run":
        await engine.run_continuous(args.interval)
        return 0

    published = await engine.refresh()

    if args.command == "refresh":
        print(engine.format_summary())
    elif args.command == "report":
        await engine.send_report()
    elif args.command == "plan":
        if engine.reader.get_snapshot() is None:
            print(engine.format_summary())
            return 1
        print(format_plan(engine.reader.plan_withdrawal(args.shares)))
    else:
        build_parser().print_help()
        return 1

    return 0 if published else 1


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))
