"""Reconciliation services."""
from .aggregator import PositionAggregator
from .engine import Engine, EngineState, PublishedState, VaultReader
from .withdrawal import WithdrawalPlanner
from .yield_reconciler import YieldReconciler, apr_to_apy, combine_strategy_yields

__all__ = [
    "Engine",
    "EngineState",
    "PositionAggregator",
    "PublishedState",
    "VaultReader",
    "WithdrawalPlanner",
    "YieldReconciler",
    "apr_to_apy",
    "combine_strategy_yields",
]
