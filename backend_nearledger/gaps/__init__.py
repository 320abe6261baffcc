"""
Gap detection: continuity checks between recorded snapshots and the audit report.
"""

from backend_nearledger.gaps.detector import (
    BalanceMismatch,
    ConnectivityCheck,
    Gap,
    GapAnalysis,
    GapKind,
    MismatchType,
    compare_balances,
    connected_pairs,
    detect_gaps,
    get_gap_changed_assets,
    is_staking_only_entry,
    is_zero_balance,
    verify_connectivity,
)

__all__ = [
    "BalanceMismatch",
    "ConnectivityCheck",
    "Gap",
    "GapAnalysis",
    "GapKind",
    "MismatchType",
    "compare_balances",
    "connected_pairs",
    "detect_gaps",
    "get_gap_changed_assets",
    "is_staking_only_entry",
    "is_zero_balance",
    "verify_connectivity",
]
