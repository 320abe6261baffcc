"""
Balance snapshot model: sparse multi-asset snapshots, asset filters and diffs.
"""

from backend_nearledger.snapshots.models import (
    AssetChange,
    AssetFilter,
    BalanceSnapshot,
    ChangeSet,
    diff_snapshots,
)

__all__ = [
    "AssetChange",
    "AssetFilter",
    "BalanceSnapshot",
    "ChangeSet",
    "diff_snapshots",
]
