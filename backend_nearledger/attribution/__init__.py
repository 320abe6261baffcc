"""
Transaction attribution: which receipts caused a balance change, and the
transfers they carried.
"""

from backend_nearledger.attribution.attributor import Attribution, TransactionAttributor
from backend_nearledger.attribution.staking import (
    PatternStakingClassifier,
    StakingAction,
    StakingPoolClassifier,
)

__all__ = [
    "Attribution",
    "PatternStakingClassifier",
    "StakingAction",
    "StakingPoolClassifier",
    "TransactionAttributor",
]
