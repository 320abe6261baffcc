"""
Staking reward discovery at epoch boundaries.
"""

from backend_nearledger.staking.scanner import StakingEpochScanner

__all__ = ["StakingEpochScanner"]
