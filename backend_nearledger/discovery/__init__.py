"""
Balance-change discovery: binary search for the block where balances changed.
"""

from backend_nearledger.discovery.binary_search import BalanceChangeDetector, ChangeSearchResult

__all__ = ["BalanceChangeDetector", "ChangeSearchResult"]
