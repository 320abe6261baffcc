"""
History state: per-account transaction entries and their persisted JSON document.
"""

from backend_nearledger.history.models import (
    AccountHistory,
    HistoryMetadata,
    TransactionEntry,
    TransferDetail,
    TransferDirection,
    TransferType,
)
from backend_nearledger.history.store import HistoryStore, HistoryWriter, load_history_file

__all__ = [
    "AccountHistory",
    "HistoryMetadata",
    "HistoryStore",
    "HistoryWriter",
    "TransactionEntry",
    "TransferDetail",
    "TransferDirection",
    "TransferType",
    "load_history_file",
]
