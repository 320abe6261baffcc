"""
Abstract collaborators consumed by discovery and sync: snapshot, receipt,
indexer and chain-head sources.
"""

from backend_nearledger.sources.base import (
    BlockReceipts,
    ChainHead,
    IndexerSource,
    Receipt,
    ReceiptSource,
    SnapshotSource,
    TransactionInfo,
)

__all__ = [
    "BlockReceipts",
    "ChainHead",
    "IndexerSource",
    "Receipt",
    "ReceiptSource",
    "SnapshotSource",
    "TransactionInfo",
]
