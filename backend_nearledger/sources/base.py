"""
Abstract interfaces for the remote collaborators.

Node adapters (near_rpc) and indexer clients (indexers) implement these; tests
substitute in-memory fakes. All methods are coroutines because every call is a
suspension point that may be throttled or cancelled.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from backend_nearledger.snapshots.models import AssetFilter, BalanceSnapshot


@dataclass(frozen=True)
class Receipt:
    """Executed receipt with the fields attribution needs."""

    receipt_id: str
    predecessor_id: str
    receiver_id: str
    tx_hash: str | None = None
    signer_id: str | None = None
    actions: tuple[dict[str, Any], ...] = ()
    logs: tuple[str, ...] = ()


@dataclass(frozen=True)
class BlockReceipts:
    block_height: int
    timestamp: int | None = None
    receipts: tuple[Receipt, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class TransactionInfo:
    """Originating transaction; block_height is where it was submitted, when resolvable."""

    hash: str
    signer_id: str
    receiver_id: str
    block_height: int | None = None


class SnapshotSource(ABC):
    @abstractmethod
    async def get_snapshot(
        self,
        account_id: str,
        block: int,
        asset_filter: AssetFilter | None = None,
    ) -> BalanceSnapshot:
        """
        Balances of account_id at block for the assets in asset_filter
        (None: NEAR, default tokens and discovered intents tokens).
        Raises AccountNotFound when the account did not exist at block.
        """
        ...


class ReceiptSource(ABC):
    @abstractmethod
    async def get_block_receipts(self, block: int) -> BlockReceipts | None:
        """Receipts executed in block, or None when the block was skipped / not served."""
        ...

    @abstractmethod
    async def get_transaction(self, tx_hash: str, signer_id: str) -> TransactionInfo | None:
        """Originating transaction by hash and signer."""
        ...


class IndexerSource(ABC):
    """External transaction index used only for block hints."""

    name: str = "indexer"

    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def list_transaction_blocks(
        self,
        account_id: str,
        after_block: int | None = None,
        before_block: int | None = None,
    ) -> list[int]:
        """Sorted block heights with transactions for account_id in the given bounds."""
        ...


class ChainHead(ABC):
    @abstractmethod
    async def get_current_block_height(self) -> int:
        ...
