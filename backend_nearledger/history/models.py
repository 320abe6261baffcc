"""
Account history models: transfers, transaction entries and the account aggregate.

Responsibilities:
- TransferDetail: one value movement (NEAR, fungible token, multi-token, staking reward).
- TransactionEntry: one balance-changing event with before/after snapshots and the diff.
- AccountHistory: entries kept sorted and unique by block, discovered staking
  pools and summary metadata. Serialized with the camelCase keys of the stored document.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Mapping

from backend_nearledger.snapshots.models import AssetFilter, BalanceSnapshot, ChangeSet


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class TransferType(str, Enum):
    NEAR = "near"
    FT = "ft"
    MT = "mt"
    STAKING_REWARD = "staking_reward"


class TransferDirection(str, Enum):
    IN = "in"
    OUT = "out"


@dataclass
class TransferDetail:
    """Single value movement attributed to a receipt or synthesized for a reward."""

    type: TransferType
    direction: TransferDirection
    amount: str
    counterparty: str | None = None
    token_id: str | None = None
    memo: str | None = None
    tx_hash: str | None = None
    receipt_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.type.value,
            "direction": self.direction.value,
            "amount": self.amount,
            "counterparty": self.counterparty,
        }
        if self.token_id is not None:
            out["tokenId"] = self.token_id
        if self.memo is not None:
            out["memo"] = self.memo
        if self.tx_hash is not None:
            out["txHash"] = self.tx_hash
        if self.receipt_id is not None:
            out["receiptId"] = self.receipt_id
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TransferDetail:
        return cls(
            type=TransferType(data["type"]),
            direction=TransferDirection(data["direction"]),
            amount=str(data.get("amount", "0")),
            counterparty=data.get("counterparty"),
            token_id=data.get("tokenId"),
            memo=data.get("memo"),
            tx_hash=data.get("txHash"),
            receipt_id=data.get("receiptId"),
        )


@dataclass
class TransactionEntry:
    """
    One recorded balance-changing event.

    block is where the diff is observed; transaction_block is where the causing
    transaction was submitted. transfers is None until attribution has run.
    Once stored, enrichment only fills in missing fields.
    """

    block: int
    balance_before: BalanceSnapshot
    balance_after: BalanceSnapshot
    changes: ChangeSet
    transaction_block: int | None = None
    timestamp: int | None = None
    transaction_hashes: list[str] = field(default_factory=list)
    transfers: list[TransferDetail] | None = None

    @property
    def is_staking_only(self) -> bool:
        """Synthetic staking reward: no transaction, only staking balances changed."""
        return (
            not self.transaction_hashes
            and bool(self.changes.staking_changed)
            and not self.changes.near_changed
            and not self.changes.tokens_changed
            and not self.changes.intents_changed
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "block": self.block,
            "transactionBlock": self.transaction_block,
            "timestamp": self.timestamp,
            "transactionHashes": list(self.transaction_hashes),
        }
        if self.transfers is not None:
            out["transfers"] = [t.to_dict() for t in self.transfers]
        out["balanceBefore"] = self.balance_before.to_dict()
        out["balanceAfter"] = self.balance_after.to_dict()
        out["changes"] = self.changes.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TransactionEntry:
        transfers = data.get("transfers")
        return cls(
            block=int(data["block"]),
            transaction_block=data.get("transactionBlock"),
            timestamp=data.get("timestamp"),
            transaction_hashes=list(data.get("transactionHashes") or []),
            transfers=[TransferDetail.from_dict(t) for t in transfers] if transfers is not None else None,
            balance_before=BalanceSnapshot.from_dict(data.get("balanceBefore")),
            balance_after=BalanceSnapshot.from_dict(data.get("balanceAfter")),
            changes=ChangeSet.from_dict(data.get("changes")),
        )


@dataclass
class HistoryMetadata:
    first_block: int | None = None
    last_block: int | None = None
    total_transactions: int = 0
    history_complete: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "firstBlock": self.first_block,
            "lastBlock": self.last_block,
            "totalTransactions": self.total_transactions,
            "historyComplete": self.history_complete,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> HistoryMetadata:
        data = data or {}
        return cls(
            first_block=data.get("firstBlock"),
            last_block=data.get("lastBlock"),
            total_transactions=int(data.get("totalTransactions") or 0),
            history_complete=bool(data.get("historyComplete", False)),
        )


@dataclass
class AccountHistory:
    """Root aggregate for one account. Entries are unique by block and kept ascending."""

    account_id: str
    created_at: str = field(default_factory=_utc_now_iso)
    updated_at: str = field(default_factory=_utc_now_iso)
    transactions: list[TransactionEntry] = field(default_factory=list)
    staking_pools: list[str] = field(default_factory=list)
    metadata: HistoryMetadata = field(default_factory=HistoryMetadata)

    def __post_init__(self) -> None:
        self.sort()

    def __iter__(self) -> Iterator[TransactionEntry]:
        return iter(self.transactions)

    def __len__(self) -> int:
        return len(self.transactions)

    def sort(self) -> None:
        """Sort ascending by block; on duplicate blocks keep the first occurrence."""
        seen: set[int] = set()
        unique: list[TransactionEntry] = []
        for entry in sorted(self.transactions, key=lambda e: e.block):
            if entry.block in seen:
                continue
            seen.add(entry.block)
            unique.append(entry)
        self.transactions = unique
        self.refresh_metadata()

    def blocks(self) -> list[int]:
        return [e.block for e in self.transactions]

    def get_entry(self, block: int) -> TransactionEntry | None:
        blocks = self.blocks()
        i = bisect.bisect_left(blocks, block)
        if i < len(blocks) and blocks[i] == block:
            return self.transactions[i]
        return None

    def has_block(self, block: int) -> bool:
        return self.get_entry(block) is not None

    def add_entry(self, entry: TransactionEntry) -> bool:
        """Insert keeping block order. Returns False when the block is already recorded."""
        if self.has_block(entry.block):
            return False
        bisect.insort(self.transactions, entry, key=lambda e: e.block)
        self.refresh_metadata()
        return True

    def connected_entries(self) -> list[TransactionEntry]:
        """Entries that take part in balance continuity (staking-only rewards excluded)."""
        return [e for e in self.transactions if not e.is_staking_only]

    def entries_between(self, start_block: int, end_block: int) -> list[TransactionEntry]:
        """Entries with start_block <= block <= end_block."""
        return [e for e in self.transactions if start_block <= e.block <= end_block]

    def add_staking_pool(self, pool: str) -> bool:
        if pool in self.staking_pools:
            return False
        self.staking_pools.append(pool)
        self.staking_pools.sort()
        return True

    def refresh_metadata(self) -> None:
        blocks = self.blocks()
        self.metadata.first_block = blocks[0] if blocks else None
        self.metadata.last_block = blocks[-1] if blocks else None
        self.metadata.total_transactions = len(blocks)

    def touch(self) -> None:
        self.updated_at = _utc_now_iso()

    def known_assets(self, default_tokens: tuple[str, ...] = ()) -> AssetFilter:
        """
        Every asset ever seen anywhere in the history: balances, changes and
        transfers, plus discovered staking pools and the given default tokens.
        """
        fungible: set[str] = set(default_tokens)
        intents: set[str] = set()
        pools: set[str] = set(self.staking_pools)
        for entry in self.transactions:
            for snap in (entry.balance_before, entry.balance_after):
                fungible.update(snap.fungible_tokens.keys())
                intents.update(snap.intents_tokens.keys())
                pools.update(snap.staking_pools.keys())
            fungible.update(entry.changes.tokens_changed.keys())
            intents.update(entry.changes.intents_changed.keys())
            pools.update(entry.changes.staking_changed.keys())
            for transfer in entry.transfers or []:
                if transfer.token_id is None:
                    continue
                if transfer.type is TransferType.FT:
                    fungible.add(transfer.token_id)
                elif transfer.type is TransferType.MT:
                    intents.add(transfer.token_id)
        return AssetFilter.only(
            near=True,
            fungible_tokens=fungible,
            intents_tokens=intents,
            staking_pools=pools,
        )

    def to_dict(self) -> dict[str, Any]:
        self.refresh_metadata()
        return {
            "accountId": self.account_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "transactions": [e.to_dict() for e in self.transactions],
            "stakingPools": list(self.staking_pools),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AccountHistory:
        return cls(
            account_id=str(data["accountId"]),
            created_at=data.get("createdAt") or _utc_now_iso(),
            updated_at=data.get("updatedAt") or _utc_now_iso(),
            transactions=[TransactionEntry.from_dict(t) for t in data.get("transactions") or []],
            staking_pools=list(data.get("stakingPools") or []),
            metadata=HistoryMetadata.from_dict(data.get("metadata")),
        )
