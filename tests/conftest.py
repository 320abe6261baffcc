"""
Pytest fixtures for NearLedger tests: an in-memory chain (balances as step
functions of block height), a receipt source and indexers, so every algorithm
runs without a network.
"""

from __future__ import annotations

from collections import defaultdict

import pytest

from backend_nearledger.config.settings import Settings
from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.core.exceptions import AccountNotFound
from backend_nearledger.history.models import (
    TransactionEntry,
    TransferDetail,
    TransferDirection,
    TransferType,
)
from backend_nearledger.snapshots.models import AssetFilter, BalanceSnapshot, diff_snapshots
from backend_nearledger.sources.base import (
    BlockReceipts,
    ChainHead,
    IndexerSource,
    Receipt,
    ReceiptSource,
    SnapshotSource,
    TransactionInfo,
)

ACCOUNT = "alice.near"


class FakeChain(SnapshotSource, ChainHead):
    """
    Balances per asset as sorted (block, value) steps; the value at a block is
    the last step at or below it, "0" before the first. The account does not
    exist below created_at.
    """

    def __init__(self, head: int = 1_000, created_at: int = 0, default_tokens: tuple[str, ...] = ()) -> None:
        self.head = head
        self.created_at = created_at
        self.default_tokens = default_tokens
        self._near: list[tuple[int, str]] = []
        self._tokens: dict[str, list[tuple[int, str]]] = defaultdict(list)
        self._intents: dict[str, list[tuple[int, str]]] = defaultdict(list)
        self._pools: dict[str, list[tuple[int, str]]] = defaultdict(list)
        self.queries: list[tuple[int, AssetFilter | None]] = []
        self.pool_queries: list[int] = []

    @staticmethod
    def _set(series: list[tuple[int, str]], block: int, value: str) -> None:
        series.append((block, value))
        series.sort()

    def set_near(self, block: int, value: str) -> FakeChain:
        self._set(self._near, block, value)
        return self

    def set_token(self, token: str, block: int, value: str) -> FakeChain:
        self._set(self._tokens[token], block, value)
        return self

    def set_intents(self, token: str, block: int, value: str) -> FakeChain:
        self._set(self._intents[token], block, value)
        return self

    def set_pool(self, pool: str, block: int, value: str) -> FakeChain:
        self._set(self._pools[pool], block, value)
        return self

    @staticmethod
    def _value(series: list[tuple[int, str]], block: int) -> str:
        value = "0"
        for step, v in series:
            if step > block:
                break
            value = v
        return value

    async def get_snapshot(self, account_id, block, asset_filter=None):
        self.queries.append((block, asset_filter))
        if block < self.created_at:
            raise AccountNotFound(account_id, block)
        assets = asset_filter or AssetFilter()
        tokens = assets.fungible_tokens if assets.fungible_tokens is not None else self.default_tokens
        if assets.intents_tokens is None:
            intents = [t for t, s in self._intents.items() if int(self._value(s, block)) != 0]
        else:
            intents = list(assets.intents_tokens)
        if assets.staking_pools:
            self.pool_queries.append(block)
        return BalanceSnapshot(
            near=self._value(self._near, block) if assets.near else None,
            fungible_tokens={t: self._value(self._tokens.get(t, []), block) for t in tokens},
            intents_tokens={t: self._value(self._intents.get(t, []), block) for t in intents},
            staking_pools={p: self._value(self._pools.get(p, []), block) for p in assets.staking_pools},
        )

    async def get_current_block_height(self):
        return self.head


class FakeReceipts(ReceiptSource):
    """Receipts per block; unknown blocks exist but hold no receipts. Timestamp is block * 1e9."""

    def __init__(self) -> None:
        self.blocks: dict[int, list[Receipt]] = {}
        self.transactions: dict[str, TransactionInfo] = {}
        self.fetched: list[int] = []

    def add_receipt(self, block: int, receipt: Receipt) -> None:
        self.blocks.setdefault(block, []).append(receipt)

    def add_near_transfer(
        self,
        block: int,
        sender: str,
        receiver: str,
        amount: str,
        tx_hash: str,
        method: str | None = None,
        submitted_at: int | None = None,
    ) -> None:
        action = {"FunctionCall": {"method_name": method, "deposit": amount}} if method else {"Transfer": {"deposit": amount}}
        self.add_receipt(
            block,
            Receipt(
                receipt_id=f"r-{tx_hash}-{block}",
                predecessor_id=sender,
                receiver_id=receiver,
                tx_hash=tx_hash,
                signer_id=sender,
                actions=(action,),
            ),
        )
        self.transactions[tx_hash] = TransactionInfo(
            hash=tx_hash, signer_id=sender, receiver_id=receiver, block_height=submitted_at or block
        )

    async def get_block_receipts(self, block):
        self.fetched.append(block)
        return BlockReceipts(
            block_height=block,
            timestamp=block * 1_000_000_000,
            receipts=tuple(self.blocks.get(block, [])),
        )

    async def get_transaction(self, tx_hash, signer_id):
        return self.transactions.get(tx_hash)


class FakeIndexer(IndexerSource):
    def __init__(self, blocks=(), name: str = "fake", error: Exception | None = None) -> None:
        self.name = name
        self._blocks = sorted(blocks)
        self._error = error
        self.calls: list[tuple[int | None, int | None]] = []

    async def list_transaction_blocks(self, account_id, after_block=None, before_block=None):
        self.calls.append((after_block, before_block))
        if self._error is not None:
            raise self._error
        return list(self._blocks)


def snap(near: str | None = None, tokens=None, intents=None, pools=None) -> BalanceSnapshot:
    return BalanceSnapshot(
        near=near,
        fungible_tokens=tokens or {},
        intents_tokens=intents or {},
        staking_pools=pools or {},
    )


def make_entry(
    block: int,
    before: BalanceSnapshot,
    after: BalanceSnapshot,
    tx_hashes: list[str] | None = None,
    transfers: list[TransferDetail] | None = None,
) -> TransactionEntry:
    return TransactionEntry(
        block=block,
        balance_before=before,
        balance_after=after,
        changes=diff_snapshots(before, after),
        transaction_hashes=tx_hashes if tx_hashes is not None else [f"tx{block}"],
        transfers=transfers if transfers is not None else [],
    )


def near_transfer(direction: str, amount: str, counterparty: str, memo: str | None = None) -> TransferDetail:
    return TransferDetail(
        type=TransferType.NEAR,
        direction=TransferDirection(direction),
        amount=amount,
        counterparty=counterparty,
        memo=memo,
    )


@pytest.fixture
def token():
    return CancellationToken()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def receipts():
    return FakeReceipts()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        rpc_delay_sec=0.0,
        data_dir=tmp_path / "accounts",
        default_fungible_tokens=(),
        epoch_length=100,
    )
