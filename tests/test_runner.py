"""
End-to-end tests for the per-account sync pipeline against the in-memory chain.
"""

from __future__ import annotations

import json

import pytest

from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.history.models import AccountHistory
from backend_nearledger.history.store import HistoryStore
from backend_nearledger.snapshots.models import AssetFilter
from backend_nearledger.sync.runner import AccountSyncRunner, SyncStatus

from conftest import ACCOUNT, FakeChain, FakeIndexer, make_entry, snap


def _chain() -> FakeChain:
    return FakeChain(head=1_000, created_at=100).set_near(100, "50").set_near(300, "60").set_near(700, "80")


def _runner(settings, chain, receipts, token=None, indexers=()) -> AccountSyncRunner:
    return AccountSyncRunner(
        settings,
        HistoryStore(settings.data_dir),
        chain,
        chain,
        receipts,
        indexers,
        token or CancellationToken(),
    )


@pytest.mark.asyncio
async def test_first_sync_discovers_full_history(settings, receipts):
    report = await _runner(settings, _chain(), receipts).sync(ACCOUNT)

    assert report.status is SyncStatus.COMPLETED
    assert report.transactions_added == 3
    assert report.history_complete is True
    assert report.gaps_remaining == 0

    doc = json.loads((settings.data_dir / f"{ACCOUNT}.json").read_text(encoding="utf-8"))
    assert [t["block"] for t in doc["transactions"]] == [100, 300, 700]
    assert doc["metadata"]["historyComplete"] is True
    assert all(t["timestamp"] == t["block"] * 1_000_000_000 for t in doc["transactions"])


@pytest.mark.asyncio
async def test_second_sync_is_a_no_op(settings, receipts):
    chain = _chain()
    await _runner(settings, chain, receipts).sync(ACCOUNT)

    report = await _runner(settings, chain, receipts).sync(ACCOUNT)

    assert report.status is SyncStatus.COMPLETED
    assert report.transactions_added == 0
    assert report.history_complete is True


@pytest.mark.asyncio
async def test_new_change_after_sync_is_picked_up(settings, receipts):
    chain = _chain()
    await _runner(settings, chain, receipts).sync(ACCOUNT)

    chain.set_near(950, "70")
    report = await _runner(settings, chain, receipts).sync(ACCOUNT)

    assert report.transactions_added == 1
    stored = HistoryStore(settings.data_dir).load(ACCOUNT)
    assert stored.blocks() == [100, 300, 700, 950]


@pytest.mark.asyncio
async def test_indexer_hints_are_used_first(settings, receipts):
    receipts.add_near_transfer(300, "bob.near", ACCOUNT, "10", "tx300")
    indexer = FakeIndexer([300])

    report = await _runner(settings, _chain(), receipts, indexers=[indexer]).sync(ACCOUNT)

    assert report.status is SyncStatus.COMPLETED
    stored = HistoryStore(settings.data_dir).load(ACCOUNT)
    assert stored.blocks() == [100, 300, 700]
    assert stored.get_entry(300).transaction_hashes == ["tx300"]
    assert indexer.calls[0] == (None, 1_001)


@pytest.mark.asyncio
async def test_cancelled_before_start_flushes(settings, receipts):
    token = CancellationToken()
    token.cancel()

    report = await _runner(settings, _chain(), receipts, token).sync(ACCOUNT)

    assert report.status is SyncStatus.CANCELLED
    assert (settings.data_dir / f"{ACCOUNT}.json").exists()


@pytest.mark.asyncio
async def test_rate_limited_is_reported(settings, receipts):
    token = CancellationToken()
    token.rate_limited()

    report = await _runner(settings, _chain(), receipts, token).sync(ACCOUNT)

    assert report.status is SyncStatus.RATE_LIMITED


@pytest.mark.asyncio
async def test_unknown_account_fails(settings, receipts):
    chain = FakeChain(head=1_000, created_at=5_000)

    report = await _runner(settings, chain, receipts).sync(ACCOUNT)

    assert report.status is SyncStatus.FAILED
    assert "does not exist" in report.error


@pytest.mark.asyncio
async def test_run_isolates_crashing_account(settings, receipts):
    class Exploding(FakeChain):
        async def get_snapshot(self, account_id, block, asset_filter=None):
            if account_id == "broken.near":
                raise RuntimeError("boom")
            return await super().get_snapshot(account_id, block, asset_filter)

    chain = Exploding(head=1_000, created_at=100).set_near(100, "50").set_near(300, "60")

    reports = await _runner(settings, chain, receipts).run([ACCOUNT, "broken.near"])

    assert [r.account_id for r in reports] == [ACCOUNT, "broken.near"]
    assert reports[0].status is SyncStatus.COMPLETED
    assert reports[1].status is SyncStatus.FAILED
    assert reports[1].error == "boom"


def _stored_from_block_500(settings) -> None:
    HistoryStore(settings.data_dir).save(
        AccountHistory(
            account_id=ACCOUNT,
            transactions=[make_entry(500, snap(near="0"), snap(near="10"))],
        )
    )


@pytest.mark.asyncio
async def test_zero_balance_before_first_entry_is_not_proof_of_creation(settings, receipts):
    chain = FakeChain(head=1_000, created_at=0).set_near(500, "10")
    _stored_from_block_500(settings)

    report = await _runner(settings, chain, receipts).sync(ACCOUNT)

    assert report.status is SyncStatus.COMPLETED
    assert report.history_complete is False
    assert any(block < 500 for block, _ in chain.queries)
    assert HistoryStore(settings.data_dir).load(ACCOUNT).metadata.history_complete is False


@pytest.mark.asyncio
async def test_history_complete_when_account_absent_before_first_entry(settings, receipts):
    chain = FakeChain(head=1_000, created_at=500).set_near(500, "10")
    _stored_from_block_500(settings)

    report = await _runner(settings, chain, receipts).sync(ACCOUNT)

    assert report.history_complete is True
    assert report.transactions_added == 0
    assert (499, AssetFilter.only(near=True)) in chain.queries
