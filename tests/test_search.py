"""
Tests for range search beyond the recorded history: backward to account
creation and forward to the chain head.
"""

from __future__ import annotations

import pytest

from backend_nearledger.attribution.attributor import TransactionAttributor
from backend_nearledger.discovery.binary_search import BalanceChangeDetector
from backend_nearledger.gaps.detector import detect_gaps
from backend_nearledger.history.models import AccountHistory
from backend_nearledger.sync.entries import EntryBuilder
from backend_nearledger.sync.search import RangeSearcher

from conftest import ACCOUNT, FakeChain, make_entry, snap


def _chain() -> FakeChain:
    return FakeChain(created_at=100).set_near(100, "50").set_near(300, "60").set_near(700, "80").set_near(900, "95")


def _searcher(chain, receipts, token) -> RangeSearcher:
    detector = BalanceChangeDetector(chain, token)
    return RangeSearcher(detector, EntryBuilder(detector, TransactionAttributor(receipts, token)), token)


@pytest.mark.asyncio
async def test_backward_search_reaches_creation(receipts, token):
    history = AccountHistory(account_id=ACCOUNT)

    found = await _searcher(_chain(), receipts, token).search_backward(
        ACCOUNT, history, high=800, max_entries=10, initial_window=400
    )

    assert found == 3
    assert history.blocks() == [100, 300, 700]
    assert history.metadata.history_complete is True
    creation = history.get_entry(100)
    assert creation.balance_before.near == "0"
    assert creation.balance_after.near == "50"
    assert detect_gaps(history.transactions).is_complete is True


@pytest.mark.asyncio
async def test_backward_search_respects_budget(receipts, token):
    history = AccountHistory(account_id=ACCOUNT)

    found = await _searcher(_chain(), receipts, token).search_backward(
        ACCOUNT, history, high=800, max_entries=1, initial_window=400
    )

    assert found == 1
    assert history.blocks() == [700]
    assert history.metadata.history_complete is False


@pytest.mark.asyncio
async def test_creation_block_is_located_exactly(receipts, token):
    chain = FakeChain(created_at=437).set_near(437, "5")
    history = AccountHistory(account_id=ACCOUNT)

    await _searcher(chain, receipts, token).search_backward(ACCOUNT, history, high=1000, max_entries=5)

    assert history.blocks() == [437]
    assert history.metadata.history_complete is True


@pytest.mark.asyncio
async def test_forward_search_walks_to_head(receipts, token):
    history = AccountHistory(
        account_id=ACCOUNT,
        transactions=[make_entry(300, snap(near="50"), snap(near="60"))],
    )

    found = await _searcher(_chain(), receipts, token).search_forward(
        ACCOUNT, history, low=300, high=1000, max_entries=10, initial_window=100
    )

    assert found == 2
    assert history.blocks() == [300, 700, 900]
    assert history.get_entry(900).balance_before.near == "80"


@pytest.mark.asyncio
async def test_search_range_is_latest_first_and_bounded(receipts, token):
    history = AccountHistory(account_id=ACCOUNT)

    found = await _searcher(_chain(), receipts, token).search_range(ACCOUNT, history, 100, 1000, max_entries=2)

    assert found == 2
    assert history.blocks() == [700, 900]
