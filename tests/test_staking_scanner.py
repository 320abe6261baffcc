"""
Tests for the staking epoch scanner: active ranges, reward entries and
enrichment of principal movements at epoch boundaries.
"""

from __future__ import annotations

import pytest

from backend_nearledger.history.models import AccountHistory, TransferDirection, TransferType
from backend_nearledger.staking.scanner import StakingEpochScanner, epoch_boundaries

from conftest import ACCOUNT, FakeChain, make_entry, near_transfer, snap

POOL = "astro.poolv1.near"


def _history() -> AccountHistory:
    return AccountHistory(
        account_id=ACCOUNT,
        transactions=[
            make_entry(
                150,
                snap(near="5000"),
                snap(near="4000"),
                transfers=[near_transfer("out", "1000", POOL, "deposit_and_stake")],
            ),
            make_entry(
                450,
                snap(near="4000"),
                snap(near="5030"),
                transfers=[near_transfer("in", "1030", POOL)],
            ),
        ],
    )


def _chain(final_balance: str) -> FakeChain:
    return (
        FakeChain()
        .set_pool(POOL, 150, "1000")
        .set_pool(POOL, 200, "1010")
        .set_pool(POOL, 300, "1020")
        .set_pool(POOL, 400, "1030")
        .set_pool(POOL, 450, final_balance)
    )


def test_epoch_boundaries():
    assert epoch_boundaries(150, 450, 100) == [200, 300, 400, 450]
    assert epoch_boundaries(100, 300, 100) == [100, 200, 300]
    assert epoch_boundaries(10, 50, 100) == []


@pytest.mark.asyncio
async def test_full_exit_scans_only_up_to_withdrawal(token):
    chain = _chain("0")
    history = _history()
    scanner = StakingEpochScanner(chain, chain, token, epoch_length=100)

    added = await scanner.scan(ACCOUNT, history, now_block=1000)

    assert added == 3
    rewards = [e for e in history.transactions if e.is_staking_only]
    assert [e.block for e in rewards] == [200, 300, 400]
    first = rewards[0]
    assert first.balance_after.staking_pools[POOL] == "1010"
    assert first.changes.staking_changed[POOL].diff == "10"
    assert first.transfers[0].type is TransferType.STAKING_REWARD
    assert first.transfers[0].direction is TransferDirection.IN
    assert first.transfers[0].amount == "10"

    withdrawal = history.get_entry(450)
    assert withdrawal.balance_before.staking_pools[POOL] == "1030"
    assert withdrawal.balance_after.staking_pools[POOL] == "0"
    assert max(chain.pool_queries) == 460
    assert history.staking_pools == [POOL]


@pytest.mark.asyncio
async def test_partial_withdrawal_scans_to_head(token):
    chain = _chain("500")
    scanner = StakingEpochScanner(chain, chain, token, epoch_length=100)

    await scanner.scan(ACCOUNT, _history(), now_block=1000)

    assert max(chain.pool_queries) == 1000


@pytest.mark.asyncio
async def test_rescan_adds_nothing(token):
    chain = _chain("0")
    history = _history()
    scanner = StakingEpochScanner(chain, chain, token, epoch_length=100)

    await scanner.scan(ACCOUNT, history, now_block=1000)
    again = await scanner.scan(ACCOUNT, history, now_block=1000)

    assert again == 0
    assert len(history.transactions) == 5


@pytest.mark.asyncio
async def test_no_pools_no_queries(token):
    chain = FakeChain()
    history = AccountHistory(
        account_id=ACCOUNT,
        transactions=[make_entry(150, snap(near="5"), snap(near="4"), transfers=[near_transfer("out", "1", "bob.near")])],
    )
    added = await StakingEpochScanner(chain, chain, token, epoch_length=100).scan(ACCOUNT, history)
    assert added == 0
    assert chain.queries == []
