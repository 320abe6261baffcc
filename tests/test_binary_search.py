"""
Tests for the balance change detector: exact block location, backward
completeness across different assets and intents token discovery.
"""

from __future__ import annotations

import pytest

from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.core.exceptions import Cancelled, RateLimited
from backend_nearledger.discovery.binary_search import BalanceChangeDetector
from backend_nearledger.snapshots.models import AssetFilter

from conftest import ACCOUNT, FakeChain


@pytest.mark.asyncio
async def test_locates_single_change(token):
    chain = FakeChain().set_near(0, "100").set_near(437, "60")
    detector = BalanceChangeDetector(chain, token)

    result = await detector.find_change(ACCOUNT, 0, 1000)

    assert result.has_changes is True
    assert result.block == 437
    assert result.start_snapshot.near == "100"
    assert result.end_snapshot.near == "60"
    assert result.changes.near_diff == "-40"


@pytest.mark.asyncio
async def test_no_change_in_range(token):
    chain = FakeChain().set_near(0, "100").set_near(900, "60")
    detector = BalanceChangeDetector(chain, token)

    result = await detector.find_change(ACCOUNT, 0, 800)

    assert result.has_changes is False
    assert result.block is None


@pytest.mark.asyncio
async def test_adjacent_blocks_attribute_change_to_high(token):
    chain = FakeChain().set_near(0, "1").set_near(11, "2")
    result = await BalanceChangeDetector(chain, token).find_change(ACCOUNT, 10, 11)
    assert result.block == 11


@pytest.mark.asyncio
async def test_invalid_range_rejected(token):
    with pytest.raises(ValueError):
        await BalanceChangeDetector(FakeChain(), token).find_change(ACCOUNT, 10, 5)


@pytest.mark.asyncio
async def test_backward_search_finds_three_changes_on_mixed_assets(token):
    """B2 moves a token while B1 and B3 move NEAR; all three must be found."""
    chain = (
        FakeChain(default_tokens=("usdc.near",))
        .set_near(0, "10")
        .set_near(150, "15")
        .set_token("usdc.near", 400, "3")
        .set_near(700, "20")
    )
    detector = BalanceChangeDetector(chain, token)

    results = await detector.find_all_changes(ACCOUNT, 0, 1000)

    assert [r.block for r in results] == [700, 400, 150]
    assert results[0].changes.near_changed is True
    assert dict(results[0].changes.tokens_changed) == {}
    assert results[1].changes.tokens_changed["usdc.near"].diff == "3"
    assert results[2].changes.near_diff == "5"


@pytest.mark.asyncio
async def test_change_on_other_asset_in_lower_half_is_not_lost(token):
    """
    Both assets change; the token's change sits below mid. The leaf reports the
    latest change and the next search still finds the token.
    """
    chain = (
        FakeChain(default_tokens=("usdc.near",))
        .set_near(0, "10")
        .set_token("usdc.near", 120, "7")
        .set_near(880, "11")
    )
    detector = BalanceChangeDetector(chain, token)

    results = await detector.find_all_changes(ACCOUNT, 0, 1000)

    assert [r.block for r in results] == [880, 120]


@pytest.mark.asyncio
async def test_same_block_changes_are_reported_together(token):
    chain = (
        FakeChain(default_tokens=("usdc.near",))
        .set_near(0, "10")
        .set_near(333, "9")
        .set_token("usdc.near", 333, "4")
    )
    results = await BalanceChangeDetector(chain, token).find_all_changes(ACCOUNT, 0, 1000)
    assert len(results) == 1
    assert results[0].block == 333
    assert results[0].changes.near_changed is True
    assert "usdc.near" in results[0].changes.tokens_changed


@pytest.mark.asyncio
async def test_leaf_snapshots_use_caller_filter(token):
    """The located change carries every asset the caller asked for, not just the narrowed one."""
    chain = (
        FakeChain(default_tokens=("usdc.near",))
        .set_near(0, "10")
        .set_token("usdc.near", 0, "5")
        .set_near(500, "12")
    )
    result = await BalanceChangeDetector(chain, token).find_change(ACCOUNT, 0, 1000)
    assert result.block == 500
    assert dict(result.start_snapshot.fungible_tokens) == {"usdc.near": "5"}
    assert dict(result.end_snapshot.fungible_tokens) == {"usdc.near": "5"}


@pytest.mark.asyncio
async def test_scoped_search_ignores_other_assets(token):
    chain = (
        FakeChain(default_tokens=("usdc.near",))
        .set_near(0, "10")
        .set_near(800, "11")
        .set_token("usdc.near", 300, "2")
    )
    result = await BalanceChangeDetector(chain, token).find_change(
        ACCOUNT, 0, 1000, AssetFilter.only(fungible_tokens=["usdc.near"])
    )
    assert result.block == 300
    assert result.start_snapshot.near is None


@pytest.mark.asyncio
async def test_intents_token_acquired_inside_range_is_found(token):
    """Discovery only sees the token at the end; the start side is topped up with an explicit zero."""
    chain = FakeChain().set_near(0, "10").set_intents("nep141:eth", 612, "7")

    result = await BalanceChangeDetector(chain, token).find_change(ACCOUNT, 0, 1000)

    assert result.block == 612
    assert result.changes.intents_changed["nep141:eth"].diff == "7"


@pytest.mark.asyncio
async def test_cancelled_token_stops_search():
    token = CancellationToken()
    token.cancel()
    with pytest.raises(Cancelled):
        await BalanceChangeDetector(FakeChain(), token).find_change(ACCOUNT, 0, 1000)


@pytest.mark.asyncio
async def test_rate_limited_token_raises_rate_limited():
    token = CancellationToken()
    token.rate_limited()
    with pytest.raises(RateLimited):
        await BalanceChangeDetector(FakeChain(), token).snapshot(ACCOUNT, 1)
