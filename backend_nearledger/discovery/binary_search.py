"""
Balance-change detector.

Given snapshots at two block bounds, narrows the range to the single block
where the (filtered) balances changed. Each bisection level derives its asset
filter from the diff of the range it is currently looking at; the caller's
filter is never replaced by a narrowed one beyond the current level. The upper
half is searched first, so the result is the latest change in the range.
At the located block both neighbouring snapshots are fetched again with the
caller's filter, so the reported change set covers every asset that changed
there, not only the ones the bisection followed.
"""

from __future__ import annotations

from dataclasses import dataclass

from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.ledger_logging import get_logger
from backend_nearledger.snapshots.models import (
    AssetFilter,
    BalanceSnapshot,
    ChangeSet,
    diff_snapshots,
)
from backend_nearledger.sources.base import SnapshotSource

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChangeSearchResult:
    """
    Outcome of find_change.

    has_changes=False: no filtered asset differs between the bounds.
    has_changes=True: block is where the change is observed; start_snapshot is
    the state at block - 1 and end_snapshot the state at block.
    """

    has_changes: bool
    start_snapshot: BalanceSnapshot
    end_snapshot: BalanceSnapshot
    changes: ChangeSet
    block: int | None = None


def _missing_assets(have: BalanceSnapshot, other: BalanceSnapshot) -> AssetFilter:
    return AssetFilter.only(
        near=have.near is None and other.near is not None,
        fungible_tokens=other.fungible_tokens.keys() - have.fungible_tokens.keys(),
        intents_tokens=other.intents_tokens.keys() - have.intents_tokens.keys(),
        staking_pools=other.staking_pools.keys() - have.staking_pools.keys(),
    )


class BalanceChangeDetector:
    """Binary search over block ranges against a SnapshotSource."""

    def __init__(self, source: SnapshotSource, token: CancellationToken) -> None:
        self._source = source
        self._token = token

    async def snapshot(
        self,
        account_id: str,
        block: int,
        asset_filter: AssetFilter | None = None,
    ) -> BalanceSnapshot:
        self._token.raise_if_cancelled()
        return await self._source.get_snapshot(account_id, block, asset_filter)

    async def snapshot_pair(
        self,
        account_id: str,
        low: int,
        high: int,
        asset_filter: AssetFilter | None = None,
    ) -> tuple[BalanceSnapshot, BalanceSnapshot]:
        """
        Snapshots at low and high covering the same assets.

        With discovery (intents tokens found at query time) the two sides can
        name different tokens; each side is topped up with the other's extra
        keys so a token acquired inside the range shows up as a change.
        """
        start = await self.snapshot(account_id, low, asset_filter)
        end = await self.snapshot(account_id, high, asset_filter)
        missing_start = _missing_assets(start, end)
        if not missing_start.is_empty:
            start = start.merge(await self.snapshot(account_id, low, missing_start))
        missing_end = _missing_assets(end, start)
        if not missing_end.is_empty:
            end = end.merge(await self.snapshot(account_id, high, missing_end))
        return start, end

    async def find_change(
        self,
        account_id: str,
        low: int,
        high: int,
        asset_filter: AssetFilter | None = None,
    ) -> ChangeSearchResult:
        """Latest block in (low, high] where a filtered asset changed."""
        if low > high:
            raise ValueError(f"invalid range {low}-{high}")
        start, end = await self.snapshot_pair(account_id, low, high, asset_filter)
        changes = diff_snapshots(start, end)
        if not changes.has_changes or low == high:
            return ChangeSearchResult(has_changes=False, start_snapshot=start, end_snapshot=end, changes=changes)
        if high - low == 1:
            return ChangeSearchResult(True, start, end, changes, block=high)

        lo, hi = low, high
        lo_snap, hi_snap, current = start, end, changes
        while hi - lo > 1:
            self._token.raise_if_cancelled()
            level_filter = current.changed_filter()
            mid = hi - (hi - lo) // 2
            mid_snap = await self.snapshot(account_id, mid, level_filter)
            upper = diff_snapshots(mid_snap, hi_snap.restrict(level_filter))
            if upper.has_changes:
                lo, lo_snap, current = mid, mid_snap, upper
                continue
            lower = diff_snapshots(lo_snap.restrict(level_filter), mid_snap)
            if not lower.has_changes:
                # Filtered assets agree at mid with both bounds: the source answered inconsistently.
                logger.warning(
                    "balance_search_inconsistent",
                    account_id=account_id,
                    low=lo,
                    mid=mid,
                    high=hi,
                    assets=level_filter.to_dict(),
                )
                return ChangeSearchResult(
                    has_changes=False, start_snapshot=start, end_snapshot=end, changes=ChangeSet()
                )
            hi, hi_snap, current = mid, mid_snap, lower

        before, after = await self.snapshot_pair(account_id, hi - 1, hi, asset_filter)
        leaf_changes = diff_snapshots(before, after)
        if not leaf_changes.has_changes:
            narrowed = current.changed_filter()
            before, after, leaf_changes = lo_snap.restrict(narrowed), hi_snap.restrict(narrowed), current
        logger.debug(
            "balance_change_located",
            account_id=account_id,
            block=hi,
            low=low,
            high=high,
        )
        return ChangeSearchResult(True, before, after, leaf_changes, block=hi)

    async def find_all_changes(
        self,
        account_id: str,
        low: int,
        high: int,
        asset_filter: AssetFilter | None = None,
        limit: int | None = None,
    ) -> list[ChangeSearchResult]:
        """
        Every change in (low, high], latest first: find the latest, then search
        [low, found - 1] again with the caller's filter, until nothing is left.
        """
        found: list[ChangeSearchResult] = []
        current_high = high
        while current_high > low and (limit is None or len(found) < limit):
            result = await self.find_change(account_id, low, current_high, asset_filter)
            if not result.has_changes or result.block is None:
                break
            found.append(result)
            current_high = result.block - 1
        return found
