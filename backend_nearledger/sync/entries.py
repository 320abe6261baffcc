"""
Builds TransactionEntry records from located changes.

Combines the detector's snapshots with the attributor's transfers. Assets the
transfers touched but the search did not query (a token received for the
first time, a staking pool deposit) are fetched on both sides of the block and
folded into the snapshots before the change set is computed.
"""

from __future__ import annotations

from backend_nearledger.attribution.attributor import Attribution, TransactionAttributor
from backend_nearledger.core.exceptions import AccountNotFound
from backend_nearledger.discovery.binary_search import BalanceChangeDetector, ChangeSearchResult
from backend_nearledger.history.models import AccountHistory, TransactionEntry
from backend_nearledger.snapshots.models import AssetFilter, BalanceSnapshot, diff_snapshots


def _uncovered(assets: AssetFilter, snapshot: BalanceSnapshot) -> AssetFilter:
    return AssetFilter.only(
        near=assets.near and snapshot.near is None,
        fungible_tokens=set(assets.fungible_tokens or ()) - snapshot.fungible_tokens.keys(),
        intents_tokens=set(assets.intents_tokens or ()) - snapshot.intents_tokens.keys(),
        staking_pools=set(assets.staking_pools) - snapshot.staking_pools.keys(),
    )


def _zero_like(snapshot: BalanceSnapshot) -> BalanceSnapshot:
    """Explicit zeros for every asset in snapshot: the state before the account existed."""
    return BalanceSnapshot(
        near="0",
        fungible_tokens={k: "0" for k in snapshot.fungible_tokens},
        intents_tokens={k: "0" for k in snapshot.intents_tokens},
        staking_pools={k: "0" for k in snapshot.staking_pools},
    )


class EntryBuilder:
    def __init__(self, detector: BalanceChangeDetector, attributor: TransactionAttributor) -> None:
        self._detector = detector
        self._attributor = attributor

    @property
    def attributor(self) -> TransactionAttributor:
        return self._attributor

    def _entry(
        self,
        history: AccountHistory,
        block: int,
        before: BalanceSnapshot,
        after: BalanceSnapshot,
        attribution: Attribution,
    ) -> TransactionEntry:
        for pool in attribution.staking_pools:
            history.add_staking_pool(pool)
        return TransactionEntry(
            block=block,
            balance_before=before,
            balance_after=after,
            changes=diff_snapshots(before, after),
            transaction_block=attribution.transaction_block,
            timestamp=attribution.block_timestamp,
            transaction_hashes=attribution.transaction_hashes,
            transfers=attribution.transfers,
        )

    async def from_search_result(
        self,
        account_id: str,
        history: AccountHistory,
        result: ChangeSearchResult,
    ) -> TransactionEntry:
        """Entry for a change located by the detector."""
        if result.block is None:
            raise ValueError("search result has no block")
        block = result.block
        attribution = await self._attributor.attribute(account_id, block)
        before, after = result.start_snapshot, result.end_snapshot
        missing = _uncovered(attribution.touched_assets(), after)
        if not missing.is_empty:
            extra_before, extra_after = await self._detector.snapshot_pair(account_id, block - 1, block, missing)
            before, after = before.merge(extra_before), after.merge(extra_after)
        return self._entry(history, block, before, after, attribution)

    async def at_block(
        self,
        account_id: str,
        history: AccountHistory,
        block: int,
        scope: AssetFilter | None = None,
    ) -> TransactionEntry | None:
        """
        Entry for a hinted block: attribute first, then diff block - 1 against
        block over NEAR, the touched assets and scope. None when nothing changed;
        the creation entry when the account did not exist at block - 1.
        """
        attribution = await self._attributor.attribute(account_id, block)
        assets = attribution.touched_assets().plus(AssetFilter.only(near=True))
        if scope is not None:
            assets = assets.plus(scope)
        try:
            before, after = await self._detector.snapshot_pair(account_id, block - 1, block, assets)
        except AccountNotFound:
            return await self.creation_entry(account_id, history, block)
        if not diff_snapshots(before, after).has_changes:
            return None
        return self._entry(history, block, before, after, attribution)

    async def creation_entry(
        self,
        account_id: str,
        history: AccountHistory,
        block: int,
    ) -> TransactionEntry:
        """Entry for the block the account was created in; before is all zeros."""
        after = await self._detector.snapshot(account_id, block)
        attribution = await self._attributor.attribute(account_id, block)
        missing = _uncovered(attribution.touched_assets(), after)
        if not missing.is_empty:
            after = after.merge(await self._detector.snapshot(account_id, block, missing))
        return self._entry(history, block, _zero_like(after), after, attribution)
