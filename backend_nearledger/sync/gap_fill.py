"""
Gap-fill orchestrator.

For one gap between two recorded entries, in order, stopping as soon as the
gap closes or the budget (maximum entries added) is spent:

1. Indexer hints strictly inside the gap: attribute each hinted block and add
   an entry when the balances actually changed there.
2. Binary search over whatever is still open, scoped to the assets the gap's
   verification flagged, walking backward from the end of the gap.
3. Reconciliation: re-query both boundaries with NEAR and every token ever
   seen in the history. Staking pools are left out; their rewards move the
   balance every epoch without a transaction. Agreement means the gap came
   from narrow historical queries; the boundary snapshots are corrected in
   place and no entry is added. Disagreement leaves the gap open and is
   logged as ReconciliationFailed.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence

from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.core.exceptions import ReconciliationFailed
from backend_nearledger.discovery.binary_search import BalanceChangeDetector
from backend_nearledger.gaps.detector import (
    Gap,
    compare_balances,
    detect_gaps,
    get_gap_changed_assets,
)
from backend_nearledger.history.models import AccountHistory, TransactionEntry
from backend_nearledger.history.store import HistoryWriter
from backend_nearledger.ledger_logging import get_logger
from backend_nearledger.snapshots.models import AssetFilter
from backend_nearledger.sources.base import IndexerSource
from backend_nearledger.sync.entries import EntryBuilder
from backend_nearledger.sync.hints import collect_candidate_blocks

logger = get_logger(__name__)


def open_gaps(history: AccountHistory, start_block: int, end_block: int) -> list[Gap]:
    """Internal gaps among the entries recorded in [start_block, end_block]."""
    return detect_gaps(history.entries_between(start_block, end_block)).internal_gaps


class GapFillOrchestrator:
    def __init__(
        self,
        detector: BalanceChangeDetector,
        builder: EntryBuilder,
        token: CancellationToken,
        indexers: Sequence[IndexerSource] = (),
        default_tokens: tuple[str, ...] = (),
    ) -> None:
        self._detector = detector
        self._builder = builder
        self._token = token
        self._indexers = list(indexers)
        self._default_tokens = default_tokens

    def _add(
        self,
        account_id: str,
        history: AccountHistory,
        entry: TransactionEntry,
        writer: HistoryWriter | None,
        source: str,
    ) -> bool:
        if not history.add_entry(entry):
            return False
        logger.info(
            "transaction_added",
            account_id=account_id,
            block=entry.block,
            source=source,
            transfers=len(entry.transfers or []),
        )
        if writer is not None:
            writer.record_addition()
        return True

    async def add_hinted_blocks(
        self,
        account_id: str,
        history: AccountHistory,
        blocks: Sequence[int],
        budget: int,
        scope: AssetFilter | None = None,
        writer: HistoryWriter | None = None,
        stop_when_closed: tuple[int, int] | None = None,
    ) -> int:
        """Add an entry for each hinted block whose balances changed. Returns entries added."""
        added = 0
        for block in blocks:
            if added >= budget:
                break
            if block <= 0 or history.has_block(block):
                continue
            self._token.raise_if_cancelled()
            entry = await self._builder.at_block(account_id, history, block, scope)
            if entry is None:
                logger.debug("hinted_block_unchanged", account_id=account_id, block=block)
                continue
            if self._add(account_id, history, entry, writer, "indexer"):
                added += 1
            if stop_when_closed is not None and not open_gaps(history, *stop_when_closed):
                break
        return added

    async def _search_gap(
        self,
        account_id: str,
        history: AccountHistory,
        gap: Gap,
        scope: AssetFilter,
        budget: int,
        writer: HistoryWriter | None,
        bounds: tuple[int, int],
    ) -> int:
        added = 0
        current_end = gap.end_block - 1
        while added < budget and current_end > gap.start_block:
            result = await self._detector.find_change(account_id, gap.start_block, current_end, scope)
            if not result.has_changes or result.block is None:
                break
            if not history.has_block(result.block):
                entry = await self._builder.from_search_result(account_id, history, result)
                if self._add(account_id, history, entry, writer, "binary_search"):
                    added += 1
            current_end = result.block - 1
            if not open_gaps(history, *bounds):
                break
        return added

    async def reconcile(self, account_id: str, history: AccountHistory, gap: Gap) -> None:
        """
        Re-query both sides of the gap with NEAR and every known token. On
        agreement the boundary entries are corrected in place; otherwise
        ReconciliationFailed.
        """
        previous = history.get_entry(gap.start_block)
        following = history.get_entry(gap.end_block)
        if previous is None or following is None:
            raise ReconciliationFailed(gap.start_block, gap.end_block)
        assets = replace(history.known_assets(self._default_tokens), staking_pools=())
        after_start = await self._detector.snapshot(account_id, gap.start_block, assets)
        before_end = await self._detector.snapshot(account_id, gap.end_block - 1, assets)
        check = compare_balances(after_start, before_end)
        if not check.valid:
            raise ReconciliationFailed(
                gap.start_block,
                gap.end_block,
                [e.to_dict() for e in check.errors],
            )
        previous.balance_after = previous.balance_after.merge(after_start)
        following.balance_before = following.balance_before.merge(before_end)
        logger.info(
            "gap_reconciled",
            account_id=account_id,
            start_block=gap.start_block,
            end_block=gap.end_block,
        )

    async def fill(
        self,
        account_id: str,
        history: AccountHistory,
        gap: Gap,
        budget: int,
        writer: HistoryWriter | None = None,
    ) -> int:
        """Try to close gap; returns the number of entries added."""
        bounds = (gap.start_block, gap.end_block)
        if budget <= 0 or not open_gaps(history, *bounds):
            return 0
        scope = get_gap_changed_assets(gap)
        logger.info(
            "gap_fill_started",
            account_id=account_id,
            start_block=gap.start_block,
            end_block=gap.end_block,
            assets=scope.to_dict(),
            budget=budget,
        )
        added = 0
        try:
            if self._indexers:
                hints = await collect_candidate_blocks(
                    self._indexers, account_id, gap.start_block, gap.end_block, self._token
                )
                added += await self.add_hinted_blocks(
                    account_id, history, hints, budget, scope, writer, stop_when_closed=bounds
                )

            for sub_gap in reversed(open_gaps(history, *bounds)):
                if added >= budget:
                    break
                added += await self._search_gap(
                    account_id, history, sub_gap, scope, budget - added, writer, bounds
                )

            remaining = open_gaps(history, *bounds)
            if remaining and added < budget:
                for sub_gap in remaining:
                    try:
                        await self.reconcile(account_id, history, sub_gap)
                    except ReconciliationFailed as e:
                        logger.warning(
                            "gap_reconciliation_failed",
                            account_id=account_id,
                            start_block=e.start_block,
                            end_block=e.end_block,
                            mismatches=e.mismatches,
                        )
                remaining = open_gaps(history, *bounds)
        except Exception:
            if writer is not None:
                writer.flush()
            raise

        if not remaining:
            logger.info(
                "gap_closed",
                account_id=account_id,
                start_block=gap.start_block,
                end_block=gap.end_block,
                transactions_added=added,
            )
            if writer is not None:
                writer.gap_closed()
        else:
            logger.info(
                "gap_still_open",
                account_id=account_id,
                start_block=gap.start_block,
                end_block=gap.end_block,
                open_gaps=len(remaining),
                transactions_added=added,
            )
            if writer is not None:
                writer.flush()
        return added

    async def fill_all(
        self,
        account_id: str,
        history: AccountHistory,
        max_transactions: int,
        per_gap_budget: int,
        writer: HistoryWriter | None = None,
    ) -> int:
        """Fill every internal gap of history, each capped at per_gap_budget."""
        added = 0
        for gap in detect_gaps(history.transactions).internal_gaps:
            if added >= max_transactions:
                break
            self._token.raise_if_cancelled()
            added += await self.fill(
                account_id, history, gap, min(per_gap_budget, max_transactions - added), writer
            )
        return added
