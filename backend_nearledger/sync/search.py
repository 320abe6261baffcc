"""
Range search beyond the recorded history.

Responsibilities:
- search_range: every change in a bounded range, latest first.
- search_forward: windows of search_range from the last entry up to the chain
  head (gap to present), doubling while empty.
- search_backward: walk back from the earliest entry in windows that double
  while empty; when the account does not exist at a window start, locate its
  creation block, record the creation entry and mark the history complete.
"""

from __future__ import annotations

from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.core.exceptions import AccountNotFound
from backend_nearledger.discovery.binary_search import BalanceChangeDetector
from backend_nearledger.history.models import AccountHistory, TransactionEntry
from backend_nearledger.history.store import HistoryWriter
from backend_nearledger.ledger_logging import get_logger
from backend_nearledger.snapshots.models import AssetFilter
from backend_nearledger.sync.entries import EntryBuilder

logger = get_logger(__name__)

DEFAULT_INITIAL_WINDOW = 1_000_000
MAX_WINDOW_MULTIPLIER = 32
MAX_WINDOW_FLOOR = 32_000_000


class RangeSearcher:
    def __init__(
        self,
        detector: BalanceChangeDetector,
        builder: EntryBuilder,
        token: CancellationToken,
    ) -> None:
        self._detector = detector
        self._builder = builder
        self._token = token

    async def account_exists(self, account_id: str, block: int) -> bool:
        try:
            await self._detector.snapshot(account_id, block, AssetFilter.only(near=True))
        except AccountNotFound:
            return False
        return True

    async def _locate_creation(self, account_id: str, missing_at: int, exists_at: int) -> int:
        """First block in (missing_at, exists_at] where the account exists."""
        lo, hi = missing_at, exists_at
        while hi - lo > 1:
            self._token.raise_if_cancelled()
            mid = hi - (hi - lo) // 2
            if await self.account_exists(account_id, mid):
                hi = mid
            else:
                lo = mid
        return hi

    def _record(
        self,
        account_id: str,
        history: AccountHistory,
        entry: TransactionEntry,
        writer: HistoryWriter | None,
    ) -> bool:
        if not history.add_entry(entry):
            return False
        logger.info("transaction_added", account_id=account_id, block=entry.block, source="range_search")
        if writer is not None:
            writer.record_addition()
        return True

    async def search_range(
        self,
        account_id: str,
        history: AccountHistory,
        low: int,
        high: int,
        max_entries: int,
        writer: HistoryWriter | None = None,
    ) -> int:
        """Record every change in (low, high], latest first, up to max_entries."""
        found = 0
        current_high = high
        while found < max_entries and current_high > low:
            result = await self._detector.find_change(account_id, low, current_high)
            if not result.has_changes or result.block is None:
                break
            if not history.has_block(result.block):
                entry = await self._builder.from_search_result(account_id, history, result)
                if self._record(account_id, history, entry, writer):
                    found += 1
            current_high = result.block - 1
        return found

    async def _finish_at_creation(
        self,
        account_id: str,
        history: AccountHistory,
        missing_at: int,
        high: int,
        budget: int,
        writer: HistoryWriter | None,
    ) -> int:
        found = 0
        if high <= missing_at or not await self.account_exists(account_id, high):
            creation = high + 1
        else:
            creation = await self._locate_creation(account_id, missing_at, high)
            found += await self.search_range(account_id, history, creation, high, budget, writer)
        if found < budget and not history.has_block(creation) and (
            history.metadata.first_block is None or creation <= history.metadata.first_block
        ):
            entry = await self._builder.creation_entry(account_id, history, creation)
            if self._record(account_id, history, entry, writer):
                found += 1
        if found < budget:
            history.metadata.history_complete = True
            logger.info("history_complete", account_id=account_id, creation_block=creation)
        return found

    async def search_backward(
        self,
        account_id: str,
        history: AccountHistory,
        high: int,
        max_entries: int,
        initial_window: int = DEFAULT_INITIAL_WINDOW,
        writer: HistoryWriter | None = None,
    ) -> int:
        """
        Record changes at or below high, walking toward genesis.

        Windows are searched latest-first; an empty window doubles the next one
        (capped), a productive one resets it.
        """
        initial_window = max(1, initial_window)
        max_window = max(initial_window * MAX_WINDOW_MULTIPLIER, MAX_WINDOW_FLOOR)
        window = initial_window
        low = max(0, high - window)
        found = 0
        checked_low: int | None = None
        while found < max_entries and high >= 0:
            self._token.raise_if_cancelled()
            if low != checked_low and not await self.account_exists(account_id, low):
                found += await self._finish_at_creation(
                    account_id, history, low, high, max_entries - found, writer
                )
                break
            checked_low = low
            if high > low:
                result = await self._detector.find_change(account_id, low, high)
                if result.has_changes and result.block is not None:
                    window = initial_window
                    if not history.has_block(result.block):
                        entry = await self._builder.from_search_result(account_id, history, result)
                        if self._record(account_id, history, entry, writer):
                            found += 1
                    high = result.block - 1
                    continue
            if low == 0:
                logger.info("backward_search_reached_genesis", account_id=account_id)
                break
            window = min(window * 2, max_window)
            logger.debug("backward_search_expanding", account_id=account_id, low=low, window=window)
            high = low
            low = max(0, high - window)
        return found

    async def search_forward(
        self,
        account_id: str,
        history: AccountHistory,
        low: int,
        high: int,
        max_entries: int,
        initial_window: int = DEFAULT_INITIAL_WINDOW,
        writer: HistoryWriter | None = None,
    ) -> int:
        """
        Record changes in (low, high] walking toward high (normally the chain head).

        Each window is searched with search_range; empty windows double the
        next one up to the cap.
        """
        initial_window = max(1, initial_window)
        max_window = max(initial_window * MAX_WINDOW_MULTIPLIER, MAX_WINDOW_FLOOR)
        window = initial_window
        found = 0
        while found < max_entries and low < high:
            self._token.raise_if_cancelled()
            window_high = min(high, low + window)
            added = await self.search_range(account_id, history, low, window_high, max_entries - found, writer)
            found += added
            if added:
                window = initial_window
            else:
                window = min(window * 2, max_window)
                logger.debug("forward_search_expanding", account_id=account_id, low=window_high, window=window)
            low = window_high
        return found
