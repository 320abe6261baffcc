"""
Per-account sync pipeline.

Responsibilities:
- Load (or create) the account's history and wrap it in a batching writer.
- Run the phases in order: discovery for an empty history, internal gap fill,
  gap to present, gap to creation, a second internal pass for gaps opened by
  hinted entries, enrichment, the staking epoch scan and timestamps.
- Map cancellation and rate limiting onto a SyncStatus; flush on every exit.
- Sync several accounts concurrently as independent tasks sharing one token.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Sequence

from backend_nearledger.attribution.attributor import TransactionAttributor
from backend_nearledger.attribution.staking import StakingPoolClassifier
from backend_nearledger.config.settings import Settings
from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.core.exceptions import AccountNotFound, Cancelled, NearLedgerError, RateLimited
from backend_nearledger.discovery.binary_search import BalanceChangeDetector
from backend_nearledger.gaps.detector import detect_gaps
from backend_nearledger.history.models import AccountHistory
from backend_nearledger.history.store import HistoryStore, HistoryWriter
from backend_nearledger.ledger_logging import account_context, bind_account, get_logger
from backend_nearledger.sources.base import ChainHead, IndexerSource, ReceiptSource, SnapshotSource
from backend_nearledger.staking.scanner import StakingEpochScanner
from backend_nearledger.sync.enrichment import HistoryEnricher
from backend_nearledger.sync.entries import EntryBuilder
from backend_nearledger.sync.gap_fill import GapFillOrchestrator
from backend_nearledger.sync.hints import collect_candidate_blocks
from backend_nearledger.sync.search import RangeSearcher

logger = get_logger(__name__)

DEFAULT_MAX_TRANSACTIONS = 100


class SyncStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass
class SyncReport:
    account_id: str
    status: SyncStatus = SyncStatus.COMPLETED
    transactions_added: int = 0
    rewards_added: int = 0
    entries_enriched: int = 0
    gaps_remaining: int = 0
    history_complete: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "accountId": self.account_id,
            "status": self.status.value,
            "transactionsAdded": self.transactions_added,
            "rewardsAdded": self.rewards_added,
            "entriesEnriched": self.entries_enriched,
            "gapsRemaining": self.gaps_remaining,
            "historyComplete": self.history_complete,
            "error": self.error,
        }


class AccountSyncRunner:
    def __init__(
        self,
        settings: Settings,
        store: HistoryStore,
        snapshots: SnapshotSource,
        chain: ChainHead,
        receipts: ReceiptSource,
        indexers: Sequence[IndexerSource] = (),
        token: CancellationToken | None = None,
        classifier: StakingPoolClassifier | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._chain = chain
        self._indexers = list(indexers)
        self._token = token or CancellationToken()
        self._detector = BalanceChangeDetector(snapshots, self._token)
        attributor = TransactionAttributor(
            receipts, self._token, classifier, settings.subsequent_block_lookahead
        )
        builder = EntryBuilder(self._detector, attributor)
        self._gap_fill = GapFillOrchestrator(
            self._detector, builder, self._token, self._indexers, settings.default_fungible_tokens
        )
        self._search = RangeSearcher(self._detector, builder, self._token)
        self._enricher = HistoryEnricher(attributor, self._token)
        self._staking = StakingEpochScanner(
            snapshots, chain, self._token, classifier, settings.epoch_length
        )

    @property
    def token(self) -> CancellationToken:
        return self._token

    async def _discover(
        self,
        account_id: str,
        history: AccountHistory,
        head: int,
        budget: int,
        writer: HistoryWriter,
    ) -> int:
        """First sync of an account: indexer hints, else the latest changes below the head."""
        hints = await collect_candidate_blocks(self._indexers, account_id, None, head + 1, self._token)
        added = await self._gap_fill.add_hinted_blocks(account_id, history, hints, budget, writer=writer)
        if not history.transactions and added < budget:
            added += await self._search.search_backward(account_id, history, head, budget - added, writer=writer)
        return added

    async def _fill_to_present(
        self,
        account_id: str,
        history: AccountHistory,
        head: int,
        budget: int,
        writer: HistoryWriter,
    ) -> int:
        connected = history.connected_entries()
        if not connected or connected[-1].block >= head:
            return 0
        hints = await collect_candidate_blocks(
            self._indexers, account_id, connected[-1].block, head + 1, self._token
        )
        added = await self._gap_fill.add_hinted_blocks(account_id, history, hints, budget, writer=writer)
        if added >= budget:
            return added
        # Pool balances move every epoch; the staking scan accounts for them.
        assets = replace(history.known_assets(self._settings.default_fungible_tokens), staking_pools=())
        live = await self._detector.snapshot(account_id, head, assets)
        gap = detect_gaps(history.transactions, live, head).gap_to_present
        if gap is None:
            return added
        logger.info(
            "gap_to_present",
            account_id=account_id,
            start_block=gap.start_block,
            end_block=gap.end_block,
            mismatches=len(gap.verification.errors),
        )
        added += await self._search.search_forward(
            account_id, history, gap.start_block, head, budget - added, writer=writer
        )
        return added

    async def _fill_to_creation(
        self,
        account_id: str,
        history: AccountHistory,
        budget: int,
        writer: HistoryWriter,
    ) -> int:
        if history.metadata.history_complete:
            return 0
        connected = history.connected_entries()
        if not connected:
            return 0
        earliest = connected[0]
        gap = detect_gaps(history.transactions).gap_to_creation
        if gap is None and earliest.balance_before.near is not None:
            # A zero balance is not proof of creation; the account must be absent one block earlier.
            if earliest.block == 0 or not await self._search.account_exists(account_id, earliest.block - 1):
                history.metadata.history_complete = True
                logger.info("history_complete", account_id=account_id, creation_block=earliest.block)
                return 0
            logger.info("account_predates_first_entry", account_id=account_id, first_block=earliest.block)
        hints = await collect_candidate_blocks(self._indexers, account_id, None, earliest.block, self._token)
        added = await self._gap_fill.add_hinted_blocks(account_id, history, hints, budget, writer=writer)
        if added < budget:
            high = history.connected_entries()[0].block - 1
            added += await self._search.search_backward(account_id, history, high, budget - added, writer=writer)
        return added

    async def _sync_transactions(
        self,
        account_id: str,
        history: AccountHistory,
        writer: HistoryWriter,
        report: SyncReport,
        max_transactions: int,
    ) -> None:
        def remaining() -> int:
            return max_transactions - report.transactions_added

        self._token.raise_if_cancelled()
        head = await self._chain.get_current_block_height()

        if not history.transactions:
            if not await self._search.account_exists(account_id, head):
                raise AccountNotFound(account_id, head)
            report.transactions_added += await self._discover(account_id, history, head, remaining(), writer)

        report.transactions_added += await self._gap_fill.fill_all(
            account_id, history, remaining(), self._settings.gap_budget, writer
        )
        if remaining() > 0:
            report.transactions_added += await self._fill_to_present(account_id, history, head, remaining(), writer)
        if remaining() > 0:
            report.transactions_added += await self._fill_to_creation(account_id, history, remaining(), writer)
        if remaining() > 0:
            report.transactions_added += await self._gap_fill.fill_all(
                account_id, history, remaining(), self._settings.gap_budget, writer
            )

    async def sync(
        self,
        account_id: str,
        max_transactions: int = DEFAULT_MAX_TRANSACTIONS,
        staking_only: bool = False,
    ) -> SyncReport:
        """Sync one account. Never raises for cancellation, rate limiting or domain errors."""
        with account_context(account_id):
            return await self._sync(account_id, max_transactions, staking_only)

    async def _sync(self, account_id: str, max_transactions: int, staking_only: bool) -> SyncReport:
        log = bind_account(account_id)
        report = SyncReport(account_id=account_id)
        try:
            history = self._store.load_or_create(account_id)
        except NearLedgerError as e:
            log.error("sync_history_unreadable", error=str(e))
            report.status, report.error = SyncStatus.FAILED, str(e)
            return report

        writer = HistoryWriter(self._store, history, self._settings.flush_every)
        log.info(
            "sync_started",
            entries=len(history.transactions),
            max_transactions=max_transactions,
            staking_only=staking_only,
        )
        try:
            if not staking_only:
                await self._sync_transactions(account_id, history, writer, report, max_transactions)
                report.entries_enriched += await self._enricher.enrich_transaction_blocks(history, writer=writer)
                report.entries_enriched += await self._enricher.enrich_transfers(history, writer=writer)
            report.rewards_added = await self._staking.scan(account_id, history, writer=writer)
            if not staking_only:
                report.entries_enriched += await self._enricher.enrich_timestamps(history, writer=writer)
        except RateLimited as e:
            report.status, report.error = SyncStatus.RATE_LIMITED, str(e)
            log.warning("sync_rate_limited")
        except Cancelled as e:
            report.status, report.error = SyncStatus.CANCELLED, str(e)
            log.info("sync_cancelled")
        except NearLedgerError as e:
            report.status, report.error = SyncStatus.FAILED, str(e)
            log.error("sync_failed", error=str(e))
        finally:
            writer.flush()

        analysis = detect_gaps(history.transactions)
        report.history_complete = history.metadata.history_complete
        report.gaps_remaining = len(analysis.internal_gaps) + (
            analysis.gap_to_creation is not None and not report.history_complete
        )
        log.info("sync_finished", **report.to_dict())
        return report

    async def run(
        self,
        account_ids: Sequence[str],
        max_transactions: int = DEFAULT_MAX_TRANSACTIONS,
        staking_only: bool = False,
    ) -> list[SyncReport]:
        """Sync accounts as concurrent tasks; an unexpected crash only fails its own account."""
        results = await asyncio.gather(
            *(self.sync(a, max_transactions, staking_only) for a in account_ids),
            return_exceptions=True,
        )
        reports: list[SyncReport] = []
        for account_id, result in zip(account_ids, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error("sync_crashed", account_id=account_id, error=str(result), exc_info=result)
                result = SyncReport(account_id=account_id, status=SyncStatus.FAILED, error=str(result))
            reports.append(result)
        return reports
