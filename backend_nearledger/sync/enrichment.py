"""
Enrichment passes over recorded entries.

Only ever fills in missing fields (transaction block, transfers, timestamp);
block and changes of an entry are never touched. A single entry whose lookup
fails is logged and skipped; cancellation stops the pass.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from backend_nearledger.attribution.attributor import TransactionAttributor
from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.core.exceptions import BlockUnreadable, RpcError
from backend_nearledger.history.models import AccountHistory, TransactionEntry
from backend_nearledger.history.store import HistoryWriter
from backend_nearledger.ledger_logging import get_logger

logger = get_logger(__name__)


class HistoryEnricher:
    def __init__(self, attributor: TransactionAttributor, token: CancellationToken) -> None:
        self._attributor = attributor
        self._token = token

    async def _run(
        self,
        history: AccountHistory,
        needs: Callable[[TransactionEntry], bool],
        apply: Callable[[TransactionEntry], Awaitable[bool]],
        limit: int | None,
        writer: HistoryWriter | None,
        pass_name: str,
    ) -> int:
        enriched = 0
        for entry in [e for e in history.transactions if needs(e)]:
            if limit is not None and enriched >= limit:
                break
            self._token.raise_if_cancelled()
            try:
                changed = await apply(entry)
            except (RpcError, BlockUnreadable) as e:
                logger.warning(
                    "enrichment_failed",
                    account_id=history.account_id,
                    block=entry.block,
                    enrichment=pass_name,
                    error=str(e),
                )
                continue
            if changed:
                enriched += 1
                if writer is not None:
                    writer.record_addition()
        if enriched:
            logger.info(
                "history_enriched",
                account_id=history.account_id,
                enrichment=pass_name,
                entries=enriched,
            )
        return enriched

    async def enrich_transaction_blocks(
        self,
        history: AccountHistory,
        limit: int | None = 10,
        writer: HistoryWriter | None = None,
    ) -> int:
        """Fill transactionBlock for entries that have transaction hashes but no block."""

        async def apply(entry: TransactionEntry) -> bool:
            attribution = await self._attributor.attribute(history.account_id, entry.block)
            if attribution.transaction_block is None:
                return False
            entry.transaction_block = attribution.transaction_block
            return True

        return await self._run(
            history,
            lambda e: e.transaction_block is None and bool(e.transaction_hashes),
            apply,
            limit,
            writer,
            "transaction_block",
        )

    async def enrich_transfers(
        self,
        history: AccountHistory,
        limit: int | None = 50,
        writer: HistoryWriter | None = None,
    ) -> int:
        """Resolve transfers for entries that never had attribution run."""

        async def apply(entry: TransactionEntry) -> bool:
            attribution = await self._attributor.attribute(history.account_id, entry.block)
            entry.transfers = attribution.transfers
            if not entry.transaction_hashes:
                entry.transaction_hashes = attribution.transaction_hashes
            if entry.transaction_block is None:
                entry.transaction_block = attribution.transaction_block
            if entry.timestamp is None:
                entry.timestamp = attribution.block_timestamp
            for pool in attribution.staking_pools:
                history.add_staking_pool(pool)
            return True

        return await self._run(
            history,
            lambda e: e.transfers is None and not e.is_staking_only,
            apply,
            limit,
            writer,
            "transfers",
        )

    async def enrich_timestamps(
        self,
        history: AccountHistory,
        limit: int | None = None,
        writer: HistoryWriter | None = None,
    ) -> int:
        async def apply(entry: TransactionEntry) -> bool:
            timestamp = await self._attributor.block_timestamp(entry.block)
            if timestamp is None:
                return False
            entry.timestamp = timestamp
            return True

        return await self._run(history, lambda e: e.timestamp is None, apply, limit, writer, "timestamp")
