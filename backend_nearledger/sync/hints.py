"""
Indexer hint collection.

Indexers are optional and partial: each may know a different subset of an
account's transactions. Their answers are merged, bounded to the open
interval of interest and deduplicated by block height.
"""

from __future__ import annotations

from typing import Sequence

from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.core.exceptions import Cancelled, NearLedgerError
from backend_nearledger.ledger_logging import get_logger
from backend_nearledger.sources.base import IndexerSource

logger = get_logger(__name__)


async def collect_candidate_blocks(
    indexers: Sequence[IndexerSource],
    account_id: str,
    start_block: int | None,
    end_block: int | None,
    token: CancellationToken,
) -> list[int]:
    """Ascending unique blocks strictly inside (start_block, end_block); None leaves a side open."""
    blocks: set[int] = set()
    for indexer in indexers:
        if not indexer.is_available():
            continue
        token.raise_if_cancelled()
        try:
            found = await indexer.list_transaction_blocks(
                account_id, after_block=start_block, before_block=end_block
            )
        except Cancelled:
            raise
        except NearLedgerError as e:
            logger.warning(
                "indexer_hints_failed",
                indexer=indexer.name,
                account_id=account_id,
                error=str(e),
            )
            continue
        in_range = {
            b
            for b in found
            if (start_block is None or b > start_block) and (end_block is None or b < end_block)
        }
        logger.debug(
            "indexer_hints",
            indexer=indexer.name,
            account_id=account_id,
            blocks=len(in_range),
        )
        blocks.update(in_range)
    return sorted(blocks)
