"""
NearBlocks indexer: NEAR transactions (/txns) and fungible token transfers (/ft-txns).

Only used for block hints; requires NEARBLOCKS_API_KEY.
"""

from __future__ import annotations

from typing import Any

from backend_nearledger.config.env import NEARBLOCKS_API_BASE
from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.indexers.base import DEFAULT_PAGE_SIZE, HttpIndexer
from backend_nearledger.ledger_logging import get_logger

logger = get_logger(__name__)


def _txn_block(txn: dict[str, Any]) -> int | None:
    """Receipt block for /txns items, block for /ft-txns items."""
    for key in ("receipt_block", "block"):
        block = txn.get(key)
        if isinstance(block, dict) and block.get("block_height") is not None:
            return int(block["block_height"])
    return None


class NearBlocksIndexer(HttpIndexer):
    name = "nearblocks"

    def __init__(
        self,
        token: CancellationToken,
        api_key: str | None,
        base_url: str = NEARBLOCKS_API_BASE,
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url, token, api_key, **kwargs)

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def _collect(
        self,
        path: str,
        after_block: int | None,
        before_block: int | None,
        blocks: set[int],
    ) -> None:
        cursor: str | None = None
        for _ in range(self._max_pages):
            data = await self._get(
                path,
                {
                    "per_page": DEFAULT_PAGE_SIZE,
                    "cursor": cursor,
                    "after_block": after_block,
                    "before_block": before_block,
                },
            )
            txns = data.get("txns") or []
            for txn in txns:
                height = _txn_block(txn)
                if height is not None:
                    blocks.add(height)
            cursor = data.get("cursor")
            if not cursor or not txns:
                break

    async def list_transaction_blocks(
        self,
        account_id: str,
        after_block: int | None = None,
        before_block: int | None = None,
    ) -> list[int]:
        blocks: set[int] = set()
        await self._collect(f"/account/{account_id}/txns", after_block, before_block, blocks)
        await self._collect(f"/account/{account_id}/ft-txns", after_block, before_block, blocks)
        logger.debug("nearblocks_blocks", account_id=account_id, blocks=len(blocks))
        return sorted(blocks)
