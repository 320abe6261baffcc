"""
Intents Explorer indexer: blocks with intents (NEP-245) activity for an account.

Works without a key; INTENTS_EXPLORER_API_KEY raises the upstream rate limits.
"""

from __future__ import annotations

from typing import Any

from backend_nearledger.config.env import INTENTS_EXPLORER_API_BASE
from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.indexers.base import DEFAULT_PAGE_SIZE, HttpIndexer


class IntentsExplorerIndexer(HttpIndexer):
    name = "intents_explorer"

    def __init__(
        self,
        token: CancellationToken,
        api_key: str | None = None,
        base_url: str = INTENTS_EXPLORER_API_BASE,
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url, token, api_key, **kwargs)

    async def list_transaction_blocks(
        self,
        account_id: str,
        after_block: int | None = None,
        before_block: int | None = None,
    ) -> list[int]:
        blocks: set[int] = set()
        cursor: str | None = None
        for _ in range(self._max_pages):
            data = await self._get(
                f"/transactions/{account_id}",
                {
                    "limit": DEFAULT_PAGE_SIZE,
                    "cursor": cursor,
                    "after_block": after_block,
                    "before_block": before_block,
                },
            )
            transactions = data.get("transactions") or []
            for txn in transactions:
                if txn.get("block_height") is not None:
                    blocks.add(int(txn["block_height"]))
            cursor = data.get("cursor")
            if not data.get("has_more") or not cursor or not transactions:
                break
        return sorted(blocks)
