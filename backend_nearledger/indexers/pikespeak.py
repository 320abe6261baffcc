"""
Pikespeak indexer: balance-changing events from /event-historic/{account}.

The endpoint pages by offset, newest first, and has no block filter, so the
range is applied to each page here. Requires PIKESPEAK_API_KEY (x-api-key).
"""

from __future__ import annotations

from typing import Any

from backend_nearledger.config.env import PIKESPEAK_API_BASE
from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.core.exceptions import RpcError
from backend_nearledger.indexers.base import HttpIndexer
from backend_nearledger.ledger_logging import get_logger

logger = get_logger(__name__)

PIKESPEAK_PAGE_SIZE = 50

BALANCE_CHANGING_EVENTS = frozenset(
    {
        "NEAR_TRANSFER",
        "FT_TRANSFER",
        "STAKE_DEPOSIT",
        "STAKE_WITHDRAW",
        "DAO_TRANSFER",
        "DAO_TRANSFER_FROM_PROPOSAL",
    }
)


def _event_block(event: Any) -> int | None:
    if not isinstance(event, dict) or event.get("type") not in BALANCE_CHANGING_EVENTS:
        return None
    try:
        return int(event["block_height"])
    except (KeyError, TypeError, ValueError):
        return None


class PikespeakIndexer(HttpIndexer):
    name = "pikespeak"

    def __init__(
        self,
        token: CancellationToken,
        api_key: str | None,
        base_url: str = PIKESPEAK_API_BASE,
        **kwargs: Any,
    ) -> None:
        super().__init__(base_url, token, api_key, **kwargs)

    def _auth_headers(self, api_key: str) -> dict[str, str]:
        return {"x-api-key": api_key}

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def list_transaction_blocks(
        self,
        account_id: str,
        after_block: int | None = None,
        before_block: int | None = None,
    ) -> list[int]:
        blocks: set[int] = set()
        for page in range(self._max_pages):
            events = await self._get_json(
                f"/event-historic/{account_id}",
                {"limit": PIKESPEAK_PAGE_SIZE, "offset": page * PIKESPEAK_PAGE_SIZE},
            )
            if not isinstance(events, list):
                raise RpcError(f"{self.name}: unexpected response shape", method="event-historic")
            oldest: int | None = None
            for event in events:
                height = _event_block(event)
                if height is None:
                    continue
                oldest = height if oldest is None else min(oldest, height)
                if after_block is not None and height <= after_block:
                    continue
                if before_block is not None and height >= before_block:
                    continue
                blocks.add(height)
            if len(events) < PIKESPEAK_PAGE_SIZE:
                break
            # Newest first: once a page reaches below the range, later pages are older still.
            if after_block is not None and oldest is not None and oldest <= after_block:
                break
        logger.debug("pikespeak_blocks", account_id=account_id, blocks=len(blocks))
        return sorted(blocks)
