"""
Shared HTTP plumbing for the paged indexer APIs.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.core.exceptions import RateLimited, RpcError
from backend_nearledger.ledger_logging import get_logger
from backend_nearledger.sources.base import IndexerSource

logger = get_logger(__name__)

PAGE_DELAY_SEC = 0.1
DEFAULT_MAX_PAGES = 10
DEFAULT_PAGE_SIZE = 25


class HttpIndexer(IndexerSource):
    """Indexer reached over HTTP with an optional API key and a fixed delay per page."""

    def __init__(
        self,
        base_url: str,
        token: CancellationToken,
        api_key: str | None = None,
        *,
        max_pages: int = DEFAULT_MAX_PAGES,
        page_delay_sec: float = PAGE_DELAY_SEC,
        timeout_sec: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._api_key = api_key
        self._max_pages = max_pages
        self._page_delay = page_delay_sec
        headers = {"Accept": "application/json"}
        if api_key:
            headers.update(self._auth_headers(api_key))
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(timeout_sec),
            transport=transport,
        )

    def _auth_headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        self._token.raise_if_cancelled()
        if self._page_delay > 0:
            await asyncio.sleep(self._page_delay)
        query = {k: v for k, v in params.items() if v is not None}
        try:
            resp = await self._client.get(f"{self._base_url}{path}", params=query)
        except httpx.HTTPError as e:
            raise RpcError(f"{self.name}: {e}", method=path) from e
        if resp.status_code == 429:
            logger.warning("indexer_rate_limited", indexer=self.name, path=path)
            self._token.rate_limited()
            raise RateLimited(f"{self.name} rate limit exceeded (429)")
        if resp.status_code >= 400:
            raise RpcError(
                f"{self.name} API error: {resp.status_code} {resp.reason_phrase}",
                method=path,
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise RpcError(f"{self.name}: invalid JSON", method=path) from e
        return data

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        data = await self._get_json(path, params)
        if not isinstance(data, dict):
            raise RpcError(f"{self.name}: unexpected response shape", method=path)
        return data
