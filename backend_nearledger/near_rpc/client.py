"""
Async JSON-RPC client for an archival NEAR node.

Responsibilities:
- Pace every call through the shared RequestThrottle.
- Translate node answers into the error taxonomy: rate limiting, unknown
  accounts and blocks the archive cannot serve.
- Step back a bounded number of blocks when a height is unreadable.
- Fetch full block documents (receipts, execution outcomes, logs) from neardata.
"""

from __future__ import annotations

import base64
import itertools
import json
from typing import Any

import httpx

from backend_nearledger.config.settings import Settings
from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.core.exceptions import (
    AccountNotFound,
    BlockUnreadable,
    RateLimited,
    RpcError,
)
from backend_nearledger.core.throttle import RequestThrottle
from backend_nearledger.ledger_logging import get_logger

logger = get_logger(__name__)

_RATE_LIMIT_MARKERS = ("Too Many Requests", "rate limit", "Rate limit", "RATE_LIMIT")
_UNKNOWN_BLOCK_MARKERS = ("UNKNOWN_BLOCK", "DB Not Found Error: BLOCK HEIGHT")
_UNKNOWN_ACCOUNT_MARKERS = ("UNKNOWN_ACCOUNT", "does not exist")


def _error_text(error: Any) -> str:
    if isinstance(error, str):
        return error
    return json.dumps(error, default=str)


def is_rate_limit_error(text: str) -> bool:
    return any(marker in text for marker in _RATE_LIMIT_MARKERS)


def is_unknown_block_error(text: str) -> bool:
    return any(marker in text for marker in _UNKNOWN_BLOCK_MARKERS)


def is_unknown_account_error(text: str) -> bool:
    return any(marker in text for marker in _UNKNOWN_ACCOUNT_MARKERS)


class _UnknownBlock(Exception):
    """Internal signal for the step-back loop."""


class NearRpcClient:
    """
    Thin JSON-RPC wrapper. One instance is shared by every account worker so
    the throttle and the cancellation token are process-wide.
    """

    def __init__(
        self,
        settings: Settings,
        token: CancellationToken,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._token = token
        self._throttle = RequestThrottle(settings.rpc_delay_sec, token)
        self._ids = itertools.count(1)
        headers = {"Content-Type": "application/json"}
        if settings.rpc_api_key:
            headers["Authorization"] = f"Bearer {settings.rpc_api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(settings.request_timeout_sec),
            transport=transport,
        )

    @property
    def token(self) -> CancellationToken:
        return self._token

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> NearRpcClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _rate_limited(self, method: str, detail: str) -> RateLimited:
        logger.warning("rpc_rate_limited", method=method, detail=detail[:200])
        self._token.rate_limited()
        return RateLimited()

    async def _post(self, url: str, body: dict[str, Any], method: str) -> dict[str, Any]:
        await self._throttle.acquire()
        try:
            resp = await self._client.post(url, json=body)
        except httpx.HTTPError as e:
            raise RpcError(f"{method}: {e}", method=method) from e
        if resp.status_code == 429:
            raise self._rate_limited(method, resp.text)
        if resp.status_code >= 400:
            text = resp.text
            if is_rate_limit_error(text):
                raise self._rate_limited(method, text)
            raise RpcError(f"{method}: HTTP {resp.status_code}", method=method, status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise RpcError(f"{method}: invalid JSON response", method=method) from e
        if not isinstance(data, dict):
            raise RpcError(f"{method}: unexpected response shape", method=method)
        return data

    async def call(self, method: str, params: Any) -> Any:
        """
        One JSON-RPC request. Raises RateLimited, AccountNotFound, RpcError, or
        the internal unknown-block signal consumed by the step-back loop.
        """
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        data = await self._post(self._settings.rpc_endpoint, body, method)
        error = data.get("error")
        if error is None and isinstance(data.get("result"), dict) and "error" in data["result"]:
            # Older nodes report query failures inside the result.
            error = data["result"]["error"]
        if error is not None:
            text = _error_text(error)
            if is_rate_limit_error(text):
                raise self._rate_limited(method, text)
            if is_unknown_block_error(text):
                raise _UnknownBlock(text)
            if is_unknown_account_error(text):
                request = params if isinstance(params, dict) else {}
                raise AccountNotFound(request.get("account_id") or "unknown", request.get("block_id"))
            raise RpcError(f"{method}: {text[:300]}", method=method)
        if "result" not in data:
            raise RpcError(f"{method}: response has no result", method=method)
        return data["result"]

    async def query(self, request: dict[str, Any], block: int) -> Any:
        """
        `query` at a block height, stepping back one block per attempt while the
        archive reports the height unreadable.
        """
        attempts = max(1, self._settings.max_step_back_attempts)
        current = block
        for attempt in range(1, attempts + 1):
            try:
                return await self.call("query", {**request, "block_id": current})
            except _UnknownBlock:
                logger.warning(
                    "rpc_block_unreadable",
                    block=current,
                    attempt=attempt,
                    request_type=request.get("request_type"),
                )
                current -= 1
        raise BlockUnreadable(block, attempts)

    async def view_account(self, account_id: str, block: int) -> dict[str, Any]:
        result = await self.query({"request_type": "view_account", "account_id": account_id}, block)
        if not isinstance(result, dict):
            raise RpcError("view_account: unexpected result", method="view_account")
        return result

    async def call_function(self, contract_id: str, method_name: str, args: dict[str, Any], block: int) -> Any:
        """View call; the returned byte list is decoded as JSON (None when empty)."""
        args_base64 = base64.b64encode(json.dumps(args).encode()).decode()
        result = await self.query(
            {
                "request_type": "call_function",
                "account_id": contract_id,
                "method_name": method_name,
                "args_base64": args_base64,
            },
            block,
        )
        raw = bytes(result.get("result") or []) if isinstance(result, dict) else b""
        if not raw:
            return None
        try:
            return json.loads(raw.decode())
        except (UnicodeDecodeError, ValueError) as e:
            raise RpcError(f"{contract_id}.{method_name}: undecodable result", method="call_function") from e

    async def get_block(
        self,
        block_id: int | str | None = None,
        finality: str = "final",
    ) -> dict[str, Any]:
        """Block by height or hash; the latest final block when block_id is None."""
        params: dict[str, Any] = {"finality": finality} if block_id is None else {"block_id": block_id}
        try:
            result = await self.call("block", params)
        except _UnknownBlock as e:
            raise BlockUnreadable(block_id if isinstance(block_id, int) else -1) from e
        if not isinstance(result, dict):
            raise RpcError("block: unexpected result", method="block")
        return result

    async def get_current_block_height(self) -> int:
        block = await self.get_block()
        return int(block["header"]["height"])

    async def tx_status(self, tx_hash: str, signer_id: str) -> dict[str, Any]:
        try:
            result = await self.call("EXPERIMENTAL_tx_status", [tx_hash, signer_id])
        except _UnknownBlock as e:
            raise RpcError(f"EXPERIMENTAL_tx_status: {e}", method="EXPERIMENTAL_tx_status") from e
        if not isinstance(result, dict):
            raise RpcError("EXPERIMENTAL_tx_status: unexpected result", method="EXPERIMENTAL_tx_status")
        return result

    async def fetch_neardata_block(self, height: int) -> dict[str, Any] | None:
        """Full block document from neardata; None for skipped heights."""
        await self._throttle.acquire()
        url = f"{self._settings.neardata_base_url.rstrip('/')}/block/{height}"
        try:
            resp = await self._client.get(url, follow_redirects=True)
        except httpx.HTTPError as e:
            raise RpcError(f"neardata block {height}: {e}", method="neardata") from e
        if resp.status_code == 429:
            raise self._rate_limited("neardata", resp.text)
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise RpcError(f"neardata block {height}: HTTP {resp.status_code}", method="neardata", status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise RpcError(f"neardata block {height}: invalid JSON", method="neardata") from e
        return data if isinstance(data, dict) else None
