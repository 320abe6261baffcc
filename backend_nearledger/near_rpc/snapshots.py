"""
Balance snapshots read from the archival node.

A filter of None means the default query: NEAR, the configured fungible
tokens and every intents token the account holds at that block. Staking pools
are only queried when the filter names them. A failing single-asset query
records "0" for that asset; rate limiting, cancellation and an unknown
account (for the NEAR query) propagate.
"""

from __future__ import annotations

from typing import Any, Iterable

from backend_nearledger.config.settings import Settings
from backend_nearledger.core.exceptions import AccountNotFound, BlockUnreadable, RpcError
from backend_nearledger.ledger_logging import get_logger
from backend_nearledger.near_rpc.client import NearRpcClient
from backend_nearledger.snapshots.models import AssetFilter, BalanceSnapshot
from backend_nearledger.sources.base import ChainHead, SnapshotSource

logger = get_logger(__name__)

_ASSET_QUERY_ERRORS = (RpcError, BlockUnreadable, AccountNotFound)


def _as_balance(value: Any) -> str:
    if value is None:
        return "0"
    return str(value).strip('"') or "0"


def _token_ids(tokens: Any) -> list[str]:
    if not isinstance(tokens, list):
        return []
    ids = []
    for token in tokens:
        if isinstance(token, str):
            ids.append(token)
        elif isinstance(token, dict) and token.get("token_id"):
            ids.append(str(token["token_id"]))
    return ids


class RpcSnapshotSource(SnapshotSource, ChainHead):
    def __init__(self, client: NearRpcClient, settings: Settings) -> None:
        self._client = client
        self._default_tokens = settings.default_fungible_tokens
        self._intents_contract = settings.intents_contract

    async def get_current_block_height(self) -> int:
        return await self._client.get_current_block_height()

    async def account_exists(self, account_id: str, block: int) -> bool:
        try:
            await self._client.view_account(account_id, block)
        except AccountNotFound:
            return False
        return True

    async def near_balance(self, account_id: str, block: int) -> str:
        account = await self._client.view_account(account_id, block)
        return _as_balance(account.get("amount"))

    async def fungible_token_balances(self, account_id: str, block: int, tokens: Iterable[str]) -> dict[str, str]:
        balances: dict[str, str] = {}
        for token in tokens:
            self._client.token.raise_if_cancelled()
            try:
                value = await self._client.call_function(token, "ft_balance_of", {"account_id": account_id}, block)
            except _ASSET_QUERY_ERRORS as e:
                logger.debug("ft_balance_unavailable", account_id=account_id, token=token, block=block, error=str(e))
                value = None
            balances[token] = _as_balance(value)
        return balances

    async def intents_balances(
        self,
        account_id: str,
        block: int,
        token_ids: Iterable[str] | None = None,
    ) -> dict[str, str]:
        """Balances on the intents contract; discovers the held token ids when none are given."""
        if token_ids is None:
            self._client.token.raise_if_cancelled()
            try:
                held = await self._client.call_function(
                    self._intents_contract, "mt_tokens_for_owner", {"account_id": account_id}, block
                )
            except _ASSET_QUERY_ERRORS as e:
                logger.debug("intents_discovery_unavailable", account_id=account_id, block=block, error=str(e))
                return {}
            ids = _token_ids(held)
        else:
            ids = list(token_ids)
        if not ids:
            return {}

        self._client.token.raise_if_cancelled()
        try:
            values = await self._client.call_function(
                self._intents_contract,
                "mt_batch_balance_of",
                {"account_id": account_id, "token_ids": ids},
                block,
            )
        except _ASSET_QUERY_ERRORS as e:
            logger.warning("intents_balance_unavailable", account_id=account_id, block=block, error=str(e))
            values = None
        if not isinstance(values, list):
            return {token_id: "0" for token_id in ids}
        return {
            token_id: _as_balance(values[i] if i < len(values) else None)
            for i, token_id in enumerate(ids)
        }

    async def staking_balances(self, account_id: str, block: int, pools: Iterable[str]) -> dict[str, str]:
        balances: dict[str, str] = {}
        for pool in pools:
            self._client.token.raise_if_cancelled()
            try:
                value = await self._client.call_function(
                    pool, "get_account_total_balance", {"account_id": account_id}, block
                )
            except _ASSET_QUERY_ERRORS as e:
                logger.debug("staking_balance_unavailable", account_id=account_id, pool=pool, block=block, error=str(e))
                value = None
            balances[pool] = _as_balance(value)
        return balances

    async def get_snapshot(
        self,
        account_id: str,
        block: int,
        asset_filter: AssetFilter | None = None,
    ) -> BalanceSnapshot:
        assets = asset_filter or AssetFilter()
        near = await self.near_balance(account_id, block) if assets.near else None
        tokens = assets.fungible_tokens if assets.fungible_tokens is not None else self._default_tokens
        return BalanceSnapshot(
            near=near,
            fungible_tokens=await self.fungible_token_balances(account_id, block, tokens),
            intents_tokens=await self.intents_balances(account_id, block, assets.intents_tokens),
            staking_pools=await self.staking_balances(account_id, block, assets.staking_pools),
        )
