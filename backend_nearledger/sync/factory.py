"""
Wires the production collaborators (archival RPC, neardata, indexers, file store)
into an AccountSyncRunner.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Sequence

from backend_nearledger.config.settings import Settings, get_settings
from backend_nearledger.core.cancellation import CancellationToken, install_signal_handlers
from backend_nearledger.history.store import HistoryStore
from backend_nearledger.indexers import IntentsExplorerIndexer, NearBlocksIndexer, PikespeakIndexer
from backend_nearledger.ledger_logging import get_logger
from backend_nearledger.near_rpc import NearRpcClient, NeardataReceiptSource, RpcSnapshotSource
from backend_nearledger.sync.runner import DEFAULT_MAX_TRANSACTIONS, AccountSyncRunner, SyncReport

logger = get_logger(__name__)


@asynccontextmanager
async def open_runner(
    settings: Settings | None = None,
    token: CancellationToken | None = None,
) -> AsyncIterator[AccountSyncRunner]:
    settings = settings or get_settings()
    token = token or CancellationToken()
    client = NearRpcClient(settings, token)
    indexers = [
        NearBlocksIndexer(token, settings.nearblocks_api_key, timeout_sec=settings.request_timeout_sec),
        IntentsExplorerIndexer(token, settings.intents_explorer_api_key, timeout_sec=settings.request_timeout_sec),
        PikespeakIndexer(
            token,
            settings.pikespeak_api_key,
            settings.pikespeak_api_url,
            timeout_sec=settings.request_timeout_sec,
        ),
    ]
    snapshots = RpcSnapshotSource(client, settings)
    try:
        yield AccountSyncRunner(
            settings,
            HistoryStore(settings.data_dir),
            snapshots,
            snapshots,
            NeardataReceiptSource(client),
            [i for i in indexers if i.is_available()],
            token,
        )
    finally:
        for indexer in indexers:
            await indexer.aclose()
        await client.aclose()


async def run_accounts(
    account_ids: Sequence[str],
    max_transactions: int = DEFAULT_MAX_TRANSACTIONS,
    staking_only: bool = False,
    settings: Settings | None = None,
) -> list[SyncReport]:
    """Sync accounts until done, cancelled (SIGINT/SIGTERM) or rate limited."""
    token = CancellationToken()
    install_signal_handlers(token)
    logger.info("sync_run_started", accounts=len(account_ids), staking_only=staking_only)
    async with open_runner(settings, token) as runner:
        reports = await runner.run(account_ids, max_transactions, staking_only)
    logger.info(
        "sync_run_finished",
        accounts=len(reports),
        statuses=[r.status.value for r in reports],
        stop_reason=token.reason,
    )
    return reports
