"""
Staking epoch scanner.

Staking rewards are credited at epoch boundaries without any transaction, so
they never show up in receipts. For every pool the account deposited into,
the scanner walks the epoch boundaries of the pool's active range, queries the
pool balance there and records a synthetic reward entry whenever it moved.

Active range: first deposit up to the chain head, or up to the last withdrawal
when the pool balance shortly after that withdrawal is zero (full exit).
Boundaries that coincide with a recorded entry are principal movements, not
rewards: instead of a reward the existing entry gets the pool balance.
"""

from __future__ import annotations

from dataclasses import dataclass

from backend_nearledger.attribution.staking import (
    PatternStakingClassifier,
    PoolRange,
    StakingPoolClassifier,
    discover_pool_ranges,
)
from backend_nearledger.config.settings import EPOCH_LENGTH
from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.history.models import (
    AccountHistory,
    TransactionEntry,
    TransferDetail,
    TransferDirection,
    TransferType,
)
from backend_nearledger.history.store import HistoryWriter
from backend_nearledger.ledger_logging import get_logger
from backend_nearledger.snapshots.models import AssetChange, AssetFilter, BalanceSnapshot, ChangeSet
from backend_nearledger.sources.base import ChainHead, SnapshotSource

logger = get_logger(__name__)

# Blocks after the last withdrawal at which the pool balance is checked for a full exit.
WITHDRAWAL_CONFIRM_OFFSET = 10


@dataclass(frozen=True)
class ActiveRange:
    pool: str
    start_block: int
    end_block: int
    fully_withdrawn: bool


def epoch_boundaries(start_block: int, end_block: int, epoch_length: int) -> list[int]:
    """Multiples of epoch_length in [start_block, end_block], plus end_block when it is not one."""
    first = -(-start_block // epoch_length) * epoch_length
    blocks = list(range(first, end_block + 1, epoch_length))
    if end_block > first and end_block % epoch_length != 0:
        blocks.append(end_block)
    return blocks


class StakingEpochScanner:
    def __init__(
        self,
        source: SnapshotSource,
        chain: ChainHead,
        token: CancellationToken,
        classifier: StakingPoolClassifier | None = None,
        epoch_length: int = EPOCH_LENGTH,
    ) -> None:
        self._source = source
        self._chain = chain
        self._token = token
        self._classifier = classifier or PatternStakingClassifier()
        self._epoch_length = epoch_length

    async def pool_balance(self, account_id: str, pool: str, block: int) -> str:
        self._token.raise_if_cancelled()
        snapshot = await self._source.get_snapshot(account_id, block, AssetFilter.staking([pool]))
        return snapshot.staking_pools.get(pool, "0")

    async def active_range(self, account_id: str, pool_range: PoolRange, now_block: int) -> ActiveRange:
        withdrawal = pool_range.last_withdrawal_block
        if withdrawal is not None:
            check_block = min(withdrawal + WITHDRAWAL_CONFIRM_OFFSET, now_block)
            if int(await self.pool_balance(account_id, pool_range.pool, check_block)) == 0:
                return ActiveRange(pool_range.pool, pool_range.first_deposit_block, withdrawal, True)
        return ActiveRange(pool_range.pool, pool_range.first_deposit_block, now_block, False)

    async def _balance_at(self, account_id: str, history: AccountHistory, pool: str, block: int) -> str:
        """Recorded pool balance at block when available, else a query."""
        entry = history.get_entry(block)
        if entry is not None and pool in entry.balance_after.staking_pools:
            return entry.balance_after.staking_pools[pool]
        return await self.pool_balance(account_id, pool, block)

    @staticmethod
    def _recorded(history: AccountHistory, block: int, pool: str) -> bool:
        entry = history.get_entry(block)
        return entry is not None and pool in entry.balance_after.staking_pools

    def _reward_entry(self, pool: str, block: int, before: str, start: str, end: str) -> TransactionEntry:
        change = AssetChange.between(start, end)
        diff = int(change.diff)
        return TransactionEntry(
            block=block,
            balance_before=BalanceSnapshot(staking_pools={pool: before}),
            balance_after=BalanceSnapshot(staking_pools={pool: end}),
            changes=ChangeSet(staking_changed={pool: change}),
            transaction_hashes=[],
            transfers=[
                TransferDetail(
                    type=TransferType.STAKING_REWARD,
                    direction=TransferDirection.IN if diff >= 0 else TransferDirection.OUT,
                    amount=str(abs(diff)),
                    counterparty=pool,
                    token_id=pool,
                    memo="staking_reward",
                )
            ],
        )

    @staticmethod
    def _merge_reward(entry: TransactionEntry, reward: TransactionEntry) -> None:
        """Second pool rewarded at the same boundary: fold into the existing reward entry."""
        entry.balance_before = entry.balance_before.merge(reward.balance_before)
        entry.balance_after = entry.balance_after.merge(reward.balance_after)
        entry.changes = ChangeSet(
            staking_changed={**entry.changes.staking_changed, **reward.changes.staking_changed}
        )
        entry.transfers = (entry.transfers or []) + (reward.transfers or [])

    async def _scan_pool(
        self,
        account_id: str,
        history: AccountHistory,
        active: ActiveRange,
        epoch_length: int,
        max_epochs: int | None,
        writer: HistoryWriter | None,
    ) -> int:
        all_boundaries = epoch_boundaries(active.start_block, active.end_block, epoch_length)
        predecessor = {
            b: all_boundaries[i - 1] if i > 0 else active.start_block
            for i, b in enumerate(all_boundaries)
        }
        boundaries = [b for b in all_boundaries if not self._recorded(history, b, active.pool)]
        if max_epochs is not None:
            boundaries = boundaries[:max_epochs]
        if not boundaries:
            return 0
        logger.info(
            "staking_pool_scan",
            account_id=account_id,
            pool=active.pool,
            start_block=active.start_block,
            end_block=active.end_block,
            fully_withdrawn=active.fully_withdrawn,
            epochs=len(boundaries),
        )

        added = 0
        previous_block: int | None = None
        previous = "0"
        for block in boundaries:
            if previous_block != predecessor[block]:
                previous = await self._balance_at(account_id, history, active.pool, predecessor[block])
            current = await self.pool_balance(account_id, active.pool, block)
            existing = history.get_entry(block)
            if existing is not None and not existing.is_staking_only:
                existing.balance_after = existing.balance_after.with_staking_pool(active.pool, current)
                before = await self.pool_balance(account_id, active.pool, block - 1)
                existing.balance_before = existing.balance_before.with_staking_pool(active.pool, before)
                if writer is not None:
                    writer.record_addition()
            elif int(current) != int(previous):
                before = await self.pool_balance(account_id, active.pool, block - 1)
                reward = self._reward_entry(active.pool, block, before, previous, current)
                if existing is not None:
                    self._merge_reward(existing, reward)
                else:
                    history.add_entry(reward)
                    added += 1
                logger.debug(
                    "staking_reward_recorded",
                    account_id=account_id,
                    pool=active.pool,
                    block=block,
                    diff=reward.changes.staking_changed[active.pool].diff,
                )
                if writer is not None:
                    writer.record_addition()
            previous_block, previous = block, current
        return added

    async def scan(
        self,
        account_id: str,
        history: AccountHistory,
        epoch_length: int | None = None,
        now_block: int | None = None,
        max_epochs: int | None = None,
        writer: HistoryWriter | None = None,
    ) -> int:
        """Add synthetic reward entries for every discovered pool. Returns rewards added."""
        pool_ranges = discover_pool_ranges(history, self._classifier)
        if not pool_ranges:
            logger.debug("staking_no_pools", account_id=account_id)
            return 0
        for pool_range in pool_ranges:
            history.add_staking_pool(pool_range.pool)

        epoch_length = epoch_length or self._epoch_length
        if now_block is None:
            self._token.raise_if_cancelled()
            now_block = await self._chain.get_current_block_height()

        added = 0
        for pool_range in pool_ranges:
            active = await self.active_range(account_id, pool_range, now_block)
            added += await self._scan_pool(account_id, history, active, epoch_length, max_epochs, writer)
        if added:
            logger.info("staking_rewards_added", account_id=account_id, rewards=added)
        return added
