"""
Staking pool classification strategy.

Decides whether a counterparty is a staking pool and whether a transfer to or
from it is a deposit or a withdrawal. The scanner and the attributor only talk
to the StakingPoolClassifier interface, so new pool naming conventions are a
new classifier, not a change to their loops.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Pattern

from backend_nearledger.history.models import (
    AccountHistory,
    TransferDetail,
    TransferDirection,
    TransferType,
)

DEFAULT_POOL_PATTERNS: tuple[str, ...] = (
    r"\.poolv1\.near$",
    r"\.pool\.near$",
    r"\.poolv2\.near$",
)
DEFAULT_DEPOSIT_METHODS: frozenset[str] = frozenset({"deposit_and_stake", "stake"})
DEFAULT_WITHDRAW_METHODS: frozenset[str] = frozenset({"unstake", "unstake_all", "withdraw_all", "withdraw"})


class StakingAction(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class StakingPoolClassifier(ABC):
    """Strategy for recognising staking pools and principal movements."""

    @abstractmethod
    def is_staking_pool(self, account_id: str) -> bool:
        ...

    @abstractmethod
    def classify(self, transfer: TransferDetail, account_id: str | None = None) -> StakingAction | None:
        """Deposit / withdrawal for a NEAR transfer with a pool, else None."""
        ...


class PatternStakingClassifier(StakingPoolClassifier):
    """Pool-name suffix patterns plus deposit/withdraw method names."""

    def __init__(
        self,
        pool_patterns: Iterable[str] = DEFAULT_POOL_PATTERNS,
        deposit_methods: Iterable[str] = DEFAULT_DEPOSIT_METHODS,
        withdraw_methods: Iterable[str] = DEFAULT_WITHDRAW_METHODS,
    ) -> None:
        self._patterns: tuple[Pattern[str], ...] = tuple(re.compile(p) for p in pool_patterns)
        self._deposit_methods = frozenset(deposit_methods)
        self._withdraw_methods = frozenset(withdraw_methods)

    def is_staking_pool(self, account_id: str) -> bool:
        return any(p.search(account_id) for p in self._patterns)

    def _is_pool_counterparty(self, transfer: TransferDetail, account_id: str | None) -> bool:
        counterparty = transfer.counterparty
        if not counterparty or counterparty == account_id:
            return False
        if self.is_staking_pool(counterparty):
            return True
        # Pools without a conventional suffix are recognised by the staking call itself.
        return transfer.direction is TransferDirection.OUT and transfer.memo == "deposit_and_stake"

    def classify(self, transfer: TransferDetail, account_id: str | None = None) -> StakingAction | None:
        if transfer.type is not TransferType.NEAR:
            return None
        if not self._is_pool_counterparty(transfer, account_id):
            return None
        if transfer.direction is TransferDirection.OUT:
            if transfer.memo in self._withdraw_methods:
                # deposit attached to an unstake/withdraw call is not principal
                return None
            if transfer.memo is None or transfer.memo in self._deposit_methods:
                return StakingAction.DEPOSIT
            return None
        return StakingAction.WITHDRAWAL


@dataclass(frozen=True)
class PoolRange:
    """Staking relationship with one pool as seen in recorded transfers."""

    pool: str
    first_deposit_block: int
    last_withdrawal_block: int | None = None


def discover_pool_ranges(
    history: AccountHistory,
    classifier: StakingPoolClassifier,
) -> list[PoolRange]:
    """First deposit and last withdrawal per pool; pools never deposited into are skipped."""
    deposits: dict[str, list[int]] = {}
    withdrawals: dict[str, list[int]] = {}
    for entry in history.transactions:
        for transfer in entry.transfers or []:
            action = classifier.classify(transfer, history.account_id)
            if action is None or transfer.counterparty is None:
                continue
            target = deposits if action is StakingAction.DEPOSIT else withdrawals
            target.setdefault(transfer.counterparty, []).append(entry.block)

    ranges: list[PoolRange] = []
    for pool in sorted(deposits):
        pool_withdrawals = withdrawals.get(pool)
        ranges.append(
            PoolRange(
                pool=pool,
                first_deposit_block=min(deposits[pool]),
                last_withdrawal_block=max(pool_withdrawals) if pool_withdrawals else None,
            )
        )
    return ranges
