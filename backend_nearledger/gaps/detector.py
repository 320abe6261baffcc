"""
Gap detector.

Pure functions over in-memory entries; no remote calls.

Responsibilities:
- Compare a recorded "after" snapshot with the next recorded "before" snapshot
  under sparse rules: an asset absent from either side is never a mismatch,
  an asset present on both sides with different values is exactly one mismatch.
  NEAR is only compared when both sides hold a non-zero value, because a zero
  NEAR is indistinguishable from "not queried" in older documents.
- Find internal gaps, the gap to account creation and the gap to the present.
- Report which assets a gap involves so filling can be scoped to them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator

from backend_nearledger.history.models import TransactionEntry
from backend_nearledger.snapshots.models import AssetFilter, BalanceSnapshot


class MismatchType(str, Enum):
    NEAR = "near_balance_mismatch"
    TOKEN = "token_balance_mismatch"
    INTENTS = "intents_balance_mismatch"
    STAKING = "staking_balance_mismatch"


class GapKind(str, Enum):
    INTERNAL = "internal"
    TO_CREATION = "to_creation"
    TO_PRESENT = "to_present"


@dataclass(frozen=True)
class BalanceMismatch:
    """One asset whose recorded values do not connect."""

    type: MismatchType
    expected: str
    actual: str
    message: str
    token: str | None = None
    pool: str | None = None

    @property
    def asset(self) -> str:
        return self.pool or self.token or "near"

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "type": self.type.value,
            "expected": self.expected,
            "actual": self.actual,
            "message": self.message,
        }
        if self.token is not None:
            out["token"] = self.token
        if self.pool is not None:
            out["pool"] = self.pool
        return out


@dataclass(frozen=True)
class ConnectivityCheck:
    valid: bool
    errors: tuple[BalanceMismatch, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": [e.to_dict() for e in self.errors]}


@dataclass
class Gap:
    """
    Break in recorded continuity between start_block and end_block.

    For internal gaps the missing change lies in (start_block, end_block - 1].
    """

    kind: GapKind
    start_block: int
    end_block: int
    verification: ConnectivityCheck

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "startBlock": self.start_block,
            "endBlock": self.end_block,
            "verification": self.verification.to_dict(),
        }


@dataclass
class GapAnalysis:
    internal_gaps: list[Gap] = field(default_factory=list)
    gap_to_creation: Gap | None = None
    gap_to_present: Gap | None = None

    @property
    def total_gaps(self) -> int:
        return len(self.internal_gaps) + (self.gap_to_creation is not None) + (self.gap_to_present is not None)

    @property
    def is_complete(self) -> bool:
        return self.total_gaps == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalGaps": self.total_gaps,
            "isComplete": self.is_complete,
            "internalGaps": [g.to_dict() for g in self.internal_gaps],
            "gapToCreation": self.gap_to_creation.to_dict() if self.gap_to_creation else None,
            "gapToPresent": self.gap_to_present.to_dict() if self.gap_to_present else None,
        }


def is_staking_only_entry(entry: TransactionEntry) -> bool:
    """Synthetic reward entry: no transaction hashes, staking changed, nothing else changed."""
    return entry.is_staking_only


def is_zero_balance(snapshot: BalanceSnapshot | None) -> bool:
    return snapshot is None or snapshot.is_zero()


def _is_nonzero(value: str | None) -> bool:
    return value is not None and value != "" and int(value) != 0


def compare_balances(expected: BalanceSnapshot, actual: BalanceSnapshot) -> ConnectivityCheck:
    """Mismatches between expected (previous after) and actual (next before), sparse rules."""
    errors: list[BalanceMismatch] = []

    if _is_nonzero(expected.near) and _is_nonzero(actual.near) and expected.near != actual.near:
        errors.append(
            BalanceMismatch(
                type=MismatchType.NEAR,
                expected=str(expected.near),
                actual=str(actual.near),
                message=f"NEAR balance mismatch: expected {expected.near}, got {actual.near}",
            )
        )

    for token in sorted(expected.fungible_tokens.keys() & actual.fungible_tokens.keys()):
        exp, act = expected.fungible_tokens[token], actual.fungible_tokens[token]
        if exp != act:
            errors.append(
                BalanceMismatch(
                    type=MismatchType.TOKEN,
                    expected=exp,
                    actual=act,
                    message=f"Token {token} balance mismatch: expected {exp}, got {act}",
                    token=token,
                )
            )

    for token in sorted(expected.intents_tokens.keys() & actual.intents_tokens.keys()):
        exp, act = expected.intents_tokens[token], actual.intents_tokens[token]
        if exp != act:
            errors.append(
                BalanceMismatch(
                    type=MismatchType.INTENTS,
                    expected=exp,
                    actual=act,
                    message=f"Intents token {token} balance mismatch: expected {exp}, got {act}",
                    token=token,
                )
            )

    for pool in sorted(expected.staking_pools.keys() & actual.staking_pools.keys()):
        exp, act = expected.staking_pools[pool], actual.staking_pools[pool]
        if exp != act:
            errors.append(
                BalanceMismatch(
                    type=MismatchType.STAKING,
                    expected=exp,
                    actual=act,
                    message=f"Staking pool {pool} balance mismatch: expected {exp}, got {act}",
                    pool=pool,
                )
            )

    return ConnectivityCheck(valid=not errors, errors=tuple(errors))


def verify_connectivity(previous: TransactionEntry | None, current: TransactionEntry) -> ConnectivityCheck:
    """Does current.balance_before connect to previous.balance_after? The first entry always does."""
    if previous is None:
        return ConnectivityCheck(valid=True)
    return compare_balances(previous.balance_after, current.balance_before)


def _creation_mismatches(snapshot: BalanceSnapshot) -> ConnectivityCheck:
    """Every non-zero asset of the earliest snapshot, measured against an account that did not exist."""
    errors: list[BalanceMismatch] = []
    if _is_nonzero(snapshot.near):
        errors.append(
            BalanceMismatch(MismatchType.NEAR, "0", str(snapshot.near), f"NEAR balance {snapshot.near} before first entry")
        )
    for token, value in sorted(snapshot.fungible_tokens.items()):
        if _is_nonzero(value):
            errors.append(BalanceMismatch(MismatchType.TOKEN, "0", value, f"Token {token} balance {value} before first entry", token=token))
    for token, value in sorted(snapshot.intents_tokens.items()):
        if _is_nonzero(value):
            errors.append(
                BalanceMismatch(MismatchType.INTENTS, "0", value, f"Intents token {token} balance {value} before first entry", token=token)
            )
    for pool, value in sorted(snapshot.staking_pools.items()):
        if _is_nonzero(value):
            errors.append(BalanceMismatch(MismatchType.STAKING, "0", value, f"Staking pool {pool} balance {value} before first entry", pool=pool))
    return ConnectivityCheck(valid=not errors, errors=tuple(errors))


def connected_pairs(
    entries: Iterable[TransactionEntry],
) -> Iterator[tuple[TransactionEntry, TransactionEntry, BalanceSnapshot]]:
    """
    Consecutive connected entries with the snapshot the second one must start from.

    Reward entries between a pair are not part of the chain, but their pool
    balances replace the stale ones of the earlier entry.
    """
    previous: TransactionEntry | None = None
    rewards: dict[str, str] = {}
    for entry in sorted(entries, key=lambda e: e.block):
        if entry.is_staking_only:
            rewards.update(entry.balance_after.staking_pools)
            continue
        if previous is not None:
            yield previous, entry, _carry_rewards(previous.balance_after, rewards)
        previous, rewards = entry, {}


def _carry_rewards(snapshot: BalanceSnapshot, rewards: dict[str, str]) -> BalanceSnapshot:
    if not rewards:
        return snapshot
    return snapshot.merge(BalanceSnapshot(staking_pools=rewards))


def detect_gaps(
    entries: Iterable[TransactionEntry],
    live_snapshot: BalanceSnapshot | None = None,
    live_block: int | None = None,
) -> GapAnalysis:
    """
    Internal gaps, gap to creation and gap to present for the given entries.

    Staking-only reward entries are left out of the chain. The gap to present
    is only checked when a live snapshot is supplied; live_block is its end.
    """
    analysis = GapAnalysis()
    entries = sorted(entries, key=lambda e: e.block)
    chain = [e for e in entries if not e.is_staking_only]
    if not chain:
        return analysis

    for previous, current, expected in connected_pairs(entries):
        check = compare_balances(expected, current.balance_before)
        if not check.valid:
            analysis.internal_gaps.append(Gap(GapKind.INTERNAL, previous.block, current.block, check))

    earliest = chain[0]
    if not is_zero_balance(earliest.balance_before):
        analysis.gap_to_creation = Gap(GapKind.TO_CREATION, 0, earliest.block, _creation_mismatches(earliest.balance_before))

    if live_snapshot is not None:
        latest = chain[-1]
        later_rewards: dict[str, str] = {}
        for entry in entries:
            if entry.block > latest.block:
                later_rewards.update(entry.balance_after.staking_pools)
        check = compare_balances(_carry_rewards(latest.balance_after, later_rewards), live_snapshot)
        if not check.valid:
            end = live_block if live_block is not None else latest.block
            analysis.gap_to_present = Gap(GapKind.TO_PRESENT, latest.block, end, check)

    return analysis


def get_gap_changed_assets(gap: Gap) -> AssetFilter:
    """Explicit filter of the assets a gap's mismatches name."""
    errors = gap.verification.errors
    return AssetFilter.only(
        near=any(e.type is MismatchType.NEAR for e in errors),
        fungible_tokens=[e.token for e in errors if e.type is MismatchType.TOKEN and e.token],
        intents_tokens=[e.token for e in errors if e.type is MismatchType.INTENTS and e.token],
        staking_pools=[e.pool for e in errors if e.type is MismatchType.STAKING and e.pool],
    )
