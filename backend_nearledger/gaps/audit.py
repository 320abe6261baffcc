"""
Read-only verification of a stored history.

Walks the recorded chain and reports every pair of adjacent entries that does
not connect, with the mismatched assets. Staking-only rewards are not part of
the chain; their pool balances are carried forward to the next entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from backend_nearledger.gaps.detector import BalanceMismatch, compare_balances, connected_pairs
from backend_nearledger.history.models import AccountHistory
from backend_nearledger.history.store import load_history_file


@dataclass(frozen=True)
class AuditError:
    previous_block: int
    current_block: int
    errors: tuple[BalanceMismatch, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "previousBlock": self.previous_block,
            "currentBlock": self.current_block,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class VerificationReport:
    valid: bool = True
    total_transactions: int = 0
    verified_count: int = 0
    error_count: int = 0
    errors: list[AuditError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "totalTransactions": self.total_transactions,
            "verifiedCount": self.verified_count,
            "errorCount": self.error_count,
            "errors": [e.to_dict() for e in self.errors],
        }


def verify_history(history: AccountHistory) -> VerificationReport:
    report = VerificationReport(total_transactions=len(history.transactions))
    if history.connected_entries():
        report.verified_count = 1
    for previous, current, expected in connected_pairs(history.transactions):
        check = compare_balances(expected, current.balance_before)
        if check.valid:
            report.verified_count += 1
        else:
            report.error_count += 1
            report.errors.append(AuditError(previous.block, current.block, check.errors))
    report.valid = report.error_count == 0
    return report


def verify_history_file(path: Path | str) -> VerificationReport:
    return verify_history(load_history_file(path))
