"""
Application-level exceptions.

Responsibilities:
- Define the sync error taxonomy: rate limiting, cancellation, account
  absence, unreadable archival blocks and unresolved gaps.
- Carry the context (account, block, mismatched assets) the runner logs and reports.
"""

from __future__ import annotations

from typing import Any


class NearLedgerError(Exception):
    """Base class for all NearLedger errors."""


class Cancelled(NearLedgerError):
    """Operation stopped because the cancellation token was set (signal or user request)."""

    def __init__(self, message: str = "Operation cancelled by user") -> None:
        super().__init__(message)


class RateLimited(Cancelled):
    """
    A collaborator answered with a rate-limit response.

    Halts every further remote call in the process; handled like Cancelled
    (flush and stop) but reported separately.
    """

    def __init__(self, message: str = "Rate limited by upstream") -> None:
        super().__init__(message)


class AccountNotFound(NearLedgerError):
    """The account did not exist at the queried block. Terminal condition for backward search."""

    def __init__(self, account_id: str, block: int | None = None) -> None:
        self.account_id = account_id
        self.block = block
        where = f" at block {block}" if block is not None else ""
        super().__init__(f"Account {account_id} does not exist{where}")


class BlockUnreadable(NearLedgerError):
    """Archival source could not serve the block even after stepping back."""

    def __init__(self, block: int, attempts: int = 0) -> None:
        self.block = block
        self.attempts = attempts
        super().__init__(f"Block {block} unreadable after {attempts} attempt(s)")


class ReconciliationFailed(NearLedgerError):
    """A gap stays open after re-querying both boundaries with every known asset."""

    def __init__(
        self,
        start_block: int,
        end_block: int,
        mismatches: list[dict[str, Any]] | None = None,
    ) -> None:
        self.start_block = start_block
        self.end_block = end_block
        self.mismatches = mismatches or []
        super().__init__(
            f"Gap {start_block}-{end_block} unresolved ({len(self.mismatches)} mismatch(es))"
        )


class HistoryLoadError(NearLedgerError):
    """Stored history document exists but cannot be parsed."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Cannot load history {path}: {reason}")


class RpcError(NearLedgerError):
    """Remote call failed with an error that is neither rate limiting nor a known condition."""

    def __init__(self, message: str, *, method: str | None = None, status_code: int | None = None) -> None:
        self.method = method
        self.status_code = status_code
        super().__init__(message)
