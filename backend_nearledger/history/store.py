"""
Durable storage for account histories: one JSON document per account.

Responsibilities:
- Load and save AccountHistory documents; entries sorted ascending before every write.
- Write atomically (temp file + replace) so a crash never leaves a torn document.
- HistoryWriter: flush after every batch of additions and after each closed gap.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from backend_nearledger.core.exceptions import HistoryLoadError
from backend_nearledger.history.models import AccountHistory
from backend_nearledger.ledger_logging import get_logger

logger = get_logger(__name__)

DEFAULT_FLUSH_EVERY = 5


def load_history_file(path: Path | str) -> AccountHistory:
    """Parse a stored history document. Raises HistoryLoadError on unreadable content."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return AccountHistory.from_dict(data)
    except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise HistoryLoadError(str(path), str(e)) from e


class HistoryStore:
    """File-backed history storage rooted at base_dir."""

    def __init__(self, base_dir: Path | str) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def path_for(self, account_id: str) -> Path:
        return self._base_dir / f"{account_id}.json"

    def load(self, account_id: str) -> AccountHistory | None:
        """Return the stored history, or None when the account has never been synced."""
        path = self.path_for(account_id)
        if not path.exists():
            return None
        history = load_history_file(path)
        logger.debug(
            "history_loaded",
            account_id=account_id,
            transactions=len(history.transactions),
        )
        return history

    def load_or_create(self, account_id: str) -> AccountHistory:
        history = self.load(account_id)
        if history is None:
            history = AccountHistory(account_id=account_id)
            logger.info("history_created", account_id=account_id)
        return history

    def save(self, history: AccountHistory) -> Path:
        """Sort, stamp updatedAt and write the document atomically."""
        history.sort()
        history.touch()
        path = self.path_for(history.account_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(history.to_dict(), f, indent=2)
        os.replace(tmp, path)
        logger.debug(
            "history_saved",
            account_id=history.account_id,
            transactions=len(history.transactions),
            path=str(path),
        )
        return path


class HistoryWriter:
    """
    Batches writes of one in-memory history.

    record_addition() flushes every flush_every additions; gap_closed() and
    flush() write immediately.
    """

    def __init__(
        self,
        store: HistoryStore,
        history: AccountHistory,
        flush_every: int = DEFAULT_FLUSH_EVERY,
    ) -> None:
        if flush_every < 1:
            raise ValueError("flush_every must be >= 1")
        self._store = store
        self._history = history
        self._flush_every = flush_every
        self._pending = 0

    @property
    def history(self) -> AccountHistory:
        return self._history

    @property
    def pending(self) -> int:
        return self._pending

    def record_addition(self) -> None:
        self._pending += 1
        if self._pending >= self._flush_every:
            self.flush()

    def gap_closed(self) -> None:
        self.flush()

    def flush(self) -> None:
        self._store.save(self._history)
        self._pending = 0
