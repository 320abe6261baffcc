"""
Main entrypoint: sync the accounts listed in ACCOUNTS, or verify their stored histories.

Env: ACCOUNTS (comma-separated, required), MAX_TRANSACTIONS (default 100),
STAKING_ONLY (1/true to only run the staking epoch scan), VERIFY (1/true to
audit stored histories without remote calls), plus the node and indexer
settings read by backend_nearledger.config.

SIGINT/SIGTERM stop the run cleanly; every account's progress is flushed and
the next run resumes from it.
"""

import asyncio
import json
import os
import sys

# Configure structured logging before other imports that may log
from backend_nearledger.ledger_logging import get_logger

logger = get_logger("main")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


def _verify(account_ids: list[str]) -> int:
    from backend_nearledger.config import get_settings
    from backend_nearledger.core.exceptions import HistoryLoadError
    from backend_nearledger.gaps.audit import verify_history_file
    from backend_nearledger.history.store import HistoryStore

    store = HistoryStore(get_settings().data_dir)
    exit_code = 0
    for account_id in account_ids:
        try:
            report = verify_history_file(store.path_for(account_id))
        except HistoryLoadError as e:
            logger.error("main_verify_unreadable", account_id=account_id, error=str(e))
            exit_code = 1
            continue
        print(json.dumps({"accountId": account_id, **report.to_dict()}, indent=2))
        if not report.valid:
            exit_code = 1
    return exit_code


def main() -> int:
    account_ids = [a.strip() for a in os.getenv("ACCOUNTS", "").split(",") if a.strip()]
    if not account_ids:
        logger.error("main_config_error", message="No accounts to sync: set ACCOUNTS env (comma-separated)")
        return 1

    if _env_flag("VERIFY"):
        return _verify(account_ids)

    from backend_nearledger.sync.factory import run_accounts
    from backend_nearledger.sync.runner import SyncStatus

    max_transactions = int(os.getenv("MAX_TRANSACTIONS", "100").strip() or "100")
    reports = asyncio.run(run_accounts(account_ids, max_transactions, _env_flag("STAKING_ONLY")))
    for report in reports:
        print(json.dumps(report.to_dict()))
    return 0 if all(r.status is not SyncStatus.FAILED for r in reports) else 1


if __name__ == "__main__":
    sys.exit(main())
