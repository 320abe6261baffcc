"""
Structured logging for Backend NearLedger.

Import get_logger from here in every module; configuration happens once on import.
"""

from backend_nearledger.ledger_logging.logger import account_context, bind_account, get_logger

__all__ = ["account_context", "bind_account", "get_logger"]
