"""
Structured JSON logging: timestamp, event_type, account_id, block ranges.

structlog with ISO timestamps, log level and consistent keys so sync runs over
millions of blocks can be followed in an aggregator. Modules call get_logger()
and pass start_block / end_block where relevant; the sync runner binds
account_id per account task with account_context().

Uses only Python stdlib logging and structlog; no backend_nearledger imports to avoid circular imports.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, ContextManager

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)

# json for production; anything else renders for a terminal
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()


def _add_timestamp(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Ensure timestamp is always present (ISO 8601)."""
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _normalize_event(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Rename structlog 'event' to event_type; mirror it into message."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    if "message" not in event_dict and "event_type" in event_dict:
        event_dict["message"] = str(event_dict["event_type"])
    return event_dict


def _add_block_span(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add block_span when an event carries both ends of a block range."""
    start, end = event_dict.get("start_block"), event_dict.get("end_block")
    if isinstance(start, int) and isinstance(end, int) and "block_span" not in event_dict:
        event_dict["block_span"] = end - start
    return event_dict


def configure_structlog() -> None:
    """Configure structlog once: timestamp, level, event_type, renderer by LOG_FORMAT."""
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_timestamp,
        _normalize_event,
        _add_block_span,
    ]
    if LOG_FORMAT == "json":
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
        )
    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Return a structured logger for the given module name.

        logger = get_logger(__name__)
        logger.info("gap_closed", account_id=acct, start_block=100, end_block=200)

    Output (JSON): {"event_type": "gap_closed", "account_id": "...", "start_block": 100,
    "end_block": 200, "block_span": 100, "timestamp": "...", "level": "info",
    "logger": "module.name"}
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_account(
    account_id: str,
    start_block: int | None = None,
    end_block: int | None = None,
) -> structlog.BoundLogger:
    """Return a logger with account_id (and the block range, when given) bound."""
    context: dict[str, Any] = {"account_id": account_id}
    if start_block is not None:
        context["start_block"] = start_block
    if end_block is not None:
        context["end_block"] = end_block
    return get_logger("backend_nearledger").bind(**context)


def account_context(account_id: str, **extra: Any) -> ContextManager[None]:
    """
    Bind account_id in contextvars for the duration of a block.

    Every logger in the current task picks it up through merge_contextvars, so
    concurrent account syncs never mix their context.
    """
    return structlog.contextvars.bound_contextvars(account_id=account_id, **extra)
