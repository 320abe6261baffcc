"""
Cancellation token shared by every sync worker in the process.

Responsibilities:
- Hold the single stop flag set by SIGINT/SIGTERM or by a rate-limit response.
- Let every suspension point poll the flag before issuing a remote call.
- Distinguish user cancellation from rate limiting for reporting.
"""

from __future__ import annotations

import signal
import threading
from typing import Any

from backend_nearledger.core.exceptions import Cancelled, RateLimited
from backend_nearledger.ledger_logging import get_logger

logger = get_logger(__name__)

REASON_CANCELLED = "cancelled"
REASON_RATE_LIMITED = "rate_limited"


class CancellationToken:
    """Process-wide stop flag passed explicitly through every call chain."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None
        self._lock = threading.Lock()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = REASON_CANCELLED) -> None:
        """Set the flag. The first reason wins so a later signal does not hide a rate limit."""
        with self._lock:
            if not self._event.is_set():
                self._reason = reason
                self._event.set()

    def rate_limited(self) -> None:
        self.cancel(REASON_RATE_LIMITED)

    def raise_if_cancelled(self) -> None:
        """Raise RateLimited or Cancelled when the flag is set."""
        if not self._event.is_set():
            return
        if self._reason == REASON_RATE_LIMITED:
            raise RateLimited()
        raise Cancelled()


def install_signal_handlers(token: CancellationToken) -> None:
    """
    Map SIGINT (and SIGTERM on Unix) onto the token for a clean, resumable stop.
    No-op outside the main thread.
    """

    def _handle_sig(signum: int, frame: Any) -> None:
        sig = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        logger.info("sync_shutdown_signal", signal=sig)
        token.cancel(REASON_CANCELLED)

    try:
        signal.signal(signal.SIGINT, _handle_sig)
        if hasattr(signal, "SIGTERM"):
            signal.signal(signal.SIGTERM, _handle_sig)
    except (ValueError, OSError):
        # Signal only valid in main thread / not supported on this platform
        logger.debug("signal_handlers_not_installed")
