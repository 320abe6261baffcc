"""
Environment variable loading for NearLedger.

- NEAR_RPC_ENDPOINT: archival RPC endpoint (default: FastNEAR archival mainnet)
- FASTNEAR_API_KEY: bearer token for the RPC endpoint
- NEARDATA_BASE_URL: neardata block API (receipts with logs)
- RPC_DELAY_MS: minimum delay between consecutive node calls
- NEARBLOCKS_API_KEY: enables the NearBlocks indexer hint source
- INTENTS_EXPLORER_API_KEY: optional bearer for the Intents Explorer
- PIKESPEAK_API_KEY: enables the Pikespeak indexer hint source
- PIKESPEAK_API_URL: Pikespeak API base (default: https://api.pikespeak.ai)
- NEARLEDGER_DATA_DIR: directory holding one history document per account
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is backend_nearledger/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_RPC_ENDPOINT = "https://archival-rpc.mainnet.fastnear.com"
DEFAULT_NEARDATA_BASE_URL = "https://mainnet.neardata.xyz/v0"
NEARBLOCKS_API_BASE = "https://api.nearblocks.io/v1"
INTENTS_EXPLORER_API_BASE = "https://api.intents.near.org/v1"
PIKESPEAK_API_BASE = "https://api.pikespeak.ai"
DEFAULT_RPC_DELAY_MS = 50


def load_ledger_env() -> None:
    """Load .env from project root. Safe to call multiple times; never overrides set vars."""
    load_dotenv(_ENV_PATH)


def _get_str(name: str) -> str:
    load_ledger_env()
    return (os.getenv(name) or "").strip()


def get_rpc_endpoint() -> str:
    """NEAR_RPC_ENDPOINT or the FastNEAR archival default."""
    return _get_str("NEAR_RPC_ENDPOINT") or DEFAULT_RPC_ENDPOINT


def get_rpc_api_key() -> str | None:
    return _get_str("FASTNEAR_API_KEY") or None


def get_neardata_base_url() -> str:
    return (_get_str("NEARDATA_BASE_URL") or DEFAULT_NEARDATA_BASE_URL).rstrip("/")


def get_rpc_delay_ms() -> int:
    """
    Return RPC_DELAY_MS as a non-negative int.
    Falls back to the default when unset or not a number.
    """
    raw = _get_str("RPC_DELAY_MS")
    if not raw:
        return DEFAULT_RPC_DELAY_MS
    try:
        return max(0, int(raw))
    except ValueError:
        return DEFAULT_RPC_DELAY_MS


def get_nearblocks_api_key() -> str | None:
    return _get_str("NEARBLOCKS_API_KEY") or None


def get_intents_explorer_api_key() -> str | None:
    return _get_str("INTENTS_EXPLORER_API_KEY") or None


def get_pikespeak_api_key() -> str | None:
    return _get_str("PIKESPEAK_API_KEY") or None


def get_pikespeak_api_url() -> str:
    return (_get_str("PIKESPEAK_API_URL") or PIKESPEAK_API_BASE).rstrip("/")


def get_data_dir() -> Path:
    """Directory for per-account history documents."""
    raw = _get_str("NEARLEDGER_DATA_DIR")
    if raw:
        return Path(raw)
    return _ROOT / "data" / "accounts"
