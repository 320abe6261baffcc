"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and .env files (see config.env).
- Provide defaults for sync tuning: epoch length, flush batch size, step-back attempts.
- Expose typed settings for the node client, indexers, history store and sync runner.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from backend_nearledger.config import env

EPOCH_LENGTH = 43200
DEFAULT_FUNGIBLE_TOKENS: tuple[str, ...] = (
    "17208628f84f5d6ad33f0da3bbbeb27ffcb398eac501a31bd6ad2011e36133a1",  # USDC
    "wrap.near",
    "usdt.tether-token.near",
)
INTENTS_CONTRACT = "intents.near"


@dataclass(frozen=True)
class Settings:
    """Typed configuration shared by the node client, indexers and sync runner."""

    rpc_endpoint: str = env.DEFAULT_RPC_ENDPOINT
    rpc_api_key: str | None = None
    neardata_base_url: str = env.DEFAULT_NEARDATA_BASE_URL
    rpc_delay_sec: float = env.DEFAULT_RPC_DELAY_MS / 1000.0
    request_timeout_sec: float = 30.0
    nearblocks_api_key: str | None = None
    intents_explorer_api_key: str | None = None
    pikespeak_api_key: str | None = None
    pikespeak_api_url: str = env.PIKESPEAK_API_BASE
    data_dir: Path = field(default_factory=lambda: Path("data") / "accounts")
    epoch_length: int = EPOCH_LENGTH
    flush_every: int = 5
    max_step_back_attempts: int = 3
    subsequent_block_lookahead: int = 3
    gap_budget: int = 50
    default_fungible_tokens: tuple[str, ...] = DEFAULT_FUNGIBLE_TOKENS
    intents_contract: str = INTENTS_CONTRACT


def get_settings() -> Settings:
    """Build Settings from the environment (.env loaded on first access)."""
    return Settings(
        rpc_endpoint=env.get_rpc_endpoint(),
        rpc_api_key=env.get_rpc_api_key(),
        neardata_base_url=env.get_neardata_base_url(),
        rpc_delay_sec=env.get_rpc_delay_ms() / 1000.0,
        nearblocks_api_key=env.get_nearblocks_api_key(),
        intents_explorer_api_key=env.get_intents_explorer_api_key(),
        pikespeak_api_key=env.get_pikespeak_api_key(),
        pikespeak_api_url=env.get_pikespeak_api_url(),
        data_dir=env.get_data_dir(),
    )
