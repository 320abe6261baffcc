"""
Configuration management for Backend NearLedger.

Loads settings from environment variables and an optional .env file.
Exposes a single source of truth for node endpoints, indexer keys and sync tuning.
"""

from backend_nearledger.config.settings import Settings, get_settings  # noqa: F401

__all__ = ["Settings", "get_settings"]
