"""
Tests for environment-driven configuration.
"""

from __future__ import annotations

from pathlib import Path

from backend_nearledger.config import env, get_settings


def test_defaults_when_unset(monkeypatch):
    for name in (
        "NEAR_RPC_ENDPOINT",
        "FASTNEAR_API_KEY",
        "RPC_DELAY_MS",
        "NEARBLOCKS_API_KEY",
        "PIKESPEAK_API_KEY",
        "PIKESPEAK_API_URL",
    ):
        monkeypatch.setenv(name, "")
    assert env.get_rpc_endpoint() == env.DEFAULT_RPC_ENDPOINT
    assert env.get_rpc_api_key() is None
    assert env.get_rpc_delay_ms() == env.DEFAULT_RPC_DELAY_MS
    assert env.get_nearblocks_api_key() is None
    assert env.get_pikespeak_api_key() is None
    assert env.get_pikespeak_api_url() == env.PIKESPEAK_API_BASE


def test_rpc_delay_parsing(monkeypatch):
    monkeypatch.setenv("RPC_DELAY_MS", "250")
    assert env.get_rpc_delay_ms() == 250
    monkeypatch.setenv("RPC_DELAY_MS", "-5")
    assert env.get_rpc_delay_ms() == 0
    monkeypatch.setenv("RPC_DELAY_MS", "fast")
    assert env.get_rpc_delay_ms() == env.DEFAULT_RPC_DELAY_MS


def test_neardata_url_is_normalised(monkeypatch):
    monkeypatch.setenv("NEARDATA_BASE_URL", "https://example.org/v0/ ")
    assert env.get_neardata_base_url() == "https://example.org/v0"


def test_get_settings_reads_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("NEAR_RPC_ENDPOINT", "https://rpc.example.org")
    monkeypatch.setenv("FASTNEAR_API_KEY", "secret")
    monkeypatch.setenv("RPC_DELAY_MS", "100")
    monkeypatch.setenv("NEARBLOCKS_API_KEY", "nb-key")
    monkeypatch.setenv("PIKESPEAK_API_KEY", "pk-key")
    monkeypatch.setenv("PIKESPEAK_API_URL", "https://pikespeak.example.org/")
    monkeypatch.setenv("NEARLEDGER_DATA_DIR", str(tmp_path))

    settings = get_settings()

    assert settings.rpc_endpoint == "https://rpc.example.org"
    assert settings.rpc_api_key == "secret"
    assert settings.rpc_delay_sec == 0.1
    assert settings.nearblocks_api_key == "nb-key"
    assert settings.pikespeak_api_key == "pk-key"
    assert settings.pikespeak_api_url == "https://pikespeak.example.org"
    assert settings.data_dir == Path(tmp_path)
    assert settings.epoch_length == 43200
