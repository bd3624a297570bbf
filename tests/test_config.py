"""Tests for environment configuration."""

from pathlib import Path

import pytest

from courier.config import DEFAULT_NETWORK, Settings
from courier.errors import ConfigurationError


def test_defaults():
    settings = Settings.from_env({})
    assert settings.network == DEFAULT_NETWORK
    assert settings.chain_id == 84532
    assert settings.encryption_key == ""
    assert not settings.privacy_issuer_configured


def test_from_env(tmp_path):
    settings = Settings.from_env(
        {
            "COURIER_RPC_URL": "http://localhost:8545",
            "COURIER_NETWORK": "eip155:31337",
            "COURIER_ENCRYPTION_KEY": "pw",
            "COURIER_PRIVACY_ENDPOINT": "https://issuer.example",
            "COURIER_PRIVACY_API_KEY": "k",
            "COURIER_HOME": str(tmp_path),
            "COURIER_CONFIRMATION_TIMEOUT": "5",
            "COURIER_LOG_LEVEL": "debug",
        }
    )
    assert settings.rpc_url == "http://localhost:8545"
    assert settings.chain_id == 31337
    assert settings.home == Path(tmp_path)
    assert settings.confirmation_timeout == 5.0
    assert settings.log_level == "DEBUG"
    assert settings.privacy_issuer_configured
    assert settings.startup_warnings() == []


def test_processing_deadline():
    settings = Settings(request_timeout=10, confirmation_timeout=60, poll_interval=2)
    assert settings.processing_deadline == 5 * 10 + 60 + 10 + 2
    assert Settings().processing_deadline <= 300


def test_secrets_not_in_repr():
    settings = Settings(encryption_key="hunter2", privacy_api_key="k-secret")
    assert "hunter2" not in repr(settings)
    assert "k-secret" not in repr(settings)


def test_missing_key_warns():
    warnings = Settings.from_env({}).startup_warnings()
    assert any("COURIER_ENCRYPTION_KEY" in w for w in warnings)
    assert any("Privacy issuer" in w for w in warnings)


@pytest.mark.parametrize("network", ["solana:devnet", "eip155:", "eip155:base"])
def test_unsupported_network(network):
    with pytest.raises(ConfigurationError):
        Settings(network=network).chain_id


def test_bad_number():
    with pytest.raises(ConfigurationError, match="COURIER_POLL_INTERVAL"):
        Settings.from_env({"COURIER_POLL_INTERVAL": "soon"})
