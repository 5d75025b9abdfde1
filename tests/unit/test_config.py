"""
Unit tests for bridge configuration and the secret handle.
"""

import json

import pytest

from swapbridge.config import (
    OPERATOR_TOKEN,
    RECEIPT_PASSPHRASE,
    WRAPPED_SIGNER_KEY,
    BridgeConfig,
    CoordinatorConfig,
    SecretHandle,
)
from swapbridge.errors import ConfigurationError, RetryPolicy


def valid_config() -> BridgeConfig:
    config = BridgeConfig()
    config.base_chain.custodial_address = "custodial1address"
    config.wrapped_chain.bridge_contract_address = "wrapped1bridge"
    return config


class TestBridgeConfig:
    """Test BridgeConfig."""

    def test_defaults(self):
        """Test default settings."""
        config = BridgeConfig()
        assert config.base_chain.min_confirmations == 1
        assert config.storage.lease_seconds == 900
        assert config.storage.busy_timeout_ms == 250
        assert config.receipts.retention_seconds == 90 * 24 * 3600.0
        assert config.api.port == 3118
        assert isinstance(config.coordinator.retry_policy, RetryPolicy)

    def test_round_trip(self):
        """Test to_dict/from_dict."""
        config = valid_config()
        config.coordinator = CoordinatorConfig(
            min_swap_amount=5, retry_policy=RetryPolicy(max_retries=9, jitter=False)
        )
        restored = BridgeConfig.from_dict(config.to_dict())
        assert restored.to_dict() == config.to_dict()
        assert restored.coordinator.retry_policy.max_retries == 9

    def test_unknown_field(self):
        """Test unknown fields are configuration errors."""
        with pytest.raises(ConfigurationError, match="Unknown configuration field"):
            BridgeConfig.from_dict({"storage": {"no_such_field": 1}})

    def test_validate_requires_addresses(self):
        """Test the custodial and contract addresses are required."""
        with pytest.raises(ConfigurationError, match="custodial_address"):
            BridgeConfig().validate()

        config = BridgeConfig()
        config.base_chain.custodial_address = "custodial1address"
        with pytest.raises(ConfigurationError, match="bridge_contract_address"):
            config.validate()

        valid_config().validate()

    def test_validate_rejects_bad_limits(self):
        """Test numeric limits are checked."""
        config = valid_config()
        config.coordinator.min_swap_amount = 0
        with pytest.raises(ConfigurationError):
            config.validate()

        config = valid_config()
        config.coordinator.max_concurrent_swaps = 0
        with pytest.raises(ConfigurationError):
            config.validate()

    def test_environment_overrides(self):
        """Test SWAPBRIDGE_* variables override fields."""
        config = BridgeConfig()
        config.apply_environment_overrides(
            {
                "SWAPBRIDGE_CUSTODIAL_ADDRESS": "custodial2",
                "SWAPBRIDGE_MIN_CONFIRMATIONS": "10",
                "SWAPBRIDGE_API_PORT": "9000",
                "SWAPBRIDGE_LEASE_SECONDS": "60.5",
                "SWAPBRIDGE_LOG_LEVEL": "DEBUG",
                "UNRELATED": "x",
            }
        )
        assert config.base_chain.custodial_address == "custodial2"
        assert config.base_chain.min_confirmations == 10
        assert config.api.port == 9000
        assert config.storage.lease_seconds == 60.5
        assert config.logging["level"] == "debug"
        assert "SWAPBRIDGE_API_PORT" in config.environment_overrides

    def test_bad_environment_value(self):
        """Test unparsable overrides are configuration errors."""
        with pytest.raises(ConfigurationError, match="SWAPBRIDGE_API_PORT"):
            BridgeConfig().apply_environment_overrides({"SWAPBRIDGE_API_PORT": "eighty"})

    def test_load_file_and_environment(self, tmp_path):
        """Test load reads JSON and then applies the environment."""
        path = tmp_path / "bridge.json"
        path.write_text(
            json.dumps(
                {
                    "base_chain": {"custodial_address": "from-file", "min_confirmations": 3},
                    "api": {"port": 4000},
                }
            )
        )
        config = BridgeConfig.load(str(path), {"SWAPBRIDGE_API_PORT": "5000"})
        assert config.base_chain.custodial_address == "from-file"
        assert config.base_chain.min_confirmations == 3
        assert config.api.port == 5000

    def test_load_missing_file(self, tmp_path):
        """Test a missing file is reported."""
        with pytest.raises(ConfigurationError, match="not found"):
            BridgeConfig.load(str(tmp_path / "missing.json"), {})

    def test_load_invalid_json(self, tmp_path):
        """Test invalid JSON is reported."""
        path = tmp_path / "bridge.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            BridgeConfig.load(str(path), {})


class TestSecretHandle:
    """Test SecretHandle."""

    def test_acquire_counts_borrows(self):
        """Test scoped borrowing."""
        handle = SecretHandle({RECEIPT_PASSPHRASE: "passphrase-value"})
        with handle.acquire(RECEIPT_PASSPHRASE) as value:
            assert value == "passphrase-value"
            assert handle.active_borrows(RECEIPT_PASSPHRASE) == 1
        assert handle.active_borrows(RECEIPT_PASSPHRASE) == 0

    def test_missing_secret(self):
        """Test acquiring an unknown secret fails."""
        handle = SecretHandle()
        assert not handle.has(OPERATOR_TOKEN)
        with pytest.raises(ConfigurationError, match="not configured"):
            with handle.acquire(OPERATOR_TOKEN):
                pass

    def test_repr_hides_values(self):
        """Test the representation lists names only."""
        handle = SecretHandle({WRAPPED_SIGNER_KEY: "signer-key-value"})
        assert "signer-key-value" not in repr(handle)
        assert WRAPPED_SIGNER_KEY in repr(handle)

    def test_from_environment(self, tmp_path):
        """Test secrets come from variables or secret files."""
        secret_file = tmp_path / "passphrase"
        secret_file.write_text("file-passphrase\n")
        handle = SecretHandle.from_environment(
            {
                "SWAPBRIDGE_SECRET_WRAPPED_SIGNER_KEY": "env-signer",
                "SWAPBRIDGE_SECRET_RECEIPT_PASSPHRASE_FILE": str(secret_file),
            }
        )
        assert list(handle.names()) == [RECEIPT_PASSPHRASE, WRAPPED_SIGNER_KEY]
        with handle.acquire(RECEIPT_PASSPHRASE) as value:
            assert value == "file-passphrase"

    def test_from_environment_missing_file(self, tmp_path):
        """Test a dangling secret file reference fails start-up."""
        with pytest.raises(ConfigurationError):
            SecretHandle.from_environment(
                {"SWAPBRIDGE_SECRET_OPERATOR_TOKEN_FILE": str(tmp_path / "nope")}
            )
