"""
Configuration for the swapbridge node.

Settings are plain dataclasses with ``to_dict``/``from_dict``. A JSON file
can provide the base values and ``SWAPBRIDGE_*`` environment variables
override individual fields. Secrets never live here; see ``secret_handle``.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from ..errors import ConfigurationError, RetryPolicy


@dataclass
class BaseChainConfig:
    """Base-chain wallet daemon settings."""

    rpc_url: str = "http://127.0.0.1:18083/json_rpc"
    rpc_user: str = ""
    rpc_timeout: float = 30.0
    custodial_address: str = ""
    min_confirmations: int = 1
    account_index: int = 0
    priority: int = 0
    ring_size: int = 11
    payout_confirmations: int = 0
    address_pattern: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "rpc_url": self.rpc_url,
            "rpc_user": self.rpc_user,
            "rpc_timeout": self.rpc_timeout,
            "custodial_address": self.custodial_address,
            "min_confirmations": self.min_confirmations,
            "account_index": self.account_index,
            "priority": self.priority,
            "ring_size": self.ring_size,
            "payout_confirmations": self.payout_confirmations,
            "address_pattern": self.address_pattern,
        }


@dataclass
class WrappedChainConfig:
    """Wrapped-asset chain executor settings."""

    executor_url: str = "http://127.0.0.1:1317"
    bridge_contract_address: str = ""
    chain_id: str = ""
    request_timeout: float = 60.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "executor_url": self.executor_url,
            "bridge_contract_address": self.bridge_contract_address,
            "chain_id": self.chain_id,
            "request_timeout": self.request_timeout,
        }


@dataclass
class StorageConfig:
    """Durable ledger and receipt storage settings."""

    database_path: str = "swapbridge.db"
    # How long a write waits for another process holding the database lock
    busy_timeout_ms: int = 250
    lease_seconds: float = 900.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "database_path": self.database_path,
            "busy_timeout_ms": self.busy_timeout_ms,
            "lease_seconds": self.lease_seconds,
        }


@dataclass
class ReceiptConfig:
    """Receipt retention and sealing settings."""

    retention_seconds: float = 90 * 24 * 3600.0
    kdf_iterations: int = 100000

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "retention_seconds": self.retention_seconds,
            "kdf_iterations": self.kdf_iterations,
        }


@dataclass
class CoordinatorConfig:
    """Swap coordinator settings."""

    min_swap_amount: int = 1
    max_concurrent_swaps: int = 32
    verification_timeout: float = 30.0
    submission_timeout: float = 120.0
    confirmation_poll_interval: float = 5.0
    reconcile_interval: float = 60.0
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "min_swap_amount": self.min_swap_amount,
            "max_concurrent_swaps": self.max_concurrent_swaps,
            "verification_timeout": self.verification_timeout,
            "submission_timeout": self.submission_timeout,
            "confirmation_poll_interval": self.confirmation_poll_interval,
            "reconcile_interval": self.reconcile_interval,
            "retry_policy": self.retry_policy.to_dict(),
        }


@dataclass
class ApiConfig:
    """REST API settings."""

    host: str = "127.0.0.1"
    port: int = 3118
    enable_docs: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {"host": self.host, "port": self.port, "enable_docs": self.enable_docs}


@dataclass
class BridgeConfig:
    """Complete configuration of a bridge node."""

    base_chain: BaseChainConfig = field(default_factory=BaseChainConfig)
    wrapped_chain: WrappedChainConfig = field(default_factory=WrappedChainConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    receipts: ReceiptConfig = field(default_factory=ReceiptConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    logging: Dict[str, Any] = field(default_factory=dict)

    # Environment overrides that were applied, for diagnostics
    environment_overrides: Dict[str, Any] = field(default_factory=dict)

    def apply_environment_overrides(self, environ: Optional[Dict[str, str]] = None) -> None:
        """Apply ``SWAPBRIDGE_*`` environment variable overrides."""
        environ = os.environ if environ is None else environ
        env_mappings = {
            "SWAPBRIDGE_BASE_RPC_URL": (self.base_chain, "rpc_url", str),
            "SWAPBRIDGE_BASE_RPC_USER": (self.base_chain, "rpc_user", str),
            "SWAPBRIDGE_CUSTODIAL_ADDRESS": (self.base_chain, "custodial_address", str),
            "SWAPBRIDGE_MIN_CONFIRMATIONS": (self.base_chain, "min_confirmations", int),
            "SWAPBRIDGE_PAYOUT_CONFIRMATIONS": (self.base_chain, "payout_confirmations", int),
            "SWAPBRIDGE_EXECUTOR_URL": (self.wrapped_chain, "executor_url", str),
            "SWAPBRIDGE_BRIDGE_CONTRACT": (self.wrapped_chain, "bridge_contract_address", str),
            "SWAPBRIDGE_CHAIN_ID": (self.wrapped_chain, "chain_id", str),
            "SWAPBRIDGE_DATABASE_PATH": (self.storage, "database_path", str),
            "SWAPBRIDGE_LEASE_SECONDS": (self.storage, "lease_seconds", float),
            "SWAPBRIDGE_RECEIPT_RETENTION_SECONDS": (self.receipts, "retention_seconds", float),
            "SWAPBRIDGE_MIN_SWAP_AMOUNT": (self.coordinator, "min_swap_amount", int),
            "SWAPBRIDGE_MAX_CONCURRENT_SWAPS": (self.coordinator, "max_concurrent_swaps", int),
            "SWAPBRIDGE_API_HOST": (self.api, "host", str),
            "SWAPBRIDGE_API_PORT": (self.api, "port", int),
        }

        for env_var, (section, attr_name, attr_type) in env_mappings.items():
            env_value = environ.get(env_var)
            if env_value is None:
                continue
            try:
                value = attr_type(env_value)
            except (ValueError, TypeError) as e:
                raise ConfigurationError(
                    f"Invalid environment variable {env_var}={env_value!r}: {e}",
                    config_key=env_var,
                )
            setattr(section, attr_name, value)
            self.environment_overrides[env_var] = value

        log_level = environ.get("SWAPBRIDGE_LOG_LEVEL")
        if log_level:
            self.logging["level"] = log_level.lower()
            self.environment_overrides["SWAPBRIDGE_LOG_LEVEL"] = log_level

    def validate(self) -> None:
        """Check settings that the node cannot run without."""
        if not self.base_chain.custodial_address:
            raise ConfigurationError(
                "base_chain.custodial_address is required", config_key="custodial_address"
            )
        if not self.wrapped_chain.bridge_contract_address:
            raise ConfigurationError(
                "wrapped_chain.bridge_contract_address is required",
                config_key="bridge_contract_address",
            )
        if self.base_chain.min_confirmations < 0:
            raise ConfigurationError(
                "min_confirmations must not be negative", config_key="min_confirmations"
            )
        if self.coordinator.min_swap_amount <= 0:
            raise ConfigurationError(
                "min_swap_amount must be positive", config_key="min_swap_amount"
            )
        if self.coordinator.max_concurrent_swaps <= 0:
            raise ConfigurationError(
                "max_concurrent_swaps must be positive", config_key="max_concurrent_swaps"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "base_chain": self.base_chain.to_dict(),
            "wrapped_chain": self.wrapped_chain.to_dict(),
            "storage": self.storage.to_dict(),
            "receipts": self.receipts.to_dict(),
            "coordinator": self.coordinator.to_dict(),
            "api": self.api.to_dict(),
            "logging": self.logging,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        """Create configuration from dictionary."""
        try:
            coordinator_data = dict(data.get("coordinator", {}))
            retry_data = coordinator_data.pop("retry_policy", None)
            coordinator = CoordinatorConfig(**coordinator_data)
            if retry_data is not None:
                coordinator.retry_policy = RetryPolicy.from_dict(retry_data)

            return cls(
                base_chain=BaseChainConfig(**data.get("base_chain", {})),
                wrapped_chain=WrappedChainConfig(**data.get("wrapped_chain", {})),
                storage=StorageConfig(**data.get("storage", {})),
                receipts=ReceiptConfig(**data.get("receipts", {})),
                coordinator=coordinator,
                api=ApiConfig(**data.get("api", {})),
                logging=dict(data.get("logging", {})),
            )
        except TypeError as e:
            raise ConfigurationError(f"Unknown configuration field: {e}")

    @classmethod
    def load(
        cls, path: Optional[str] = None, environ: Optional[Dict[str, str]] = None
    ) -> "BridgeConfig":
        """Load configuration from an optional JSON file plus the environment."""
        data: Dict[str, Any] = {}
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise ConfigurationError(f"Configuration file not found: {path}")
            try:
                data = json.loads(config_path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in {path}: {e}")

        config = cls.from_dict(data)
        config.apply_environment_overrides(environ)
        return config
