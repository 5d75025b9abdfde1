"""swapbridge configuration and secrets."""

from .bridge_config import (
    ApiConfig,
    BaseChainConfig,
    BridgeConfig,
    CoordinatorConfig,
    ReceiptConfig,
    StorageConfig,
    WrappedChainConfig,
)
from .secret_handle import (
    BASE_RPC_PASSWORD,
    KNOWN_SECRETS,
    OPERATOR_TOKEN,
    RECEIPT_PASSPHRASE,
    WRAPPED_SIGNER_KEY,
    SecretHandle,
)

__all__ = [
    "BridgeConfig",
    "BaseChainConfig",
    "WrappedChainConfig",
    "StorageConfig",
    "ReceiptConfig",
    "CoordinatorConfig",
    "ApiConfig",
    "SecretHandle",
    "KNOWN_SECRETS",
    "BASE_RPC_PASSWORD",
    "WRAPPED_SIGNER_KEY",
    "RECEIPT_PASSPHRASE",
    "OPERATOR_TOKEN",
]
