"""
Bridge node assembly.

Builds every component from a ``BridgeConfig`` and a ``SecretHandle`` and
wires them into the coordinator and the REST app.
"""

from typing import Optional

from fastapi import FastAPI

from .api import create_app
from .bridge import (
    BaseChainClient,
    BurnVerifier,
    MintGateway,
    PayoutGateway,
    ProofVerifier,
    ReceiptStore,
    SwapCoordinator,
    SwapLedger,
    WrappedChainClient,
)
from .config import RECEIPT_PASSPHRASE, WRAPPED_SIGNER_KEY, BridgeConfig, SecretHandle
from .crypto import EncryptionConfig, ReceiptCipher
from .errors import ConfigurationError
from .logging import get_logger
from .storage import DatabaseConfig, SQLiteBackend

logger = get_logger(__name__)

REQUIRED_SECRETS = (RECEIPT_PASSPHRASE, WRAPPED_SIGNER_KEY)


class BridgeNode:
    """A fully wired bridge: storage, chain clients, coordinator and API."""

    def __init__(
        self,
        config: BridgeConfig,
        secret_handle: SecretHandle,
        base_client: Optional[BaseChainClient] = None,
        wrapped_client: Optional[WrappedChainClient] = None,
    ):
        config.validate()
        missing = [name for name in REQUIRED_SECRETS if not secret_handle.has(name)]
        if missing:
            raise ConfigurationError(
                f"Missing required secrets: {', '.join(missing)}", config_key=missing[0]
            )

        self.config = config
        self.secret_handle = secret_handle

        self.backend = SQLiteBackend(
            DatabaseConfig(
                database_path=config.storage.database_path,
                busy_timeout_ms=config.storage.busy_timeout_ms,
            )
        )
        self.backend.connect()

        self.base_client = base_client or BaseChainClient(config.base_chain, secret_handle)
        self.wrapped_client = wrapped_client or WrappedChainClient(
            config.wrapped_chain, secret_handle
        )

        coordinator_config = config.coordinator
        self.ledger = SwapLedger(self.backend, lease_seconds=config.storage.lease_seconds)
        self.receipt_store = ReceiptStore(self.backend)
        self.verifier = ProofVerifier(
            self.base_client,
            config.base_chain.custodial_address,
            min_confirmations=config.base_chain.min_confirmations,
            min_swap_amount=coordinator_config.min_swap_amount,
            timeout=coordinator_config.verification_timeout,
        )
        self.burn_verifier = BurnVerifier(
            self.wrapped_client, timeout=coordinator_config.verification_timeout
        )
        self.coordinator = SwapCoordinator(
            ledger=self.ledger,
            verifier=self.verifier,
            burn_verifier=self.burn_verifier,
            mint_gateway=MintGateway(self.wrapped_client, coordinator_config.submission_timeout),
            payout_gateway=PayoutGateway(
                self.base_client,
                coordinator_config.submission_timeout,
                payout_confirmations=config.base_chain.payout_confirmations,
            ),
            receipt_store=self.receipt_store,
            cipher=ReceiptCipher(
                secret_handle, EncryptionConfig(iterations=config.receipts.kdf_iterations)
            ),
            config=coordinator_config,
            receipt_retention_seconds=config.receipts.retention_seconds,
            base_address_pattern=config.base_chain.address_pattern,
        )
        logger.info(
            f"Bridge node ready (database {config.storage.database_path}, "
            f"custodial address {config.base_chain.custodial_address})"
        )

    def create_app(self) -> FastAPI:
        """REST app that closes the node when it shuts down."""
        return create_app(
            self.coordinator,
            self.config.api,
            self.secret_handle,
            maintenance_interval=self.config.coordinator.reconcile_interval,
            on_shutdown=self.close,
        )

    async def close(self) -> None:
        """Close chain sessions and the database."""
        await self.base_client.close()
        await self.wrapped_client.close()
        self.backend.disconnect()
        logger.info("Bridge node stopped")
