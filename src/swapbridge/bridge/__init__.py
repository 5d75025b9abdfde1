"""
Swap bridge core.

The coordinator drives each swap request through reservation, proof
verification, chain submission and receipt recording. The ledger makes the
chain effect happen at most once per request key.
"""

from .bridge_types import (
    BASE_CHAIN,
    WRAPPED_CHAIN,
    ChainReference,
    CompletedSwap,
    DepositClaim,
    LedgerEntry,
    LedgerStatus,
    Receipt,
    RedeemClaim,
    Reservation,
    SubmissionStatus,
    SwapDirection,
    SwapRequest,
    SwapResult,
    SwapState,
    VerifiedBurn,
    VerifiedProof,
    derive_swap_id,
    redeem_key,
)
from .chains import BaseChainClient, WrappedChainClient
from .coordinator import CoordinatorMetrics, CosignatureHook, SwapCoordinator
from .gateways import ChainGateway, MintGateway, PayoutGateway
from .proof_verifier import BurnVerifier, ProofVerifier
from .receipt_store import ReceiptStore
from .swap_ledger import SwapLedger

__all__ = [
    # Types
    "BASE_CHAIN",
    "WRAPPED_CHAIN",
    "SwapDirection",
    "LedgerStatus",
    "SwapState",
    "SubmissionStatus",
    "DepositClaim",
    "RedeemClaim",
    "SwapRequest",
    "VerifiedProof",
    "VerifiedBurn",
    "ChainReference",
    "LedgerEntry",
    "Reservation",
    "Receipt",
    "CompletedSwap",
    "SwapResult",
    "derive_swap_id",
    "redeem_key",
    # Components
    "SwapLedger",
    "ProofVerifier",
    "BurnVerifier",
    "ChainGateway",
    "MintGateway",
    "PayoutGateway",
    "ReceiptStore",
    "SwapCoordinator",
    "CosignatureHook",
    "CoordinatorMetrics",
    # Chain clients
    "BaseChainClient",
    "WrappedChainClient",
]
