"""
swapbridge: an idempotent swap bridge between a privacy-coin base chain and
a wrapped-token chain.

Deposits to the bridge's custodial address are proven with the transaction
key and minted as wrapped tokens; burned wrapped tokens are paid out from
the custodial account. Every completed swap leaves an encrypted
Proof-of-Swap receipt.
"""

__version__ = "0.1.0"
__author__ = "swapbridge contributors"

from .bridge import DepositClaim, RedeemClaim, SwapCoordinator, SwapDirection, SwapResult
from .config import BridgeConfig, SecretHandle

__all__ = [
    "BridgeConfig",
    "SecretHandle",
    "SwapCoordinator",
    "DepositClaim",
    "RedeemClaim",
    "SwapDirection",
    "SwapResult",
]
