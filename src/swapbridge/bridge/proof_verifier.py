"""
Proof verification for both swap directions.

A deposit claim carries the base-chain transaction id and the transaction's
secret key. The wallet daemon can check that the key proves a payment to the
bridge's custodial address and report how much was received and how deep the
transaction is buried.

A redeem names a burn on the wrapped chain. The bridge contract records every
burn with its sender, payout address and amount under a nonce, readable with
the sender's viewing key.
"""

import asyncio
from typing import Optional

from ..errors import ChainUnavailableError, RpcError, VerificationError, VerificationErrorKind
from ..logging import LogContext, get_logger
from .bridge_types import DepositClaim, RedeemClaim, VerifiedBurn, VerifiedProof
from .chains.base_chain import BaseChainClient
from .chains.wrapped_chain import WrappedChainClient

logger = get_logger(__name__)

# Wallet daemon codes for a malformed transaction id or transaction key
PROOF_MISMATCH_CODES = (-8, -25)


class ProofVerifier:
    """Stateless checker of deposit claims."""

    def __init__(
        self,
        client: BaseChainClient,
        custodial_address: str,
        min_confirmations: int = 1,
        min_swap_amount: int = 1,
        timeout: Optional[float] = 30.0,
    ):
        self.client = client
        self.custodial_address = custodial_address
        # A transaction still in the pool never proves anything
        self.min_confirmations = max(min_confirmations, 1)
        self.min_swap_amount = min_swap_amount
        self.timeout = timeout

    async def verify(self, claim: DepositClaim) -> VerifiedProof:
        """Verify a deposit claim.

        Raises VerificationError for a proof that does not (yet) hold and
        ChainUnavailableError when the wallet daemon cannot be reached.
        """
        context = LogContext(component="proof_verifier", operation="verify", swap_key=claim.base_tx_id)

        try:
            result = await asyncio.wait_for(
                self.client.check_tx_key(
                    claim.base_tx_id, claim.base_tx_proof_key, self.custodial_address
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ChainUnavailableError(
                f"Proof check for {claim.base_tx_id} timed out", endpoint="base_chain", timed_out=True
            )
        except RpcError as e:
            if e.rpc_code in PROOF_MISMATCH_CODES:
                raise VerificationError(
                    f"Proof rejected by base chain: {e.message}",
                    VerificationErrorKind.PROOF_MISMATCH,
                    tx_id=claim.base_tx_id,
                    cause=e,
                )
            raise VerificationError(
                f"Transaction {claim.base_tx_id} not found: {e.message}",
                VerificationErrorKind.NOT_FOUND,
                tx_id=claim.base_tx_id,
                cause=e,
            )

        received = result["received"]
        in_pool = result["in_pool"]
        confirmations = 0 if in_pool else result["confirmations"]

        if received <= 0:
            raise VerificationError(
                f"Proof for {claim.base_tx_id} shows no payment to the custodial address",
                VerificationErrorKind.PROOF_MISMATCH,
                tx_id=claim.base_tx_id,
            )

        if confirmations < self.min_confirmations:
            raise VerificationError(
                f"Transaction {claim.base_tx_id} has {confirmations} confirmations, "
                f"{self.min_confirmations} required",
                VerificationErrorKind.INSUFFICIENT_CONFIRMATIONS,
                tx_id=claim.base_tx_id,
                metadata={"confirmations": confirmations, "required": self.min_confirmations},
            )

        if received < self.min_swap_amount:
            raise VerificationError(
                f"Received amount {received} is below the minimum of {self.min_swap_amount}",
                VerificationErrorKind.AMOUNT_TOO_LOW,
                tx_id=claim.base_tx_id,
                metadata={"received": received, "minimum": self.min_swap_amount},
            )

        if claim.claimed_amount is not None and claim.claimed_amount != received:
            logger.info(
                f"Claimed amount {claim.claimed_amount} differs from verified amount {received}",
                context=context,
            )

        logger.debug(
            f"Verified deposit {claim.base_tx_id}: {received} with {confirmations} confirmations",
            context=context,
        )
        return VerifiedProof(
            base_tx_id=claim.base_tx_id,
            proof_key=claim.base_tx_proof_key,
            address=self.custodial_address,
            amount=received,
            confirmations=confirmations,
            in_pool=in_pool,
        )


class BurnVerifier:
    """Checks redeem claims against the bridge contract's burn records."""

    def __init__(self, client: WrappedChainClient, timeout: Optional[float] = 30.0):
        self.client = client
        self.timeout = timeout

    async def verify(self, claim: RedeemClaim) -> VerifiedBurn:
        """Look up the burn behind a redeem claim.

        The returned amount and payout address come from the contract, not
        from the claim. Raises VerificationError when the burn is unknown
        or belongs to someone else, ChainUnavailableError when the executor
        cannot be reached.
        """
        key = claim.ledger_key
        context = LogContext(component="burn_verifier", operation="verify", swap_key=key)

        try:
            details = await asyncio.wait_for(
                self.client.swap_details(
                    claim.wrapped_sender_address, claim.viewing_key or "", int(claim.burn_reference)
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ChainUnavailableError(
                f"Burn lookup for {key} timed out", endpoint="wrapped_chain", timed_out=True
            )
        except RpcError as e:
            raise VerificationError(
                f"Burn {key} cannot be read: {e.message}",
                VerificationErrorKind.PROOF_MISMATCH,
                tx_id=key,
                cause=e,
            )

        if details is None:
            raise VerificationError(
                f"Bridge contract has no burn {claim.burn_reference} from {claim.wrapped_sender_address}",
                VerificationErrorKind.NOT_FOUND,
                tx_id=key,
            )
        if details["sender"] != claim.wrapped_sender_address or details["amount"] <= 0:
            raise VerificationError(
                f"Burn {key} does not belong to {claim.wrapped_sender_address}",
                VerificationErrorKind.PROOF_MISMATCH,
                tx_id=key,
            )

        if claim.wrapped_burn_amount is not None and claim.wrapped_burn_amount != details["amount"]:
            logger.info(
                f"Claimed amount {claim.wrapped_burn_amount} differs from burned amount {details['amount']}",
                context=context,
            )
        if (
            claim.destination_base_address is not None
            and claim.destination_base_address != details["destination"]
        ):
            logger.info("Claimed payout address differs from the burn record", context=context)

        return VerifiedBurn(
            burn_reference=claim.burn_reference,
            sender=details["sender"],
            destination_base_address=details["destination"],
            amount=details["amount"],
        )
