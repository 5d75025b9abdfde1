"""
Chain-side effects of a swap.

MintGateway asks the wrapped-chain bridge contract to mint against a verified
deposit proof. PayoutGateway sends base asset from the custodial account.
Both translate chain failures into ExecutionError and can reconcile an
earlier submission whose outcome was lost, so a retry never blindly repeats
an effect that already happened.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import AbstractSet, Any, Dict, List, Optional

from ..errors import (
    ChainUnavailableError,
    ExecutionError,
    ExecutionErrorKind,
    RpcError,
)
from ..logging import LogContext, get_logger
from .bridge_types import BASE_CHAIN, WRAPPED_CHAIN, ChainReference, SubmissionStatus, VerifiedProof
from .chains.base_chain import BaseChainClient
from .chains.wrapped_chain import WrappedChainClient

logger = get_logger(__name__)

def _transport_error(error: ChainUnavailableError, chain: str) -> ExecutionError:
    kind = ExecutionErrorKind.TIMEOUT if error.timed_out else ExecutionErrorKind.NETWORK
    return ExecutionError(str(error.message), kind, chain=chain, cause=error)


class ChainGateway(ABC):
    """Issues one kind of chain effect and reports on earlier submissions."""

    chain: str = ""

    def __init__(self, client: Any, submission_timeout: Optional[float] = 120.0):
        self.client = client
        self.submission_timeout = submission_timeout

    async def _with_timeout(self, awaitable: Any, operation: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.submission_timeout)
        except asyncio.TimeoutError:
            raise ExecutionError(
                f"{operation} timed out after {self.submission_timeout}s",
                ExecutionErrorKind.TIMEOUT,
                chain=self.chain,
            )
        except ChainUnavailableError as e:
            raise _transport_error(e, self.chain)

    def needs_confirmation(self) -> bool:
        """Whether a successful submission still has to be confirmed."""
        return False

    def circuit_metrics(self) -> Optional[Dict[str, Any]]:
        """State of the chain client's circuit breaker, if it has one."""
        breaker = getattr(self.client, "circuit_breaker", None)
        return breaker.get_metrics() if breaker is not None else None

    @abstractmethod
    async def status_of(
        self, reference: ChainReference, exclude: AbstractSet[str] = frozenset()
    ) -> SubmissionStatus:
        """What the chain says about ``reference``.

        When the lookup discovers the transaction hash of a reference that
        did not have one, the hash is filled in on ``reference``. Hashes in
        ``exclude`` belong to other swaps and are never matched.
        """
        pass


class MintGateway(ChainGateway):
    """Mints wrapped tokens through the bridge contract."""

    chain = WRAPPED_CHAIN

    def __init__(self, client: WrappedChainClient, submission_timeout: Optional[float] = 120.0):
        super().__init__(client, submission_timeout)

    @staticmethod
    def _classify_rejection(raw_log: str) -> ExecutionErrorKind:
        log = raw_log.lower()
        # The contract stores each proof once and rejects a second use
        if "invalid monero proof" in log or "already" in log:
            return ExecutionErrorKind.ALREADY_PROCESSED
        if "insufficient" in log:
            return ExecutionErrorKind.INSUFFICIENT_FUNDS
        return ExecutionErrorKind.INVALID_STATE

    async def mint(
        self, destination_address: str, amount: int, proof_reference: VerifiedProof
    ) -> ChainReference:
        """Mint ``amount`` wrapped tokens to ``destination_address``."""
        msg = {
            "mint": {
                "amount": str(amount),
                "recipient": destination_address,
                "proof": {
                    "tx_id": proof_reference.base_tx_id,
                    "tx_key": proof_reference.proof_key,
                    "address": proof_reference.address,
                },
            }
        }
        reference = ChainReference(
            idempotency_key=proof_reference.base_tx_id,
            chain=self.chain,
            destination=destination_address,
            amount=amount,
        )

        try:
            result = await self._with_timeout(self.client.execute(msg), "mint")
        except RpcError as e:
            raise ExecutionError(
                f"Executor rejected mint: {e.message}",
                ExecutionErrorKind.INVALID_STATE,
                chain=self.chain,
                cause=e,
            )

        if result["code"] != 0:
            kind = self._classify_rejection(result["raw_log"])
            raise ExecutionError(
                f"Bridge contract rejected mint: {result['raw_log']}",
                kind,
                chain=self.chain,
                tx_hash=result["tx_hash"],
            )

        reference.tx_hash = result["tx_hash"]
        logger.info(
            f"Submitted mint of {amount} to {destination_address}: {reference.tx_hash}",
            context=LogContext(
                component="mint_gateway", operation="mint", swap_key=proof_reference.base_tx_id
            ),
        )
        return reference

    async def status_of(
        self, reference: ChainReference, exclude: AbstractSet[str] = frozenset()
    ) -> SubmissionStatus:
        if reference.tx_hash:
            try:
                tx = await self._with_timeout(self.client.get_tx(reference.tx_hash), "get_tx")
            except RpcError:
                tx = None
            if tx is not None:
                if tx["code"] != 0:
                    return SubmissionStatus.REJECTED
                return SubmissionStatus.CONFIRMED if tx["height"] > 0 else SubmissionStatus.PENDING

        processed = await self._with_timeout(
            self.client.proof_processed(reference.idempotency_key), "proof_processed"
        )
        if processed["processed"]:
            if processed.get("tx_hash") and not reference.tx_hash:
                reference.tx_hash = processed["tx_hash"]
            return SubmissionStatus.CONFIRMED
        if reference.tx_hash:
            # Broadcast but not yet in a block
            return SubmissionStatus.PENDING
        return SubmissionStatus.UNKNOWN


class PayoutGateway(ChainGateway):
    """Pays out base asset from the custodial account."""

    chain = BASE_CHAIN

    # Wallet daemon error codes for an unfunded transfer
    NOT_ENOUGH_MONEY_CODES = (-16, -17, -18)

    def __init__(
        self,
        client: BaseChainClient,
        submission_timeout: Optional[float] = 120.0,
        payout_confirmations: int = 0,
    ):
        super().__init__(client, submission_timeout)
        self.payout_confirmations = payout_confirmations

    def needs_confirmation(self) -> bool:
        return self.payout_confirmations > 0

    def _classify_rpc_error(self, error: RpcError) -> ExecutionErrorKind:
        if error.rpc_code in self.NOT_ENOUGH_MONEY_CODES or "not enough" in error.message.lower():
            return ExecutionErrorKind.INSUFFICIENT_FUNDS
        return ExecutionErrorKind.INVALID_STATE

    async def payout(
        self, destination_base_address: str, amount: int, key: str
    ) -> ChainReference:
        """Send ``amount`` to ``destination_base_address``."""
        reference = ChainReference(
            idempotency_key=key,
            chain=self.chain,
            destination=destination_base_address,
            amount=amount,
        )
        try:
            result = await self._with_timeout(
                self.client.transfer(destination_base_address, amount), "payout"
            )
        except RpcError as e:
            raise ExecutionError(
                f"Wallet rejected payout: {e.message}",
                self._classify_rpc_error(e),
                chain=self.chain,
                cause=e,
            )

        reference.tx_hash = result["tx_hash"]
        reference.proof_key = result.get("tx_key")
        reference.metadata["fee"] = result.get("fee", 0)
        logger.info(
            f"Submitted payout of {amount} to {destination_base_address}: {reference.tx_hash}",
            context=LogContext(component="payout_gateway", operation="payout", swap_key=key),
        )
        return reference

    def _status_from_transfer(self, transfer: Dict[str, Any]) -> SubmissionStatus:
        kind = transfer.get("type")
        if kind == "failed":
            return SubmissionStatus.REJECTED
        confirmations = 0 if kind in ("pending", "pool") else int(transfer.get("confirmations", 0))
        if confirmations >= self.payout_confirmations:
            return SubmissionStatus.CONFIRMED
        return SubmissionStatus.PENDING

    def _find_transfer(
        self,
        transfers: Dict[str, List[Dict[str, Any]]],
        reference: ChainReference,
        exclude: AbstractSet[str],
    ) -> Optional[Dict[str, Any]]:
        """First unclaimed transfer to the reference's destination and amount
        made no earlier than the submission (wallet timestamps are whole seconds)."""
        earliest = int(reference.submitted_at)
        for kind in ("out", "pending", "pool", "failed"):
            for transfer in transfers.get(kind, []):
                if transfer.get("txid") in exclude or transfer.get("timestamp", 0) < earliest:
                    continue
                for destination in transfer.get("destinations", []):
                    if (
                        destination.get("address") == reference.destination
                        and int(destination.get("amount", -1)) == reference.amount
                    ):
                        return {**transfer, "type": transfer.get("type", kind)}
        return None

    async def status_of(
        self, reference: ChainReference, exclude: AbstractSet[str] = frozenset()
    ) -> SubmissionStatus:
        if reference.tx_hash:
            try:
                transfer = await self._with_timeout(
                    self.client.get_transfer_by_txid(reference.tx_hash), "get_transfer_by_txid"
                )
            except RpcError:
                transfer = None
            if transfer is None:
                return SubmissionStatus.UNKNOWN
            return self._status_from_transfer(transfer)

        transfers = await self._with_timeout(
            self.client.get_transfers(out=True, pending=True, pool=True, failed=True),
            "get_transfers",
        )
        transfer = self._find_transfer(transfers, reference, exclude)
        if transfer is None:
            return SubmissionStatus.UNKNOWN
        reference.tx_hash = transfer.get("txid")
        return self._status_from_transfer(transfer)
