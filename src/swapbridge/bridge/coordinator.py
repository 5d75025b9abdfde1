"""
Swap coordinator.

Drives one swap request through the state machine::

    Received -> Reserved -> ProofVerified -> Submitted -> Completed
                    \\             \\              \\
                     Rejected      Rejected       Failed

The ledger reservation makes every chain effect happen at most once per
request key. Before any resubmission the coordinator asks the gateway what
happened to the earlier submission, and the submit-and-complete section runs
shielded from caller cancellation so a started swap always finishes writing
its ledger and receipt state.
"""

import asyncio
import dataclasses
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import AbstractSet, Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..config import CoordinatorConfig
from ..crypto import ReceiptCipher
from ..errors import (
    AlreadyReserved,
    BridgePausedError,
    ChainUnavailableError,
    ExecutionError,
    ExecutionErrorKind,
    InvalidRequestError,
    InvalidTransition,
    RetryExhaustedError,
    SwapBridgeError,
    VerificationError,
    VerificationErrorKind,
    retry_async,
)
from ..logging import LogContext, get_logger
from .bridge_types import (
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
    derive_swap_id,
)
from .gateways import ChainGateway, MintGateway, PayoutGateway
from .proof_verifier import BurnVerifier, ProofVerifier
from .receipt_store import ReceiptStore
from .swap_ledger import SwapLedger

logger = get_logger(__name__)


class CosignatureHook:
    """Extension point between proof verification and submission.

    A multi-party deployment would collect co-signatures here. The default
    hook approves immediately.
    """

    async def request_cosignature(
        self, key: str, direction: SwapDirection, amount: int, counterparty: str
    ) -> None:
        return None


@dataclass
class CoordinatorMetrics:
    """Counters for coordinator activity since start-up."""

    deposits_received: int = 0
    redeems_received: int = 0
    completed: int = 0
    duplicates: int = 0
    rejected: int = 0
    failed: int = 0
    in_progress: int = 0
    resubmissions: int = 0
    reconciled: int = 0
    started_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return dataclasses.asdict(self)


def _failure_reason(error: SwapBridgeError) -> str:
    return f"{error.kind}: {error.message}"


def _stored_error(entry: LedgerEntry) -> SwapBridgeError:
    """Rebuild the error behind a stored failure reason."""
    kind, _, message = (entry.failure_reason or "failed: unknown failure").partition(": ")
    if kind in {k.value for k in VerificationErrorKind}:
        return VerificationError(message, VerificationErrorKind(kind), tx_id=entry.key)
    if kind in {k.value for k in ExecutionErrorKind}:
        return ExecutionError(message, ExecutionErrorKind(kind))
    return SwapBridgeError(message, error_code=kind, retryable=entry.failure_retryable)


class SwapCoordinator:
    """Per-request state machine tying ledger, verifier, gateways and receipts together."""

    def __init__(
        self,
        ledger: SwapLedger,
        verifier: ProofVerifier,
        burn_verifier: BurnVerifier,
        mint_gateway: MintGateway,
        payout_gateway: PayoutGateway,
        receipt_store: ReceiptStore,
        cipher: ReceiptCipher,
        config: Optional[CoordinatorConfig] = None,
        receipt_retention_seconds: float = 90 * 24 * 3600.0,
        base_address_pattern: Optional[str] = None,
        cosignature_hook: Optional[CosignatureHook] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ledger = ledger
        self.verifier = verifier
        self.burn_verifier = burn_verifier
        self.mint_gateway = mint_gateway
        self.payout_gateway = payout_gateway
        self.receipt_store = receipt_store
        self.cipher = cipher
        self.config = config or CoordinatorConfig()
        self.receipt_retention_seconds = receipt_retention_seconds
        self.base_address_pattern = re.compile(base_address_pattern) if base_address_pattern else None
        self.cosignature_hook = cosignature_hook or CosignatureHook()
        self.metrics = CoordinatorMetrics()

        self._clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_swaps)
        self._inflight: Set[asyncio.Future] = set()
        self._active: Dict[Tuple[SwapDirection, str], asyncio.Future] = {}
        self._paused = False
        self._pause_reason: Optional[str] = None

    # Operator controls

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self, reason: Optional[str] = None) -> None:
        """Stop accepting new swaps; lookups keep working."""
        self._paused = True
        self._pause_reason = reason
        logger.warning(f"Bridge paused{': ' + reason if reason else ''}")

    def resume(self) -> None:
        """Accept new swaps again."""
        self._paused = False
        self._pause_reason = None
        logger.info("Bridge resumed")

    # Entry points

    async def submit(self, request: SwapRequest) -> SwapResult:
        """Process a deposit or redeem request."""
        if isinstance(request, DepositClaim):
            return await self.submit_deposit(request)
        return await self.submit_redeem(request)

    async def submit_deposit(self, claim: DepositClaim) -> SwapResult:
        """Mint wrapped tokens for a verified base-chain deposit."""
        self.metrics.deposits_received += 1
        direction = SwapDirection.DEPOSIT_TO_WRAPPED
        try:
            self._check_accepting()
            self._validate_deposit(claim)
        except SwapBridgeError as e:
            return self._rejected(claim.base_tx_id or None, direction, e)
        return await self._dispatch(claim.base_tx_id, direction, lambda: self._process_deposit(claim))

    async def submit_redeem(self, claim: RedeemClaim) -> SwapResult:
        """Pay out base asset for burned wrapped tokens."""
        self.metrics.redeems_received += 1
        direction = SwapDirection.WRAPPED_TO_DEPOSIT
        try:
            self._check_accepting()
            self._validate_redeem(claim)
        except SwapBridgeError as e:
            return self._rejected(claim.ledger_key, direction, e)
        return await self._dispatch(claim.ledger_key, direction, lambda: self._process_redeem(claim))

    def _check_accepting(self) -> None:
        if self._paused:
            raise BridgePausedError(
                f"The bridge is paused: {self._pause_reason}"
                if self._pause_reason
                else "The bridge is paused and is not accepting swaps"
            )

    @staticmethod
    def _validate_deposit(claim: DepositClaim) -> None:
        if not claim.base_tx_id:
            raise InvalidRequestError("base_tx_id is required", field="base_tx_id")
        if not claim.base_tx_proof_key:
            raise InvalidRequestError("proof key is required", field="proof_key")
        if not claim.destination_wrapped_address:
            raise InvalidRequestError(
                "destination_wrapped_address is required", field="destination_wrapped_address"
            )
        if claim.claimed_amount is not None and claim.claimed_amount <= 0:
            raise InvalidRequestError("claimed_amount must be positive", field="claimed_amount")

    @staticmethod
    def _validate_redeem(claim: RedeemClaim) -> None:
        if not claim.wrapped_sender_address:
            raise InvalidRequestError(
                "wrapped_sender_address is required", field="wrapped_sender_address"
            )
        if not claim.burn_reference or not claim.burn_reference.isdigit():
            raise InvalidRequestError(
                "burn_reference must be the burn nonce", field="burn_reference"
            )
        if not claim.viewing_key:
            raise InvalidRequestError("viewing_key is required", field="viewing_key")
        if claim.wrapped_burn_amount is not None and (
            not isinstance(claim.wrapped_burn_amount, int) or claim.wrapped_burn_amount <= 0
        ):
            raise InvalidRequestError("amount must be a positive integer", field="amount")
        if claim.destination_base_address is not None and not claim.destination_base_address:
            raise InvalidRequestError(
                "destination_base_address must not be empty", field="destination_base_address"
            )

    async def _guarded(
        self, key: str, direction: SwapDirection, process: Awaitable[SwapResult]
    ) -> SwapResult:
        """Turn infrastructure errors into a result the caller can act on."""
        try:
            async with self._semaphore:
                return await process
        except SwapBridgeError as e:
            logger.error(
                f"Swap {key} failed: {e}",
                context=LogContext(component="coordinator", operation="submit", swap_key=key),
            )
            self.metrics.failed += 1
            return SwapResult(
                state=SwapState.FAILED,
                key=key,
                direction=direction,
                error=e,
                retryable=e.retryable,
            )

    # Deposit flow

    async def _process_deposit(self, claim: DepositClaim) -> SwapResult:
        key = claim.base_tx_id
        direction = SwapDirection.DEPOSIT_TO_WRAPPED
        context = LogContext(component="coordinator", operation="deposit", swap_key=key)

        try:
            reservation = self.ledger.reserve(
                key, direction, claim.claimed_amount, claim.destination_wrapped_address
            )
        except AlreadyReserved as e:
            return self._answer_existing(e, direction)

        mismatch = self._counterparty_mismatch(reservation, claim.destination_wrapped_address)
        if mismatch is not None:
            return mismatch

        logger.info(f"Reserved deposit {key} (attempt {reservation.attempts})", context=context)

        try:
            proof = await retry_async(
                self.config.retry_policy,
                f"verify:{key}",
                lambda: self.verifier.verify(claim),
                should_retry=lambda e: isinstance(e, ChainUnavailableError),
            )
        except VerificationError as e:
            return self._verification_failed(reservation, e)
        except RetryExhaustedError as e:
            self.ledger.release(key, owner=reservation.lease_owner)
            self.metrics.failed += 1
            return SwapResult(
                state=SwapState.FAILED, key=key, direction=direction, error=e, retryable=True
            )

        self.ledger.mark_verified(
            key, proof.amount, base_chain_reference=key, owner=reservation.lease_owner
        )
        await self.cosignature_hook.request_cosignature(
            key, direction, proof.amount, claim.destination_wrapped_address
        )

        def submit() -> Awaitable[ChainReference]:
            return self.mint_gateway.mint(claim.destination_wrapped_address, proof.amount, proof)

        return await self._submit_and_complete(
            reservation,
            self.mint_gateway,
            submit,
            amount=proof.amount,
            destination=claim.destination_wrapped_address,
            details={
                "base_tx_id": key,
                "confirmations": proof.confirmations,
                "claimed_amount": claim.claimed_amount,
                "destination_wrapped_address": claim.destination_wrapped_address,
            },
        )

    def _verification_failed(self, reservation: Reservation, error: VerificationError) -> SwapResult:
        key = reservation.key
        if error.retryable:
            # Keep the entry pending so the same claim can be resubmitted later
            self.ledger.release(key, owner=reservation.lease_owner)
        else:
            self.ledger.mark_failed(
                key, _failure_reason(error), retryable=False, owner=reservation.lease_owner
            )
        return self._rejected(key, reservation.direction, error)

    # Redeem flow

    async def _process_redeem(self, claim: RedeemClaim) -> SwapResult:
        key = claim.ledger_key
        direction = SwapDirection.WRAPPED_TO_DEPOSIT
        context = LogContext(component="coordinator", operation="redeem", swap_key=key)

        # Amount and destination are only known once the burn is read back
        try:
            reservation = self.ledger.reserve(key, direction)
        except AlreadyReserved as e:
            return self._answer_existing(e, direction)

        logger.info(f"Reserved redeem {key} (attempt {reservation.attempts})", context=context)

        try:
            burn = await retry_async(
                self.config.retry_policy,
                f"verify:{key}",
                lambda: self.burn_verifier.verify(claim),
                should_retry=lambda e: isinstance(e, ChainUnavailableError),
            )
        except VerificationError as e:
            return self._verification_failed(reservation, e)
        except RetryExhaustedError as e:
            self.ledger.release(key, owner=reservation.lease_owner)
            self.metrics.failed += 1
            return SwapResult(
                state=SwapState.FAILED, key=key, direction=direction, error=e, retryable=True
            )

        amount = burn.amount
        destination = burn.destination_base_address
        error: Optional[SwapBridgeError] = None
        if amount < self.config.min_swap_amount:
            error = VerificationError(
                f"Cannot swap amount under minimum of: {self.config.min_swap_amount}",
                VerificationErrorKind.AMOUNT_TOO_LOW,
                tx_id=key,
                metadata={"amount": amount, "minimum": self.config.min_swap_amount},
            )
        elif self.base_address_pattern and not self.base_address_pattern.fullmatch(destination):
            error = InvalidRequestError(
                "destination_base_address is not a valid base-chain address",
                field="destination_base_address",
            )
        if error is not None:
            self.ledger.mark_failed(
                key, _failure_reason(error), retryable=False, owner=reservation.lease_owner
            )
            return self._rejected(key, direction, error)

        self.ledger.mark_verified(
            key,
            amount,
            wrapped_chain_reference=claim.burn_reference,
            owner=reservation.lease_owner,
            counterparty=destination,
        )
        await self.cosignature_hook.request_cosignature(key, direction, amount, destination)

        def submit() -> Awaitable[ChainReference]:
            return self.payout_gateway.payout(destination, amount, key)

        return await self._submit_and_complete(
            reservation,
            self.payout_gateway,
            submit,
            amount=amount,
            destination=destination,
            details={
                "wrapped_sender_address": burn.sender,
                "burn_reference": burn.burn_reference,
                "destination_base_address": destination,
                "claimed_amount": claim.wrapped_burn_amount,
            },
        )

    # Shared pieces

    def _counterparty_mismatch(
        self, reservation: Reservation, counterparty: str
    ) -> Optional[SwapResult]:
        """Refuse to continue a taken-over entry with different request parameters."""
        previous = reservation.previous
        if previous is None:
            return None
        if previous.counterparty_address in (None, counterparty):
            return None
        self.ledger.release(reservation.key, owner=reservation.lease_owner)
        return self._rejected(
            reservation.key,
            reservation.direction,
            InvalidRequestError("Request key was already used with different parameters"),
        )

    async def _dispatch(
        self,
        key: str,
        direction: SwapDirection,
        process: Callable[[], Awaitable[SwapResult]],
    ) -> SwapResult:
        """Run a request as a task that survives cancellation of the caller.

        A request for a key this process is already working on waits for
        that work and shares its outcome instead of starting a second one.
        """
        active_key = (direction, key)
        active = self._active.get(active_key)
        if active is not None:
            result = await asyncio.shield(active)
            if result.succeeded:
                self.metrics.duplicates += 1
                return dataclasses.replace(result, duplicate=True)
            return result

        task = asyncio.ensure_future(self._guarded(key, direction, process()))
        self._active[active_key] = task
        self._inflight.add(task)

        def forget(finished: asyncio.Future) -> None:
            self._inflight.discard(finished)
            if self._active.get(active_key) is finished:
                del self._active[active_key]

        task.add_done_callback(forget)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for swaps that outlived their callers."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _submit_and_complete(
        self,
        reservation: Reservation,
        gateway: ChainGateway,
        submit: Callable[[], Awaitable[ChainReference]],
        amount: int,
        destination: str,
        details: Dict[str, Any],
    ) -> SwapResult:
        key = reservation.key
        direction = reservation.direction
        owner = reservation.lease_owner
        previous = reservation.previous.submission_reference if reservation.previous else None

        try:
            reference, status = await self._execute(
                key, direction, owner, gateway, submit, amount, destination, previous
            )
        except ExecutionError as e:
            self.ledger.mark_failed(key, _failure_reason(e), retryable=False, owner=owner)
            self.metrics.failed += 1
            return SwapResult(
                state=SwapState.FAILED, key=key, direction=direction, amount=amount, error=e
            )
        except RetryExhaustedError as e:
            self.ledger.mark_failed(key, _failure_reason(e), retryable=True, owner=owner)
            self.metrics.failed += 1
            return SwapResult(
                state=SwapState.FAILED,
                key=key,
                direction=direction,
                amount=amount,
                error=e,
                retryable=True,
            )

        if status == SubmissionStatus.PENDING:
            # The lease runs out and the stale sweep or a resubmission finishes the swap
            logger.info(
                f"Swap {key} submitted as {reference.tx_hash}, awaiting confirmation",
                context=LogContext(component="coordinator", operation="confirm", swap_key=key),
            )
            self.metrics.in_progress += 1
            return SwapResult(
                state=SwapState.SUBMITTED,
                key=key,
                direction=direction,
                amount=amount,
                in_progress=True,
                retryable=True,
                **self._references(direction, key, reference),
            )

        return self._complete(key, direction, owner, reference, amount, destination, details)

    async def _execute(
        self,
        key: str,
        direction: SwapDirection,
        owner: str,
        gateway: ChainGateway,
        submit: Callable[[], Awaitable[ChainReference]],
        amount: int,
        destination: str,
        previous: Optional[ChainReference],
    ) -> Tuple[ChainReference, SubmissionStatus]:
        """Submit the chain effect, reconciling any earlier submission first.

        Returns the reference and either CONFIRMED or PENDING. Terminal
        execution errors propagate; retryable ones are retried until the
        retry policy is spent.
        """
        policy = self.config.retry_policy
        context = LogContext(component="coordinator", operation="execute", swap_key=key)
        outstanding = previous
        submitted_before = previous is not None
        last_error: Optional[ExecutionError] = None

        for attempt in range(policy.max_retries + 1):
            if attempt > 0:
                await self._sleep(policy.get_delay(attempt))
            submitted_before_this_attempt = submitted_before
            try:
                if outstanding is not None:
                    status = await self._settle(key, direction, owner, gateway, outstanding)
                    if status in (SubmissionStatus.CONFIRMED, SubmissionStatus.PENDING):
                        logger.info(
                            f"Earlier submission for {key} is {status.value}, not resubmitting",
                            context=context,
                        )
                        return outstanding, status
                    self.metrics.resubmissions += 1
                    logger.warning(
                        f"Earlier submission for {key} is {status.value}, resubmitting",
                        context=context,
                    )

                # Write ahead so a crash mid-call leaves something to reconcile
                intent = ChainReference(
                    idempotency_key=key,
                    chain=gateway.chain,
                    submitted_at=self._clock(),
                    destination=destination,
                    amount=amount,
                )
                self.ledger.record_submission(key, intent, owner=owner)
                outstanding = intent

                submitted_before = True
                reference = await submit()
                reference.submitted_at = intent.submitted_at
                self.ledger.record_submission(key, reference, owner=owner)
                outstanding = reference

                if gateway.needs_confirmation():
                    return reference, await self._await_confirmation(gateway, reference)
                return reference, SubmissionStatus.CONFIRMED

            except ExecutionError as e:
                if (
                    e.execution_kind == ExecutionErrorKind.ALREADY_PROCESSED
                    and submitted_before_this_attempt
                ):
                    # Our own earlier submission may have landed after the status check
                    status = await self._settle(key, direction, owner, gateway, outstanding)
                    if status in (SubmissionStatus.CONFIRMED, SubmissionStatus.PENDING):
                        return outstanding, status
                if not e.retryable:
                    raise
                last_error = e
                logger.warning(
                    f"Submission attempt {attempt + 1}/{policy.max_retries + 1} for {key} failed: {e}",
                    context=context,
                )

        raise RetryExhaustedError(f"submit:{key}", policy.max_retries + 1, cause=last_error)

    async def _status_of(
        self,
        key: str,
        direction: SwapDirection,
        owner: Optional[str],
        gateway: ChainGateway,
        reference: ChainReference,
    ) -> SubmissionStatus:
        """Ask the gateway about a submission.

        A submission without a hash can only be matched to a chain
        transaction no other entry owns, and the match is written to the
        ledger before it counts.
        """
        if reference.tx_hash:
            return await gateway.status_of(reference)
        claimed: AbstractSet[str] = self.ledger.claimed_references(direction, key)
        status = await gateway.status_of(reference, exclude=claimed)
        if reference.tx_hash:
            self.ledger.record_submission(key, reference, owner=owner)
        return status

    async def _settle(
        self,
        key: str,
        direction: SwapDirection,
        owner: Optional[str],
        gateway: ChainGateway,
        reference: ChainReference,
    ) -> SubmissionStatus:
        status = await self._status_of(key, direction, owner, gateway, reference)
        if status == SubmissionStatus.PENDING:
            status = await self._await_confirmation(gateway, reference)
        return status

    async def _await_confirmation(
        self, gateway: ChainGateway, reference: ChainReference
    ) -> SubmissionStatus:
        """Poll until the effect is confirmed, rejected, or the wait budget is spent."""
        deadline = self._clock() + (self.config.submission_timeout or 0.0)
        status = await gateway.status_of(reference)
        while status == SubmissionStatus.PENDING and self._clock() < deadline:
            await self._sleep(self.config.confirmation_poll_interval)
            status = await gateway.status_of(reference)
        return status

    @staticmethod
    def _references(
        direction: SwapDirection, key: str, reference: ChainReference
    ) -> Dict[str, Optional[str]]:
        if direction == SwapDirection.DEPOSIT_TO_WRAPPED:
            return {"base_chain_reference": key, "wrapped_chain_reference": reference.tx_hash}
        return {"base_chain_reference": reference.tx_hash, "wrapped_chain_reference": None}

    def _complete(
        self,
        key: str,
        direction: SwapDirection,
        owner: Optional[str],
        reference: ChainReference,
        amount: int,
        destination: Optional[str],
        details: Dict[str, Any],
    ) -> SwapResult:
        """Submitted -> Completed: make the ledger terminal, then seal the receipt."""
        context = LogContext(component="coordinator", operation="complete", swap_key=key)
        try:
            entry = self.ledger.mark_executed(
                key, reference.tx_hash or reference.idempotency_key, owner=owner
            )
        except InvalidTransition:
            current = self.ledger.lookup(key)
            if current is not None and current.status == LedgerStatus.EXECUTED:
                return self._executed_result(current, duplicate=True)
            logger.critical(
                f"Swap {key} took effect as {reference.tx_hash} but the lease was lost; "
                "the current lease holder will reconcile it",
                context=context,
            )
            self.metrics.in_progress += 1
            return SwapResult(
                state=SwapState.SUBMITTED,
                key=key,
                direction=direction,
                amount=amount,
                in_progress=True,
                retryable=True,
                **self._references(direction, key, reference),
            )

        details = dict(details)
        details.update(
            {
                "chain_tx_hash": reference.tx_hash,
                "chain_proof_key": reference.proof_key,
                "submitted_at": reference.submitted_at,
                **reference.metadata,
            }
        )
        receipt = self._record_receipt(entry, destination, details)
        self.metrics.completed += 1
        logger.info(f"Swap {key} completed", context=context)
        return SwapResult(
            state=SwapState.COMPLETED,
            key=key,
            direction=direction,
            amount=entry.amount,
            receipt=receipt,
            base_chain_reference=entry.base_chain_reference,
            wrapped_chain_reference=entry.wrapped_chain_reference,
        )

    def _record_receipt(
        self, entry: LedgerEntry, destination: Optional[str], details: Dict[str, Any]
    ) -> Optional[Receipt]:
        swap = CompletedSwap(
            key=entry.key,
            direction=entry.direction,
            amount=entry.amount,
            base_chain_reference=entry.base_chain_reference,
            wrapped_chain_reference=entry.wrapped_chain_reference,
            counterparty_address=destination or entry.counterparty_address,
            executed_at=entry.executed_at or self._clock(),
            details=details,
        )
        try:
            sealed = self.cipher.seal(swap.payload(), swap.swap_id)
            return self.receipt_store.record(
                Receipt(
                    swap_id=swap.swap_id,
                    direction=swap.direction,
                    timestamp=swap.executed_at,
                    encrypted_payload=sealed,
                )
            )
        except SwapBridgeError as e:
            # The ledger already says Executed; a later duplicate request re-records the receipt
            logger.error(
                f"Receipt for {entry.key} could not be recorded: {e}",
                context=LogContext(component="coordinator", operation="receipt", swap_key=entry.key),
            )
            return None

    def _executed_result(self, entry: LedgerEntry, duplicate: bool) -> SwapResult:
        swap_id = derive_swap_id(entry.direction, entry.key)
        receipt = self.receipt_store.get(swap_id)
        if receipt is None:
            executed_at = entry.executed_at or entry.updated_at
            if self._clock() - executed_at < self.receipt_retention_seconds:
                receipt = self._record_receipt(entry, None, {"rerecorded": True})
        if duplicate:
            self.metrics.duplicates += 1
        return SwapResult(
            state=SwapState.COMPLETED,
            key=entry.key,
            direction=entry.direction,
            amount=entry.amount,
            receipt=receipt,
            base_chain_reference=entry.base_chain_reference,
            wrapped_chain_reference=entry.wrapped_chain_reference,
            duplicate=duplicate,
        )

    def _answer_existing(self, error: AlreadyReserved, direction: SwapDirection) -> SwapResult:
        """Answer a request whose key is already held or finished."""
        entry: LedgerEntry = error.entry
        if entry.direction != direction:
            return self._rejected(entry.key, direction, error)

        if entry.status == LedgerStatus.EXECUTED:
            return self._executed_result(entry, duplicate=True)

        if entry.status == LedgerStatus.FAILED:
            return self._rejected(entry.key, entry.direction, _stored_error(entry))

        if entry.lease_is_live(self._clock()):
            self.metrics.in_progress += 1
            if entry.submission_reference is not None:
                state = SwapState.SUBMITTED
            elif entry.status == LedgerStatus.VERIFIED:
                state = SwapState.PROOF_VERIFIED
            else:
                state = SwapState.RESERVED
            return SwapResult(
                state=state,
                key=entry.key,
                direction=entry.direction,
                amount=entry.amount,
                in_progress=True,
                retryable=True,
                base_chain_reference=entry.base_chain_reference,
                wrapped_chain_reference=entry.wrapped_chain_reference,
            )

        return self._rejected(entry.key, entry.direction, error)

    def _rejected(
        self, key: Optional[str], direction: SwapDirection, error: SwapBridgeError
    ) -> SwapResult:
        self.metrics.rejected += 1
        logger.info(
            f"Swap {key} rejected: {error.kind}",
            context=LogContext(component="coordinator", operation="reject", swap_key=key),
        )
        return SwapResult(
            state=SwapState.REJECTED,
            key=key,
            direction=direction,
            error=error,
            retryable=error.retryable,
        )

    # Maintenance

    async def reconcile_stale(self) -> Dict[str, int]:
        """Resolve entries whose worker lease ran out.

        Entries with a recorded submission are settled from the chain's view.
        Deposits that never reached submission are failed as retryable; the
        bridge contract refuses a proof twice, so a later retry is safe.
        Redeems without a submission are released and left for operator
        review.
        """
        outcome = {"executed": 0, "failed": 0, "pending": 0, "needs_review": 0, "skipped": 0}

        for entry in self.ledger.list_stale(self._clock()):
            context = LogContext(component="coordinator", operation="reconcile", swap_key=entry.key)
            try:
                reservation = self.ledger.reserve(entry.key, entry.direction, owner=f"reconciler-{uuid.uuid4().hex}")
            except AlreadyReserved:
                outcome["skipped"] += 1
                continue
            owner = reservation.lease_owner
            reference = entry.submission_reference

            if reference is None:
                if entry.direction == SwapDirection.DEPOSIT_TO_WRAPPED:
                    self.ledger.mark_failed(
                        entry.key,
                        "abandoned: worker stopped before submission",
                        retryable=True,
                        owner=owner,
                    )
                    outcome["failed"] += 1
                else:
                    self.ledger.release(entry.key, owner=owner)
                    logger.warning(
                        f"Redeem {entry.key} was abandoned before payout; needs operator review",
                        context=context,
                    )
                    outcome["needs_review"] += 1
                continue

            gateway = (
                self.mint_gateway
                if entry.direction == SwapDirection.DEPOSIT_TO_WRAPPED
                else self.payout_gateway
            )
            try:
                status = await self._status_of(entry.key, entry.direction, owner, gateway, reference)
            except SwapBridgeError as e:
                logger.warning(f"Could not reconcile {entry.key}: {e}", context=context)
                self.ledger.renew_lease(entry.key, owner)
                outcome["pending"] += 1
                continue

            if status == SubmissionStatus.CONFIRMED:
                if entry.status == LedgerStatus.PENDING:
                    self.ledger.mark_verified(
                        entry.key, reference.amount or entry.amount, owner=owner
                    )
                self._complete(
                    entry.key,
                    entry.direction,
                    owner,
                    reference,
                    reference.amount or entry.amount,
                    entry.counterparty_address,
                    {"reconciled": True},
                )
                outcome["executed"] += 1
            elif status == SubmissionStatus.PENDING:
                self.ledger.renew_lease(entry.key, owner)
                outcome["pending"] += 1
            else:
                self.ledger.mark_failed(
                    entry.key,
                    f"reconciled: earlier submission is {status.value}",
                    retryable=True,
                    owner=owner,
                )
                outcome["failed"] += 1
            self.metrics.reconciled += 1

        if any(outcome.values()):
            logger.info(f"Stale sweep finished: {outcome}")
        return outcome

    def purge_receipts(self) -> int:
        """Drop receipts past the retention window."""
        return self.receipt_store.purge_expired(self.receipt_retention_seconds)

    # Lookups

    def get_swap(self, key: str, include_linkage: bool = False) -> Optional[Dict[str, Any]]:
        """Ledger entry and receipt metadata for a request key.

        Amounts, addresses and chain references tie the two legs of a swap
        together and are only included when ``include_linkage`` is set.
        """
        entry = self.ledger.lookup(key)
        if entry is None:
            return None
        receipt = None
        if entry.status == LedgerStatus.EXECUTED:
            stored = self.receipt_store.get(derive_swap_id(entry.direction, entry.key))
            receipt = stored.to_dict() if stored else None
        entry_view = entry.to_dict() if include_linkage else entry.to_public_dict()
        return {"entry": entry_view, "receipt": receipt}

    def get_receipt(self, swap_id: str) -> Optional[Receipt]:
        return self.receipt_store.get(swap_id)

    def open_receipt(self, swap_id: str) -> Optional[Dict[str, Any]]:
        """Decrypt a receipt payload with the operator passphrase."""
        receipt = self.receipt_store.get(swap_id)
        if receipt is None:
            return None
        return self.cipher.open(receipt.encrypted_payload, receipt.swap_id)

    def list_receipts(self, start: float, end: float, limit: int = 1000) -> List[Dict[str, Any]]:
        """Metadata of receipts recorded in ``[start, end)``, oldest first."""
        return [receipt.to_dict() for receipt in self.receipt_store.list_between(start, end, limit)]

    def statistics(self) -> Dict[str, Any]:
        """Ledger counts, coordinator counters and chain client circuit state."""
        circuits = {}
        for gateway in (self.mint_gateway, self.payout_gateway):
            metrics = gateway.circuit_metrics()
            if metrics is not None:
                circuits[gateway.chain] = metrics
        return {
            "paused": self._paused,
            "ledger": self.ledger.statistics(),
            "receipts": self.receipt_store.count(),
            "coordinator": self.metrics.to_dict(),
            "inflight": len(self._inflight),
            "circuits": circuits,
        }
