"""
End-to-end swap flows through the coordinator, ledger and receipt store.

The chains are the in-memory fakes from conftest; everything else is the
real stack on a temporary SQLite file.
"""

import asyncio

import pytest

from swapbridge.bridge import (
    DepositClaim,
    LedgerStatus,
    ProofVerifier,
    ReceiptStore,
    SwapDirection,
    SwapLedger,
    SwapState,
    derive_swap_id,
)
from swapbridge.config import RECEIPT_PASSPHRASE, SecretHandle
from swapbridge.crypto import EncryptionConfig, ReceiptCipher
from swapbridge.errors import EncryptionError
from swapbridge.storage import DatabaseConfig, SQLiteBackend

from conftest import CUSTODIAL_ADDRESS, redeem_claim

pytestmark = pytest.mark.integration

DEPOSIT = SwapDirection.DEPOSIT_TO_WRAPPED
REDEEM = SwapDirection.WRAPPED_TO_DEPOSIT

CLAIM = DepositClaim(
    base_tx_id="abc123", base_tx_proof_key="k1", destination_wrapped_address="wrapped1xyz"
)


class TestDepositFlows:
    """Test deposit flows."""

    @pytest.mark.asyncio
    async def test_deposit_happy_path(self, coordinator, base_client, wrapped_client, receipt_store):
        """Test a confirmed deposit mints the received amount and stores a receipt."""
        base_client.add_deposit("abc123", 1_000_000, confirmations=10)

        result = await coordinator.submit_deposit(CLAIM)

        assert result.state == SwapState.COMPLETED
        assert wrapped_client.mints == [
            {
                "amount": "1000000",
                "recipient": "wrapped1xyz",
                "proof": {"tx_id": "abc123", "tx_key": "k1", "address": CUSTODIAL_ADDRESS},
            }
        ]
        receipt = receipt_store.get(result.swap_id)
        assert receipt.direction == DEPOSIT
        payload = coordinator.open_receipt(result.swap_id)
        assert payload["amount"] == 1_000_000
        assert payload["base_chain_reference"] == "abc123"
        assert payload["wrapped_chain_reference"] == "wrapped-tx-1"

    @pytest.mark.asyncio
    async def test_duplicate_after_completion(self, coordinator, base_client, wrapped_client):
        """Test resubmitting a completed claim returns the same receipt without a second mint."""
        base_client.add_deposit("abc123", 1_000_000)

        first = await coordinator.submit_deposit(CLAIM)
        second = await coordinator.submit_deposit(CLAIM)

        assert second.succeeded
        assert second.duplicate
        assert second.receipt.swap_id == first.receipt.swap_id
        assert second.receipt.encrypted_payload.ciphertext == first.receipt.encrypted_payload.ciphertext
        assert len(wrapped_client.execute_calls) == 1
        assert len(base_client.check_calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_identical_claims(self, coordinator, base_client, wrapped_client):
        """Test N concurrent identical claims mint once and share one receipt."""
        base_client.add_deposit("abc123", 1_000_000)
        wrapped_client.execute_delay = 0.01

        results = await asyncio.gather(*(coordinator.submit_deposit(CLAIM) for _ in range(10)))

        assert all(r.succeeded for r in results)
        assert {r.swap_id for r in results} == {derive_swap_id(DEPOSIT, "abc123")}
        assert sum(1 for r in results if not r.duplicate) == 1
        assert len(wrapped_client.execute_calls) == 1

    @pytest.mark.asyncio
    async def test_verified_amount_wins(self, coordinator, base_client, wrapped_client):
        """Test a claim for 5 that verifies at 7 mints 7."""
        base_client.add_deposit("abc123", 7)
        claim = DepositClaim(
            base_tx_id="abc123",
            base_tx_proof_key="k1",
            destination_wrapped_address="wrapped1xyz",
            claimed_amount=5,
        )

        result = await coordinator.submit_deposit(claim)

        assert result.amount == 7
        assert wrapped_client.mints[0]["amount"] == "7"
        assert coordinator.open_receipt(result.swap_id)["details"]["claimed_amount"] == 5

    @pytest.mark.asyncio
    async def test_unconfirmed_deposit_stays_retryable(self, coordinator, base_client, ledger):
        """Test a zero-confirmation deposit is rejected but not terminally."""
        base_client.add_deposit("abc123", 1_000_000, confirmations=0)

        result = await coordinator.submit_deposit(CLAIM)
        entry = ledger.lookup("abc123")

        assert result.state == SwapState.REJECTED
        assert result.error.kind == "insufficient_confirmations"
        assert result.retryable
        assert not entry.is_terminal

        base_client.proofs["abc123"]["confirmations"] = 10
        assert (await coordinator.submit_deposit(CLAIM)).succeeded

    @pytest.mark.asyncio
    async def test_lost_mint_response_reconciled(self, coordinator, base_client, wrapped_client):
        """Test a mint whose response was lost is found on chain, not repeated."""
        base_client.add_deposit("abc123", 1_000_000)
        wrapped_client.lose_next_response = True

        result = await coordinator.submit_deposit(CLAIM)

        assert result.succeeded
        assert len(wrapped_client.execute_calls) == 1
        assert len(wrapped_client.processed) == 1

    @pytest.mark.asyncio
    async def test_crash_after_mint_is_reconciled(
        self, make_coordinator, base_client, wrapped_client, ledger, clock
    ):
        """Test a worker that died after minting is finished by the stale sweep."""
        base_client.add_deposit("abc123", 1_000_000)
        crashed = make_coordinator()

        # Mint lands, then the worker dies before writing the outcome
        original_mint = crashed.mint_gateway.mint

        async def mint_then_die(*args):
            await original_mint(*args)
            raise asyncio.CancelledError()

        crashed.mint_gateway.mint = mint_then_die
        with pytest.raises(asyncio.CancelledError):
            await crashed.submit_deposit(CLAIM)

        entry = ledger.lookup("abc123")
        assert entry.status == LedgerStatus.VERIFIED
        assert entry.submission_reference is not None

        survivor = make_coordinator()
        in_progress = await survivor.submit_deposit(CLAIM)
        assert in_progress.in_progress

        clock.advance(901)
        outcome = await survivor.reconcile_stale()

        assert outcome["executed"] == 1
        final = await survivor.submit_deposit(CLAIM)
        assert final.succeeded
        assert final.wrapped_chain_reference == "wrapped-tx-1"
        assert len(wrapped_client.execute_calls) == 1


class TestRedeemFlows:
    """Test redeem flows."""

    @pytest.mark.asyncio
    async def test_redeem_happy_path(self, coordinator, base_client, wrapped_client, receipt_store):
        """Test a redeem pays out the burned amount and records a sealed receipt."""
        nonce = wrapped_client.add_burn(amount=500_000, destination="baseAddr1")

        result = await coordinator.submit_redeem(redeem_claim(nonce))

        assert result.succeeded
        assert base_client.transfer_calls == [{"address": "baseAddr1", "amount": 500_000}]
        receipt = receipt_store.get(result.swap_id)
        assert receipt.direction == REDEEM
        payload = coordinator.open_receipt(result.swap_id)
        assert payload["amount"] == 500_000
        assert payload["base_chain_reference"] == "base-tx-1"
        assert payload["wrapped_chain_reference"] == nonce

    @pytest.mark.asyncio
    async def test_redeem_retried_concurrently(self, coordinator, base_client, wrapped_client):
        """Test a redeem for one burn submitted repeatedly pays out once."""
        nonce = wrapped_client.add_burn()
        claim = redeem_claim(nonce)

        first, second = await asyncio.gather(
            coordinator.submit_redeem(claim), coordinator.submit_redeem(claim)
        )
        third = await coordinator.submit_redeem(claim)

        assert first.swap_id == second.swap_id == third.swap_id
        assert third.duplicate
        assert len(base_client.transfer_calls) == 1

    @pytest.mark.asyncio
    async def test_lost_payout_response_reconciled(self, coordinator, base_client, wrapped_client):
        """Test a payout whose response was lost is found in the wallet history."""
        base_client.lose_next_transfer_response = True
        nonce = wrapped_client.add_burn()

        result = await coordinator.submit_redeem(redeem_claim(nonce))

        assert result.succeeded
        assert result.base_chain_reference == "base-tx-1"
        assert len(base_client.transfer_calls) == 1

    @pytest.mark.asyncio
    async def test_repeated_identical_redeems_each_pay(self, coordinator, base_client, wrapped_client):
        """Test two burns with the same amount and address get separate payouts."""
        first_nonce = wrapped_client.add_burn()
        second_nonce = wrapped_client.add_burn()

        first = await coordinator.submit_redeem(redeem_claim(first_nonce))
        base_client.lose_next_transfer_response = True
        second = await coordinator.submit_redeem(redeem_claim(second_nonce))

        assert first.base_chain_reference == "base-tx-1"
        assert second.base_chain_reference == "base-tx-2"
        assert len(base_client.transfer_calls) == 2


class TestOperations:
    """Test operator-facing behavior across components."""

    @pytest.mark.asyncio
    async def test_pause_blocks_new_swaps_only(self, coordinator, base_client, wrapped_client):
        """Test lookups keep working while paused."""
        base_client.add_deposit("abc123", 1_000_000)
        done = await coordinator.submit_deposit(CLAIM)
        coordinator.pause("upgrade")

        result = await coordinator.submit_redeem(redeem_claim(wrapped_client.add_burn()))

        assert result.state == SwapState.REJECTED
        assert result.error.kind == "paused"
        assert coordinator.get_receipt(done.swap_id) is not None
        assert base_client.transfer_calls == []

    @pytest.mark.asyncio
    async def test_duplicate_answered_after_receipt_purge(
        self, make_coordinator, base_client, wrapped_client, clock
    ):
        """Test the ledger still blocks a second mint once the receipt is gone."""
        coordinator = make_coordinator(receipt_retention_seconds=3600)
        base_client.add_deposit("abc123", 1_000_000)
        await coordinator.submit_deposit(CLAIM)

        clock.advance(7200)
        assert coordinator.purge_receipts() == 1

        again = await coordinator.submit_deposit(CLAIM)

        assert again.succeeded
        assert again.duplicate
        assert again.receipt is None
        assert again.wrapped_chain_reference == "wrapped-tx-1"
        assert len(wrapped_client.execute_calls) == 1

    @pytest.mark.asyncio
    async def test_ledger_survives_restart(
        self, tmp_path, make_coordinator, base_client, wrapped_client, clock
    ):
        """Test a restarted node answers a completed claim from disk."""
        base_client.add_deposit("abc123", 1_000_000)
        first = await make_coordinator().submit_deposit(CLAIM)

        reopened = SQLiteBackend(DatabaseConfig(database_path=str(tmp_path / "bridge.db")))
        reopened.connect()
        try:
            restarted = make_coordinator(
                ledger=SwapLedger(reopened, clock=clock),
                receipt_store=ReceiptStore(reopened, clock=clock),
            )
            again = await restarted.submit_deposit(CLAIM)
        finally:
            reopened.disconnect()

        assert again.duplicate
        assert again.receipt.swap_id == first.receipt.swap_id
        assert len(wrapped_client.execute_calls) == 1

    @pytest.mark.asyncio
    async def test_two_instances_share_ledger(
        self, tmp_path, make_coordinator, base_client, wrapped_client, clock
    ):
        """Test two bridge processes on one database mint once."""
        base_client.add_deposit("abc123", 1_000_000)
        wrapped_client.execute_delay = 0.02

        backends = [
            SQLiteBackend(DatabaseConfig(database_path=str(tmp_path / "shared.db"))) for _ in range(2)
        ]
        for backend in backends:
            backend.connect()
        try:
            instances = [
                make_coordinator(
                    ledger=SwapLedger(backend, clock=clock),
                    receipt_store=ReceiptStore(backend, clock=clock),
                    verifier=ProofVerifier(base_client, CUSTODIAL_ADDRESS),
                )
                for backend in backends
            ]
            results = await asyncio.gather(*(i.submit_deposit(CLAIM) for i in instances))
        finally:
            for backend in backends:
                backend.disconnect()

        assert sum(1 for r in results if r.succeeded) == 1
        assert sum(1 for r in results if r.in_progress) == 1
        assert len(wrapped_client.execute_calls) == 1

    @pytest.mark.asyncio
    async def test_receipt_needs_operator_passphrase(self, coordinator, base_client, receipt_store):
        """Test a receipt only opens with the passphrase that sealed it."""
        base_client.add_deposit("abc123", 1_000_000)
        result = await coordinator.submit_deposit(CLAIM)
        sealed = receipt_store.get(result.swap_id).encrypted_payload

        assert coordinator.open_receipt(result.swap_id)["amount"] == 1_000_000

        wrong = ReceiptCipher(
            SecretHandle({RECEIPT_PASSPHRASE: "wrong passphrase"}), EncryptionConfig(iterations=1000)
        )
        with pytest.raises(EncryptionError):
            wrong.open(sealed, result.swap_id)
        with pytest.raises(EncryptionError):
            coordinator.cipher.open(sealed, derive_swap_id(DEPOSIT, "other"))
