"""
Shared fixtures for swapbridge tests.

The chain clients are replaced by in-memory fakes that keep just enough
state to behave like the wallet daemon and the wrapped-chain executor: the
executor refuses a deposit proof it has already used, and payouts show up
in the wallet's transfer list.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from swapbridge.bridge import (
    BurnVerifier,
    MintGateway,
    PayoutGateway,
    ProofVerifier,
    ReceiptStore,
    RedeemClaim,
    SwapCoordinator,
    SwapLedger,
)
from swapbridge.config import (
    OPERATOR_TOKEN,
    RECEIPT_PASSPHRASE,
    WRAPPED_SIGNER_KEY,
    CoordinatorConfig,
    SecretHandle,
)
from swapbridge.crypto import EncryptionConfig, ReceiptCipher
from swapbridge.errors import ChainUnavailableError, RetryPolicy, RpcError
from swapbridge.storage import DatabaseConfig, SQLiteBackend

CUSTODIAL_ADDRESS = "custodial1address"
PASSPHRASE = "correct horse battery staple"
SIGNER_KEY = "wrapped-signer-key"
OPERATOR = "operator-token"
SENDER = "wrapped1sender"
VIEWING_KEY = "sender-viewing-key"


def redeem_claim(
    nonce: str, sender: str = SENDER, viewing_key: str = VIEWING_KEY, **claimed
) -> RedeemClaim:
    """Redeem claim for a burn recorded with ``FakeWrappedClient.add_burn``."""
    return RedeemClaim(
        wrapped_sender_address=sender, burn_reference=nonce, viewing_key=viewing_key, **claimed
    )


class FakeClock:
    """Controllable time source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeBaseClient:
    """In-memory wallet daemon."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.proofs: Dict[str, Dict[str, Any]] = {}
        self.proof_errors: List[Exception] = []
        self.transfer_errors: List[Exception] = []
        self.transfers: Dict[str, Dict[str, Any]] = {}
        self.check_calls: List[Dict[str, str]] = []
        self.transfer_calls: List[Dict[str, Any]] = []
        self.payout_confirmations = 10
        # Apply the payout, then fail as if the response was lost
        self.lose_next_transfer_response = False
        self.closed = False

    def add_deposit(
        self, txid: str, received: int, confirmations: int = 10, in_pool: bool = False
    ) -> None:
        self.proofs[txid] = {
            "received": received,
            "confirmations": confirmations,
            "in_pool": in_pool,
        }

    async def check_tx_key(self, txid: str, tx_key: str, address: str) -> Dict[str, Any]:
        self.check_calls.append({"txid": txid, "tx_key": tx_key, "address": address})
        await asyncio.sleep(0)
        if self.proof_errors:
            raise self.proof_errors.pop(0)
        if txid not in self.proofs:
            raise RpcError("Failed to get transaction from daemon", method="check_tx_key", rpc_code=-1)
        if address != CUSTODIAL_ADDRESS:
            return {"received": 0, "confirmations": 0, "in_pool": False}
        return dict(self.proofs[txid])

    async def transfer(self, address: str, amount: int) -> Dict[str, Any]:
        self.transfer_calls.append({"address": address, "amount": amount})
        await asyncio.sleep(0)
        if self.transfer_errors:
            raise self.transfer_errors.pop(0)
        tx_hash = f"base-tx-{len(self.transfer_calls)}"
        self.transfers[tx_hash] = {
            "txid": tx_hash,
            "type": "out",
            "timestamp": self.clock(),
            "confirmations": self.payout_confirmations,
            "destinations": [{"address": address, "amount": amount}],
        }
        if self.lose_next_transfer_response:
            self.lose_next_transfer_response = False
            raise ChainUnavailableError("RPC request transfer timed out", timed_out=True)
        return {"tx_hash": tx_hash, "tx_key": f"key-{tx_hash}", "amount": amount, "fee": 12}

    async def get_transfer_by_txid(self, txid: str) -> Optional[Dict[str, Any]]:
        transfer = self.transfers.get(txid)
        return dict(transfer) if transfer else None

    async def get_transfers(self, out=True, pending=False, pool=False, failed=False):
        return {"out": [dict(t) for t in self.transfers.values()]}

    async def close(self) -> None:
        self.closed = True


class FakeWrappedClient:
    """In-memory wrapped-chain executor with the bridge contract's proof dedupe
    and burn records."""

    def __init__(self):
        self.processed: Dict[str, str] = {}
        self.burns: Dict[int, Dict[str, Any]] = {}
        self.viewing_keys: Dict[str, str] = {SENDER: VIEWING_KEY}
        self.swap_details_errors: List[Exception] = []
        self.txs: Dict[str, Dict[str, Any]] = {}
        self.execute_calls: List[Dict[str, Any]] = []
        self.execute_errors: List[Exception] = []
        # Apply the mint, then fail as if the response was lost
        self.lose_next_response = False
        self.execute_delay = 0.0
        self.closed = False

    @property
    def mints(self) -> List[Dict[str, Any]]:
        return [call["mint"] for call in self.execute_calls if "mint" in call]

    async def execute(self, msg: Dict[str, Any]) -> Dict[str, Any]:
        self.execute_calls.append(msg)
        await asyncio.sleep(self.execute_delay)
        if self.execute_errors:
            raise self.execute_errors.pop(0)
        tx_id = msg["mint"]["proof"]["tx_id"]
        tx_hash = f"wrapped-tx-{len(self.execute_calls)}"
        if tx_id in self.processed:
            self.txs[tx_hash] = {"tx_hash": tx_hash, "height": 0, "code": 5, "raw_log": "Invalid monero proof"}
            return {"tx_hash": tx_hash, "code": 5, "raw_log": "Invalid monero proof"}
        self.processed[tx_id] = tx_hash
        self.txs[tx_hash] = {"tx_hash": tx_hash, "height": 100, "code": 0, "raw_log": ""}
        if self.lose_next_response:
            self.lose_next_response = False
            raise ChainUnavailableError("Request /execute timed out", timed_out=True)
        return {"tx_hash": tx_hash, "code": 0, "raw_log": ""}

    async def get_tx(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        tx = self.txs.get(tx_hash)
        return dict(tx) if tx else None

    async def proof_processed(self, tx_id: str) -> Dict[str, Any]:
        tx_hash = self.processed.get(tx_id)
        return {"processed": tx_hash is not None, "tx_hash": tx_hash}

    def add_burn(
        self, amount: int = 500_000, destination: str = "baseAddr1", sender: str = SENDER
    ) -> str:
        """Record a burn the way the contract does; returns its nonce."""
        nonce = len(self.burns)
        self.burns[nonce] = {"sender": sender, "destination": destination, "amount": amount}
        return str(nonce)

    async def swap_details(
        self, address: str, viewing_key: str, nonce: int
    ) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)
        if self.swap_details_errors:
            raise self.swap_details_errors.pop(0)
        if self.viewing_keys.get(address) != viewing_key:
            raise RpcError("Viewing key refused: incorrect viewing key", method="swap_details")
        burn = self.burns.get(nonce)
        if burn is None or burn["sender"] != address:
            return None
        return dict(burn)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    """Controllable clock."""
    return FakeClock()


@pytest.fixture
def backend(tmp_path):
    """Connected SQLite backend in a temporary directory."""
    backend = SQLiteBackend(DatabaseConfig(database_path=str(tmp_path / "bridge.db")))
    backend.connect()
    yield backend
    backend.disconnect()


@pytest.fixture
def secret_handle():
    """Secret handle with every secret the bridge uses."""
    return SecretHandle(
        {
            RECEIPT_PASSPHRASE: PASSPHRASE,
            WRAPPED_SIGNER_KEY: SIGNER_KEY,
            OPERATOR_TOKEN: OPERATOR,
        }
    )


@pytest.fixture
def cipher(secret_handle):
    """Receipt cipher with a cheap key derivation."""
    return ReceiptCipher(secret_handle, EncryptionConfig(iterations=1000))


@pytest.fixture
def ledger(backend, clock):
    """Swap ledger on the temporary database."""
    return SwapLedger(backend, lease_seconds=900, clock=clock)


@pytest.fixture
def receipt_store(backend, clock):
    """Receipt store on the temporary database."""
    return ReceiptStore(backend, clock=clock)


@pytest.fixture
def base_client(clock):
    """Fake wallet daemon."""
    return FakeBaseClient(clock)


@pytest.fixture
def wrapped_client():
    """Fake wrapped-chain executor."""
    return FakeWrappedClient()


@pytest.fixture
def coordinator_config():
    """Coordinator settings with instant retries."""
    return CoordinatorConfig(
        min_swap_amount=1,
        max_concurrent_swaps=8,
        submission_timeout=30,
        confirmation_poll_interval=5,
        retry_policy=RetryPolicy(max_retries=2, base_delay=0.0, jitter=False),
    )


@pytest.fixture
def make_coordinator(
    ledger, receipt_store, cipher, base_client, wrapped_client, coordinator_config, clock
):
    """Factory for coordinators wired to the fakes."""

    async def fake_sleep(delay: float) -> None:
        clock.advance(delay)
        await asyncio.sleep(0)

    def factory(**overrides) -> SwapCoordinator:
        params = dict(
            ledger=ledger,
            verifier=ProofVerifier(base_client, CUSTODIAL_ADDRESS, min_confirmations=1),
            burn_verifier=BurnVerifier(wrapped_client, timeout=5),
            mint_gateway=MintGateway(wrapped_client, submission_timeout=5),
            payout_gateway=PayoutGateway(base_client, submission_timeout=5),
            receipt_store=receipt_store,
            cipher=cipher,
            config=coordinator_config,
            clock=clock,
            sleep=fake_sleep,
        )
        params.update(overrides)
        return SwapCoordinator(**params)

    return factory


@pytest.fixture
def coordinator(make_coordinator):
    """Coordinator wired to the fakes."""
    return make_coordinator()
