"""
Receipt sealing for swapbridge.

Proof-of-Swap payloads are encrypted with AES-256-GCM under a key derived
from the operator's receipt passphrase with PBKDF2-HMAC-SHA256. Every record
gets a fresh salt and IV, and the receipt's swap id is bound in as
associated data so a ciphertext cannot be moved to another receipt row.
"""

import json
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..config import RECEIPT_PASSPHRASE, SecretHandle
from ..errors import ConfigurationError, EncryptionError


DEFAULT_ITERATIONS = 100_000

_BINARY_FIELDS = ("ciphertext", "salt", "iv", "tag")


@dataclass
class EncryptionConfig:
    """Key derivation and cipher parameters for new receipts.

    Only ``iterations`` and ``salt_length`` are tunable; AES-256-GCM fixes
    the key and nonce sizes.
    """

    iterations: int = DEFAULT_ITERATIONS
    salt_length: int = 16
    key_length: int = 32
    iv_length: int = 12

    def __post_init__(self):
        if self.iterations < 1:
            raise ValueError("kdf iterations must be at least 1")
        if self.salt_length < 1:
            raise ValueError("salt_length must be at least 1")
        if self.key_length != 32:
            raise ValueError("AES-256 requires a 32-byte key")
        if self.iv_length != 12:
            raise ValueError("AES-GCM nonces are 12 bytes")


@dataclass
class EncryptedData:
    """A sealed payload together with what is needed to derive its key again.

    ``iterations`` is stored per record so receipts sealed before an
    iteration change still open.
    """

    ciphertext: bytes
    salt: bytes
    iv: bytes
    tag: bytes
    iterations: int = DEFAULT_ITERATIONS
    created_at: int = field(default_factory=lambda: int(time.time()))

    def to_dict(self) -> Dict[str, Any]:
        """Hex-encoded form for JSON."""
        encoded: Dict[str, Any] = {name: getattr(self, name).hex() for name in _BINARY_FIELDS}
        encoded.update(iterations=self.iterations, created_at=self.created_at)
        return encoded

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedData":
        binary = {name: bytes.fromhex(data[name]) for name in _BINARY_FIELDS}
        sealed = cls(iterations=data.get("iterations", DEFAULT_ITERATIONS), **binary)
        if "created_at" in data:
            sealed.created_at = data["created_at"]
        return sealed


class ReceiptCipher:
    """Seals and opens receipt payloads with the operator's passphrase.

    The passphrase is only held for the duration of a key derivation.
    """

    def __init__(
        self,
        secret_handle: SecretHandle,
        config: Optional[EncryptionConfig] = None,
        secret_name: str = RECEIPT_PASSPHRASE,
    ):
        self.secret_handle = secret_handle
        self.config = config or EncryptionConfig()
        self.secret_name = secret_name

    def _key_for(self, salt: bytes, iterations: int) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=self.config.key_length,
            salt=salt,
            iterations=iterations,
            backend=default_backend(),
        )
        try:
            with self.secret_handle.acquire(self.secret_name) as passphrase:
                return kdf.derive(passphrase.encode("utf-8"))
        except ConfigurationError as e:
            raise EncryptionError("Receipt passphrase is not configured", cause=e)

    def encrypt(self, data: bytes, associated_data: bytes = b"") -> EncryptedData:
        """AES-GCM under a key derived with a fresh salt."""
        if not data:
            raise EncryptionError("Cannot encrypt empty data")

        salt = secrets.token_bytes(self.config.salt_length)
        iv = secrets.token_bytes(self.config.iv_length)
        key = self._key_for(salt, self.config.iterations)

        encryptor = Cipher(algorithms.AES(key), modes.GCM(iv), backend=default_backend()).encryptor()
        if associated_data:
            encryptor.authenticate_additional_data(associated_data)
        ciphertext = encryptor.update(data) + encryptor.finalize()
        return EncryptedData(ciphertext, salt, iv, encryptor.tag, iterations=self.config.iterations)

    def decrypt(self, sealed: EncryptedData, associated_data: bytes = b"") -> bytes:
        """Raises EncryptionError on a wrong passphrase, wrong associated data
        or a modified ciphertext."""
        key = self._key_for(sealed.salt, sealed.iterations)
        try:
            decryptor = Cipher(
                algorithms.AES(key), modes.GCM(sealed.iv, sealed.tag), backend=default_backend()
            ).decryptor()
            if associated_data:
                decryptor.authenticate_additional_data(associated_data)
            return decryptor.update(sealed.ciphertext) + decryptor.finalize()
        except InvalidTag:
            raise EncryptionError("Invalid passphrase or corrupted receipt")
        except ValueError as e:
            raise EncryptionError(f"Malformed receipt: {e}", cause=e)

    def seal(self, payload: Dict[str, Any], swap_id: str) -> EncryptedData:
        """Encrypt a receipt payload bound to its swap id."""
        plaintext = json.dumps(payload, sort_keys=True).encode("utf-8")
        return self.encrypt(plaintext, associated_data=swap_id.encode("utf-8"))

    def open(self, sealed: EncryptedData, swap_id: str) -> Dict[str, Any]:
        """Decrypt a receipt payload sealed for ``swap_id``."""
        plaintext = self.decrypt(sealed, associated_data=swap_id.encode("utf-8"))
        return json.loads(plaintext)
