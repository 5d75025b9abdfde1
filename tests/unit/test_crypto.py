"""
Unit tests for receipt encryption.
"""

import pytest

from swapbridge.config import RECEIPT_PASSPHRASE, SecretHandle
from swapbridge.crypto import EncryptedData, EncryptionConfig, ReceiptCipher
from swapbridge.errors import EncryptionError


class TestEncryptionConfig:
    """Test EncryptionConfig validation."""

    def test_defaults(self):
        """Test default parameters."""
        config = EncryptionConfig()
        assert config.iterations == 100000
        assert config.key_length == 32
        assert config.iv_length == 12

    @pytest.mark.parametrize(
        "kwargs",
        [{"iterations": 0}, {"salt_length": 0}, {"key_length": 16}, {"iv_length": 16}],
    )
    def test_invalid(self, kwargs):
        """Test invalid parameters are rejected."""
        with pytest.raises(ValueError):
            EncryptionConfig(**kwargs)


class TestReceiptCipher:
    """Test ReceiptCipher."""

    def test_seal_and_open(self, cipher):
        """Test a sealed payload opens with the same passphrase and swap id."""
        payload = {"swap_id": "s1", "amount": 1000000, "details": {"base_tx_id": "abc123"}}
        sealed = cipher.seal(payload, "s1")

        assert b"abc123" not in sealed.ciphertext
        assert len(sealed.salt) == 16
        assert len(sealed.iv) == 12
        assert sealed.iterations == 1000
        assert cipher.open(sealed, "s1") == payload

    def test_fresh_salt_and_iv(self, cipher):
        """Test sealing the same payload twice gives different ciphertexts."""
        first = cipher.seal({"a": 1}, "s1")
        second = cipher.seal({"a": 1}, "s1")
        assert first.salt != second.salt
        assert first.iv != second.iv
        assert first.ciphertext != second.ciphertext

    def test_wrong_passphrase(self, cipher):
        """Test a different passphrase cannot open the receipt."""
        sealed = cipher.seal({"a": 1}, "s1")
        other = ReceiptCipher(
            SecretHandle({RECEIPT_PASSPHRASE: "a different passphrase"}),
            EncryptionConfig(iterations=1000),
        )
        with pytest.raises(EncryptionError, match="Invalid passphrase"):
            other.open(sealed, "s1")

    def test_bound_to_swap_id(self, cipher):
        """Test a ciphertext cannot be opened as another receipt."""
        sealed = cipher.seal({"a": 1}, "s1")
        with pytest.raises(EncryptionError):
            cipher.open(sealed, "s2")

    def test_tampered_ciphertext(self, cipher):
        """Test tampering is detected."""
        sealed = cipher.seal({"a": 1}, "s1")
        sealed.ciphertext = bytes([sealed.ciphertext[0] ^ 1]) + sealed.ciphertext[1:]
        with pytest.raises(EncryptionError):
            cipher.open(sealed, "s1")

    def test_opens_with_stored_iterations(self, secret_handle):
        """Test old receipts open after the iteration count changes."""
        old = ReceiptCipher(secret_handle, EncryptionConfig(iterations=1000))
        new = ReceiptCipher(secret_handle, EncryptionConfig(iterations=2000))
        sealed = old.seal({"a": 1}, "s1")
        assert new.open(sealed, "s1") == {"a": 1}

    def test_missing_passphrase(self):
        """Test sealing without a passphrase fails cleanly."""
        cipher = ReceiptCipher(SecretHandle(), EncryptionConfig(iterations=1000))
        with pytest.raises(EncryptionError, match="not configured"):
            cipher.seal({"a": 1}, "s1")

    def test_empty_data(self, cipher):
        """Test empty plaintext is refused."""
        with pytest.raises(EncryptionError):
            cipher.encrypt(b"")

    def test_encrypted_data_dict(self, cipher):
        """Test hex dictionary conversion."""
        sealed = cipher.seal({"a": 1}, "s1")
        restored = EncryptedData.from_dict(sealed.to_dict())
        assert restored == sealed
        assert cipher.open(restored, "s1") == {"a": 1}
