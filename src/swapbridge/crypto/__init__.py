"""Cryptographic helpers for swapbridge receipts."""

from .encryption import EncryptedData, EncryptionConfig, ReceiptCipher

__all__ = ["EncryptedData", "EncryptionConfig", "ReceiptCipher"]
