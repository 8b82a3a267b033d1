# Vault - Encryption Service
#
# Process-wide key → AES-256-GCM for stored passwords and PINs.
# Authenticated encryption: tampered ciphertext fails to decrypt instead
# of yielding garbage.

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..core.errors import DecryptionError


class EncryptionService:
    """
    Encrypts/decrypts secret strings for storage.

    Flow:
    1. A single 256-bit key is loaded once from configuration
    2. Each value gets a fresh random 96-bit nonce
    3. Stored form is base64(nonce || ciphertext || tag)
    """

    KEY_LENGTH = 32  # 256 bits for AES-256
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)
    TAG_LENGTH = 16

    def __init__(self, key: bytes):
        if len(key) != self.KEY_LENGTH:
            raise ValueError("Encryption key must be 32 bytes")
        self._aesgcm = AESGCM(key)

    def __repr__(self) -> str:
        return "EncryptionService(<key hidden>)"

    @staticmethod
    def generate_key() -> bytes:
        """Generate a random key suitable for ENCRYPTION_KEY."""
        return AESGCM.generate_key(bit_length=256)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt plaintext using AES-256-GCM.

        Args:
            plaintext: Password or PIN to encrypt

        Returns:
            Base64 text holding nonce and ciphertext
        """
        nonce = os.urandom(self.NONCE_LENGTH)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return self.encode_for_storage(nonce + ciphertext)

    def decrypt(self, token: str) -> str:
        """
        Decrypt a value produced by :meth:`encrypt`.

        Raises:
            DecryptionError: If the value is malformed, was tampered with,
                or was encrypted under a different key.
        """
        try:
            raw = self.decode_from_storage(token)
        except (binascii.Error, ValueError, AttributeError, TypeError) as exc:
            raise DecryptionError("Malformed ciphertext") from exc

        if len(raw) < self.NONCE_LENGTH + self.TAG_LENGTH:
            raise DecryptionError("Malformed ciphertext")

        nonce, ciphertext = raw[: self.NONCE_LENGTH], raw[self.NONCE_LENGTH :]
        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as exc:
            raise DecryptionError() from exc

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Encode binary data for database storage (base64)."""
        return base64.b64encode(data).decode("utf-8")

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """Decode base64-encoded data from database."""
        return base64.b64decode(data.encode("utf-8"), validate=True)
