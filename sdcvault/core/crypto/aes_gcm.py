"""
AES-256-GCM Authenticated Encryption
====================================

Implements AES-256-GCM with per-operation random nonce generation.

Security Properties:
    - 256-bit key
    - 96-bit nonce (NIST recommended)
    - 128-bit authentication tag, kept separate from the ciphertext
    - Authenticated Additional Data (AAD) support

WARNING:
    - Never reuse (key, nonce) pairs
    - Plaintext is only returned after the tag verifies
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Final, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

AES_KEY_SIZE: Final[int] = 32  # 256 bits
AES_NONCE_SIZE: Final[int] = 12  # 96 bits
AES_TAG_SIZE: Final[int] = 16  # 128 bits


class AuthenticationError(Exception):
    """Raised when an AEAD tag does not verify (wrong key, nonce, AAD or tampering)."""


@dataclass(frozen=True, slots=True)
class AesGcmResult:
    """
    Immutable result of AES-GCM encryption.

    Attributes:
        ciphertext: Encrypted data without the tag
        nonce: Unique nonce used for this encryption
        tag: Authentication tag
        key: The key used (caller must protect or discard it)
    """

    ciphertext: bytes
    nonce: bytes
    tag: bytes
    key: bytes

    def __repr__(self) -> str:
        return f"AesGcmResult(ciphertext_len={len(self.ciphertext)}, nonce_len={len(self.nonce)})"


class AesGcmCipher:
    """
    AES-256-GCM Authenticated Encryption with Associated Data (AEAD).

    Usage:
        cipher = AesGcmCipher()
        result = cipher.encrypt(plaintext, aad=b"context")
        plaintext = cipher.decrypt(
            ciphertext=result.ciphertext,
            nonce=result.nonce,
            tag=result.tag,
            key=result.key,
            aad=b"context",
        )
    """

    __slots__ = ()

    @staticmethod
    def generate_key() -> bytes:
        """Generate a random AES-256 key from the OS CSPRNG."""
        return secrets.token_bytes(AES_KEY_SIZE)

    @staticmethod
    def generate_nonce() -> bytes:
        """Generate a random 96-bit nonce."""
        return secrets.token_bytes(AES_NONCE_SIZE)

    def encrypt(
        self,
        plaintext: bytes,
        key: Optional[bytes] = None,
        aad: Optional[bytes] = None,
    ) -> AesGcmResult:
        """
        Encrypt plaintext using AES-256-GCM.

        Args:
            plaintext: Data to encrypt (can be empty)
            key: Optional 32-byte key. If None, a new random key is generated.
            aad: Additional Authenticated Data

        Returns:
            AesGcmResult with ciphertext, nonce, tag and key

        Raises:
            ValueError: If key is provided but has the wrong size
        """
        if key is None:
            key = self.generate_key()
        elif len(key) != AES_KEY_SIZE:
            raise ValueError(f"Key must be exactly {AES_KEY_SIZE} bytes")

        nonce = self.generate_nonce()
        sealed = AESGCM(key).encrypt(nonce, plaintext, aad)

        return AesGcmResult(
            ciphertext=sealed[:-AES_TAG_SIZE],
            nonce=nonce,
            tag=sealed[-AES_TAG_SIZE:],
            key=key,
        )

    def decrypt(
        self,
        ciphertext: bytes,
        nonce: bytes,
        tag: bytes,
        key: bytes,
        aad: Optional[bytes] = None,
    ) -> bytes:
        """
        Decrypt ciphertext using AES-256-GCM with integrity verification.

        Raises:
            AuthenticationError: If any parameter is malformed or the tag fails
        """
        if len(key) != AES_KEY_SIZE or len(nonce) != AES_NONCE_SIZE or len(tag) != AES_TAG_SIZE:
            raise AuthenticationError("Invalid key, nonce or tag length")

        try:
            return AESGCM(key).decrypt(nonce, ciphertext + tag, aad)
        except InvalidTag as e:
            raise AuthenticationError("Authentication tag mismatch") from e
