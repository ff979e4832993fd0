"""
SDCVault Cryptographic Core
===========================

Architecture:
    1. AES-256-GCM: content and key-slot encryption
    2. PBKDF2-SHA256 / Argon2id: password stretching
    3. HKDF-SHA256: raw private key to key-encryption key
    4. Ed25519: per-envelope seals
    5. RSA-PSS / ECDSA: document e-signatures

Security Properties:
    - All encryption is authenticated (AEAD)
    - Fresh random nonce and salt per operation
    - Secure RNG for all random values

WARNING: This module handles sensitive cryptographic material.
"""

from sdcvault.core.crypto.aes_gcm import AesGcmCipher, AesGcmResult, AuthenticationError
from sdcvault.core.crypto.kdf import (
    KeyDerivationWorker,
    calculate_checksum,
    derive_key,
    derive_key_argon2,
    derive_key_pbkdf2,
    expand_key_hkdf,
    generate_password,
    hash_password,
    verify_password,
)

__all__ = [
    "AesGcmCipher",
    "AesGcmResult",
    "AuthenticationError",
    "KeyDerivationWorker",
    "calculate_checksum",
    "derive_key",
    "derive_key_argon2",
    "derive_key_pbkdf2",
    "expand_key_hkdf",
    "generate_password",
    "hash_password",
    "verify_password",
]
