"""
Key slots: the envelope content key wrapped once per credential.

The content key (CEK) is random. Each slot wraps it with AES-GCM under a
key-encryption key (KEK) derived from one credential:

    private-key slot:  KEK = HKDF-SHA256(private_key, salt=slot.salt)
    password slot:     KEK = PBKDF2 or Argon2id(password, slot.salt)

The slot AAD names the envelope and the slot kind, so a slot cannot be
moved to another envelope or relabelled.
"""

from __future__ import annotations

import secrets
from typing import Final

from sdcvault.core.crypto.aes_gcm import AesGcmCipher
from sdcvault.core.crypto.kdf import KDF_HKDF, expand_key_hkdf
from sdcvault.core.sdc.envelope import KeySlot

SLOT_PRIVATE_KEY: Final[str] = "private-key"
SLOT_PASSWORD: Final[str] = "password"

_KEK_INFO: Final[bytes] = b"sdc-key-slot-v1"

_cipher = AesGcmCipher()


def slot_aad(envelope_id: str, kind: str) -> bytes:
    return f"sdc-slot|{envelope_id}|{kind}".encode("utf-8")


def new_salt(length: int = 16) -> bytes:
    return secrets.token_bytes(length)


def private_key_kek(private_raw: bytes, salt: bytes, length: int = 32) -> bytes:
    return expand_key_hkdf(private_raw, length, info=_KEK_INFO, salt=salt)


def wrap_content_key(
    content_key: bytes,
    kek: bytes,
    envelope_id: str,
    kind: str,
    kdf: str,
    salt: bytes,
    iterations: int = 0,
) -> KeySlot:
    result = _cipher.encrypt(content_key, key=kek, aad=slot_aad(envelope_id, kind))
    return KeySlot(
        kind=kind,
        kdf=kdf,
        salt=salt,
        iterations=iterations,
        nonce=result.nonce,
        tag=result.tag,
        wrapped_key=result.ciphertext,
    )


def wrap_with_private_key(content_key: bytes, private_raw: bytes, envelope_id: str, salt_length: int = 16) -> KeySlot:
    salt = new_salt(salt_length)
    kek = private_key_kek(private_raw, salt)
    return wrap_content_key(content_key, kek, envelope_id, SLOT_PRIVATE_KEY, KDF_HKDF, salt)


def unwrap_content_key(slot: KeySlot, kek: bytes, envelope_id: str) -> bytes:
    """
    Raises:
        AuthenticationError: If the KEK is wrong or the slot was altered
    """
    return _cipher.decrypt(
        slot.wrapped_key,
        slot.nonce,
        slot.tag,
        kek,
        aad=slot_aad(envelope_id, slot.kind),
    )


def find_slot(slots: list[KeySlot], kind: str) -> KeySlot | None:
    for slot in slots:
        if slot.kind == kind:
            return slot
    return None
