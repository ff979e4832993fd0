"""
Key Derivation Functions
========================

Secure key derivation for password and key-material based unlock.

Implements:
    - PBKDF2-HMAC-SHA256 with caller-chosen iteration count
    - Argon2id for memory-hard password stretching
    - HKDF for turning raw key material into key-encryption keys
    - A worker pool that runs slow derivations off the calling thread
    - Password generation, Argon2id password hashes and SHA-256 checksums
"""

from __future__ import annotations

import hashlib
import secrets
import string
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, TimeoutError
from typing import Final, Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from sdcvault.core.errors import KeyDerivationTimeoutError

# Argon2id parameters (OWASP recommended)
ARGON2_TIME_COST: Final[int] = 3
ARGON2_MEMORY_COST: Final[int] = 65536  # 64 MB
ARGON2_PARALLELISM: Final[int] = 4

PBKDF2_ITERATIONS: Final[int] = 600_000

KDF_PBKDF2: Final[str] = "PBKDF2-SHA256"
KDF_ARGON2: Final[str] = "Argon2id"
KDF_HKDF: Final[str] = "HKDF-SHA256"

PASSWORD_ALPHABET: Final[str] = string.ascii_letters + string.digits + "!@#$%^&*()_+-=[]{}|;:,.<>?"


def derive_key_pbkdf2(
    password: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS,
    length: int = 32,
) -> bytes:
    """
    Derive a key from password using PBKDF2-HMAC-SHA256.

    Args:
        password: User password
        salt: Random per-envelope salt
        iterations: Iteration count (stored alongside the salt)
        length: Output key length

    Returns:
        Derived key bytes
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def derive_key_argon2(
    password: str,
    salt: bytes,
    length: int = 32,
) -> bytes:
    """
    Derive a key from password using Argon2id.

    Args:
        password: User password
        salt: Random salt (at least 16 bytes)
        length: Output key length
    """
    return hash_secret_raw(
        secret=password.encode("utf-8"),
        salt=salt,
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST,
        parallelism=ARGON2_PARALLELISM,
        hash_len=length,
        type=Type.ID,
    )


def derive_key(
    password: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS,
    algorithm: str = KDF_PBKDF2,
    length: int = 32,
) -> bytes:
    """
    Turn a password into symmetric key material.

    ``iterations`` only applies to PBKDF2; Argon2id uses its fixed cost
    parameters.

    Raises:
        ValueError: If the algorithm is unknown
    """
    if algorithm == KDF_PBKDF2:
        return derive_key_pbkdf2(password, salt, iterations, length)
    if algorithm == KDF_ARGON2:
        return derive_key_argon2(password, salt, length)
    raise ValueError(f"Unsupported key derivation: {algorithm}")


def expand_key_hkdf(
    key_material: bytes,
    length: int,
    info: bytes = b"",
    salt: bytes | None = None,
) -> bytes:
    """
    Expand key material using HKDF-SHA256.

    Args:
        key_material: Input key material
        length: Output length
        info: Context/application info
        salt: Optional salt
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        info=info,
    )
    return hkdf.derive(key_material)


def generate_password(length: int = 32) -> str:
    """Random password drawn from letters, digits and punctuation."""
    if length < 8:
        raise ValueError("Generated passwords must be at least 8 characters")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def _password_hasher() -> PasswordHasher:
    return PasswordHasher(
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST,
        parallelism=ARGON2_PARALLELISM,
    )


def hash_password(password: str) -> str:
    """
    Hash a password for storage using Argon2id.

    The returned string encodes the salt and cost parameters.
    """
    return _password_hasher().hash(password)


def verify_password(password: str, encoded: str) -> bool:
    """Check a password against a ``hash_password`` result. Never raises on mismatch."""
    try:
        return _password_hasher().verify(encoded, password)
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def calculate_checksum(data: bytes | str) -> str:
    """SHA-256 hex digest; text is hashed as UTF-8."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


class KeyDerivationWorker:
    """
    Runs password derivations on a small thread pool.

    Derivation is deliberately slow, so callers hand it to the worker and
    wait with a timeout instead of blocking their own control path. Jobs
    share no state, so no locking is needed around them.

    Usage:
        worker = KeyDerivationWorker(max_workers=2)
        key = worker.derive("pw", salt, 600_000, timeout=30)
        worker.shutdown()
    """

    __slots__ = ("_executor", "_pending", "_lock")

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sdc-kdf")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(
        self,
        password: str,
        salt: bytes,
        iterations: int,
        algorithm: str = KDF_PBKDF2,
    ) -> Future:
        """Queue a derivation and return its future."""
        future = self._executor.submit(derive_key, password, salt, iterations, algorithm)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def derive(
        self,
        password: str,
        salt: bytes,
        iterations: int,
        algorithm: str = KDF_PBKDF2,
        timeout: Optional[float] = None,
    ) -> bytes:
        """
        Derive a key on the pool and wait for it.

        Raises:
            KeyDerivationTimeoutError: If the job does not finish within
                ``timeout`` seconds or was cancelled
        """
        future = self.submit(password, salt, iterations, algorithm)
        try:
            return future.result(timeout=timeout)
        except TimeoutError as e:
            future.cancel()
            raise KeyDerivationTimeoutError() from e
        except CancelledError as e:
            raise KeyDerivationTimeoutError() from e

    def cancel_pending(self) -> int:
        """Cancel every queued derivation that has not started. Returns the count."""
        with self._lock:
            pending = list(self._pending)
        return sum(1 for future in pending if future.cancel())

    def shutdown(self, wait: bool = True) -> None:
        self.cancel_pending()
        self._executor.shutdown(wait=wait)

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
