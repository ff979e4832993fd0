"""
SDC Error Taxonomy
==================

Every failure raised by the SDC core derives from ``SDCError``.

Each error carries a ``user_message`` that is safe to show at a UI or API
boundary. Credential failures keep their internal ``reason`` for the audit
trail, but always present the same generic message so that callers cannot
tell a wrong password from a corrupted file.
"""

from __future__ import annotations

from typing import Final, Optional


GENERIC_DECRYPTION_MESSAGE: Final[str] = "Failed to decrypt file"


class SDCError(Exception):
    """Base class for SDC errors."""

    user_message: str = "Operation failed"

    # When True, a message passed to the constructor is safe to show as-is.
    _specific: bool = False

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)
        if message and self._specific:
            self.user_message = message


class FormatError(SDCError):
    """Bytes are not a recognizable SDC envelope."""

    user_message = "Invalid or corrupted SDC file"
    _specific = True


class EnvelopeNotFoundError(SDCError):
    user_message = "SDC file not found"


class AccessPolicyError(SDCError):
    """Base class for access policy violations."""


class AccessExpiredError(AccessPolicyError):
    user_message = "File has expired"


class ViewLimitExceededError(AccessPolicyError):
    user_message = "Maximum view count exceeded"


class DecryptionFailedError(SDCError):
    """
    Raised for any credential or ciphertext failure.

    ``reason`` is one of ``no_credentials``, ``wrong_credentials`` or
    ``integrity`` and is meant for audit logging only. ``str()`` of the
    error never includes it.
    """

    user_message = GENERIC_DECRYPTION_MESSAGE

    def __init__(self, reason: str = "wrong_credentials") -> None:
        super().__init__()
        self.reason = reason


class IntegrityError(DecryptionFailedError):
    """Seal or header binding did not verify."""

    def __init__(self) -> None:
        super().__init__(reason="integrity")


class KeyDerivationTimeoutError(SDCError):
    user_message = "Key derivation timed out"


class SigningError(SDCError):
    user_message = "Signing failed"
    _specific = True


class VerificationError(SDCError):
    user_message = "Signature verification failed"
    _specific = True


class SignatureNotFoundError(SDCError):
    user_message = "Signature not found"


class StorageError(SDCError):
    user_message = "Storage failed"
