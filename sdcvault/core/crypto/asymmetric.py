"""
Asymmetric Signing Keys
=======================

Key generation, serialization, signing and verification for the
signature algorithms the SDC core uses:

    - RSA-PSS (2048/3072/4096) with SHA-256/384/512, salt length = digest length
    - ECDSA on P-256/P-384/P-521, curve chosen by hash algorithm
    - Ed25519 for per-envelope seal keys

Keys travel as base64 DER: PKCS#8 for private keys, SubjectPublicKeyInfo
for public keys. Ed25519 envelope keys travel as base64 raw 32-byte values.
"""

from __future__ import annotations

import base64
import binascii
from typing import Final, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]
PublicKey = Union[rsa.RSAPublicKey, ec.EllipticCurvePublicKey]

ALGORITHM_RSA_PSS: Final[str] = "RSA-PSS"
ALGORITHM_ECDSA: Final[str] = "ECDSA"

_HASHES: Final[dict[str, type[hashes.HashAlgorithm]]] = {
    "SHA-256": hashes.SHA256,
    "SHA-384": hashes.SHA384,
    "SHA-512": hashes.SHA512,
}

_CURVES: Final[dict[str, type[ec.EllipticCurve]]] = {
    "SHA-256": ec.SECP256R1,
    "SHA-384": ec.SECP384R1,
    "SHA-512": ec.SECP521R1,
}

RSA_PUBLIC_EXPONENT: Final[int] = 65537


class KeyFormatError(ValueError):
    """Raised when key material cannot be decoded or loaded."""


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    """Strict base64 decode. Raises ValueError on malformed input."""
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, AttributeError) as e:
        raise ValueError("Invalid base64 data") from e


def hash_algorithm(name: str) -> hashes.HashAlgorithm:
    try:
        return _HASHES[name]()
    except KeyError:
        raise ValueError(f"Unsupported hash algorithm: {name}") from None


def algorithm_tag(algorithm: str, hash_name: str) -> str:
    """Combined tag stored on signatures, e.g. ``RSA-PSS-SHA-256``."""
    return f"{algorithm}-{hash_name}"


def split_algorithm_tag(tag: str) -> tuple[str, str]:
    """Inverse of :func:`algorithm_tag`."""
    algorithm, sep, digest = tag.partition("-SHA-")
    if not sep or algorithm not in (ALGORITHM_RSA_PSS, ALGORITHM_ECDSA):
        raise ValueError(f"Unknown algorithm tag: {tag}")
    hash_name = f"SHA-{digest}"
    hash_algorithm(hash_name)
    return algorithm, hash_name


def generate_signing_key(algorithm: str, hash_name: str, key_size: int = 2048) -> PrivateKey:
    """Generate an RSA-PSS or ECDSA private key."""
    if algorithm == ALGORITHM_RSA_PSS:
        return rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size)
    if algorithm == ALGORITHM_ECDSA:
        try:
            curve = _CURVES[hash_name]()
        except KeyError:
            raise ValueError(f"Unsupported hash algorithm: {hash_name}") from None
        return ec.generate_private_key(curve)
    raise ValueError(f"Unsupported signature algorithm: {algorithm}")


def export_private_key(key: PrivateKey) -> str:
    der = key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return b64encode(der)


def export_public_key(key: PublicKey) -> str:
    der = key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return b64encode(der)


def load_private_key(encoded: str, algorithm: str) -> PrivateKey:
    """
    Load a base64 PKCS#8 private key and check it fits ``algorithm``.

    Raises:
        KeyFormatError: If decoding fails or the key type does not match
    """
    try:
        key = serialization.load_der_private_key(b64decode(encoded), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyFormatError("Malformed private key") from e
    _check_key_type(key, algorithm, private=True)
    return key


def load_public_key(encoded: str, algorithm: str) -> PublicKey:
    """
    Load a base64 SubjectPublicKeyInfo public key.

    Raises:
        KeyFormatError: If decoding fails or the key type does not match
    """
    try:
        key = serialization.load_der_public_key(b64decode(encoded))
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyFormatError("Malformed public key") from e
    _check_key_type(key, algorithm, private=False)
    return key


def _check_key_type(key: object, algorithm: str, private: bool) -> None:
    if algorithm == ALGORITHM_RSA_PSS:
        expected = rsa.RSAPrivateKey if private else rsa.RSAPublicKey
    elif algorithm == ALGORITHM_ECDSA:
        expected = ec.EllipticCurvePrivateKey if private else ec.EllipticCurvePublicKey
    else:
        raise KeyFormatError(f"Unsupported signature algorithm: {algorithm}")
    if not isinstance(key, expected):
        raise KeyFormatError(f"Key does not match algorithm {algorithm}")


def sign(key: PrivateKey, data: bytes, algorithm: str, hash_name: str) -> bytes:
    digest = hash_algorithm(hash_name)
    if algorithm == ALGORITHM_RSA_PSS:
        return key.sign(
            data,
            padding.PSS(mgf=padding.MGF1(digest), salt_length=digest.digest_size),
            digest,
        )
    if algorithm == ALGORITHM_ECDSA:
        return key.sign(data, ec.ECDSA(digest))
    raise ValueError(f"Unsupported signature algorithm: {algorithm}")


def verify(key: PublicKey, signature: bytes, data: bytes, algorithm: str, hash_name: str) -> bool:
    """Return True if ``signature`` is valid for ``data``. Never raises on a bad signature."""
    digest = hash_algorithm(hash_name)
    try:
        if algorithm == ALGORITHM_RSA_PSS:
            key.verify(
                signature,
                data,
                padding.PSS(mgf=padding.MGF1(digest), salt_length=digest.digest_size),
                digest,
            )
        elif algorithm == ALGORITHM_ECDSA:
            key.verify(signature, data, ec.ECDSA(digest))
        else:
            return False
    except InvalidSignature:
        return False
    return True


def public_keys_equal(a: PublicKey, b: PublicKey) -> bool:
    return export_public_key(a) == export_public_key(b)


# Ed25519 envelope keys


def generate_envelope_keypair() -> tuple[bytes, bytes]:
    """Return ``(private_raw, public_raw)`` for a fresh Ed25519 key."""
    private = ed25519.Ed25519PrivateKey.generate()
    private_raw = private.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_raw = private.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return private_raw, public_raw


def seal_sign(private_raw: bytes, data: bytes) -> bytes:
    return ed25519.Ed25519PrivateKey.from_private_bytes(private_raw).sign(data)


def seal_verify(public_raw: bytes, signature: bytes, data: bytes) -> bool:
    try:
        ed25519.Ed25519PublicKey.from_public_bytes(public_raw).verify(signature, data)
    except (InvalidSignature, ValueError):
        return False
    return True
