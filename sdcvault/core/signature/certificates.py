"""
Signing Certificates
====================

Certificates are structured JSON records rather than X.509. A record binds
a subject name to a public key for a validity window and is signed by its
issuer. Self-signed records are chain roots.

Encoded form: base64 of the canonical JSON of every field. The fingerprint
is the SHA-256 of those JSON bytes.

Chains are ordered leaf first, root last.
"""

from __future__ import annotations

import hashlib
import json
import secrets
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Final, Iterable, Optional

from sdcvault.core.crypto.asymmetric import (
    KeyFormatError,
    PrivateKey,
    PublicKey,
    algorithm_tag,
    b64decode,
    b64encode,
    load_public_key,
    sign,
    split_algorithm_tag,
    verify,
)

CERTIFICATE_VERSION: Final[int] = 3
MAX_CHAIN_LENGTH: Final[int] = 10


@dataclass(frozen=True, slots=True)
class SubjectInfo:
    common_name: str
    organization: Optional[str] = None
    organizational_unit: Optional[str] = None
    country: Optional[str] = None
    email: Optional[str] = None

    def distinguished_name(self) -> str:
        parts = [f"CN={self.common_name}"]
        if self.organization:
            parts.append(f"O={self.organization}")
        if self.organizational_unit:
            parts.append(f"OU={self.organizational_unit}")
        if self.country:
            parts.append(f"C={self.country}")
        if self.email:
            parts.append(f"emailAddress={self.email}")
        return ", ".join(parts)


@dataclass(frozen=True, slots=True)
class CertificateInfo:
    subject: str
    issuer: str
    valid_from: datetime
    valid_to: datetime
    serial_number: str
    fingerprint: str


def _canonical(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _parse_time(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError("Timestamp must be a string")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True, slots=True)
class Certificate:
    """
    ``algorithm``/``hash_algorithm`` describe the subject key.
    ``signature_algorithm`` is the issuer's tag, e.g. ``RSA-PSS-SHA-256``.
    """

    version: int
    serial_number: str
    subject: str
    issuer: str
    valid_from: datetime
    valid_to: datetime
    public_key: str
    algorithm: str
    hash_algorithm: str
    signature_algorithm: str
    signature: str = ""

    def tbs_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "serialNumber": self.serial_number,
            "subject": self.subject,
            "issuer": self.issuer,
            "validFrom": self.valid_from.isoformat(),
            "validTo": self.valid_to.isoformat(),
            "publicKey": self.public_key,
            "algorithm": self.algorithm,
            "hashAlgorithm": self.hash_algorithm,
            "signatureAlgorithm": self.signature_algorithm,
        }

    def tbs_bytes(self) -> bytes:
        """The bytes the issuer signs."""
        return _canonical(self.tbs_dict())

    def to_bytes(self) -> bytes:
        data = self.tbs_dict()
        data["signature"] = self.signature
        return _canonical(data)

    def encode(self) -> str:
        return b64encode(self.to_bytes())

    @classmethod
    def decode(cls, encoded: str) -> "Certificate":
        """
        Raises:
            ValueError: If ``encoded`` is not a certificate record
        """
        try:
            data = json.loads(b64decode(encoded).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValueError("Certificate is not valid JSON") from e
        if not isinstance(data, dict):
            raise ValueError("Certificate must be an object")
        try:
            cert = cls(
                version=int(data["version"]),
                serial_number=str(data["serialNumber"]),
                subject=str(data["subject"]),
                issuer=str(data["issuer"]),
                valid_from=_parse_time(data["validFrom"]),
                valid_to=_parse_time(data["validTo"]),
                public_key=str(data["publicKey"]),
                algorithm=str(data["algorithm"]),
                hash_algorithm=str(data["hashAlgorithm"]),
                signature_algorithm=str(data["signatureAlgorithm"]),
                signature=str(data["signature"]),
            )
        except (KeyError, TypeError) as e:
            raise ValueError("Certificate is missing fields") from e
        return cert

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(self.to_bytes()).hexdigest()

    @property
    def is_self_issued(self) -> bool:
        return self.subject == self.issuer

    def is_valid_at(self, now: datetime) -> bool:
        return self.valid_from <= now <= self.valid_to

    def load_public_key(self) -> PublicKey:
        return load_public_key(self.public_key, self.algorithm)

    def is_signed_by(self, issuer: "Certificate") -> bool:
        """True if ``issuer``'s key made this certificate's signature."""
        try:
            algorithm, hash_name = split_algorithm_tag(self.signature_algorithm)
            if algorithm != issuer.algorithm:
                return False
            return verify(
                issuer.load_public_key(),
                b64decode(self.signature),
                self.tbs_bytes(),
                algorithm,
                hash_name,
            )
        except (ValueError, KeyFormatError):
            return False

    def info(self) -> CertificateInfo:
        return CertificateInfo(
            subject=self.subject,
            issuer=self.issuer,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            serial_number=self.serial_number,
            fingerprint=self.fingerprint,
        )


def generate_serial_number() -> str:
    return secrets.token_hex(16)


def build_certificate(
    subject: str,
    issuer: str,
    public_key: str,
    algorithm: str,
    hash_name: str,
    issuer_key: PrivateKey,
    issuer_algorithm: str,
    issuer_hash: str,
    valid_from: datetime,
    validity_days: int,
) -> Certificate:
    """Build and sign a certificate record."""
    unsigned = Certificate(
        version=CERTIFICATE_VERSION,
        serial_number=generate_serial_number(),
        subject=subject,
        issuer=issuer,
        valid_from=valid_from,
        valid_to=valid_from + timedelta(days=validity_days),
        public_key=public_key,
        algorithm=algorithm,
        hash_algorithm=hash_name,
        signature_algorithm=algorithm_tag(issuer_algorithm, issuer_hash),
    )
    signature = sign(issuer_key, unsigned.tbs_bytes(), issuer_algorithm, issuer_hash)
    return replace(unsigned, signature=b64encode(signature))


def parse_certificate(encoded: str) -> Optional[CertificateInfo]:
    """Summary of an encoded certificate, or None if it cannot be parsed."""
    try:
        return Certificate.decode(encoded).info()
    except ValueError:
        return None


def is_certificate_valid(encoded: str, now: Optional[datetime] = None) -> bool:
    """True if the certificate parses and ``now`` is inside its validity window."""
    try:
        cert = Certificate.decode(encoded)
    except ValueError:
        return False
    return cert.is_valid_at(now or datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class ChainVerification:
    valid: bool
    root_fingerprint: Optional[str] = None
    error: Optional[str] = None


def verify_chain(chain: Iterable[str], now: datetime) -> ChainVerification:
    """
    Walk a leaf-first chain.

    Each link's issuer must be the next link's subject and its signature
    must verify with the next link's key. The last link must be
    self-signed. Every link must be inside its validity window at ``now``.
    """
    encoded = list(chain)
    if not encoded:
        return ChainVerification(False, error="Empty certificate chain")
    if len(encoded) > MAX_CHAIN_LENGTH:
        return ChainVerification(False, error="Certificate chain too long")

    try:
        certs = [Certificate.decode(item) for item in encoded]
    except ValueError:
        return ChainVerification(False, error="Malformed certificate in chain")

    for index, cert in enumerate(certs):
        if not cert.is_valid_at(now):
            return ChainVerification(False, error=f"Certificate {index} is outside its validity period")

        issuer = certs[index + 1] if index + 1 < len(certs) else cert
        if cert.issuer != issuer.subject:
            return ChainVerification(False, error=f"Certificate {index} issuer does not match chain")
        if not cert.is_signed_by(issuer):
            return ChainVerification(False, error=f"Certificate {index} signature is invalid")

    root = certs[-1]
    if not root.is_self_issued:
        return ChainVerification(False, error="Chain does not end in a self-signed root")

    return ChainVerification(True, root_fingerprint=root.fingerprint)
