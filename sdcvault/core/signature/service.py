"""
E-Signature Service
===================

Certificate-backed document signatures with RSA-PSS or ECDSA.

Signed payload (canonical JSON, sorted keys, compact separators):
    {"documentHash": <base64 SHA-256 of the document>,
     "documentId": ..., "signerEmail": ..., "signerName": ...,
     "timestamp": <ms since epoch>}

Verification rebuilds the payload from the stored record, so a signature
verifies for as long as its certificates and age limit allow.
"""

from __future__ import annotations

import hashlib
import json
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Final, Iterable, Optional

from sdcvault.core.config import (
    SUPPORTED_HASH_ALGORITHMS,
    SUPPORTED_RSA_KEY_SIZES,
    SUPPORTED_SIGNATURE_ALGORITHMS,
    SdcConfig,
)
from sdcvault.core.crypto.asymmetric import (
    KeyFormatError,
    algorithm_tag,
    b64decode,
    b64encode,
    export_private_key,
    export_public_key,
    generate_signing_key,
    load_private_key,
    public_keys_equal,
    sign,
    split_algorithm_tag,
    verify,
)
from sdcvault.core.errors import SignatureNotFoundError, SigningError, StorageError, VerificationError
from sdcvault.core.logging import get_secure_logger
from sdcvault.core.signature.certificates import (
    Certificate,
    SubjectInfo,
    build_certificate,
    verify_chain,
)
from sdcvault.db.store import KeyValueStore
from sdcvault.security.audit import AuditEventType, AuditSeverity, TamperAwareAuditLog

logger = get_secure_logger(__name__)

SIGNATURE_PREFIX: Final[str] = "signature:"
DOCUMENT_INDEX_PREFIX: Final[str] = "signatures:document:"

REVOKED_MESSAGE: Final[str] = "Signature has been revoked"

_EPOCH: Final[datetime] = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_millis(moment: datetime) -> int:
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def document_hash(data: bytes) -> str:
    return b64encode(hashlib.sha256(data).digest())


def signature_payload(
    document_id: str,
    data: bytes,
    signer_name: str,
    signer_email: str,
    timestamp: Optional[datetime],
) -> bytes:
    payload: dict[str, Any] = {
        "documentId": document_id,
        "documentHash": document_hash(data),
        "signerName": signer_name,
        "signerEmail": signer_email,
    }
    if timestamp is not None:
        payload["timestamp"] = to_millis(timestamp)
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


@dataclass(frozen=True, slots=True)
class SignatureOptions:
    algorithm: str = "RSA-PSS"
    hash_algorithm: str = "SHA-256"
    key_size: int = 2048
    include_timestamp: bool = True
    include_certificate_chain: bool = True

    def __post_init__(self) -> None:
        if self.algorithm not in SUPPORTED_SIGNATURE_ALGORITHMS:
            raise ValueError(f"Unsupported signature algorithm: {self.algorithm}")
        if self.hash_algorithm not in SUPPORTED_HASH_ALGORITHMS:
            raise ValueError(f"Unsupported hash algorithm: {self.hash_algorithm}")
        if self.key_size not in SUPPORTED_RSA_KEY_SIZES:
            raise ValueError(f"Unsupported key size: {self.key_size}")


@dataclass(frozen=True, slots=True)
class SignerInfo:
    """
    ``certificate`` is the signer's own certificate; ``chain`` holds its
    issuers, nearest first, ending at the root. Empty for self-signed.
    """

    name: str
    email: str
    certificate: str
    private_key: str = field(repr=False)
    chain: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class GeneratedCertificate:
    certificate: str
    private_key: str = field(repr=False)
    public_key: str = ""


@dataclass(slots=True)
class DigitalSignature:
    id: str
    document_id: str
    signer_id: str
    signer_name: str
    signer_email: str
    signature: str
    timestamp: datetime
    certificate_chain: list[str]
    algorithm: str
    timestamped: bool = True
    is_valid: bool = True
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None or not self.is_valid

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "documentId": self.document_id,
            "signerId": self.signer_id,
            "signerName": self.signer_name,
            "signerEmail": self.signer_email,
            "signature": self.signature,
            "timestamp": self.timestamp.isoformat(),
            "timestamped": self.timestamped,
            "certificateChain": list(self.certificate_chain),
            "algorithm": self.algorithm,
            "isValid": self.is_valid,
            "revokedAt": self.revoked_at.isoformat() if self.revoked_at else None,
            "revocationReason": self.revocation_reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DigitalSignature":
        revoked_at = data.get("revokedAt")
        return cls(
            id=data["id"],
            document_id=data["documentId"],
            signer_id=data["signerId"],
            signer_name=data["signerName"],
            signer_email=data["signerEmail"],
            signature=data["signature"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            timestamped=bool(data.get("timestamped", True)),
            certificate_chain=list(data["certificateChain"]),
            algorithm=data["algorithm"],
            is_valid=bool(data.get("isValid", True)),
            revoked_at=datetime.fromisoformat(revoked_at) if revoked_at else None,
            revocation_reason=data.get("revocationReason"),
        )


@dataclass(slots=True)
class SigningResult:
    success: bool
    signature: Optional[DigitalSignature] = None
    error: Optional[str] = None

    def raise_for_error(self) -> None:
        if not self.success:
            raise SigningError(self.error)


@dataclass(slots=True)
class VerificationDetails:
    signature_valid: bool = False
    certificate_valid: bool = False
    timestamp_valid: bool = False
    signer_trusted: bool = False

    def all_valid(self) -> bool:
        return self.signature_valid and self.certificate_valid and self.timestamp_valid and self.signer_trusted

    def to_dict(self) -> dict[str, bool]:
        return {
            "signatureValid": self.signature_valid,
            "certificateValid": self.certificate_valid,
            "timestampValid": self.timestamp_valid,
            "signerTrusted": self.signer_trusted,
        }


@dataclass(slots=True)
class VerificationResult:
    valid: bool
    details: VerificationDetails
    error: Optional[str] = None

    def raise_for_error(self) -> None:
        if not self.valid:
            raise VerificationError(self.error)


class ESignatureService:
    """
    Usage:
        service = ESignatureService(store, config=config)
        cert = service.generate_certificate(SubjectInfo("Alice"))
        signer = SignerInfo("Alice", "alice@example.com", cert.certificate, cert.private_key)
        result = service.sign_document("doc-1", data, signer)
        service.verify_signature(result.signature, data).valid
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[SdcConfig] = None,
        audit: Optional[TamperAwareAuditLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
        trusted_fingerprints: Optional[Iterable[str]] = None,
    ) -> None:
        self._store = store
        self._config = config or SdcConfig.get_instance()
        self._audit = audit
        self._clock = clock or _utcnow
        self._trusted = frozenset(trusted_fingerprints) if trusted_fingerprints is not None else None
        self._lock = threading.Lock()

    def default_options(self) -> SignatureOptions:
        sig = self._config.signature
        return SignatureOptions(
            algorithm=sig.algorithm,
            hash_algorithm=sig.hash_algorithm,
            key_size=sig.key_size,
        )

    # Certificates

    def generate_certificate(
        self,
        subject_info: SubjectInfo,
        options: Optional[SignatureOptions] = None,
        validity_days: Optional[int] = None,
    ) -> GeneratedCertificate:
        """Generate a key pair and a self-signed certificate for it."""
        options = options or self.default_options()
        key = generate_signing_key(options.algorithm, options.hash_algorithm, options.key_size)
        public_key = export_public_key(key.public_key())
        dn = subject_info.distinguished_name()

        cert = build_certificate(
            subject=dn,
            issuer=dn,
            public_key=public_key,
            algorithm=options.algorithm,
            hash_name=options.hash_algorithm,
            issuer_key=key,
            issuer_algorithm=options.algorithm,
            issuer_hash=options.hash_algorithm,
            valid_from=self._clock(),
            validity_days=validity_days or self._config.signature.certificate_validity_days,
        )
        self._audit_event(
            AuditEventType.CERTIFICATE_GENERATED,
            AuditSeverity.INFO,
            "Self-signed certificate generated",
            cert.serial_number,
            {"algorithm": options.algorithm, "hash": options.hash_algorithm},
        )
        return GeneratedCertificate(
            certificate=cert.encode(),
            private_key=export_private_key(key),
            public_key=public_key,
        )

    def issue_certificate(
        self,
        subject_info: SubjectInfo,
        issuer_certificate: str,
        issuer_private_key: str,
        options: Optional[SignatureOptions] = None,
        validity_days: Optional[int] = None,
    ) -> GeneratedCertificate:
        """
        Generate a key pair and a certificate signed by an existing issuer.

        Raises:
            ValueError: If the issuer certificate or key is unusable
        """
        options = options or self.default_options()
        issuer = Certificate.decode(issuer_certificate)
        issuer_key = load_private_key(issuer_private_key, issuer.algorithm)
        if not public_keys_equal(issuer_key.public_key(), issuer.load_public_key()):
            raise ValueError("Issuer private key does not match issuer certificate")

        key = generate_signing_key(options.algorithm, options.hash_algorithm, options.key_size)
        public_key = export_public_key(key.public_key())

        cert = build_certificate(
            subject=subject_info.distinguished_name(),
            issuer=issuer.subject,
            public_key=public_key,
            algorithm=options.algorithm,
            hash_name=options.hash_algorithm,
            issuer_key=issuer_key,
            issuer_algorithm=issuer.algorithm,
            issuer_hash=issuer.hash_algorithm,
            valid_from=self._clock(),
            validity_days=validity_days or self._config.signature.certificate_validity_days,
        )
        self._audit_event(
            AuditEventType.CERTIFICATE_GENERATED,
            AuditSeverity.INFO,
            "Certificate issued",
            cert.serial_number,
            {"issuer_serial": issuer.serial_number},
        )
        return GeneratedCertificate(
            certificate=cert.encode(),
            private_key=export_private_key(key),
            public_key=public_key,
        )

    # Signing

    def sign_document(
        self,
        document_id: str,
        data: bytes,
        signer_info: SignerInfo,
        options: Optional[SignatureOptions] = None,
    ) -> SigningResult:
        """
        Sign ``data`` as ``document_id`` and record the signature.

        Raises:
            StorageError: If the signature could not be persisted
        """
        try:
            record = self._sign(document_id, data, signer_info, options or self.default_options())
        except SigningError as e:
            self._audit_event(
                AuditEventType.SIGNING_FAILED,
                AuditSeverity.WARNING,
                "Document signing failed",
                document_id,
                {"error": e.user_message},
            )
            logger.warning("Signing %s failed: %s", document_id, e.user_message)
            return SigningResult(success=False, error=e.user_message)

        self._save_signature(record, index=True)
        self._audit_event(
            AuditEventType.SIGNATURE_CREATED,
            AuditSeverity.INFO,
            "Document signed",
            record.id,
            {"document_id": document_id, "algorithm": record.algorithm},
        )
        logger.info("Signed document %s (signature %s)", document_id, record.id)
        return SigningResult(success=True, signature=record)

    def _sign(
        self,
        document_id: str,
        data: bytes,
        signer: SignerInfo,
        options: SignatureOptions,
    ) -> DigitalSignature:
        if not document_id:
            raise SigningError("Document id is required")
        if not isinstance(data, (bytes, bytearray)):
            raise SigningError("Document data must be bytes")
        if not signer.name or not signer.email:
            raise SigningError("Signer name and email are required")

        try:
            certificate = Certificate.decode(signer.certificate)
        except ValueError as e:
            raise SigningError("Invalid signer certificate") from e
        if certificate.algorithm != options.algorithm:
            raise SigningError("Certificate algorithm does not match signing algorithm")

        try:
            private_key = load_private_key(signer.private_key, options.algorithm)
            matches = public_keys_equal(private_key.public_key(), certificate.load_public_key())
        except KeyFormatError as e:
            raise SigningError("Invalid private key") from e
        if not matches:
            raise SigningError("Private key does not match certificate")

        now = self._clock()
        if not certificate.is_valid_at(now):
            raise SigningError("Certificate is not valid at signing time")

        # Millisecond precision so the payload can be rebuilt exactly
        timestamp = now.replace(microsecond=now.microsecond // 1000 * 1000)
        payload = signature_payload(
            document_id,
            bytes(data),
            signer.name,
            signer.email,
            timestamp if options.include_timestamp else None,
        )
        raw_signature = sign(private_key, payload, options.algorithm, options.hash_algorithm)

        chain = [signer.certificate, *signer.chain] if options.include_certificate_chain else []

        return DigitalSignature(
            id=str(uuid.uuid4()),
            document_id=document_id,
            signer_id=certificate.fingerprint,
            signer_name=signer.name,
            signer_email=signer.email,
            signature=b64encode(raw_signature),
            timestamp=timestamp,
            timestamped=options.include_timestamp,
            certificate_chain=chain,
            algorithm=algorithm_tag(options.algorithm, options.hash_algorithm),
        )

    # Verification

    def verify_signature(self, signature: DigitalSignature, document_data: bytes) -> VerificationResult:
        """
        Check a signature against ``document_data``. Never raises.

        ``valid`` requires all four detail flags and no revocation.
        """
        details = VerificationDetails()
        error: Optional[str] = None
        now = self._clock()

        try:
            chain = verify_chain(signature.certificate_chain, now)
            details.certificate_valid = chain.valid
            details.signer_trusted = chain.valid and (
                self._trusted is None or chain.root_fingerprint in self._trusted
            )
            if not chain.valid:
                error = chain.error
            elif not details.signer_trusted:
                error = "Signer is not trusted"

            details.timestamp_valid = self._timestamp_valid(signature.timestamp, now)
            if not details.timestamp_valid and error is None:
                error = "Signature timestamp is outside the accepted window"

            details.signature_valid = self._signature_matches(signature, document_data)
            if not details.signature_valid:
                error = "Signature does not match document"
        except (ValueError, TypeError, KeyFormatError):
            error = "Invalid signature data"

        try:
            revoked = signature.is_revoked or self._is_revoked_in_store(signature.id)
        except (StorageError, KeyError, TypeError, ValueError):
            # Unreadable revocation state counts as revoked
            revoked = True
            error = "Revocation status unavailable"
        else:
            if revoked:
                error = REVOKED_MESSAGE

        valid = details.all_valid() and not revoked
        if valid:
            error = None
        elif error is None:
            error = "Verification failed"

        self._audit_event(
            AuditEventType.SIGNATURE_VERIFIED,
            AuditSeverity.INFO if valid else AuditSeverity.WARNING,
            "Signature verified" if valid else "Signature verification failed",
            signature.id,
            {"valid": valid, **details.to_dict()},
        )
        return VerificationResult(valid=valid, details=details, error=error)

    def _timestamp_valid(self, timestamp: datetime, now: datetime) -> bool:
        sig_config = self._config.signature
        if timestamp > now + timedelta(seconds=sig_config.clock_skew_seconds):
            return False
        return now - timestamp < timedelta(days=sig_config.max_signature_age_days)

    @staticmethod
    def _signature_matches(signature: DigitalSignature, document_data: bytes) -> bool:
        if not signature.certificate_chain:
            return False
        algorithm, hash_name = split_algorithm_tag(signature.algorithm)
        leaf = Certificate.decode(signature.certificate_chain[0])
        if leaf.algorithm != algorithm:
            return False
        payload = signature_payload(
            signature.document_id,
            bytes(document_data),
            signature.signer_name,
            signature.signer_email,
            signature.timestamp if signature.timestamped else None,
        )
        return verify(leaf.load_public_key(), b64decode(signature.signature), payload, algorithm, hash_name)

    def _is_revoked_in_store(self, signature_id: str) -> bool:
        stored = self.get_signature(signature_id)
        return stored is not None and stored.is_revoked

    # Records

    def revoke_signature(self, signature_id: str, reason: str) -> DigitalSignature:
        """
        Mark a signature revoked. Revoking twice keeps the first record.

        Raises:
            SignatureNotFoundError: If the id is unknown
        """
        with self._lock:
            record = self.get_signature(signature_id)
            if record is None:
                raise SignatureNotFoundError()
            if record.revoked_at is not None:
                return record

            record.is_valid = False
            record.revoked_at = self._clock()
            record.revocation_reason = reason
            self._save_signature(record)

        self._audit_event(
            AuditEventType.SIGNATURE_REVOKED,
            AuditSeverity.WARNING,
            "Signature revoked",
            signature_id,
            {"document_id": record.document_id},
        )
        return record

    def get_signature(self, signature_id: str) -> Optional[DigitalSignature]:
        raw = self._store.get(f"{SIGNATURE_PREFIX}{signature_id}")
        if raw is None:
            return None
        record = json.loads(raw.decode("utf-8"))
        if not isinstance(record, dict):
            raise ValueError("Malformed signature record")
        return DigitalSignature.from_dict(record)

    def get_document_signatures(self, document_id: str) -> list[DigitalSignature]:
        signatures = []
        for signature_id in self._document_index(document_id):
            record = self.get_signature(signature_id)
            if record is not None:
                signatures.append(record)
        return sorted(signatures, key=lambda s: s.timestamp)

    @staticmethod
    def export_signature_for_pdf(signature: DigitalSignature) -> dict[str, Any]:
        """Annotation data for embedding a signature in a PDF viewer."""
        return {
            "type": "signature",
            "id": signature.id,
            "signer": {"name": signature.signer_name, "email": signature.signer_email},
            "timestamp": signature.timestamp.isoformat(),
            "algorithm": signature.algorithm,
            "signature": signature.signature,
            "certificate": signature.certificate_chain[0] if signature.certificate_chain else None,
            "valid": not signature.is_revoked,
        }

    def _document_index(self, document_id: str) -> list[str]:
        raw = self._store.get(f"{DOCUMENT_INDEX_PREFIX}{document_id}")
        return json.loads(raw.decode("utf-8")) if raw else []

    def _save_signature(self, record: DigitalSignature, index: bool = False) -> None:
        self._store.set(
            f"{SIGNATURE_PREFIX}{record.id}",
            json.dumps(record.to_dict(), separators=(",", ":")).encode("utf-8"),
        )
        if not index:
            return
        with self._lock:
            ids = self._document_index(record.document_id)
            if record.id not in ids:
                ids.append(record.id)
                self._store.set(
                    f"{DOCUMENT_INDEX_PREFIX}{record.document_id}",
                    json.dumps(ids).encode("utf-8"),
                )

    def _audit_event(
        self,
        event_type: AuditEventType,
        severity: AuditSeverity,
        description: str,
        subject_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        if self._audit is not None:
            self._audit.log(event_type, severity, description, subject_id=subject_id, details=details)
