"""
SDC Format Service
==================

Creates, imports, exports and opens ``.sdc`` envelopes.

Reading an envelope:
    1. Policy pre-check (fails fast, no state change)
    2. Password stretching on the KDF worker, outside any lock
    3. Per-envelope lock: reload the stored view count, re-check policy
    4. Verify the seal, unwrap a key slot, decrypt
    5. Count the view and persist it before returning the plaintext

Security Properties:
    - The private key is returned once at creation and never stored
    - Every credential or integrity failure looks the same to the caller
    - The stored view count only ever grows
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

from sdcvault.core.config import (
    MAX_KDF_ITERATIONS,
    MIN_KDF_ITERATIONS,
    SUPPORTED_KEY_DERIVATIONS,
    SdcConfig,
)
from sdcvault.core.crypto.aes_gcm import AesGcmCipher, AuthenticationError
from sdcvault.core.crypto.asymmetric import (
    b64decode,
    b64encode,
    generate_envelope_keypair,
    seal_sign,
    seal_verify,
)
from sdcvault.core.crypto.kdf import ARGON2_TIME_COST, KDF_ARGON2, KDF_PBKDF2, KeyDerivationWorker
from sdcvault.core.errors import (
    AccessExpiredError,
    AccessPolicyError,
    DecryptionFailedError,
    EnvelopeNotFoundError,
    FormatError,
    IntegrityError,
    KeyDerivationTimeoutError,
    StorageError,
)
from sdcvault.core.logging import get_secure_logger
from sdcvault.core.qr.renderer import QRCodeGenerationResult, QRRenderer, generate_sdc_qr_code
from sdcvault.core.sdc.envelope import AccessInfo, SDCEnvelope, SDCMetadata, SecurityInfo
from sdcvault.core.sdc.keyslots import (
    SLOT_PASSWORD,
    SLOT_PRIVATE_KEY,
    find_slot,
    new_salt,
    private_key_kek,
    unwrap_content_key,
    wrap_content_key,
    wrap_with_private_key,
)
from sdcvault.core.sdc.policy import AccessPolicy
from sdcvault.db.store import KeyValueStore
from sdcvault.security.audit import AuditEventType, AuditSeverity, TamperAwareAuditLog
from sdcvault.security.monitor import DecryptionFailureMonitor, SecurityMonitor
from sdcvault.utils.paths import original_format_of, sdc_filename
from sdcvault.utils.validators import validate_path_safe, validate_string_safe, validate_tags

logger = get_secure_logger(__name__)

STORE_PREFIX = "sdc:"


def store_key(file_id: str) -> str:
    return f"{STORE_PREFIX}{file_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class DocumentInfo:
    """Descriptive metadata supplied at creation. Title defaults to the filename."""

    title: Optional[str] = None
    author: str = "Anonymous"
    description: str = ""
    tags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SDCExportOptions:
    encryption_enabled: bool = True
    password: Optional[str] = field(default=None, repr=False)
    expires_at: Optional[datetime] = None
    max_views: Optional[int] = None
    key_derivation: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SDCCreationResult:
    envelope: SDCEnvelope
    # Base64 raw Ed25519 private key; shown to the creator exactly once
    private_key: str = field(repr=False)


@dataclass(slots=True)
class DecryptionResult:
    success: bool
    data: Optional[bytes] = field(default=None, repr=False)
    metadata: Optional[SDCMetadata] = None
    original_format: Optional[str] = None
    views_remaining: Optional[int] = None
    error: Optional[str] = None
    exception: Optional[Exception] = field(default=None, repr=False)

    def raise_for_error(self) -> None:
        if self.exception is not None:
            raise self.exception


class SDCFormatService:
    """
    Usage:
        service = SDCFormatService(store=SQLiteStore(path), config=config)
        created = service.create_sdc_file(data, "report.pdf", options=SDCExportOptions(max_views=3))
        result = service.read_sdc_file(created.envelope, private_key=created.private_key)
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[SdcConfig] = None,
        audit: Optional[TamperAwareAuditLog] = None,
        monitor: Optional[SecurityMonitor] = None,
        clock: Optional[Callable[[], datetime]] = None,
        kdf_worker: Optional[KeyDerivationWorker] = None,
        qr_renderer: Optional[QRRenderer] = None,
    ) -> None:
        self._store = store
        self._config = config or SdcConfig.get_instance()
        self._audit = audit
        self._clock = clock or _utcnow
        self._owns_worker = kdf_worker is None
        self._kdf = kdf_worker or KeyDerivationWorker(self._config.security.kdf_workers)
        self._qr_renderer = qr_renderer
        self._cipher = AesGcmCipher()

        self._failures: Optional[DecryptionFailureMonitor] = None
        if monitor is not None:
            self._failures = DecryptionFailureMonitor(
                monitor,
                max_failures=self._config.security.max_decryption_failures,
                window_seconds=self._config.security.failure_window_seconds,
            )

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def close(self) -> None:
        if self._owns_worker:
            self._kdf.shutdown(wait=False)

    def __enter__(self) -> "SDCFormatService":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # Creation

    def create_sdc_file(
        self,
        original_data: bytes,
        original_filename: str,
        metadata: Optional[DocumentInfo] = None,
        options: Optional[SDCExportOptions] = None,
    ) -> SDCCreationResult:
        """
        Wrap ``original_data`` in a new sealed envelope and persist it.

        Raises:
            ValueError: On invalid options or metadata
            KeyDerivationTimeoutError: If password stretching timed out
            StorageError: If the envelope could not be persisted
        """
        if not isinstance(original_data, (bytes, bytearray)):
            raise TypeError("original_data must be bytes")
        metadata = metadata or DocumentInfo()
        options = options or SDCExportOptions()
        security_config = self._config.security

        validate_string_safe(original_filename, max_length=255, field_name="filename")
        if options.password is not None:
            if not options.encryption_enabled:
                raise ValueError("A password requires encryption to be enabled")
            validate_string_safe(options.password, max_length=1024, field_name="password")

        key_derivation = options.key_derivation or security_config.key_derivation
        if key_derivation not in SUPPORTED_KEY_DERIVATIONS:
            raise ValueError(f"Unsupported key derivation: {key_derivation}")

        access = AccessInfo(
            expires_at=options.expires_at,
            max_views=options.max_views,
            requires_key=options.encryption_enabled,
        )
        now = self._clock()
        if access.expires_at is not None and access.expires_at <= now:
            raise ValueError("expires_at must be in the future")

        file_id = str(uuid.uuid4())
        private_raw, public_raw = generate_envelope_keypair()

        envelope = SDCEnvelope(
            id=file_id,
            name=sdc_filename(original_filename),
            original_format=original_format_of(original_filename),
            created_at=now,
            last_modified=now,
            public_key=b64encode(public_raw),
            encrypted_data=b"",
            metadata=SDCMetadata(
                title=validate_string_safe(
                    metadata.title or original_filename, max_length=500, field_name="title"
                ),
                author=validate_string_safe(metadata.author, max_length=200, field_name="author"),
                description=validate_string_safe(
                    metadata.description, max_length=5000, allow_empty=True, field_name="description"
                ),
                tags=validate_tags(metadata.tags),
                security=SecurityInfo(
                    encrypted=options.encryption_enabled,
                    key_derivation=key_derivation,
                ),
                access=access,
            ),
        )

        if options.encryption_enabled:
            content_key = self._cipher.generate_key()
            sealed = self._cipher.encrypt(bytes(original_data), key=content_key, aad=envelope.bound_header())
            envelope.encrypted_data = sealed.ciphertext
            envelope.nonce = sealed.nonce
            envelope.tag = sealed.tag
            envelope.key_slots.append(
                wrap_with_private_key(content_key, private_raw, file_id, security_config.salt_length)
            )
            if options.password is not None:
                envelope.key_slots.append(
                    self._password_slot(content_key, options.password, file_id, key_derivation)
                )
        else:
            envelope.encrypted_data = bytes(original_data)

        envelope.seal = seal_sign(private_raw, envelope.seal_payload())

        self._persist(envelope)
        self._audit_event(
            AuditEventType.FILE_CREATED,
            AuditSeverity.INFO,
            "SDC file created",
            file_id,
            {
                "encrypted": envelope.is_encrypted,
                "key_slots": [slot.kind for slot in envelope.key_slots],
                "max_views": access.max_views,
                "expires": access.expires_at is not None,
            },
        )
        logger.info("Created SDC file %s (%d bytes)", file_id, len(original_data))

        return SDCCreationResult(envelope=envelope, private_key=b64encode(private_raw))

    def _password_slot(self, content_key: bytes, password: str, file_id: str, kdf: str):
        security_config = self._config.security
        iterations = security_config.kdf_iterations if kdf == KDF_PBKDF2 else ARGON2_TIME_COST
        salt = new_salt(security_config.salt_length)
        kek = self._kdf.derive(
            password, salt, iterations, kdf, timeout=security_config.kdf_timeout_seconds
        )
        return wrap_content_key(content_key, kek, file_id, SLOT_PASSWORD, kdf, salt, iterations)

    # Serialization

    def export_sdc_file(self, envelope: SDCEnvelope) -> bytes:
        data = envelope.to_bytes()
        self._audit_event(AuditEventType.FILE_EXPORTED, AuditSeverity.INFO, "SDC file exported", envelope.id)
        return data

    def export_sdc_file_to_path(self, envelope: SDCEnvelope, path: Path | str) -> Path:
        """Write the envelope to ``path``, or into it when ``path`` is a directory."""
        target = validate_path_safe(path)
        if target.is_dir():
            target = target / envelope.name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self.export_sdc_file(envelope))
        return target

    def import_sdc_file(self, raw_bytes: bytes, persist: bool = False) -> SDCEnvelope:
        """
        Parse ``.sdc`` bytes.

        With ``persist=True`` the envelope is also stored, after its seal
        has been checked. A stored view count is never lowered.

        Raises:
            FormatError: If the bytes are not a well-formed, sealed envelope
        """
        try:
            envelope = SDCEnvelope.from_bytes(raw_bytes)
        except FormatError as e:
            self._audit_event(
                AuditEventType.FORMAT_REJECTED,
                AuditSeverity.WARNING,
                "Rejected malformed SDC data",
                details={"reason": str(e)},
            )
            raise

        if persist:
            if not self.verify_seal(envelope):
                self._audit_event(
                    AuditEventType.FORMAT_REJECTED,
                    AuditSeverity.WARNING,
                    "Rejected SDC file with a broken seal",
                    envelope.id,
                )
                raise FormatError("SDC file seal does not verify")
            with self._lock_for(envelope.id):
                self._sync_view_count(envelope)
                self._persist(envelope)

        self._audit_event(AuditEventType.FILE_IMPORTED, AuditSeverity.INFO, "SDC file imported", envelope.id)
        return envelope

    def import_sdc_file_from_path(self, path: Path | str, persist: bool = False) -> SDCEnvelope:
        source = validate_path_safe(path, must_exist=True)
        return self.import_sdc_file(source.read_bytes(), persist=persist)

    # Lookup and editing

    def get_sdc_file(self, file_id: str) -> Optional[SDCEnvelope]:
        raw = self._store.get(store_key(file_id))
        if raw is None:
            return None
        return SDCEnvelope.from_bytes(raw)

    def update_metadata(
        self,
        file_id: str,
        *,
        name: Optional[str] = None,
        title: Optional[str] = None,
        author: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> SDCEnvelope:
        """
        Edit the descriptive fields of a stored envelope.

        Content, security settings and access limits cannot be changed here.

        Raises:
            EnvelopeNotFoundError: If no envelope is stored under ``file_id``
        """
        with self._lock_for(file_id):
            envelope = self.get_sdc_file(file_id)
            if envelope is None:
                raise EnvelopeNotFoundError()

            meta = envelope.metadata
            if name is not None:
                envelope.name = sdc_filename(validate_string_safe(name, max_length=255, field_name="name"))
            if title is not None:
                meta.title = validate_string_safe(title, max_length=500, field_name="title")
            if author is not None:
                meta.author = validate_string_safe(author, max_length=200, field_name="author")
            if description is not None:
                meta.description = validate_string_safe(
                    description, max_length=5000, allow_empty=True, field_name="description"
                )
            if tags is not None:
                meta.tags = validate_tags(tags)
            envelope.last_modified = self._clock()

            self._persist(envelope)

        self._audit_event(AuditEventType.METADATA_UPDATED, AuditSeverity.INFO, "SDC metadata updated", file_id)
        return envelope

    # Reading

    def verify_seal(self, envelope: SDCEnvelope) -> bool:
        try:
            public_raw = b64decode(envelope.public_key)
        except ValueError:
            return False
        return seal_verify(public_raw, envelope.seal, envelope.seal_payload())

    def read_sdc_file(
        self,
        envelope: SDCEnvelope,
        private_key: Optional[str] = None,
        password: Optional[str] = None,
    ) -> DecryptionResult:
        """
        Open an envelope and count the view.

        Policy and credential failures come back as ``success=False``; use
        ``raise_for_error()`` to get the typed exception.

        Raises:
            StorageError: If the new view count could not be persisted
            KeyDerivationTimeoutError: If password stretching timed out
        """
        if private_key is not None and not isinstance(private_key, str):
            raise ValueError("private_key must be a string")
        if password is not None and not isinstance(password, str):
            raise ValueError("password must be a string")

        decision = AccessPolicy.evaluate(envelope.metadata.access, self._clock())
        if not decision.allowed:
            return self._policy_failure(envelope, decision.error)

        # Slot parameters are only trusted once the seal holds
        if not self.verify_seal(envelope):
            return self._credential_failure(envelope, IntegrityError())
        try:
            password_kek = self._derive_password_kek(envelope, password)
        except DecryptionFailedError as e:
            return self._credential_failure(envelope, e)

        with self._lock_for(envelope.id):
            try:
                self._sync_view_count(envelope)
            except IntegrityError as e:
                return self._credential_failure(envelope, e)

            access = envelope.metadata.access
            decision = AccessPolicy.evaluate(access, self._clock())
            if not decision.allowed:
                return self._policy_failure(envelope, decision.error)

            try:
                data = self._open(envelope, private_key, password_kek)
            except DecryptionFailedError as e:
                return self._credential_failure(envelope, e)

            access.view_count += 1
            try:
                self._persist(envelope)
            except StorageError:
                access.view_count -= 1
                logger.error("Could not persist view count for %s", envelope.id)
                raise

        remaining = AccessPolicy.views_remaining(access)
        if self._failures is not None:
            self._failures.reset(envelope.id)
        self._audit_event(
            AuditEventType.FILE_DECRYPTED,
            AuditSeverity.INFO,
            "SDC file opened",
            envelope.id,
            {"view_count": access.view_count, "views_remaining": remaining},
        )

        return DecryptionResult(
            success=True,
            data=data,
            metadata=envelope.metadata,
            original_format=envelope.original_format,
            views_remaining=remaining,
        )

    def _derive_password_kek(self, envelope: SDCEnvelope, password: Optional[str]) -> Optional[bytes]:
        if password is None or not envelope.is_encrypted:
            return None
        slot = find_slot(envelope.key_slots, SLOT_PASSWORD)
        if slot is None or slot.kdf not in SUPPORTED_KEY_DERIVATIONS:
            return None
        if slot.kdf == KDF_PBKDF2 and slot.iterations < MIN_KDF_ITERATIONS:
            return None
        if slot.kdf == KDF_ARGON2 and slot.iterations < 1:
            return None
        if slot.iterations > MAX_KDF_ITERATIONS:
            raise IntegrityError()
        try:
            return self._kdf.derive(
                password,
                slot.salt,
                slot.iterations,
                slot.kdf,
                timeout=self._config.security.kdf_timeout_seconds,
            )
        except KeyDerivationTimeoutError:
            raise
        except Exception as e:
            logger.warning("Key derivation failed for %s: %s", envelope.id, type(e).__name__)
            raise IntegrityError() from e

    def _open(self, envelope: SDCEnvelope, private_key: Optional[str], password_kek: Optional[bytes]) -> bytes:
        if not self.verify_seal(envelope):
            raise IntegrityError()

        if not envelope.is_encrypted:
            return envelope.encrypted_data

        if private_key is None and password_kek is None:
            raise DecryptionFailedError(reason="no_credentials")

        content_key = None
        if private_key is not None:
            content_key = self._unwrap_with_private_key(envelope, private_key)
        if content_key is None and password_kek is not None:
            slot = find_slot(envelope.key_slots, SLOT_PASSWORD)
            try:
                content_key = unwrap_content_key(slot, password_kek, envelope.id)
            except AuthenticationError:
                content_key = None
        if content_key is None:
            raise DecryptionFailedError(reason="wrong_credentials")

        try:
            return self._cipher.decrypt(
                envelope.encrypted_data,
                envelope.nonce,
                envelope.tag,
                content_key,
                aad=envelope.bound_header(),
            )
        except AuthenticationError as e:
            raise IntegrityError() from e

    @staticmethod
    def _unwrap_with_private_key(envelope: SDCEnvelope, private_key: str) -> Optional[bytes]:
        slot = find_slot(envelope.key_slots, SLOT_PRIVATE_KEY)
        if slot is None:
            return None
        try:
            private_raw = b64decode(private_key)
        except ValueError:
            return None
        try:
            return unwrap_content_key(slot, private_key_kek(private_raw, slot.salt), envelope.id)
        except AuthenticationError:
            return None

    # Internals

    def _lock_for(self, file_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(file_id)
            if lock is None:
                lock = self._locks[file_id] = threading.Lock()
            return lock

    def _sync_view_count(self, envelope: SDCEnvelope) -> None:
        """Adopt the stored view count when it is higher. Caller holds the lock."""
        stored = self.get_sdc_file(envelope.id)
        if stored is None:
            return
        if stored.public_key != envelope.public_key:
            # Same id, different envelope
            raise IntegrityError()
        access = envelope.metadata.access
        access.view_count = max(access.view_count, stored.metadata.access.view_count)

    def _persist(self, envelope: SDCEnvelope) -> None:
        self._store.set(store_key(envelope.id), envelope.to_bytes())

    def _policy_failure(self, envelope: SDCEnvelope, error: AccessPolicyError) -> DecryptionResult:
        if isinstance(error, AccessExpiredError):
            event_type = AuditEventType.ACCESS_EXPIRED
        else:
            event_type = AuditEventType.VIEW_LIMIT_EXCEEDED
        self._audit_event(event_type, AuditSeverity.WARNING, error.user_message, envelope.id)
        logger.info("Access to %s denied: %s", envelope.id, error.user_message)
        return DecryptionResult(
            success=False,
            metadata=envelope.metadata,
            original_format=envelope.original_format,
            views_remaining=AccessPolicy.views_remaining(envelope.metadata.access),
            error=error.user_message,
            exception=error,
        )

    def _credential_failure(self, envelope: SDCEnvelope, error: DecryptionFailedError) -> DecryptionResult:
        severity = AuditSeverity.CRITICAL if error.reason == "integrity" else AuditSeverity.WARNING
        self._audit_event(
            AuditEventType.DECRYPTION_FAILED,
            severity,
            "SDC file could not be opened",
            envelope.id,
            {"reason": error.reason},
        )
        logger.warning("Failed to open %s (%s)", envelope.id, error.reason)
        if self._failures is not None:
            self._failures.record_failure(envelope.id, error.reason)
        return DecryptionResult(success=False, error=error.user_message, exception=error)

    def _audit_event(
        self,
        event_type: AuditEventType,
        severity: AuditSeverity,
        description: str,
        file_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        if self._audit is not None:
            self._audit.log(event_type, severity, description, subject_id=file_id, details=details)

    # QR

    def generate_qr_code(self, envelope: SDCEnvelope, base_url: Optional[str] = None) -> QRCodeGenerationResult:
        return generate_sdc_qr_code(
            envelope,
            base_url or self._config.app.base_url,
            renderer=self._qr_renderer,
        )
