"""
SDC Envelope Format
===================

The ``.sdc`` envelope wraps one original document together with its
metadata, access policy, key slots and seal.

File Format:
    HEADER (20 bytes, little-endian):
        - MAGIC: 4 bytes  (b"SDC\\x01")
        - VERSION: 2 bytes
        - FLAGS: 2 bytes  (bit 0 = encrypted)
        - HEADER_LEN: 4 bytes
        - DATA_LEN: 8 bytes
    HEADER_JSON: HEADER_LEN bytes of UTF-8 JSON (binary fields base64)
    DATA: DATA_LEN raw bytes (ciphertext, or plaintext when unencrypted)

Anything that does not match this framing exactly (short, truncated,
trailing bytes, unknown version, wrong shape) is rejected with
``FormatError``. A partially populated envelope is never returned.
"""

from __future__ import annotations

import hashlib
import json
import struct
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Final, Optional

from sdcvault.core.config import MAX_KDF_ITERATIONS
from sdcvault.core.crypto.aes_gcm import AES_NONCE_SIZE, AES_TAG_SIZE
from sdcvault.core.crypto.asymmetric import b64decode, b64encode
from sdcvault.core.errors import FormatError

MAGIC_BYTES: Final[bytes] = b"SDC\x01"
FILE_FORMAT_VERSION: Final[int] = 1
SDC_VERSION: Final[str] = "1.0"
SDC_EXTENSION: Final[str] = ".sdc"

_HEADER: Final[struct.Struct] = struct.Struct("<4sHHIQ")
HEADER_SIZE: Final[int] = _HEADER.size

FLAG_ENCRYPTED: Final[int] = 0x0001

MAX_HEADER_SIZE: Final[int] = 1024 * 1024  # 1 MB
MAX_DATA_SIZE: Final[int] = 4 * 1024 * 1024 * 1024  # 4 GB

ENCRYPTION_ALGORITHM: Final[str] = "AES-256-GCM"


def _canonical_json(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC."""
    if not isinstance(value, str):
        raise ValueError("Timestamp must be a string")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _require(mapping: Any, key: str, expected: type | tuple[type, ...], optional: bool = False) -> Any:
    if not isinstance(mapping, dict):
        raise ValueError("Expected an object")
    if key not in mapping or mapping[key] is None:
        if optional:
            return None
        raise ValueError(f"Missing field: {key}")
    value = mapping[key]
    # bool is an int subclass; keep the two apart
    if expected is int and isinstance(value, bool):
        raise ValueError(f"Field {key} has the wrong type")
    if not isinstance(value, expected):
        raise ValueError(f"Field {key} has the wrong type")
    return value


@dataclass(frozen=True, slots=True)
class SecurityInfo:
    """Set once at creation; changing it means building a new envelope."""

    encrypted: bool
    encryption_algorithm: str = ENCRYPTION_ALGORITHM
    key_derivation: str = "PBKDF2-SHA256"

    def to_dict(self) -> dict[str, Any]:
        return {
            "encrypted": self.encrypted,
            "encryptionAlgorithm": self.encryption_algorithm,
            "keyDerivation": self.key_derivation,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "SecurityInfo":
        return cls(
            encrypted=_require(data, "encrypted", bool),
            encryption_algorithm=_require(data, "encryptionAlgorithm", str),
            key_derivation=_require(data, "keyDerivation", str),
        )


@dataclass(slots=True)
class AccessInfo:
    """
    Access policy state. ``view_count`` is the only field that changes
    after creation.
    """

    expires_at: Optional[datetime] = None
    max_views: Optional[int] = None
    view_count: int = 0
    requires_key: bool = False

    def __post_init__(self) -> None:
        if self.max_views is not None:
            if isinstance(self.max_views, bool) or not isinstance(self.max_views, int) or self.max_views < 1:
                raise ValueError("max_views must be a positive integer")
        if isinstance(self.view_count, bool) or not isinstance(self.view_count, int) or self.view_count < 0:
            raise ValueError("view_count must be a non-negative integer")
        if self.expires_at is not None:
            if self.expires_at.tzinfo is None:
                raise ValueError("expires_at must be timezone-aware")
            self.expires_at = self.expires_at.astimezone(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "requiresKey": self.requires_key,
            "expiresAt": format_timestamp(self.expires_at),
            "maxViews": self.max_views,
            "viewCount": self.view_count,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "AccessInfo":
        expires = _require(data, "expiresAt", str, optional=True)
        return cls(
            expires_at=parse_timestamp(expires) if expires is not None else None,
            max_views=_require(data, "maxViews", int, optional=True),
            view_count=_require(data, "viewCount", int),
            requires_key=_require(data, "requiresKey", bool),
        )


@dataclass(slots=True)
class SDCMetadata:
    title: str
    security: SecurityInfo
    access: AccessInfo
    author: str = "Anonymous"
    description: str = ""
    tags: list[str] = field(default_factory=list)
    version: str = SDC_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "author": self.author,
            "version": self.version,
            "tags": list(self.tags),
            "security": self.security.to_dict(),
            "access": self.access.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "SDCMetadata":
        tags = _require(data, "tags", list)
        if not all(isinstance(tag, str) for tag in tags):
            raise ValueError("Tags must be strings")
        return cls(
            title=_require(data, "title", str),
            description=_require(data, "description", str, optional=True) or "",
            author=_require(data, "author", str),
            version=_require(data, "version", str),
            tags=tags,
            security=SecurityInfo.from_dict(_require(data, "security", dict)),
            access=AccessInfo.from_dict(_require(data, "access", dict)),
        )


@dataclass(frozen=True, slots=True)
class KeySlot:
    """
    The content key wrapped under one credential.

    ``kind`` is ``private-key`` or ``password``. ``iterations`` is 0 for
    slots whose KEK is not password-derived.
    """

    kind: str
    kdf: str
    salt: bytes
    iterations: int
    nonce: bytes
    tag: bytes
    wrapped_key: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "kdf": self.kdf,
            "salt": b64encode(self.salt),
            "iterations": self.iterations,
            "nonce": b64encode(self.nonce),
            "tag": b64encode(self.tag),
            "wrappedKey": b64encode(self.wrapped_key),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "KeySlot":
        slot = cls(
            kind=_require(data, "kind", str),
            kdf=_require(data, "kdf", str),
            salt=b64decode(_require(data, "salt", str)),
            iterations=_require(data, "iterations", int),
            nonce=b64decode(_require(data, "nonce", str)),
            tag=b64decode(_require(data, "tag", str)),
            wrapped_key=b64decode(_require(data, "wrappedKey", str)),
        )
        if len(slot.nonce) != AES_NONCE_SIZE or len(slot.tag) != AES_TAG_SIZE:
            raise ValueError("Malformed key slot")
        if slot.iterations < 0:
            raise ValueError("Malformed key slot")
        if slot.iterations > MAX_KDF_ITERATIONS:
            raise FormatError(f"Key slot iteration count exceeds {MAX_KDF_ITERATIONS:,}")
        return slot


@dataclass(slots=True)
class SDCEnvelope:
    """
    One ``.sdc`` unit.

    ``id``, ``public_key``, ``created_at``, ``original_format``,
    ``encrypted_data`` and ``metadata.security`` never change after
    creation. ``name`` and the descriptive metadata may be edited;
    ``metadata.access.view_count`` grows by one per successful read.
    """

    id: str
    name: str
    original_format: str
    created_at: datetime
    last_modified: datetime
    public_key: str
    encrypted_data: bytes
    metadata: SDCMetadata
    key_slots: list[KeySlot] = field(default_factory=list)
    nonce: bytes = b""
    tag: bytes = b""
    seal: bytes = b""

    def __repr__(self) -> str:
        return (
            f"SDCEnvelope(id={self.id!r}, name={self.name!r}, "
            f"encrypted={self.metadata.security.encrypted}, data_len={len(self.encrypted_data)})"
        )

    @property
    def is_encrypted(self) -> bool:
        return self.metadata.security.encrypted

    def bound_header(self) -> bytes:
        """
        Canonical bytes of the immutable header fields.

        Used as AEAD associated data for the content and as the start of
        the seal payload, so editing the policy limits breaks both.
        """
        return _canonical_json({
            "id": self.id,
            "originalFormat": self.original_format,
            "createdAt": format_timestamp(self.created_at),
            "publicKey": self.public_key,
            "security": self.metadata.security.to_dict(),
            "expiresAt": format_timestamp(self.metadata.access.expires_at),
            "maxViews": self.metadata.access.max_views,
        })

    def seal_payload(self) -> bytes:
        slots = _canonical_json([slot.to_dict() for slot in self.key_slots])
        return (
            self.bound_header()
            + hashlib.sha256(self.encrypted_data).digest()
            + hashlib.sha256(self.nonce + self.tag + slots).digest()
        )

    def header_dict(self) -> dict[str, Any]:
        return {
            "fileId": self.id,
            "name": self.name,
            "originalFormat": self.original_format,
            "createdAt": format_timestamp(self.created_at),
            "lastModified": format_timestamp(self.last_modified),
            "publicKey": self.public_key,
            "metadata": self.metadata.to_dict(),
            "keySlots": [slot.to_dict() for slot in self.key_slots],
            "nonce": b64encode(self.nonce),
            "tag": b64encode(self.tag),
            "seal": b64encode(self.seal),
        }

    def copy(self) -> "SDCEnvelope":
        """Deep enough copy that access state can be changed independently."""
        metadata = replace(
            self.metadata,
            tags=list(self.metadata.tags),
            access=replace(self.metadata.access),
        )
        return replace(self, metadata=metadata, key_slots=list(self.key_slots))

    def to_bytes(self) -> bytes:
        """Serialize to the ``.sdc`` binary framing."""
        header_json = json.dumps(self.header_dict(), separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        if len(header_json) > MAX_HEADER_SIZE:
            raise ValueError("SDC header too large")

        flags = FLAG_ENCRYPTED if self.is_encrypted else 0
        prefix = _HEADER.pack(
            MAGIC_BYTES,
            FILE_FORMAT_VERSION,
            flags,
            len(header_json),
            len(self.encrypted_data),
        )
        return prefix + header_json + self.encrypted_data

    @classmethod
    def from_bytes(cls, data: bytes) -> "SDCEnvelope":
        """
        Parse ``.sdc`` bytes.

        Raises:
            FormatError: If the data is not a well-formed SDC envelope
        """
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise FormatError("SDC data must be bytes")
        data = bytes(data)

        if len(data) < HEADER_SIZE:
            raise FormatError("Data too short for an SDC file")

        magic, version, flags, header_len, data_len = _HEADER.unpack_from(data)

        if magic != MAGIC_BYTES:
            raise FormatError("Invalid SDC file format (bad magic bytes)")
        if version != FILE_FORMAT_VERSION:
            raise FormatError(f"Unsupported SDC format version: {version}")
        if header_len > MAX_HEADER_SIZE:
            raise FormatError(f"SDC header too large: {header_len}")
        if data_len > MAX_DATA_SIZE:
            raise FormatError(f"SDC payload too large: {data_len}")

        header_end = HEADER_SIZE + header_len
        expected = header_end + data_len
        if len(data) < expected:
            raise FormatError("SDC file truncated")
        if len(data) > expected:
            raise FormatError("Unexpected trailing data after SDC payload")

        try:
            header = json.loads(data[HEADER_SIZE:header_end].decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise FormatError("SDC header is not valid JSON") from e

        try:
            envelope = cls._from_header(header, data[header_end:])
        except (KeyError, TypeError, ValueError) as e:
            raise FormatError("Malformed SDC header") from e

        if bool(flags & FLAG_ENCRYPTED) != envelope.is_encrypted:
            raise FormatError("Header flags do not match security metadata")

        return envelope

    @classmethod
    def _from_header(cls, header: Any, payload: bytes) -> "SDCEnvelope":
        envelope = cls(
            id=_require(header, "fileId", str),
            name=_require(header, "name", str),
            original_format=_require(header, "originalFormat", str),
            created_at=parse_timestamp(_require(header, "createdAt", str)),
            last_modified=parse_timestamp(_require(header, "lastModified", str)),
            public_key=_require(header, "publicKey", str),
            encrypted_data=payload,
            metadata=SDCMetadata.from_dict(_require(header, "metadata", dict)),
            key_slots=[KeySlot.from_dict(slot) for slot in _require(header, "keySlots", list)],
            nonce=b64decode(_require(header, "nonce", str)),
            tag=b64decode(_require(header, "tag", str)),
            seal=b64decode(_require(header, "seal", str)),
        )

        if not envelope.id or not envelope.public_key:
            raise ValueError("Envelope id and public key are required")

        if envelope.is_encrypted:
            if len(envelope.nonce) != AES_NONCE_SIZE or len(envelope.tag) != AES_TAG_SIZE:
                raise ValueError("Encrypted envelope lacks nonce or tag")
            if not envelope.key_slots:
                raise ValueError("Encrypted envelope has no key slots")
        elif envelope.key_slots or envelope.nonce or envelope.tag:
            raise ValueError("Unencrypted envelope carries key material")

        return envelope

    def save(self, path: Path | str) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.to_bytes())
        return path

    @classmethod
    def load(cls, path: Path | str) -> "SDCEnvelope":
        return cls.from_bytes(Path(path).read_bytes())
