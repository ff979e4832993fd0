"""
QR Access Descriptor
====================

The JSON text placed in an SDC access QR code. It identifies an envelope
and where to open it. It never carries content, key slots, private keys or
passwords.

Example:
    {"type": "sdc-file", "fileId": "...", "fileName": "report.sdc",
     "publicKey": "...", "metadata": {"title": "...", "author": "...",
     "encrypted": true, "expiresAt": null, "maxViews": 3},
     "accessUrl": "http://localhost:5000/sdc-reader?file=...&key=...",
     "timestamp": 1760000000000}
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Final, Optional
from urllib.parse import urlencode

from sdcvault.core.sdc.envelope import SDCEnvelope, format_timestamp

SDC_QR_TYPE: Final[str] = "sdc-file"

ERROR_NOT_SDC: Final[str] = "Not an SDC file QR code"
ERROR_INVALID_DATA: Final[str] = "Invalid SDC QR code data"
ERROR_INVALID_FORMAT: Final[str] = "Invalid QR code data format"


@dataclass(frozen=True, slots=True)
class QRMetadata:
    title: str
    author: str
    encrypted: bool
    expires_at: Optional[str] = None
    max_views: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author,
            "encrypted": self.encrypted,
            "expiresAt": self.expires_at,
            "maxViews": self.max_views,
        }


@dataclass(frozen=True, slots=True)
class SDCQRData:
    file_id: str
    file_name: str
    public_key: str
    metadata: QRMetadata
    access_url: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": SDC_QR_TYPE,
            "fileId": self.file_id,
            "fileName": self.file_name,
            "publicKey": self.public_key,
            "metadata": self.metadata.to_dict(),
            "accessUrl": self.access_url,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class DescriptorParseResult:
    valid: bool
    data: Optional[SDCQRData] = None
    error: Optional[str] = None


def build_access_url(base_url: str, file_id: str, public_key: str) -> str:
    """``<base>/sdc-reader?file=<id>&key=<public key>``, query values percent-encoded."""
    query = urlencode({"file": file_id, "key": public_key})
    return f"{base_url.rstrip('/')}/sdc-reader?{query}"


def describe(envelope: SDCEnvelope, access_url: str, timestamp: Optional[int] = None) -> SDCQRData:
    access = envelope.metadata.access
    return SDCQRData(
        file_id=envelope.id,
        file_name=envelope.name,
        public_key=envelope.public_key,
        metadata=QRMetadata(
            title=envelope.metadata.title,
            author=envelope.metadata.author,
            encrypted=envelope.metadata.security.encrypted,
            expires_at=format_timestamp(access.expires_at),
            max_views=access.max_views,
        ),
        access_url=access_url,
        timestamp=int(time.time() * 1000) if timestamp is None else timestamp,
    )


def encode(envelope: SDCEnvelope, access_url: str, timestamp: Optional[int] = None) -> str:
    """Serialize the access descriptor for ``envelope`` as compact JSON."""
    return json.dumps(describe(envelope, access_url, timestamp).to_dict(), separators=(",", ":"))


def _optional(value: Any, expected: type | tuple[type, ...]) -> Any:
    if value is None:
        return None
    if isinstance(value, bool) and expected is int:
        raise ValueError("Unexpected boolean")
    if not isinstance(value, expected):
        raise ValueError("Unexpected type")
    return value


def decode(text: Any) -> DescriptorParseResult:
    """
    Parse scanned QR text. Never raises.

    Returns ``valid=False`` with one of three errors: the text is not a
    JSON object, it is not an SDC descriptor, or its fields are unusable.
    """
    if not isinstance(text, str):
        return DescriptorParseResult(False, error=ERROR_INVALID_FORMAT)

    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        return DescriptorParseResult(False, error=ERROR_INVALID_FORMAT)

    if not isinstance(data, dict):
        return DescriptorParseResult(False, error=ERROR_INVALID_FORMAT)

    if data.get("type") != SDC_QR_TYPE:
        return DescriptorParseResult(False, error=ERROR_NOT_SDC)

    file_id = data.get("fileId")
    public_key = data.get("publicKey")
    if not isinstance(file_id, str) or not file_id or not isinstance(public_key, str) or not public_key:
        return DescriptorParseResult(False, error=ERROR_INVALID_DATA)

    try:
        metadata = data.get("metadata")
        if metadata is None:
            metadata = {}
        elif not isinstance(metadata, dict):
            raise ValueError("metadata must be an object")
        parsed = SDCQRData(
            file_id=file_id,
            file_name=_optional(data.get("fileName"), str) or "",
            public_key=public_key,
            metadata=QRMetadata(
                title=_optional(metadata.get("title"), str) or "",
                author=_optional(metadata.get("author"), str) or "",
                encrypted=bool(_optional(metadata.get("encrypted"), bool)),
                expires_at=_optional(metadata.get("expiresAt"), str),
                max_views=_optional(metadata.get("maxViews"), int),
            ),
            access_url=_optional(data.get("accessUrl"), str) or "",
            timestamp=_optional(data.get("timestamp"), int) or 0,
        )
    except ValueError:
        return DescriptorParseResult(False, error=ERROR_INVALID_DATA)

    return DescriptorParseResult(True, data=parsed)
