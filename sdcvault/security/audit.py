"""
Tamper-Aware Audit System
=========================

Append-only audit logging with integrity verification.

Envelope and signature operations report here. Events carry ids and
outcome kinds only; keys, passwords and content never reach the log.
"""

from __future__ import annotations

import hashlib
import json
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, List, Dict

from sdcvault.core.logging import get_secure_logger

logger = get_secure_logger(__name__)


class AuditSeverity(Enum):
    """Audit event severity levels."""
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class AuditEventType(Enum):
    """Types of auditable events."""
    # Envelope lifecycle
    FILE_CREATED = "FILE_CREATED"
    FILE_EXPORTED = "FILE_EXPORTED"
    FILE_IMPORTED = "FILE_IMPORTED"
    FORMAT_REJECTED = "FORMAT_REJECTED"
    METADATA_UPDATED = "METADATA_UPDATED"

    # Envelope access
    FILE_DECRYPTED = "FILE_DECRYPTED"
    ACCESS_EXPIRED = "ACCESS_EXPIRED"
    VIEW_LIMIT_EXCEEDED = "VIEW_LIMIT_EXCEEDED"
    DECRYPTION_FAILED = "DECRYPTION_FAILED"

    # Signatures
    CERTIFICATE_GENERATED = "CERTIFICATE_GENERATED"
    SIGNATURE_CREATED = "SIGNATURE_CREATED"
    SIGNING_FAILED = "SIGNING_FAILED"
    SIGNATURE_VERIFIED = "SIGNATURE_VERIFIED"
    SIGNATURE_REVOKED = "SIGNATURE_REVOKED"

    # Security
    SECURITY_ALERT = "SECURITY_ALERT"


@dataclass
class AuditEvent:
    """An auditable security event."""
    event_type: AuditEventType
    severity: AuditSeverity
    timestamp: datetime
    subject_id: Optional[str] = None
    description: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    # Computed fields
    event_id: str = field(default="")
    previous_hash: str = field(default="")
    event_hash: str = field(default="")

    def __post_init__(self):
        if not self.event_id:
            self.event_id = hashlib.sha256(
                f"{self.timestamp.isoformat()}{self.event_type.value}{os.urandom(8).hex()}".encode()
            ).hexdigest()[:16]

    def _hashable(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "subject_id": self.subject_id,
            "description": self.description,
            "details": self.details,
            "previous_hash": self.previous_hash,
        }

    def compute_hash(self, previous_hash: str) -> str:
        """Compute event hash for chain integrity."""
        self.previous_hash = previous_hash
        self.event_hash = hashlib.sha256(
            json.dumps(self._hashable(), sort_keys=True).encode()
        ).hexdigest()
        return self.event_hash

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        data = self._hashable()
        data["event_hash"] = self.event_hash
        return data


def _recompute_hash(record: Dict[str, Any]) -> str:
    hashable = {k: v for k, v in record.items() if k != "event_hash"}
    return hashlib.sha256(json.dumps(hashable, sort_keys=True).encode()).hexdigest()


class TamperAwareAuditLog:
    """
    Append-only audit log with tamper detection.

    Features:
    - Chained hashes for integrity
    - Append-only (no deletion)
    - JSON Lines format
    - No sensitive plaintext
    """

    def __init__(self, log_path: Path | str):
        self._log_path = Path(log_path)
        self._lock = threading.Lock()
        self._last_hash = "genesis"
        self._event_count = 0

        self._log_path.parent.mkdir(parents=True, exist_ok=True)

        self._load_chain()

    @property
    def path(self) -> Path:
        return self._log_path

    @property
    def event_count(self) -> int:
        return self._event_count

    def _load_chain(self):
        """Resume the chain from an existing log file."""
        if not self._log_path.exists():
            return

        try:
            with open(self._log_path, "r", encoding="utf-8") as f:
                for line in f:
                    if line.strip():
                        event = json.loads(line)
                        self._last_hash = event.get("event_hash", self._last_hash)
                        self._event_count += 1
        except (OSError, json.JSONDecodeError) as e:
            # Keep appending; verify_integrity() will report the break
            logger.warning("Audit log could not be fully read: %s", type(e).__name__)

    def log(
        self,
        event_type: AuditEventType,
        severity: AuditSeverity,
        description: str,
        subject_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log an audit event.

        Returns:
            Event ID
        """
        event = AuditEvent(
            event_type=event_type,
            severity=severity,
            timestamp=datetime.now(timezone.utc),
            subject_id=subject_id,
            description=description,
            details=details or {},
        )

        with self._lock:
            event.compute_hash(self._last_hash)

            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict()) + "\n")
                f.flush()
                os.fsync(f.fileno())

            self._last_hash = event.event_hash
            self._event_count += 1

        return event.event_id

    def verify_integrity(self) -> tuple[bool, int]:
        """
        Verify log chain integrity.

        Returns:
            Tuple of (is_valid, event_count)
        """
        if not self._log_path.exists():
            return True, 0

        previous_hash = "genesis"
        count = 0

        try:
            with open(self._log_path, "r", encoding="utf-8") as f:
                for line in f:
                    if not line.strip():
                        continue

                    event = json.loads(line)

                    if event.get("previous_hash", "") != previous_hash:
                        return False, count
                    if _recompute_hash(event) != event.get("event_hash"):
                        return False, count

                    previous_hash = event["event_hash"]
                    count += 1

            return True, count

        except (OSError, json.JSONDecodeError, KeyError):
            return False, count

    def get_events(
        self,
        since: Optional[datetime] = None,
        event_type: Optional[AuditEventType] = None,
        severity: Optional[AuditSeverity] = None,
        subject_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """Get filtered events (read-only)."""
        events: List[Dict[str, Any]] = []

        if not self._log_path.exists():
            return events

        with open(self._log_path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue

                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue

                if since:
                    event_time = datetime.fromisoformat(event["timestamp"])
                    if event_time < since:
                        continue

                if event_type and event["event_type"] != event_type.value:
                    continue

                if severity and event["severity"] != severity.value:
                    continue

                if subject_id and event.get("subject_id") != subject_id:
                    continue

                events.append(event)

                if len(events) >= limit:
                    break

        return events
