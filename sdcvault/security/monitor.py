"""
Security Monitor
================

Offline-first network state and security alerting.

The monitor is an ordinary object: build one and hand it to the services
that report into it. Nothing here is a process global.

Detection Capabilities:
- Repeated decryption failures against one envelope
- Unauthorized write attempts (forces offline mode)
- Online operations requested while offline
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Final, List, Optional

from sdcvault.core.logging import get_secure_logger
from sdcvault.security.audit import AuditEventType, AuditSeverity, TamperAwareAuditLog

logger = get_secure_logger(__name__)


class AlertSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(Enum):
    EXTERNAL_ACCESS_ATTEMPT = "external-access-attempt"
    UNAUTHORIZED_WRITE = "unauthorized-write"
    DATA_EXFILTRATION = "data-exfiltration"
    REPEATED_DECRYPTION_FAILURE = "repeated-decryption-failure"


class OnlineOperation(Enum):
    DATA_TRANSMISSION = "data-transmission"
    EXTERNAL_API = "external-api"
    CLOUD_SYNC = "cloud-sync"
    FILE_SHARE = "file-share"
    DATABASE_CONNECTION = "database-connection"


OFFLINE_ALTERNATIVES: Final[Dict[str, List[str]]] = {
    "file-share": [
        "Export as .sdc file and share via USB/email",
        "Generate QR code for local sharing",
        "Use local network transfer",
    ],
    "data-sync": [
        "Export data for manual sync later",
        "Use local backup/restore",
    ],
    "cloud-storage": [
        "Use local vault storage",
        "Create encrypted local backup",
    ],
}

_GO_ONLINE_RISKS: Final[List[str]] = [
    "Network traffic monitoring",
    "Data interception",
    "IP address exposure",
]


@dataclass(slots=True)
class NetworkState:
    is_online: bool = True
    # User-controlled; on by default
    is_offline_mode: bool = True
    connection_type: str = "unknown"


@dataclass(frozen=True, slots=True)
class OnlineWarning:
    operation: OnlineOperation
    message: str
    risks_exposed: List[str]
    suggested_action: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class SecurityAlert:
    severity: AlertSeverity
    alert_type: AlertType
    source: str
    details: str
    affected_data: List[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    resolved: bool = False

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "type": self.alert_type.value,
            "source": self.source,
            "details": self.details,
            "affected_data": list(self.affected_data),
            "timestamp": self.timestamp.isoformat(),
            "resolved": self.resolved,
        }


def _notify(listeners: List[Callable], payload: object) -> None:
    for callback in listeners:
        try:
            callback(payload)
        except Exception:
            # A faulty listener must not stop the others
            logger.exception("Security monitor listener failed")


class SecurityMonitor:
    """
    Tracks offline mode and fans out warnings and alerts to subscribers.

    Usage:
        monitor = SecurityMonitor(audit=audit_log)
        unsubscribe = monitor.subscribe_to_alerts(print)
        monitor.raise_alert(alert)
        unsubscribe()
    """

    def __init__(
        self,
        audit: Optional[TamperAwareAuditLog] = None,
        offline_mode: bool = True,
        is_online: bool = True,
        confirm: Optional[Callable[[OnlineWarning], bool]] = None,
    ) -> None:
        self._audit = audit
        self._state = NetworkState(is_online=is_online, is_offline_mode=offline_mode)
        self._confirm = confirm or (lambda warning: True)
        self._lock = threading.Lock()
        self._state_listeners: List[Callable[[NetworkState], None]] = []
        self._warning_listeners: List[Callable[[OnlineWarning], None]] = []
        self._alert_listeners: List[Callable[[SecurityAlert], None]] = []
        self._alerts: List[SecurityAlert] = []

    # State

    def get_network_state(self) -> NetworkState:
        with self._lock:
            return replace(self._state)

    def set_offline_mode(self, enabled: bool) -> None:
        with self._lock:
            changed = self._state.is_offline_mode != enabled
            self._state.is_offline_mode = enabled
        if not changed:
            return

        self._notify_state()
        if not enabled:
            self._warn(OnlineWarning(
                operation=OnlineOperation.DATA_TRANSMISSION,
                message="You are now in ONLINE mode. Your data may be transmitted over the internet.",
                risks_exposed=list(_GO_ONLINE_RISKS),
                suggested_action="Return to offline mode when possible.",
            ))

    def set_online(self, is_online: bool) -> None:
        with self._lock:
            changed = self._state.is_online != is_online
            self._state.is_online = is_online
        if changed:
            self._notify_state()

    def request_online_operation(
        self,
        operation: OnlineOperation,
        description: str,
        risks: Optional[List[str]] = None,
    ) -> bool:
        """
        Ask whether an operation that needs the network may proceed.

        Always False while offline mode is on or the network is down.
        """
        risks = list(risks or [])
        state = self.get_network_state()

        if state.is_offline_mode or not state.is_online:
            self._warn(OnlineWarning(
                operation=operation,
                message=f"{description} requires internet access. You are currently in offline mode.",
                risks_exposed=risks,
                suggested_action="Use offline alternatives or enable online mode with caution.",
            ))
            return False

        warning = OnlineWarning(
            operation=operation,
            message=f"{description} will transmit data over the internet.",
            risks_exposed=["Data transmission over network", *risks],
            suggested_action="Consider if this operation is necessary.",
        )
        self._warn(warning)
        return bool(self._confirm(warning))

    def emergency_offline_mode(self) -> None:
        with self._lock:
            self._state.is_offline_mode = True
        self._notify_state()
        logger.critical("Emergency offline mode activated")

    @staticmethod
    def get_offline_alternatives(operation: str) -> List[str]:
        return list(OFFLINE_ALTERNATIVES.get(operation, ["Consider local alternatives"]))

    # Alerts

    def raise_alert(self, alert: SecurityAlert) -> None:
        with self._lock:
            self._alerts.append(alert)

        logger.warning("Security alert: %s from %s", alert.alert_type.value, alert.source)
        if self._audit is not None:
            severity = AuditSeverity.CRITICAL if alert.severity in (
                AlertSeverity.HIGH, AlertSeverity.CRITICAL
            ) else AuditSeverity.WARNING
            self._audit.log(
                AuditEventType.SECURITY_ALERT,
                severity,
                alert.details,
                subject_id=alert.source,
                details={"alert_type": alert.alert_type.value, "severity": alert.severity.value},
            )
        _notify(list(self._alert_listeners), alert)

    def detect_unauthorized_write(self, source: str, target: str) -> SecurityAlert:
        alert = SecurityAlert(
            severity=AlertSeverity.CRITICAL,
            alert_type=AlertType.UNAUTHORIZED_WRITE,
            source=source,
            details=f"Unauthorized attempt to modify: {target}",
            affected_data=[target],
        )
        self.emergency_offline_mode()
        self.raise_alert(alert)
        return alert

    def get_alerts(self, include_resolved: bool = False) -> List[SecurityAlert]:
        with self._lock:
            return [a for a in self._alerts if include_resolved or not a.resolved]

    def resolve_alert(self, alert_id: str) -> bool:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    alert.resolved = True
                    return True
        return False

    # Subscriptions

    def subscribe(self, callback: Callable[[NetworkState], None]) -> Callable[[], None]:
        return self._subscribe(self._state_listeners, callback)

    def subscribe_to_warnings(self, callback: Callable[[OnlineWarning], None]) -> Callable[[], None]:
        return self._subscribe(self._warning_listeners, callback)

    def subscribe_to_alerts(self, callback: Callable[[SecurityAlert], None]) -> Callable[[], None]:
        return self._subscribe(self._alert_listeners, callback)

    def _subscribe(self, listeners: List[Callable], callback: Callable) -> Callable[[], None]:
        with self._lock:
            listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in listeners:
                    listeners.remove(callback)

        return unsubscribe

    def _notify_state(self) -> None:
        _notify(list(self._state_listeners), self.get_network_state())

    def _warn(self, warning: OnlineWarning) -> None:
        logger.info("Online warning: %s", warning.operation.value)
        _notify(list(self._warning_listeners), warning)


class DecryptionFailureMonitor:
    """
    Counts credential failures per envelope in a rolling window.

    Reaching ``max_failures`` inside ``window_seconds`` raises a
    REPEATED_DECRYPTION_FAILURE alert through the security monitor.
    """

    __slots__ = ("_monitor", "_failures", "_max_failures", "_window_seconds", "_clock", "_lock")

    def __init__(
        self,
        monitor: SecurityMonitor,
        max_failures: int = 5,
        window_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._monitor = monitor
        self._max_failures = max_failures
        self._window_seconds = window_seconds
        self._clock = clock
        self._failures: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    def record_failure(self, file_id: str, reason: str = "wrong_credentials") -> bool:
        """
        Record one failed read.

        Returns:
            True if the threshold was reached and an alert raised
        """
        now = self._clock()
        cutoff = now - self._window_seconds

        with self._lock:
            recent = [t for t in self._failures.get(file_id, []) if t > cutoff]
            recent.append(now)
            self._failures[file_id] = recent
            count = len(recent)

        if count < self._max_failures:
            return False

        self._monitor.raise_alert(SecurityAlert(
            severity=AlertSeverity.HIGH,
            alert_type=AlertType.REPEATED_DECRYPTION_FAILURE,
            source=file_id,
            details=f"{count} failed decryption attempts within {self._window_seconds}s",
            affected_data=[file_id],
        ))
        logger.warning("Repeated decryption failures on %s (last reason: %s)", file_id, reason)
        return True

    def get_failure_count(self, file_id: str) -> int:
        cutoff = self._clock() - self._window_seconds
        with self._lock:
            return len([t for t in self._failures.get(file_id, []) if t > cutoff])

    def reset(self, file_id: str) -> None:
        with self._lock:
            self._failures.pop(file_id, None)
