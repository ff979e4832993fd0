"""
Security module - Audit trail and security monitoring.

Security Considerations:
- Audit events carry ids and outcome kinds, never secrets
- Monitors are injected, never process globals
- Follow fail-closed design principles
"""

from sdcvault.security.audit import (
    TamperAwareAuditLog,
    AuditEvent,
    AuditEventType,
    AuditSeverity,
)
from sdcvault.security.monitor import (
    AlertSeverity,
    AlertType,
    DecryptionFailureMonitor,
    NetworkState,
    OnlineOperation,
    OnlineWarning,
    SecurityAlert,
    SecurityMonitor,
)

__all__ = [
    # Audit
    "TamperAwareAuditLog",
    "AuditEvent",
    "AuditEventType",
    "AuditSeverity",
    # Monitoring
    "AlertSeverity",
    "AlertType",
    "DecryptionFailureMonitor",
    "NetworkState",
    "OnlineOperation",
    "OnlineWarning",
    "SecurityAlert",
    "SecurityMonitor",
]
