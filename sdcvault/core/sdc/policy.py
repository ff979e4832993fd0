"""
Access policy evaluation for SDC envelopes.

A read is allowed while the envelope has not expired and still has views
left. The check is pure; the caller decides when to count a view.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sdcvault.core.errors import AccessExpiredError, AccessPolicyError, ViewLimitExceededError
from sdcvault.core.sdc.envelope import AccessInfo


@dataclass(frozen=True, slots=True)
class AccessDecision:
    allowed: bool
    error: Optional[AccessPolicyError] = None

    @property
    def reason(self) -> Optional[str]:
        return self.error.user_message if self.error else None


class AccessPolicy:
    """Expiry and view-limit rules."""

    @staticmethod
    def is_expired(access: AccessInfo, now: datetime) -> bool:
        # Valid up to and including the expiry instant
        return access.expires_at is not None and now > access.expires_at

    @staticmethod
    def is_exhausted(access: AccessInfo) -> bool:
        return access.max_views is not None and access.view_count >= access.max_views

    @classmethod
    def evaluate(cls, access: AccessInfo, now: datetime) -> AccessDecision:
        if cls.is_expired(access, now):
            return AccessDecision(False, AccessExpiredError())
        if cls.is_exhausted(access):
            return AccessDecision(False, ViewLimitExceededError())
        return AccessDecision(True)

    @classmethod
    def enforce(cls, access: AccessInfo, now: datetime) -> None:
        """
        Raises:
            AccessExpiredError: If ``now`` is past ``expires_at``
            ViewLimitExceededError: If no views are left
        """
        decision = cls.evaluate(access, now)
        if decision.error is not None:
            raise decision.error

    @staticmethod
    def views_remaining(access: AccessInfo) -> Optional[int]:
        if access.max_views is None:
            return None
        return max(access.max_views - access.view_count, 0)
