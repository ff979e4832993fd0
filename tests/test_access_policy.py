"""Tests for expiry and view-limit evaluation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from sdcvault.core.errors import AccessExpiredError, ViewLimitExceededError
from sdcvault.core.sdc import AccessInfo, AccessPolicy

NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def test_unrestricted_access_is_allowed():
    decision = AccessPolicy.evaluate(AccessInfo(), NOW)
    assert decision.allowed
    assert decision.reason is None


def test_expiry_instant_is_still_valid():
    access = AccessInfo(expires_at=NOW)
    assert AccessPolicy.evaluate(access, NOW).allowed
    assert not AccessPolicy.evaluate(access, NOW + timedelta(microseconds=1)).allowed


def test_expired_reason():
    decision = AccessPolicy.evaluate(AccessInfo(expires_at=NOW - timedelta(days=1)), NOW)
    assert not decision.allowed
    assert isinstance(decision.error, AccessExpiredError)
    assert decision.reason == "File has expired"


def test_view_limit():
    access = AccessInfo(max_views=2, view_count=1)
    assert AccessPolicy.evaluate(access, NOW).allowed
    assert AccessPolicy.views_remaining(access) == 1

    access.view_count = 2
    decision = AccessPolicy.evaluate(access, NOW)
    assert not decision.allowed
    assert decision.reason == "Maximum view count exceeded"
    assert AccessPolicy.views_remaining(access) == 0


def test_expiry_is_reported_before_view_limit():
    access = AccessInfo(expires_at=NOW - timedelta(seconds=1), max_views=1, view_count=1)
    assert isinstance(AccessPolicy.evaluate(access, NOW).error, AccessExpiredError)


def test_enforce_raises():
    with pytest.raises(ViewLimitExceededError):
        AccessPolicy.enforce(AccessInfo(max_views=1, view_count=1), NOW)
    with pytest.raises(AccessExpiredError):
        AccessPolicy.enforce(AccessInfo(expires_at=NOW - timedelta(hours=1)), NOW)


def test_views_remaining_without_limit():
    assert AccessPolicy.views_remaining(AccessInfo(view_count=9)) is None


def test_views_remaining_never_negative():
    assert AccessPolicy.views_remaining(AccessInfo(max_views=1, view_count=5)) == 0


@pytest.mark.parametrize("max_views", [0, -1, True, 1.5])
def test_invalid_max_views(max_views):
    with pytest.raises(ValueError):
        AccessInfo(max_views=max_views)


def test_negative_view_count():
    with pytest.raises(ValueError):
        AccessInfo(view_count=-1)


def test_naive_expiry_rejected():
    with pytest.raises(ValueError):
        AccessInfo(expires_at=datetime(2026, 1, 1))


def test_expiry_normalized_to_utc():
    local = timezone(timedelta(hours=2))
    access = AccessInfo(expires_at=datetime(2026, 1, 1, 12, 0, tzinfo=local))
    assert access.expires_at == datetime(2026, 1, 1, 10, 0, tzinfo=timezone.utc)
    assert access.expires_at.tzinfo == timezone.utc
