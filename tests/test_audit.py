"""Tests for the hash-chained audit log."""

from __future__ import annotations

import json

from sdcvault.security import AuditEventType, AuditSeverity, TamperAwareAuditLog


def _fill(audit: TamperAwareAuditLog) -> None:
    audit.log(AuditEventType.FILE_CREATED, AuditSeverity.INFO, "created", subject_id="env-1", details={"encrypted": True})
    audit.log(AuditEventType.DECRYPTION_FAILED, AuditSeverity.WARNING, "failed", subject_id="env-1", details={"reason": "wrong_credentials"})
    audit.log(AuditEventType.FILE_CREATED, AuditSeverity.INFO, "created", subject_id="env-2")


def test_chain_verifies(audit):
    _fill(audit)
    assert audit.verify_integrity() == (True, 3)
    assert audit.event_count == 3


def test_empty_log_verifies(tmp_path):
    assert TamperAwareAuditLog(tmp_path / "none" / "audit.log").verify_integrity() == (True, 0)


def test_edited_event_detected(audit):
    _fill(audit)
    lines = audit.path.read_text(encoding="utf-8").splitlines()
    record = json.loads(lines[1])
    record["details"] = {"reason": "no_credentials"}
    lines[1] = json.dumps(record)
    audit.path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    assert audit.verify_integrity() == (False, 1)


def test_deleted_event_detected(audit):
    _fill(audit)
    lines = audit.path.read_text(encoding="utf-8").splitlines()
    audit.path.write_text("\n".join([lines[0], lines[2]]) + "\n", encoding="utf-8")

    valid, _ = audit.verify_integrity()
    assert not valid


def test_chain_resumes_after_reopen(audit):
    _fill(audit)
    reopened = TamperAwareAuditLog(audit.path)
    reopened.log(AuditEventType.SECURITY_ALERT, AuditSeverity.CRITICAL, "alert")

    assert reopened.event_count == 4
    assert reopened.verify_integrity() == (True, 4)


def test_filters(audit):
    _fill(audit)

    assert len(audit.get_events(subject_id="env-1")) == 2
    assert len(audit.get_events(event_type=AuditEventType.FILE_CREATED)) == 2
    assert len(audit.get_events(severity=AuditSeverity.WARNING)) == 1
    assert len(audit.get_events(limit=1)) == 1


def test_event_shape(audit):
    event_id = audit.log(AuditEventType.FILE_EXPORTED, AuditSeverity.INFO, "exported", subject_id="env-9")
    event = audit.get_events()[0]

    assert event["event_id"] == event_id
    assert event["event_type"] == "FILE_EXPORTED"
    assert event["subject_id"] == "env-9"
    assert event["previous_hash"] == "genesis"
    assert len(event["event_hash"]) == 64
