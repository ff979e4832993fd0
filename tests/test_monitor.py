"""Tests for the security monitor and decryption failure tracking."""

from __future__ import annotations

import pytest

from sdcvault.security import (
    AlertSeverity,
    AlertType,
    AuditEventType,
    DecryptionFailureMonitor,
    OnlineOperation,
    SecurityAlert,
    SecurityMonitor,
)


class TickClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestNetworkState:
    def test_offline_by_default(self):
        state = SecurityMonitor().get_network_state()
        assert state.is_offline_mode
        assert state.is_online

    def test_state_is_a_copy(self):
        monitor = SecurityMonitor()
        monitor.get_network_state().is_offline_mode = False
        assert monitor.get_network_state().is_offline_mode

    def test_online_request_blocked_offline(self):
        monitor = SecurityMonitor(confirm=lambda warning: True)
        warnings = []
        monitor.subscribe_to_warnings(warnings.append)

        allowed = monitor.request_online_operation(OnlineOperation.CLOUD_SYNC, "Cloud sync")

        assert not allowed
        assert len(warnings) == 1
        assert "offline mode" in warnings[0].message

    def test_online_request_blocked_without_network(self):
        monitor = SecurityMonitor(offline_mode=False, is_online=False)
        assert not monitor.request_online_operation(OnlineOperation.EXTERNAL_API, "Lookup")

    @pytest.mark.parametrize("answer", [True, False])
    def test_online_request_asks_confirmation(self, answer):
        asked = []

        def confirm(warning):
            asked.append(warning)
            return answer

        monitor = SecurityMonitor(offline_mode=False, confirm=confirm)

        assert monitor.request_online_operation(OnlineOperation.FILE_SHARE, "Share") is answer
        assert asked[0].risks_exposed[0] == "Data transmission over network"

    def test_leaving_offline_mode_warns(self):
        monitor = SecurityMonitor()
        states, warnings = [], []
        monitor.subscribe(states.append)
        monitor.subscribe_to_warnings(warnings.append)

        monitor.set_offline_mode(False)
        monitor.set_offline_mode(False)

        assert len(states) == 1
        assert not states[0].is_offline_mode
        assert len(warnings) == 1

    def test_unsubscribe(self):
        monitor = SecurityMonitor()
        states = []
        unsubscribe = monitor.subscribe(states.append)
        unsubscribe()
        monitor.set_online(False)
        assert states == []

    def test_faulty_listener_does_not_block_others(self):
        monitor = SecurityMonitor()
        received = []

        def broken(state):
            raise RuntimeError("listener bug")

        monitor.subscribe(broken)
        monitor.subscribe(received.append)
        monitor.set_online(False)

        assert len(received) == 1

    def test_offline_alternatives(self):
        assert "Generate QR code for local sharing" in SecurityMonitor.get_offline_alternatives("file-share")
        assert SecurityMonitor.get_offline_alternatives("unknown") == ["Consider local alternatives"]


class TestAlerts:
    def test_unauthorized_write(self, monitor, audit):
        monitor.set_offline_mode(False)

        alert = monitor.detect_unauthorized_write("web", "/vault/data")

        assert alert.alert_type == AlertType.UNAUTHORIZED_WRITE
        assert monitor.get_network_state().is_offline_mode
        assert monitor.get_alerts() == [alert]
        events = audit.get_events(event_type=AuditEventType.SECURITY_ALERT)
        assert events[0]["details"]["alert_type"] == "unauthorized-write"

    def test_resolve(self):
        monitor = SecurityMonitor()
        alert = SecurityAlert(AlertSeverity.LOW, AlertType.EXTERNAL_ACCESS_ATTEMPT, "net", "port scan")
        monitor.raise_alert(alert)

        assert monitor.resolve_alert(alert.id)
        assert monitor.get_alerts() == []
        assert monitor.get_alerts(include_resolved=True) == [alert]
        assert not monitor.resolve_alert("unknown")

    def test_alert_dict(self):
        alert = SecurityAlert(AlertSeverity.HIGH, AlertType.DATA_EXFILTRATION, "net", "burst", ["env-1"])
        data = alert.to_dict()
        assert data["severity"] == "high"
        assert data["type"] == "data-exfiltration"
        assert data["affected_data"] == ["env-1"]


class TestDecryptionFailureMonitor:
    def test_threshold(self):
        monitor = SecurityMonitor()
        alerts = []
        monitor.subscribe_to_alerts(alerts.append)
        failures = DecryptionFailureMonitor(monitor, max_failures=3, window_seconds=60, clock=TickClock())

        assert not failures.record_failure("env-1")
        assert not failures.record_failure("env-1")
        assert failures.record_failure("env-1")

        assert alerts[0].alert_type == AlertType.REPEATED_DECRYPTION_FAILURE
        assert alerts[0].severity == AlertSeverity.HIGH

    def test_window_expires(self):
        clock = TickClock()
        failures = DecryptionFailureMonitor(SecurityMonitor(), max_failures=2, window_seconds=60, clock=clock)

        failures.record_failure("env-1")
        clock.now += 61

        assert failures.get_failure_count("env-1") == 0
        assert not failures.record_failure("env-1")

    def test_counts_are_per_envelope(self):
        failures = DecryptionFailureMonitor(SecurityMonitor(), max_failures=2, clock=TickClock())
        failures.record_failure("env-1")
        assert not failures.record_failure("env-2")

    def test_reset(self):
        failures = DecryptionFailureMonitor(SecurityMonitor(), max_failures=2, clock=TickClock())
        failures.record_failure("env-1")
        failures.reset("env-1")
        assert failures.get_failure_count("env-1") == 0
