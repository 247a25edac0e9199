"""
Tests for the authorization engine.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from usbgate.interceptor.descriptors import create_test_descriptor
from usbgate.policy.engine import AuthorizationEngine, request_from_descriptor
from usbgate.policy.models import (
    AuditRecord,
    AuthorizationDecision,
    AuthorizationRequest,
    DenyReason,
    Verdict,
)
from usbgate.policy.store import PolicyStore


@pytest.fixture
def engine(populated_store: PolicyStore) -> AuthorizationEngine:
    """Engine over the populated store."""
    return AuthorizationEngine(populated_store)


class TestDecisions:
    """Tests for the identity gate and serial veto."""

    def test_allowed_without_serial(self, engine: AuthorizationEngine) -> None:
        """Test an allowed identity with no serial."""
        decision = engine.authorize(AuthorizationRequest(0x04D9, 0x1702))

        assert decision == AuthorizationDecision.allow()
        assert decision.allowed
        assert decision.reason is None

    def test_allowed_with_other_serial(self, engine: AuthorizationEngine) -> None:
        """Test an allowed identity with a serial that is not blocked."""
        decision = engine.authorize(AuthorizationRequest(0x046D, 0xC077, "ABC123"))
        assert decision.allowed

    def test_serial_blocked(self, engine: AuthorizationEngine) -> None:
        """Test a blocked serial vetoes an allowed identity."""
        decision = engine.authorize(AuthorizationRequest(0x04D9, 0x1702, "BLOCKED_SERIAL"))

        assert decision.denied
        assert decision.reason == DenyReason.SERIAL_BLOCKED

    @pytest.mark.parametrize("serial", [None, "ABC123", "BLOCKED_SERIAL"])
    def test_unknown_identity(self, engine: AuthorizationEngine, serial: str | None) -> None:
        """Test an unlisted identity is denied whatever its serial."""
        decision = engine.authorize(AuthorizationRequest(0x1234, 0x5678, serial))

        assert decision.denied
        assert decision.reason == DenyReason.IDENTITY_NOT_ALLOWED

    def test_empty_store_denies(self, store: PolicyStore) -> None:
        """Test an empty store denies everything."""
        engine = AuthorizationEngine(store)
        decision = engine.authorize(AuthorizationRequest(0x04D9, 0x1702))
        assert decision.reason == DenyReason.IDENTITY_NOT_ALLOWED

    def test_serial_not_checked_for_unknown_identity(self) -> None:
        """Test the serial lookup is skipped when identity already failed."""
        store = MagicMock(spec=PolicyStore)
        store.matches_identity.return_value = False
        engine = AuthorizationEngine(store)

        engine.decide(AuthorizationRequest(1, 2, "BLOCKED_SERIAL"))

        store.is_serial_blocked.assert_not_called()

    def test_decision_sees_new_rule(self, store: PolicyStore) -> None:
        """Test a rule added at runtime takes effect on the next attach."""
        engine = AuthorizationEngine(store)
        request = AuthorizationRequest(0xABCD, 0x0001)

        assert engine.authorize(request).denied
        store.add_rule(0xABCD, 0x0001)
        assert engine.authorize(request).allowed

    def test_decide_does_not_audit(self, engine: AuthorizationEngine) -> None:
        """Test decide() leaves statistics and sinks untouched."""
        sink = MagicMock()
        engine.add_audit_sink(sink)

        engine.decide(AuthorizationRequest(0x04D9, 0x1702))

        sink.assert_not_called()
        assert engine.get_statistics()["total_evaluations"] == 0

    def test_decision_str(self) -> None:
        """Test human-readable decisions."""
        assert str(AuthorizationDecision.allow()) == "allow"
        assert str(AuthorizationDecision.deny(DenyReason.SERIAL_BLOCKED)) == "deny (serial_blocked)"


class TestAuditSinks:
    """Tests for audit record delivery."""

    def test_record_emitted(self, engine: AuthorizationEngine) -> None:
        """Test every decision produces one record with its reason."""
        records: list[AuditRecord] = []
        engine.add_audit_sink(records.append)

        engine.authorize(AuthorizationRequest(0x04D9, 0x1702, "BLOCKED_SERIAL"))
        engine.authorize(AuthorizationRequest(0x04D9, 0x1702))

        assert len(records) == 2
        assert records[0].decision == Verdict.DENY
        assert records[0].reason == DenyReason.SERIAL_BLOCKED
        assert records[0].serial == "BLOCKED_SERIAL"
        assert records[1].decision == Verdict.ALLOW
        assert records[1].reason is None

    def test_record_to_dict(self, engine: AuthorizationEngine) -> None:
        """Test records render ids as 4-digit hex."""
        records: list[AuditRecord] = []
        engine.add_audit_sink(records.append)

        engine.authorize(AuthorizationRequest(0x1234, 0x00AB))

        data = records[0].to_dict()
        assert data["vendor_id"] == "1234"
        assert data["product_id"] == "00ab"
        assert data["decision"] == "deny"
        assert data["reason"] == "identity_not_allowed"
        assert data["identified"] is True

    def test_unidentified_emitted(self, engine: AuthorizationEngine) -> None:
        """Test an unreadable device is denied, counted and audited."""
        records: list[AuditRecord] = []
        engine.add_audit_sink(records.append)

        decision = engine.deny_unidentified("1:9")

        assert decision.reason == DenyReason.IDENTITY_NOT_ALLOWED
        assert len(records) == 1
        assert records[0].identified is False
        assert records[0].decision == Verdict.DENY
        assert records[0].to_dict()["vendor_id"] == "0000"

        stats = engine.get_statistics()
        assert stats["total_evaluations"] == 1
        assert stats["denied_identity"] == 1
        assert stats["denied_unidentified"] == 1

    def test_failing_sink_does_not_change_decision(
        self, engine: AuthorizationEngine, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test a broken sink is logged and later sinks still run."""
        def broken(record: AuditRecord) -> None:
            raise RuntimeError("disk full")

        records: list[AuditRecord] = []
        engine.add_audit_sink(broken)
        engine.add_audit_sink(records.append)

        decision = engine.authorize(AuthorizationRequest(0x04D9, 0x1702))

        assert decision.allowed
        assert len(records) == 1
        assert "disk full" in caplog.text

    def test_remove_sink(self, engine: AuthorizationEngine) -> None:
        """Test removed sinks stop receiving records."""
        sink = MagicMock()
        engine.add_audit_sink(sink)
        engine.remove_audit_sink(sink)

        engine.authorize(AuthorizationRequest(0x04D9, 0x1702))

        sink.assert_not_called()


class TestStatistics:
    """Tests for engine counters."""

    def test_counts(self, engine: AuthorizationEngine) -> None:
        """Test counters per outcome, merged with store occupancy."""
        engine.authorize(AuthorizationRequest(0x04D9, 0x1702))
        engine.authorize(AuthorizationRequest(0x04D9, 0x1702, "BLOCKED_SERIAL"))
        engine.authorize(AuthorizationRequest(0x0001, 0x0001))
        engine.authorize(AuthorizationRequest(0x0002, 0x0002))

        stats = engine.get_statistics()
        assert stats["total_evaluations"] == 4
        assert stats["allowed"] == 1
        assert stats["denied"] == 3
        assert stats["denied_identity"] == 2
        assert stats["denied_serial"] == 1
        assert stats["rule_count"] == 2

    def test_reset(self, engine: AuthorizationEngine) -> None:
        """Test counters reset to zero."""
        engine.authorize(AuthorizationRequest(0x04D9, 0x1702))
        engine.reset_statistics()

        assert engine.get_statistics()["total_evaluations"] == 0


class TestRequestFromDescriptor:
    """Tests for building requests from descriptors."""

    def test_copies_identity(self) -> None:
        """Test ids and serial are carried over."""
        descriptor = create_test_descriptor(0x04D9, 0x1702, serial="ABC")
        request = request_from_descriptor(descriptor)

        assert request == AuthorizationRequest(0x04D9, 0x1702, "ABC")

    @pytest.mark.parametrize("serial", [None, "", "   "])
    def test_blank_serial_is_none(self, serial: str | None) -> None:
        """Test a blank serial is treated as no serial."""
        request = request_from_descriptor(create_test_descriptor(serial=serial))
        assert request.serial is None

    def test_invalid_ids_rejected(self) -> None:
        """Test requests refuse ids outside 16 bits."""
        with pytest.raises(ValueError):
            AuthorizationRequest(0x10000, 0)
