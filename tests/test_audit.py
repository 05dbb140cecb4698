"""
Test suite for audit module

Tests hash chaining, tamper detection and entity lookups.
"""

import pytest
from datetime import datetime, timezone
from decimal import Decimal

from loan_engine.audit import AuditEvent, AuditEventType, AuditTrail
from loan_engine.loans import LoanStatus
from loan_engine.storage import InMemoryStorage, SQLiteStorage


class TestAuditEvent:
    """Test AuditEvent functionality"""

    def _event(self, **overrides):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        data = dict(
            id="event-1",
            created_at=now,
            updated_at=now,
            event_type=AuditEventType.LOAN_CREATED,
            entity_type="loan",
            entity_id="loan-1",
            previous_hash="",
            current_hash="",
            metadata={"principal": Decimal('100.00'), "status": LoanStatus.PENDING},
            user_id="alice",
        )
        data.update(overrides)
        return AuditEvent(**data)

    def test_metadata_serialization(self):
        event = self._event()
        assert event.metadata == {"principal": "100.00", "status": "PENDING"}

    def test_hash_verification(self):
        event = self._event()
        event.current_hash = event.calculate_hash()
        assert event.verify_hash()

        event.metadata["principal"] = "1000.00"
        assert not event.verify_hash()

    def test_hash_includes_previous_hash(self):
        assert self._event().calculate_hash() != self._event(previous_hash="abc").calculate_hash()


class TestAuditTrail:
    """Test AuditTrail functionality"""

    @pytest.fixture
    def storage(self):
        return InMemoryStorage()

    @pytest.fixture
    def audit_trail(self, storage):
        return AuditTrail(storage)

    def test_log_multiple_events_chain(self, audit_trail):
        first = audit_trail.log_event(AuditEventType.LOAN_CREATED, "loan", "loan-1", user_id="alice")
        second = audit_trail.log_event(
            AuditEventType.LOAN_STATUS_CHANGED, "loan", "loan-1",
            metadata={"new_status": "APPROVED"}, user_id="admin"
        )

        assert first.previous_hash == ""
        assert second.previous_hash == first.current_hash
        assert first.metadata["sequence"] == 1
        assert second.metadata["sequence"] == 2

    def test_get_events_for_entity(self, audit_trail):
        audit_trail.log_event(AuditEventType.LOAN_CREATED, "loan", "loan-1")
        audit_trail.log_event(AuditEventType.INSTALLMENT_PAID, "installment", "inst-1")
        audit_trail.log_event(AuditEventType.LOAN_PAID, "loan", "loan-1")

        events = audit_trail.get_events_for_entity("loan", "loan-1")
        assert [e.event_type for e in events] == [AuditEventType.LOAN_CREATED, AuditEventType.LOAN_PAID]

    def test_verify_integrity_valid_chain(self, audit_trail):
        for n in range(5):
            audit_trail.log_event(AuditEventType.INSTALLMENT_PAID, "installment", f"inst-{n}")

        result = audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 5
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_verify_integrity_empty_trail(self, audit_trail):
        result = audit_trail.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 0

    def test_verify_integrity_detects_hash_tampering(self, audit_trail, storage):
        audit_trail.log_event(AuditEventType.LOAN_CREATED, "loan", "loan-1", metadata={"principal": "100.00"})
        event = audit_trail.log_event(AuditEventType.LOAN_PAID, "loan", "loan-1")

        data = storage.load("audit_events", event.id)
        data["entity_id"] = "loan-2"
        storage.save("audit_events", event.id, data)

        result = audit_trail.verify_integrity()
        assert not result["valid"]
        assert result["hash_errors"][0]["event_id"] == event.id

    def test_verify_integrity_detects_chain_break(self, audit_trail, storage):
        events = [
            audit_trail.log_event(AuditEventType.INSTALLMENT_PAID, "installment", f"inst-{n}")
            for n in range(3)
        ]
        storage.delete("audit_events", events[1].id)

        result = audit_trail.verify_integrity()
        assert not result["valid"]
        assert result["chain_breaks"][0]["event_id"] == events[2].id

    def test_chain_continues_after_reload(self):
        storage = SQLiteStorage(":memory:")
        first_trail = AuditTrail(storage)
        last = first_trail.log_event(AuditEventType.LOAN_CREATED, "loan", "loan-1")

        second_trail = AuditTrail(storage)
        event = second_trail.log_event(AuditEventType.LOAN_PAID, "loan", "loan-1")

        assert event.previous_hash == last.current_hash
        assert event.metadata["sequence"] == 2
        assert second_trail.verify_integrity()["valid"]
        storage.close()
