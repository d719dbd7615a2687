"""
Tests for the audit trail: labels, the audit logger and append-only storage.
"""

import pytest
from datetime import datetime
from uuid import uuid4

from expense_vault.audit import AuditLogger, action_label, create_correlation_id
from expense_vault.models.audit import AuditEvent, AuditEventType, AuditSeverity
from expense_vault.models.expense import AuditAction, Expense
from expense_vault.services.storage import (
    AuditStorageInterface,
    InMemoryAuditStorage,
    StorageError,
)


class FailingAuditStorage(AuditStorageInterface):
    """Storage whose writes always fail."""

    async def append_event(self, event):
        raise StorageError("sheet unavailable")

    async def get_events_by_correlation_id(self, correlation_id):
        return []

    async def get_events_by_entity(self, entity_type, entity_id):
        return []

    async def get_recent_events(self, limit=100):
        return []


class TestActionLabels:
    """action_label."""

    def test_known_actions(self):
        assert action_label(AuditAction.CREATED) == "Expense Draft Created"
        assert action_label(AuditAction.PRE_APPROVED) == "Pre-Approved by Manager"
        assert action_label("reimbursed") == "Marked as Reimbursed"

    def test_legacy_submitted_action(self):
        assert action_label("submitted") == "Submitted for Approval"

    def test_title_case_fallback(self):
        assert action_label(AuditAction.LINKED_TO_ORGANIZATION) == "Linked To Organization"
        assert action_label("sent-to-accounting") == "Sent To Accounting"


class TestAuditLogger:
    """AuditLogger persistence behaviour."""

    @pytest.mark.asyncio
    async def test_logs_to_storage(self):
        storage = InMemoryAuditStorage()
        audit_logger = AuditLogger(storage)
        correlation_id = create_correlation_id()

        await audit_logger.log_access_denied(
            actor_id="mallory",
            operation="approve",
            reason="Only an assigned manager can review this expense",
            entity_id="e-1",
            correlation_id=correlation_id,
        )

        events = await storage.get_events_by_correlation_id(correlation_id)
        assert len(events) == 1
        assert events[0].event_type == AuditEventType.ACCESS_DENIED
        assert events[0].severity == AuditSeverity.WARNING

    @pytest.mark.asyncio
    async def test_without_storage_returns_true(self):
        audit_logger = AuditLogger()
        event = AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description="boom",
        )
        assert await audit_logger.log(event) is True

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_raise(self):
        audit_logger = AuditLogger(FailingAuditStorage())
        event = AuditEvent(
            event_type=AuditEventType.QUERY_EXECUTED,
            description="Query executed",
        )
        assert await audit_logger.log(event) is False

    @pytest.mark.asyncio
    async def test_expense_change_mirrors_entry(self):
        storage = InMemoryAuditStorage()
        audit_logger = AuditLogger(storage)
        expense = Expense(user_id="alice")
        entry = expense.add_audit_entry(
            action=AuditAction.DELETED,
            actor_id="alice",
            previous_values={"deleted_at": None},
            updated_values={"deleted_at": "2024-05-01T00:00:00"},
        )

        await audit_logger.log_expense_change(expense, entry)

        events = await storage.get_events_by_entity("expense", str(expense.id))
        assert [e.event_type for e in events] == [AuditEventType.EXPENSE_DELETED]
        assert events[0].details["updated_values"] == {"deleted_at": "2024-05-01T00:00:00"}


class TestInMemoryAuditStorage:
    """Read paths of the in-memory audit storage."""

    @pytest.mark.asyncio
    async def test_recent_events_newest_first(self):
        storage = InMemoryAuditStorage()
        first = AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            timestamp=datetime(2024, 5, 1, 9, 0),
            description="one",
        )
        second = AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            timestamp=datetime(2024, 5, 1, 9, 5),
            description="two",
        )
        await storage.append_event(first)
        await storage.append_event(second)

        recent = await storage.get_recent_events(limit=1)
        assert [e.event_id for e in recent] == [second.event_id]

    @pytest.mark.asyncio
    async def test_unknown_correlation_id(self):
        storage = InMemoryAuditStorage()
        assert await storage.get_events_by_correlation_id(uuid4()) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
