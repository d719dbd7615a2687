"""
Audit Event Models for Expense Vault

Two audit records exist side by side:
1. AuditEntry (models.expense) - embedded in each expense, the business trail
   an owner, manager or auditor reads.
2. AuditEvent (this module) - the system-wide event stream, including
   attempts that were refused and never touched an expense.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from expense_vault.models.expense import AuditAction, AuditEntry, Expense


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Expense lifecycle
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_SUBMITTED = "expense_submitted"
    EXPENSE_PRE_APPROVED = "expense_pre_approved"
    EXPENSE_APPROVED = "expense_approved"
    EXPENSE_REJECTED = "expense_rejected"
    EXPENSE_REIMBURSED = "expense_reimbursed"
    EXPENSE_DELETED = "expense_deleted"
    EXPENSE_RESTORED = "expense_restored"
    EXPENSE_LINKED = "expense_linked"
    BATCH_REIMBURSED = "batch_reimbursed"

    # Refusals
    ACCESS_DENIED = "access_denied"
    TRANSITION_REJECTED = "transition_rejected"
    VALIDATION_FAILED = "validation_failed"

    # Reads worth recording
    FINANCE_QUEUE_VIEWED = "finance_queue_viewed"
    QUERY_EXECUTED = "query_executed"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


ACTION_EVENT_TYPES: dict[AuditAction, AuditEventType] = {
    AuditAction.CREATED: AuditEventType.EXPENSE_CREATED,
    AuditAction.UPDATED: AuditEventType.EXPENSE_UPDATED,
    AuditAction.SUBMITTED_FOR_PRE_APPROVAL: AuditEventType.EXPENSE_SUBMITTED,
    AuditAction.SUBMITTED_FOR_FINAL_APPROVAL: AuditEventType.EXPENSE_SUBMITTED,
    AuditAction.PRE_APPROVED: AuditEventType.EXPENSE_PRE_APPROVED,
    AuditAction.APPROVED: AuditEventType.EXPENSE_APPROVED,
    AuditAction.REJECTED: AuditEventType.EXPENSE_REJECTED,
    AuditAction.REIMBURSED: AuditEventType.EXPENSE_REIMBURSED,
    AuditAction.DELETED: AuditEventType.EXPENSE_DELETED,
    AuditAction.RESTORED: AuditEventType.EXPENSE_RESTORED,
    AuditAction.LINKED_TO_ORGANIZATION: AuditEventType.EXPENSE_LINKED,
}


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of the system audit stream.
    Every mutation and every refused attempt creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'organization', 'query')"
    )
    entity_id: Optional[str] = None

    # Who did it
    actor_id: Optional[str] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one batch reimbursement)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         actor_id, correlation_id, description, details_json, error_code,
         error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            self.actor_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_code or "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.expense_changed(expense, entry, correlation_id)
        event = AuditEventBuilder.access_denied(actor_id, "approve", ...)
    """

    @staticmethod
    def expense_changed(
        expense: Expense,
        entry: AuditEntry,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=ACTION_EVENT_TYPES[entry.action],
            entity_type="expense",
            entity_id=str(expense.id),
            actor_id=entry.actor_id,
            correlation_id=correlation_id,
            description=f"Expense {entry.action.value}: {expense.title}"[:500],
            details={
                "action": entry.action.value,
                "state": expense.state.value,
                "organization_id": expense.organization_id,
                "previous_values": entry.previous_values,
                "updated_values": entry.updated_values,
                **entry.metadata,
            },
            is_user_action=True,
        )

    @staticmethod
    def access_denied(
        actor_id: str,
        operation: str,
        reason: str,
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCESS_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type="expense" if entity_id else None,
            entity_id=entity_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Access denied: {operation}",
            error_code="FORBIDDEN",
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def transition_rejected(
        expense_id: str,
        actor_id: str,
        current_state: str,
        target_state: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSITION_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="expense",
            entity_id=expense_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Transition refused: {current_state} -> {target_state}",
            details={
                "current_state": current_state,
                "target_state": target_state,
            },
            error_code="CONFLICT",
            error_message=reason,
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        actor_id: str,
        issues: list[dict],
        expense_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="expense" if expense_id else None,
            entity_id=expense_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Validation failed with {len(issues)} issues",
            details={"issues": issues},
            error_code="VALIDATION_ERROR",
            is_user_action=True,
        )

    @staticmethod
    def batch_reimbursed(
        actor_id: str,
        organization_id: str,
        expense_ids: list[str],
        total_amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BATCH_REIMBURSED,
            entity_type="organization",
            entity_id=organization_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Reimbursed {len(expense_ids)} expenses",
            details={
                "expense_ids": expense_ids,
                "total_amount": total_amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def finance_queue_viewed(
        actor_id: str,
        organization_id: str,
        count: int,
        total_payout: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FINANCE_QUEUE_VIEWED,
            entity_type="organization",
            entity_id=organization_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description="Finance dashboard accessed",
            details={
                "count": count,
                "total_payout": total_payout,
            },
            is_user_action=True,
        )

    @staticmethod
    def query_executed(
        query_id: UUID,
        actor_id: str,
        result_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUERY_EXECUTED,
            entity_type="query",
            entity_id=str(query_id),
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Query executed: returned {result_count} results",
            details={"result_count": result_count},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )
