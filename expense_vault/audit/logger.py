"""
Audit Logger

DESIGN DECISION: Every workflow mutation and every refused attempt is logged.
This provides:
1. Complete traceability beyond the per-expense audit log
2. Debugging capability
3. A record of denied access that never touched an expense
4. Compliance readiness

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the workflow if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_vault.models.audit import AuditEvent, AuditEventBuilder
from expense_vault.models.expense import AuditEntry, Expense
from expense_vault.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_expense_change(
        self,
        expense: Expense,
        entry: AuditEntry,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Mirror an embedded audit entry into the event stream."""
        event = AuditEventBuilder.expense_changed(
            expense=expense,
            entry=entry,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_access_denied(
        self,
        actor_id: str,
        operation: str,
        reason: str,
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.access_denied(
            actor_id=actor_id,
            operation=operation,
            reason=reason,
            entity_id=entity_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transition_rejected(
        self,
        expense_id: str,
        actor_id: str,
        current_state: str,
        target_state: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a refused state transition."""
        event = AuditEventBuilder.transition_rejected(
            expense_id=expense_id,
            actor_id=actor_id,
            current_state=current_state,
            target_state=target_state,
            reason=reason,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_validation_failed(
        self,
        actor_id: str,
        issues: list[dict],
        expense_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            actor_id=actor_id,
            issues=issues,
            expense_id=expense_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_batch_reimbursed(
        self,
        actor_id: str,
        organization_id: str,
        expense_ids: list[str],
        total_amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.batch_reimbursed(
            actor_id=actor_id,
            organization_id=organization_id,
            expense_ids=expense_ids,
            total_amount=total_amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_finance_queue_viewed(
        self,
        actor_id: str,
        organization_id: str,
        count: int,
        total_payout: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.finance_queue_viewed(
            actor_id=actor_id,
            organization_id=organization_id,
            count=count,
            total_payout=total_payout,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_query_executed(
        self,
        query_id: UUID,
        actor_id: str,
        result_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log query execution."""
        event = AuditEventBuilder.query_executed(
            query_id=query_id,
            actor_id=actor_id,
            result_count=result_count,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a batch reimbursement).
    Pass it through all subsequent operations.
    """
    return uuid4()
