"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run everything in memory for tests and local use
2. Persist to Google Sheets (or a real database later)
3. Keep workflow rules decoupled from the storage implementation

The interface is intentionally simple - we're not building an ORM.
Just the operations the expense workflow needs.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional
from uuid import UUID

from expense_vault.models.audit import AuditEvent
from expense_vault.models.expense import AuditEntry, Expense, ExpenseState


class ExpenseStorageInterface(ABC):
    """
    Abstract interface for expense storage operations.

    Any storage implementation must implement these methods and must
    refuse updates that rewrite an expense's audit log.
    """

    @abstractmethod
    async def save_expense(self, expense: Expense) -> bool:
        """
        Save a new expense.

        Raises:
            DuplicateError: If an expense with the same id exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_expense_by_id(self, expense_id: UUID) -> Optional[Expense]:
        """Retrieve an expense by its ID, or None."""
        pass

    @abstractmethod
    async def update_expense(self, expense: Expense) -> bool:
        """
        Replace a stored expense with its new version.

        Raises:
            NotFoundError: If the expense doesn't exist
            AuditLogTamperedError: If the audit log is not an extension
                of the stored one
            StorageError: If update fails
        """
        pass

    @abstractmethod
    async def update_expenses(self, expenses: list[Expense]) -> int:
        """
        Replace several stored expenses at once.

        Every expense is checked before any is written; if one check
        fails nothing is written.

        Returns:
            Number of expenses written
        """
        pass

    @abstractmethod
    async def list_expenses(
        self,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        private_only: bool = False,
        manager_id: Optional[str] = None,
        states: Optional[Iterable[ExpenseState]] = None,
        include_deleted: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Expense]:
        """
        List expenses with optional filters, newest first.

        Args:
            user_id: Only expenses owned by this user
            organization_id: Only expenses of this organization
            private_only: Only personal vault expenses
            manager_id: Only expenses assigned to this manager
            states: Only expenses in one of these states
            include_deleted: Include soft-deleted expenses
            limit: Maximum number of results, None for all
            offset: Number of results to skip
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit event storage.

    Audit events are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Returns True if logged successfully."""
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


def matches_filters(
    expense: Expense,
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    private_only: bool = False,
    manager_id: Optional[str] = None,
    states: Optional[Iterable[ExpenseState]] = None,
    include_deleted: bool = False,
) -> bool:
    """Filter predicate shared by the storage implementations."""
    if user_id is not None and expense.user_id != user_id:
        return False
    if organization_id is not None and expense.organization_id != organization_id:
        return False
    if private_only and not expense.is_private:
        return False
    if manager_id is not None and manager_id not in expense.manager_ids:
        return False
    if states is not None and expense.state not in set(states):
        return False
    if not include_deleted and expense.is_deleted:
        return False
    return True


def ensure_audit_log_extends(
    stored: list[AuditEntry],
    updated: list[AuditEntry],
    expense_id: UUID,
) -> None:
    """
    Refuse any update whose audit log is not the stored log plus new entries.
    """
    if len(updated) < len(stored) or updated[:len(stored)] != stored:
        raise AuditLogTamperedError(
            f"Audit log of expense {expense_id} can only be appended to"
        )


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class AuditLogTamperedError(StorageError):
    """An update tried to drop or rewrite existing audit entries."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
