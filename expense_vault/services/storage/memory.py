"""
In-Memory Storage Implementation

Used by the test suite and for local runs without Google Sheets.
Stored objects are deep copies, so callers can never mutate stored state
(or an audit log) behind the storage's back.
"""

from typing import Iterable, Optional
from uuid import UUID

from expense_vault.models.audit import AuditEvent
from expense_vault.models.expense import Expense, ExpenseState
from expense_vault.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
    ensure_audit_log_extends,
    matches_filters,
)


class InMemoryExpenseStorage(ExpenseStorageInterface):
    """Dict-backed expense storage."""

    def __init__(self):
        self._expenses: dict[UUID, Expense] = {}

    async def save_expense(self, expense: Expense) -> bool:
        if expense.id in self._expenses:
            raise DuplicateError(f"Expense already exists: {expense.id}")
        self._expenses[expense.id] = expense.model_copy(deep=True)
        return True

    async def get_expense_by_id(self, expense_id: UUID) -> Optional[Expense]:
        stored = self._expenses.get(expense_id)
        return stored.model_copy(deep=True) if stored else None

    def _check_update(self, expense: Expense) -> None:
        stored = self._expenses.get(expense.id)
        if stored is None:
            raise NotFoundError(f"Expense not found: {expense.id}")
        ensure_audit_log_extends(stored.audit_log, expense.audit_log, expense.id)

    async def update_expense(self, expense: Expense) -> bool:
        self._check_update(expense)
        self._expenses[expense.id] = expense.model_copy(deep=True)
        return True

    async def update_expenses(self, expenses: list[Expense]) -> int:
        for expense in expenses:
            self._check_update(expense)
        for expense in expenses:
            self._expenses[expense.id] = expense.model_copy(deep=True)
        return len(expenses)

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
        states = list(states) if states is not None else None
        expenses = [
            expense.model_copy(deep=True)
            for expense in self._expenses.values()
            if matches_filters(
                expense,
                user_id=user_id,
                organization_id=organization_id,
                private_only=private_only,
                manager_id=manager_id,
                states=states,
                include_deleted=include_deleted,
            )
        ]
        expenses.sort(key=lambda e: e.created_at, reverse=True)
        if limit is None:
            return expenses[offset:]
        return expenses[offset:offset + limit]


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed, append-only audit event storage."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event.model_copy(deep=True))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        # Newest first, ties in reverse append order
        events = sorted(reversed(self._events), key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
