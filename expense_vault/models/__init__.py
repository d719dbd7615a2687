"""
Data Models Package

This package contains all Pydantic models used by Expense Vault.
All data flowing through the system must conform to these schemas.
"""

from expense_vault.models.expense import (
    Actor,
    AuditAction,
    AuditEntry,
    Expense,
    ExpenseCategory,
    ExpenseQuery,
    ExpenseState,
    LineItem,
    MemberRole,
    QueryResult,
    SubmissionType,
    ValidationIssue,
    ValidationResult,
)
from expense_vault.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Expense models
    "Actor",
    "AuditAction",
    "AuditEntry",
    "Expense",
    "ExpenseCategory",
    "ExpenseQuery",
    "ExpenseState",
    "LineItem",
    "MemberRole",
    "QueryResult",
    "SubmissionType",
    "ValidationIssue",
    "ValidationResult",
    # Audit event models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
