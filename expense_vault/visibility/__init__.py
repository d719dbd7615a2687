"""Expense visibility package."""

from expense_vault.visibility.service import (
    ExpenseVisibilityService,
    FinanceQueue,
    in_actor_context,
    is_visible,
    visible_expenses,
)

__all__ = [
    "ExpenseVisibilityService",
    "FinanceQueue",
    "in_actor_context",
    "is_visible",
    "visible_expenses",
]
