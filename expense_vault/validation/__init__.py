"""Expense validation package."""

from expense_vault.validation.validator import ExpenseValidator

__all__ = ["ExpenseValidator"]
