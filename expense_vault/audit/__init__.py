"""Audit logging package."""

from expense_vault.audit.labels import ACTION_LABELS, action_label
from expense_vault.audit.logger import AuditLogger, create_correlation_id

__all__ = ["ACTION_LABELS", "AuditLogger", "action_label", "create_correlation_id"]
