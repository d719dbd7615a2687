"""Expense state machine and workflow errors."""

from expense_vault.workflow.errors import (
    ExpenseNotFoundError,
    ForbiddenError,
    InvalidTransitionError,
    ValidationFailedError,
    WorkflowError,
)
from expense_vault.workflow.state_machine import (
    DELETABLE_STATES,
    EDITABLE_STATES,
    REVIEW_STATES,
    TRANSITIONS,
    Authority,
    TransitionRule,
    actor_authorities,
    apply_transition,
    can_edit_expense,
    can_modify_line_items,
    can_modify_total_amount,
    can_transition,
    check_transition,
    next_state_after_submission,
    valid_next_states,
)

__all__ = [
    # Errors
    "ExpenseNotFoundError",
    "ForbiddenError",
    "InvalidTransitionError",
    "ValidationFailedError",
    "WorkflowError",
    # State machine
    "DELETABLE_STATES",
    "EDITABLE_STATES",
    "REVIEW_STATES",
    "TRANSITIONS",
    "Authority",
    "TransitionRule",
    "actor_authorities",
    "apply_transition",
    "can_edit_expense",
    "can_modify_line_items",
    "can_modify_total_amount",
    "can_transition",
    "check_transition",
    "next_state_after_submission",
    "valid_next_states",
]
