"""
Expense State Machine

DESIGN DECISION: The transition table is data, not branching code.
Every rule that decides whether an expense may move, or may be edited,
reads from the tables below so the workflow service and the listings
(valid next states, review buttons) can never disagree.

Authority is checked before state: an actor who could never perform a
transition is told so (403) rather than being told the expense is in the
wrong state (409).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from expense_vault.models.expense import (
    Actor,
    AuditAction,
    AuditEntry,
    Expense,
    ExpenseState,
    MemberRole,
    SubmissionType,
)
from expense_vault.workflow.errors import (
    ForbiddenError,
    InvalidTransitionError,
)


class Authority(str, Enum):
    """Who may trigger a transition."""
    OWNER = "owner"
    ASSIGNED_MANAGER = "assigned_manager"
    # Org admins/owners paying out approved organization expenses
    FINANCE = "finance"


class TransitionRule(BaseModel):
    """Sources and authorities allowed for one target state."""
    model_config = ConfigDict(frozen=True)

    target: ExpenseState
    sources: frozenset[ExpenseState]
    authorities: frozenset[Authority]
    action: AuditAction


TRANSITIONS: dict[ExpenseState, TransitionRule] = {
    rule.target: rule
    for rule in (
        TransitionRule(
            target=ExpenseState.PRE_APPROVAL_PENDING,
            sources=frozenset({ExpenseState.DRAFT, ExpenseState.REJECTED}),
            authorities=frozenset({Authority.OWNER}),
            action=AuditAction.SUBMITTED_FOR_PRE_APPROVAL,
        ),
        TransitionRule(
            target=ExpenseState.PRE_APPROVED,
            sources=frozenset({ExpenseState.PRE_APPROVAL_PENDING}),
            authorities=frozenset({Authority.ASSIGNED_MANAGER}),
            action=AuditAction.PRE_APPROVED,
        ),
        TransitionRule(
            target=ExpenseState.APPROVAL_PENDING,
            sources=frozenset({
                ExpenseState.DRAFT,
                ExpenseState.PRE_APPROVED,
                ExpenseState.REJECTED,
            }),
            authorities=frozenset({Authority.OWNER}),
            action=AuditAction.SUBMITTED_FOR_FINAL_APPROVAL,
        ),
        TransitionRule(
            target=ExpenseState.APPROVED,
            sources=frozenset({ExpenseState.APPROVAL_PENDING}),
            authorities=frozenset({Authority.ASSIGNED_MANAGER}),
            action=AuditAction.APPROVED,
        ),
        TransitionRule(
            target=ExpenseState.REJECTED,
            sources=frozenset({
                ExpenseState.PRE_APPROVAL_PENDING,
                ExpenseState.PRE_APPROVED,
                ExpenseState.APPROVAL_PENDING,
            }),
            authorities=frozenset({Authority.ASSIGNED_MANAGER}),
            action=AuditAction.REJECTED,
        ),
        TransitionRule(
            target=ExpenseState.REIMBURSED,
            sources=frozenset({ExpenseState.APPROVED}),
            authorities=frozenset({Authority.ASSIGNED_MANAGER, Authority.FINANCE}),
            action=AuditAction.REIMBURSED,
        ),
    )
}

# States an owner may still change the content of
EDITABLE_STATES = frozenset({
    ExpenseState.DRAFT,
    ExpenseState.REJECTED,
    ExpenseState.PRE_APPROVED,
})

# States an owner may soft-delete from
DELETABLE_STATES = frozenset({ExpenseState.DRAFT, ExpenseState.REJECTED})

# States waiting on an assigned manager
REVIEW_STATES = frozenset({
    ExpenseState.PRE_APPROVAL_PENDING,
    ExpenseState.PRE_APPROVED,
    ExpenseState.APPROVAL_PENDING,
})


def actor_authorities(expense: Expense, actor: Actor) -> set[Authority]:
    """
    Authorities the actor holds over this expense.

    The owner never holds a reviewing authority over their own expense,
    even if listed in manager_ids or acting as organization admin.
    """
    if actor.user_id == expense.user_id:
        return {Authority.OWNER}

    authorities = set()
    if expense.is_assigned_manager(actor.user_id):
        authorities.add(Authority.ASSIGNED_MANAGER)
    if (
        not expense.is_private
        and actor.organization_id == expense.organization_id
        and actor.role in (MemberRole.ADMIN, MemberRole.OWNER)
    ):
        authorities.add(Authority.FINANCE)
    return authorities


def can_transition(
    current: ExpenseState,
    target: ExpenseState,
    actor: Actor,
    expense: Expense,
) -> bool:
    """Whether the actor may move the expense from current to target."""
    rule = TRANSITIONS.get(target)
    if rule is None or expense.is_deleted:
        return False
    if current not in rule.sources:
        return False
    return bool(rule.authorities & actor_authorities(expense, actor))


def valid_next_states(expense: Expense, actor: Actor) -> list[ExpenseState]:
    """Targets the actor could move the expense to right now, in state order."""
    return [
        state for state in ExpenseState
        if can_transition(expense.state, state, actor, expense)
    ]


def check_transition(expense: Expense, target: ExpenseState, actor: Actor) -> TransitionRule:
    """
    Raise unless the actor may move the expense to target.

    Raises:
        InvalidTransitionError: Unknown target, deleted expense, or wrong
            current state
        ForbiddenError: Actor lacks the authority the target requires
    """
    rule = TRANSITIONS.get(target)
    if rule is None:
        raise InvalidTransitionError(
            f"Cannot transition an expense to {target.value}",
            details={"current_state": expense.state.value, "target_state": target.value},
        )

    if expense.is_deleted:
        raise InvalidTransitionError(
            "Deleted expenses must be restored before any change",
            details={"current_state": expense.state.value, "target_state": target.value},
        )

    if not rule.authorities & actor_authorities(expense, actor):
        if actor.user_id == expense.user_id and Authority.OWNER not in rule.authorities:
            reason = "You cannot review your own expense"
        elif Authority.OWNER in rule.authorities:
            reason = "Only the expense owner can submit it"
        else:
            reason = "Only an assigned manager can review this expense"
        raise ForbiddenError(
            reason,
            details={"target_state": target.value},
        )

    if expense.state not in rule.sources:
        raise InvalidTransitionError(
            f"Cannot move expense from {expense.state.value} to {target.value}",
            details={
                "current_state": expense.state.value,
                "target_state": target.value,
                "allowed_from": sorted(s.value for s in rule.sources),
            },
        )

    return rule


def next_state_after_submission(
    current: ExpenseState,
    submission_type: Optional[SubmissionType],
) -> ExpenseState:
    """Target state for a submission; no submission type keeps the state."""
    if submission_type == SubmissionType.PRE_APPROVAL:
        return ExpenseState.PRE_APPROVAL_PENDING
    if submission_type == SubmissionType.FINAL_APPROVAL:
        return ExpenseState.APPROVAL_PENDING
    return current


def can_edit_expense(expense: Optional[Expense]) -> bool:
    """Approved and reimbursed expenses are final."""
    if expense is None:
        return True
    return expense.state not in (ExpenseState.APPROVED, ExpenseState.REIMBURSED)


def can_modify_total_amount(expense: Optional[Expense]) -> bool:
    """The total is locked once a manager pre-approved it."""
    if expense is None:
        return True
    return expense.state not in (ExpenseState.PRE_APPROVED, ExpenseState.APPROVED)


def can_modify_line_items(expense: Optional[Expense]) -> bool:
    if expense is None:
        return True
    return expense.state != ExpenseState.APPROVED


def apply_transition(
    expense: Expense,
    target: ExpenseState,
    actor: Actor,
    metadata: Optional[dict[str, Any]] = None,
) -> AuditEntry:
    """
    Move the expense to target in place and append the audit entry.

    Raises the same errors as check_transition; the expense is untouched
    when a check fails.
    """
    rule = check_transition(expense, target, actor)

    previous = expense.snapshot("state")
    expense.state = target
    expense.updated_at = datetime.utcnow()

    return expense.add_audit_entry(
        action=rule.action,
        actor_id=actor.user_id,
        actor_role=actor.role,
        previous_values=previous,
        updated_values=expense.snapshot("state"),
        metadata=metadata,
    )
