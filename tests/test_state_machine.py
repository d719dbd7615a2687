"""
Tests for the expense state machine.

Covers the transition table, authorities, edit rules and apply_transition.
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from expense_vault.models.expense import (
    Actor,
    AuditAction,
    Expense,
    ExpenseState,
    LineItem,
    MemberRole,
    SubmissionType,
)
from expense_vault.workflow import (
    TRANSITIONS,
    Authority,
    ForbiddenError,
    InvalidTransitionError,
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


OWNER = Actor(user_id="alice", organization_id="org-acme", role=MemberRole.MEMBER)
MANAGER = Actor(user_id="bob", organization_id="org-acme", role=MemberRole.MEMBER)
ADMIN = Actor(user_id="carol", organization_id="org-acme", role=MemberRole.ADMIN)
OUTSIDER = Actor(user_id="mallory", organization_id="org-acme", role=MemberRole.MEMBER)


def make_expense(
    state: ExpenseState = ExpenseState.DRAFT,
    organization_id="org-acme",
    manager_ids=("bob",),
) -> Expense:
    return Expense(
        user_id="alice",
        organization_id=organization_id,
        manager_ids=list(manager_ids),
        total_amount=Decimal("40.00"),
        state=state,
        line_items=[LineItem(amount=Decimal("40.00"), date=date(2024, 5, 1))],
    )


class TestTransitionTable:
    """The table itself."""

    def test_every_target_has_a_rule(self):
        assert set(TRANSITIONS) == set(ExpenseState) - {ExpenseState.DRAFT}

    def test_owner_submissions(self):
        assert TRANSITIONS[ExpenseState.PRE_APPROVAL_PENDING].sources == {
            ExpenseState.DRAFT, ExpenseState.REJECTED,
        }
        assert TRANSITIONS[ExpenseState.APPROVAL_PENDING].sources == {
            ExpenseState.DRAFT, ExpenseState.PRE_APPROVED, ExpenseState.REJECTED,
        }

    def test_reimbursement_authorities(self):
        assert TRANSITIONS[ExpenseState.REIMBURSED].authorities == {
            Authority.ASSIGNED_MANAGER, Authority.FINANCE,
        }


class TestAuthorities:
    """Who holds which authority."""

    def test_owner(self):
        assert actor_authorities(make_expense(), OWNER) == {Authority.OWNER}

    def test_assigned_manager(self):
        assert actor_authorities(make_expense(), MANAGER) == {Authority.ASSIGNED_MANAGER}

    def test_org_admin_is_finance(self):
        assert actor_authorities(make_expense(), ADMIN) == {Authority.FINANCE}

    def test_admin_of_other_org_is_nothing(self):
        other = Actor(user_id="carol", organization_id="org-globex", role=MemberRole.ADMIN)
        assert actor_authorities(make_expense(), other) == set()

    def test_admin_has_no_finance_over_vault(self):
        assert actor_authorities(make_expense(organization_id=None), ADMIN) == set()

    def test_owner_listed_as_manager_stays_owner(self):
        expense = make_expense(manager_ids=("alice", "bob"))
        assert actor_authorities(expense, OWNER) == {Authority.OWNER}


class TestCanTransition:
    """can_transition and valid_next_states."""

    @pytest.mark.parametrize("current,target,actor,expected", [
        (ExpenseState.DRAFT, ExpenseState.PRE_APPROVAL_PENDING, OWNER, True),
        (ExpenseState.DRAFT, ExpenseState.APPROVAL_PENDING, OWNER, True),
        (ExpenseState.DRAFT, ExpenseState.APPROVED, MANAGER, False),
        (ExpenseState.PRE_APPROVAL_PENDING, ExpenseState.PRE_APPROVED, MANAGER, True),
        (ExpenseState.PRE_APPROVAL_PENDING, ExpenseState.PRE_APPROVED, OWNER, False),
        (ExpenseState.PRE_APPROVAL_PENDING, ExpenseState.PRE_APPROVED, OUTSIDER, False),
        (ExpenseState.PRE_APPROVED, ExpenseState.APPROVAL_PENDING, OWNER, True),
        (ExpenseState.PRE_APPROVED, ExpenseState.REJECTED, MANAGER, True),
        (ExpenseState.APPROVAL_PENDING, ExpenseState.APPROVED, MANAGER, True),
        (ExpenseState.APPROVAL_PENDING, ExpenseState.APPROVED, ADMIN, False),
        (ExpenseState.APPROVAL_PENDING, ExpenseState.REJECTED, MANAGER, True),
        (ExpenseState.APPROVED, ExpenseState.REIMBURSED, MANAGER, True),
        (ExpenseState.APPROVED, ExpenseState.REIMBURSED, ADMIN, True),
        (ExpenseState.APPROVED, ExpenseState.REIMBURSED, OWNER, False),
        (ExpenseState.APPROVED, ExpenseState.REJECTED, MANAGER, False),
        (ExpenseState.REJECTED, ExpenseState.PRE_APPROVAL_PENDING, OWNER, True),
        (ExpenseState.REIMBURSED, ExpenseState.APPROVED, MANAGER, False),
    ])
    def test_table(self, current, target, actor, expected):
        expense = make_expense(state=current)
        assert can_transition(current, target, actor, expense) is expected

    def test_deleted_expense_cannot_move(self):
        expense = make_expense()
        expense.deleted_at = datetime.utcnow()
        assert can_transition(
            expense.state, ExpenseState.APPROVAL_PENDING, OWNER, expense
        ) is False

    def test_valid_next_states_for_owner_draft(self):
        assert valid_next_states(make_expense(), OWNER) == [
            ExpenseState.PRE_APPROVAL_PENDING,
            ExpenseState.APPROVAL_PENDING,
        ]

    def test_valid_next_states_for_manager(self):
        expense = make_expense(state=ExpenseState.APPROVAL_PENDING)
        assert valid_next_states(expense, MANAGER) == [
            ExpenseState.APPROVED,
            ExpenseState.REJECTED,
        ]

    def test_valid_next_states_for_outsider(self):
        expense = make_expense(state=ExpenseState.APPROVAL_PENDING)
        assert valid_next_states(expense, OUTSIDER) == []


class TestCheckTransition:
    """check_transition error ordering."""

    def test_forbidden_before_state(self):
        # Outsider asks for a transition that is also in the wrong state
        expense = make_expense(state=ExpenseState.DRAFT)
        with pytest.raises(ForbiddenError):
            check_transition(expense, ExpenseState.APPROVED, OUTSIDER)

    def test_self_review_is_forbidden(self):
        expense = make_expense(state=ExpenseState.APPROVAL_PENDING, manager_ids=("alice",))
        with pytest.raises(ForbiddenError) as exc:
            check_transition(expense, ExpenseState.APPROVED, OWNER)
        assert exc.value.status_code == 403
        assert "own expense" in exc.value.message

    def test_wrong_state_is_conflict(self):
        expense = make_expense(state=ExpenseState.DRAFT)
        with pytest.raises(InvalidTransitionError) as exc:
            check_transition(expense, ExpenseState.APPROVED, MANAGER)
        assert exc.value.status_code == 409
        assert exc.value.code == "CONFLICT"

    def test_draft_is_not_a_target(self):
        with pytest.raises(InvalidTransitionError):
            check_transition(make_expense(), ExpenseState.DRAFT, OWNER)

    def test_deleted_expense_is_conflict(self):
        expense = make_expense()
        expense.deleted_at = datetime.utcnow()
        with pytest.raises(InvalidTransitionError):
            check_transition(expense, ExpenseState.APPROVAL_PENDING, OWNER)


class TestSubmissionAndEditRules:
    """next_state_after_submission and the edit predicates."""

    def test_next_state_after_submission(self):
        assert next_state_after_submission(
            ExpenseState.DRAFT, SubmissionType.PRE_APPROVAL
        ) == ExpenseState.PRE_APPROVAL_PENDING
        assert next_state_after_submission(
            ExpenseState.PRE_APPROVED, SubmissionType.FINAL_APPROVAL
        ) == ExpenseState.APPROVAL_PENDING
        assert next_state_after_submission(ExpenseState.DRAFT, None) == ExpenseState.DRAFT

    @pytest.mark.parametrize("state,edit,total,items", [
        (ExpenseState.DRAFT, True, True, True),
        (ExpenseState.PRE_APPROVED, True, False, True),
        (ExpenseState.APPROVED, False, False, False),
        (ExpenseState.REIMBURSED, False, True, True),
        (ExpenseState.REJECTED, True, True, True),
    ])
    def test_edit_predicates(self, state, edit, total, items):
        expense = make_expense(state=state)
        assert can_edit_expense(expense) is edit
        assert can_modify_total_amount(expense) is total
        assert can_modify_line_items(expense) is items

    def test_new_expense_is_always_editable(self):
        assert can_edit_expense(None) is True
        assert can_modify_total_amount(None) is True
        assert can_modify_line_items(None) is True


class TestApplyTransition:
    """apply_transition mutates and audits."""

    def test_records_state_change(self):
        expense = make_expense(state=ExpenseState.APPROVAL_PENDING)
        entry = apply_transition(
            expense, ExpenseState.REJECTED, MANAGER, metadata={"comment": "Missing receipt"}
        )
        assert expense.state == ExpenseState.REJECTED
        assert entry.action == AuditAction.REJECTED
        assert entry.actor_id == "bob"
        assert entry.previous_values == {"state": "Approval Pending"}
        assert entry.updated_values == {"state": "Rejected"}
        assert entry.metadata == {"comment": "Missing receipt"}
        assert expense.audit_log[-1] is entry

    def test_failed_check_leaves_expense_untouched(self):
        expense = make_expense(state=ExpenseState.DRAFT)
        with pytest.raises(InvalidTransitionError):
            apply_transition(expense, ExpenseState.REIMBURSED, MANAGER)
        assert expense.state == ExpenseState.DRAFT
        assert expense.audit_log == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
