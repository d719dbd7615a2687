"""
Expense Visibility Service

DESIGN DECISION: Visibility is decided by one predicate, is_visible(),
and every read path goes through it. Storage filters only narrow the
candidate set; they never decide what an actor may see.

Rules:
1. Owners always see their own expenses.
2. Personal vault expenses are invisible to everyone else, except a
   manager the owner explicitly assigned, once submitted.
3. Assigned managers see the non-draft expenses assigned to them.
4. Organization admins/owners, acting in that organization, see every
   expense of it.
5. Soft-deleted expenses are only shown to their owner, on request.

Listings are additionally scoped to the actor's current context: the
personal vault plus the organization the actor is acting in.
"""

from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from expense_vault.models.expense import Actor, Expense, ExpenseState
from expense_vault.services.storage import ExpenseStorageInterface
from expense_vault.workflow.errors import ForbiddenError
from expense_vault.workflow.state_machine import REVIEW_STATES


def is_visible(
    expense: Expense,
    actor: Actor,
    include_deleted: bool = False,
) -> bool:
    """Whether the actor may read this expense."""
    is_owner = expense.user_id == actor.user_id

    if expense.is_deleted:
        return include_deleted and is_owner

    if is_owner:
        return True

    if expense.is_assigned_manager(actor.user_id) and expense.state != ExpenseState.DRAFT:
        return True

    if expense.is_private:
        return False

    return (
        actor.can_view_organization_expenses
        and expense.organization_id == actor.organization_id
    )


def in_actor_context(expense: Expense, actor: Actor) -> bool:
    """Vault expenses plus those of the organization the actor acts in."""
    return expense.is_private or expense.organization_id == actor.organization_id


def visible_expenses(
    actor: Actor,
    expenses: Iterable[Expense],
    include_deleted: bool = False,
) -> list[Expense]:
    """Filter expenses down to what the actor may list in their context."""
    return [
        expense for expense in expenses
        if in_actor_context(expense, actor)
        and is_visible(expense, actor, include_deleted)
    ]


class FinanceQueue(BaseModel):
    """Approved organization expenses waiting for payout."""

    organization_id: str
    expenses: list[Expense] = Field(default_factory=list)
    total_payout: Decimal = Decimal("0.00")

    @property
    def count(self) -> int:
        return len(self.expenses)


class ExpenseVisibilityService:
    """
    Storage-backed read paths filtered by the visibility rules.
    """

    def __init__(self, storage: ExpenseStorageInterface):
        self._storage = storage

    async def get_visible_expenses(
        self,
        actor: Actor,
        include_deleted: bool = False,
        states: Optional[Iterable[ExpenseState]] = None,
    ) -> list[Expense]:
        """
        All expenses the actor may list, newest first.

        Candidates come from three storage queries (own, assigned,
        organization) and are deduplicated before filtering.
        """
        states = list(states) if states is not None else None

        candidates = await self._storage.list_expenses(
            user_id=actor.user_id,
            states=states,
            include_deleted=include_deleted,
        )
        candidates += await self._storage.list_expenses(
            manager_id=actor.user_id,
            states=states,
        )
        if actor.can_view_organization_expenses:
            candidates += await self._storage.list_expenses(
                organization_id=actor.organization_id,
                states=states,
            )

        unique: dict[UUID, Expense] = {}
        for expense in candidates:
            unique.setdefault(expense.id, expense)

        expenses = visible_expenses(actor, unique.values(), include_deleted)
        expenses.sort(key=lambda e: e.created_at, reverse=True)
        return expenses

    async def get_visible_expense(
        self,
        actor: Actor,
        expense_id: UUID,
        include_deleted: bool = False,
    ) -> Optional[Expense]:
        """The expense if the actor may see it, else None."""
        expense = await self._storage.get_expense_by_id(expense_id)
        if expense is None or not is_visible(expense, actor, include_deleted):
            return None
        return expense

    async def get_personal_drafts(self, user_id: str) -> list[Expense]:
        """Draft expenses in the user's personal vault."""
        return await self._storage.list_expenses(
            user_id=user_id,
            private_only=True,
            states=[ExpenseState.DRAFT],
        )

    async def review_queue(
        self,
        manager_id: str,
        organization_id: Optional[str] = None,
    ) -> list[Expense]:
        """Expenses waiting on this manager, optionally for one organization."""
        expenses = await self._storage.list_expenses(
            manager_id=manager_id,
            organization_id=organization_id,
            states=REVIEW_STATES,
        )
        return [e for e in expenses if e.is_assigned_manager(manager_id)]

    async def finance_queue(
        self,
        actor: Actor,
        organization_id: str,
    ) -> FinanceQueue:
        """
        Approved expenses of an organization, for its admins and owners.

        Raises:
            ForbiddenError: If the actor is not acting as admin/owner of
                the organization
        """
        if not (
            actor.can_view_organization_expenses
            and actor.organization_id == organization_id
        ):
            raise ForbiddenError(
                "Only organization admins and owners can view reimbursements",
                details={"organization_id": organization_id},
            )

        expenses = await self._storage.list_expenses(
            organization_id=organization_id,
            states=[ExpenseState.APPROVED],
        )
        total = sum((e.total_amount for e in expenses), Decimal("0.00"))
        return FinanceQueue(
            organization_id=organization_id,
            expenses=expenses,
            total_payout=total,
        )
