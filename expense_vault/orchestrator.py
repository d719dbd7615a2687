"""
Main Orchestrator for Expense Vault

This module ties together all the components and defines the
end-to-end flows for:
1. Authoring (create, update, delete, restore, link vault drafts)
2. Review (submit, pre-approve, approve, reject)
3. Payout (reimburse one, reimburse a batch, finance queue)
4. Reads (get, list, review queue, queries, exports)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Roles come from the organization directory, never from the caller
- Expenses an actor cannot see behave as if they did not exist
- Every mutation appends to the expense's audit log and the event stream
- Every refused attempt is written to the event stream

This is the "glue" that ensures the rules hold together even when
individual callers behave unexpectedly.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from expense_vault.audit import AuditLogger, action_label, create_correlation_id
from expense_vault.config import get_settings
from expense_vault.models.expense import (
    Actor,
    AuditAction,
    AuditEntry,
    Expense,
    ExpenseQuery,
    ExpenseState,
    LineItem,
    MemberRole,
    QueryResult,
    SubmissionType,
    ValidationResult,
)
from expense_vault.organizations import (
    InMemoryOrganizationDirectory,
    Member,
    OrganizationDirectoryInterface,
    eligible_managers,
    resolve_actor,
    verify_permission,
)
from expense_vault.queries import QueryExecutionError, QueryExecutor, export_csv
from expense_vault.services.storage import (
    ExpenseStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsExpenseStorage,
    InMemoryAuditStorage,
    InMemoryExpenseStorage,
    StorageError,
)
from expense_vault.validation import ExpenseValidator
from expense_vault.visibility import ExpenseVisibilityService, FinanceQueue
from expense_vault.workflow import (
    DELETABLE_STATES,
    EDITABLE_STATES,
    ExpenseNotFoundError,
    ForbiddenError,
    InvalidTransitionError,
    ValidationFailedError,
    apply_transition,
    can_modify_total_amount,
    check_transition,
    next_state_after_submission,
    valid_next_states,
)


logger = structlog.get_logger(__name__)

# Fields captured before/after an owner edit
EDIT_FIELDS = ("line_items", "total_amount", "manager_ids")


def _normalize_managers(manager_ids: list[str]) -> list[str]:
    """Strip, drop blanks and deduplicate, keeping order."""
    return list(dict.fromkeys(m.strip() for m in manager_ids if m and m.strip()))


class ExpenseWorkflow:
    """
    Orchestrates every operation on expenses.

    Flow of a mutation:
    1. Resolve the actor's role from the directory
    2. Load the expense through the visibility rules
    3. Check authority, then state, then content
    4. Mutate and append the audit entry
    5. Persist, then mirror the entry into the event stream
    """

    def __init__(
        self,
        expense_storage: ExpenseStorageInterface,
        directory: OrganizationDirectoryInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[ExpenseValidator] = None,
    ):
        self._storage = expense_storage
        self._directory = directory
        self._audit_logger = audit_logger or AuditLogger()
        self._validator = validator or ExpenseValidator()
        self._visibility = ExpenseVisibilityService(expense_storage)
        self._query_executor = QueryExecutor(self._visibility)

    @property
    def visibility(self) -> ExpenseVisibilityService:
        return self._visibility

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    async def _resolve(self, actor: Actor, correlation_id: Optional[UUID] = None) -> Actor:
        """Re-derive the actor's role from the directory."""
        try:
            return await resolve_actor(
                self._directory, actor.user_id, actor.organization_id
            )
        except ForbiddenError as e:
            await self._audit_logger.log_access_denied(
                actor_id=actor.user_id,
                operation="resolve_actor",
                reason=e.message,
                correlation_id=correlation_id,
            )
            raise

    async def _load_for_mutation(
        self,
        actor: Actor,
        expense_id: UUID,
        operation: str,
        correlation_id: UUID,
    ) -> Expense:
        """
        Load an expense the actor may act on.

        Deleted expenses load for their owner so the state checks can
        refuse them explicitly; everyone else gets ExpenseNotFoundError.
        """
        expense = await self._visibility.get_visible_expense(
            actor, expense_id, include_deleted=True
        )
        if expense is None:
            await self._audit_logger.log_access_denied(
                actor_id=actor.user_id,
                operation=operation,
                reason="Expense not found or not visible",
                entity_id=str(expense_id),
                correlation_id=correlation_id,
            )
            raise ExpenseNotFoundError(
                "Expense not found",
                details={"expense_id": str(expense_id)},
            )
        return expense

    async def _require_owner(
        self,
        actor: Actor,
        expense: Expense,
        operation: str,
        correlation_id: UUID,
    ) -> None:
        if expense.user_id != actor.user_id:
            reason = "Only the expense owner can do this"
            await self._audit_logger.log_access_denied(
                actor_id=actor.user_id,
                operation=operation,
                reason=reason,
                entity_id=str(expense.id),
                correlation_id=correlation_id,
            )
            raise ForbiddenError(reason, details={"operation": operation})

    async def _refuse_state(
        self,
        actor: Actor,
        expense: Expense,
        target: str,
        message: str,
        correlation_id: UUID,
    ) -> None:
        await self._audit_logger.log_transition_rejected(
            expense_id=str(expense.id),
            actor_id=actor.user_id,
            current_state=expense.state.value,
            target_state=target,
            reason=message,
            correlation_id=correlation_id,
        )
        raise InvalidTransitionError(
            message,
            details={"current_state": expense.state.value},
        )

    async def _fail_validation(
        self,
        actor: Actor,
        result: ValidationResult,
        correlation_id: UUID,
        expense_id: Optional[UUID] = None,
    ) -> None:
        issues = [issue.model_dump() for issue in result.issues if issue.severity == "error"]
        await self._audit_logger.log_validation_failed(
            actor_id=actor.user_id,
            issues=issues,
            expense_id=str(expense_id) if expense_id else None,
            correlation_id=correlation_id,
        )
        raise ValidationFailedError(
            "; ".join(result.error_messages) or "Validation failed",
            issues=issues,
        )

    async def _check_transition(
        self,
        actor: Actor,
        expense: Expense,
        target: ExpenseState,
        correlation_id: UUID,
    ) -> None:
        """check_transition, with refusals written to the event stream."""
        try:
            check_transition(expense, target, actor)
        except ForbiddenError as e:
            await self._audit_logger.log_access_denied(
                actor_id=actor.user_id,
                operation=f"transition to {target.value}",
                reason=e.message,
                entity_id=str(expense.id),
                correlation_id=correlation_id,
            )
            raise
        except InvalidTransitionError as e:
            await self._audit_logger.log_transition_rejected(
                expense_id=str(expense.id),
                actor_id=actor.user_id,
                current_state=expense.state.value,
                target_state=target.value,
                reason=e.message,
                correlation_id=correlation_id,
            )
            raise

    async def _persist(
        self,
        expenses: list[Expense],
        entries: list[AuditEntry],
        operation: str,
        correlation_id: UUID,
        new: bool = False,
    ) -> None:
        """Write expenses, then mirror their new audit entries."""
        try:
            if new:
                await self._storage.save_expense(expenses[0])
            elif len(expenses) == 1:
                await self._storage.update_expense(expenses[0])
            else:
                await self._storage.update_expenses(expenses)
        except StorageError as e:
            await self._audit_logger.log_storage_error(
                operation=operation,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise

        for expense, entry in zip(expenses, entries):
            await self._audit_logger.log_expense_change(
                expense, entry, correlation_id=correlation_id
            )

    async def _validate_managers(
        self,
        actor: Actor,
        manager_ids: list[str],
        organization_id: Optional[str],
        correlation_id: UUID,
    ) -> list[str]:
        """
        Deduplicate managers; refuse self-assignment and, for organization
        expenses, anyone who is not an admin or owner of the organization.
        """
        managers = _normalize_managers(manager_ids)

        if actor.user_id in managers:
            raise ValidationFailedError(
                "You cannot assign yourself as a manager",
                issues=[{"field": "manager_ids", "issue_type": "self_approval"}],
            )

        if organization_id:
            eligible = {
                m.user_id for m in await eligible_managers(
                    self._directory, organization_id, exclude_user_id=actor.user_id
                )
            }
            ineligible = [m for m in managers if m not in eligible]
            if ineligible:
                await self._audit_logger.log_validation_failed(
                    actor_id=actor.user_id,
                    issues=[{"field": "manager_ids", "issue_type": "not_eligible",
                             "manager_ids": ineligible}],
                    correlation_id=correlation_id,
                )
                raise ValidationFailedError(
                    "Managers must be admins or owners of the organization",
                    details={"manager_ids": ineligible},
                )

        return managers

    async def _require_membership(
        self,
        actor: Actor,
        organization_id: str,
        operation: str,
        correlation_id: UUID,
    ) -> None:
        if not await verify_permission(
            self._directory, actor.user_id, MemberRole.MEMBER, organization_id
        ):
            reason = "You are not a member of this organization"
            await self._audit_logger.log_access_denied(
                actor_id=actor.user_id,
                operation=operation,
                reason=reason,
                correlation_id=correlation_id,
            )
            raise ForbiddenError(reason, details={"organization_id": organization_id})

    async def _submit_checked(
        self,
        actor: Actor,
        expense: Expense,
        submission_type: SubmissionType,
        correlation_id: UUID,
    ) -> AuditEntry:
        target = next_state_after_submission(expense.state, submission_type)
        await self._check_transition(actor, expense, target, correlation_id)

        result = self._validator.validate_for_submission(expense)
        if not result.is_valid:
            await self._fail_validation(actor, result, correlation_id, expense.id)

        return apply_transition(
            expense,
            target,
            actor,
            metadata={"submission_type": submission_type.value},
        )

    # =========================================================================
    # AUTHORING
    # =========================================================================

    async def create_expense(
        self,
        actor: Actor,
        line_items: list[LineItem],
        manager_ids: Optional[list[str]] = None,
        organization_id: Optional[str] = None,
        total_amount: Optional[Decimal] = None,
        submission_type: Optional[SubmissionType] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Create an expense as a draft, or submit it straight away.

        Args:
            actor: The owner
            line_items: Line items, may be empty for a draft
            manager_ids: Managers to review the expense
            organization_id: Target organization, None for the personal vault
            total_amount: Manual total; defaults to the line item sum
            submission_type: Submit immediately when given

        Raises:
            ForbiddenError: If the actor is not a member of organization_id
            ValidationFailedError: If line items or managers are invalid
        """
        correlation_id = correlation_id or create_correlation_id()
        actor = await self._resolve(actor, correlation_id)

        if organization_id:
            await self._require_membership(
                actor, organization_id, "create_expense", correlation_id
            )

        managers = await self._validate_managers(
            actor, manager_ids or [], organization_id, correlation_id
        )

        items_result = self._validator.validate_line_items(line_items)
        if not items_result.is_valid:
            await self._fail_validation(actor, items_result, correlation_id)

        if total_amount is None:
            total_amount = sum((item.amount for item in line_items), Decimal("0.00"))

        try:
            expense = Expense(
                user_id=actor.user_id,
                organization_id=organization_id,
                manager_ids=managers,
                line_items=line_items,
                total_amount=total_amount,
            )
        except PydanticValidationError as e:
            raise ValidationFailedError(
                "Invalid expense data",
                issues=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                        for err in e.errors()],
            )

        entry = expense.add_audit_entry(
            action=AuditAction.CREATED,
            actor_id=actor.user_id,
            actor_role=actor.role,
            updated_values=expense.snapshot(
                "state", "total_amount", "organization_id", "manager_ids"
            ),
        )
        entries = [entry]

        if submission_type is not None:
            entries.append(
                await self._submit_checked(actor, expense, submission_type, correlation_id)
            )

        # One save covers the created and submitted entries
        await self._persist([expense], entries[:1], "create_expense", correlation_id, new=True)
        for extra in entries[1:]:
            await self._audit_logger.log_expense_change(
                expense, extra, correlation_id=correlation_id
            )

        logger.info(
            "expense_created",
            expense_id=str(expense.id),
            user_id=actor.user_id,
            organization_id=organization_id,
            state=expense.state.value,
        )
        return expense

    async def update_expense(
        self,
        actor: Actor,
        expense_id: UUID,
        line_items: Optional[list[LineItem]] = None,
        total_amount: Optional[Decimal] = None,
        manager_ids: Optional[list[str]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Edit an expense's content.

        Owner only, in Draft, Rejected or Pre-Approved. While Pre-Approved
        the total is locked: line items may change only if they still add
        up to it, and managers can no longer be changed.
        """
        correlation_id = correlation_id or create_correlation_id()
        actor = await self._resolve(actor, correlation_id)
        expense = await self._load_for_mutation(
            actor, expense_id, "update_expense", correlation_id
        )
        await self._require_owner(actor, expense, "update_expense", correlation_id)

        if expense.is_deleted:
            await self._refuse_state(
                actor, expense, "updated",
                "Deleted expenses must be restored before any change",
                correlation_id,
            )

        if expense.state not in EDITABLE_STATES:
            await self._refuse_state(
                actor, expense, expense.state.value,
                f"Expenses in state {expense.state.value} can no longer be edited",
                correlation_id,
            )

        previous = expense.snapshot(*EDIT_FIELDS)

        if manager_ids is not None and _normalize_managers(manager_ids) != expense.manager_ids:
            if expense.state not in (ExpenseState.DRAFT, ExpenseState.REJECTED):
                raise ValidationFailedError(
                    "Managers can only be changed on draft or rejected expenses"
                )
            expense.manager_ids = await self._validate_managers(
                actor, manager_ids, expense.organization_id, correlation_id
            )

        if line_items is not None:
            items_result = self._validator.validate_line_items(line_items)
            if not items_result.is_valid:
                await self._fail_validation(actor, items_result, correlation_id, expense.id)
            if not line_items and expense.state != ExpenseState.DRAFT:
                raise ValidationFailedError(
                    "Expense must have at least one line item when submitted"
                )
            expense.line_items = list(line_items)

        if not can_modify_total_amount(expense):
            if total_amount is not None and total_amount != expense.total_amount:
                raise ValidationFailedError(
                    "Total amount is locked after pre-approval",
                    details={"locked_total": str(expense.total_amount)},
                )
            if line_items is not None and not self._validator.validate_total_consistency(
                expense.total_amount, expense.calculated_total
            ):
                raise ValidationFailedError(
                    "Line items must add up to the pre-approved total",
                    details={
                        "locked_total": str(expense.total_amount),
                        "line_item_total": str(expense.calculated_total),
                    },
                )
        elif total_amount is not None:
            if total_amount < 0:
                raise ValidationFailedError("Total amount cannot be negative")
            expense.total_amount = Decimal(total_amount).quantize(Decimal("0.01"))
        elif line_items is not None:
            expense.total_amount = expense.calculated_total

        expense.updated_at = datetime.utcnow()
        entry = expense.add_audit_entry(
            action=AuditAction.UPDATED,
            actor_id=actor.user_id,
            actor_role=actor.role,
            previous_values=previous,
            updated_values=expense.snapshot(*EDIT_FIELDS),
        )
        await self._persist([expense], [entry], "update_expense", correlation_id)
        return expense

    async def delete(
        self,
        actor: Actor,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """Soft-delete a draft or rejected expense (owner only)."""
        correlation_id = correlation_id or create_correlation_id()
        actor = await self._resolve(actor, correlation_id)
        expense = await self._load_for_mutation(
            actor, expense_id, "delete", correlation_id
        )
        await self._require_owner(actor, expense, "delete", correlation_id)

        if expense.is_deleted:
            await self._refuse_state(
                actor, expense, "deleted",
                "Expense is already deleted",
                correlation_id,
            )

        if expense.state not in DELETABLE_STATES:
            await self._refuse_state(
                actor, expense, "deleted",
                "Only draft or rejected expenses can be deleted",
                correlation_id,
            )

        previous = expense.snapshot("deleted_at")
        expense.deleted_at = datetime.utcnow()
        expense.updated_at = expense.deleted_at
        entry = expense.add_audit_entry(
            action=AuditAction.DELETED,
            actor_id=actor.user_id,
            actor_role=actor.role,
            previous_values=previous,
            updated_values=expense.snapshot("deleted_at"),
        )
        await self._persist([expense], [entry], "delete", correlation_id)
        return expense

    async def restore(
        self,
        actor: Actor,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """Undo a soft delete (owner only)."""
        correlation_id = correlation_id or create_correlation_id()
        actor = await self._resolve(actor, correlation_id)
        expense = await self._load_for_mutation(
            actor, expense_id, "restore", correlation_id
        )
        await self._require_owner(actor, expense, "restore", correlation_id)

        if not expense.is_deleted:
            await self._refuse_state(
                actor, expense, "restored",
                "Expense is not deleted",
                correlation_id,
            )

        previous = expense.snapshot("deleted_at")
        expense.deleted_at = None
        expense.updated_at = datetime.utcnow()
        entry = expense.add_audit_entry(
            action=AuditAction.RESTORED,
            actor_id=actor.user_id,
            actor_role=actor.role,
            previous_values=previous,
            updated_values=expense.snapshot("deleted_at"),
        )
        await self._persist([expense], [entry], "restore", correlation_id)
        return expense

    async def link_personal_drafts(
        self,
        actor: Actor,
        organization_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Move the actor's personal vault drafts into an organization.

        Returns:
            Number of drafts moved
        """
        correlation_id = correlation_id or create_correlation_id()
        actor = await self._resolve(actor, correlation_id)

        await self._require_membership(
            actor, organization_id, "link_personal_drafts", correlation_id
        )

        drafts = await self._visibility.get_personal_drafts(actor.user_id)
        if not drafts:
            return 0

        entries = []
        now = datetime.utcnow()
        for expense in drafts:
            previous = expense.snapshot("organization_id")
            expense.organization_id = organization_id
            expense.updated_at = now
            entries.append(expense.add_audit_entry(
                action=AuditAction.LINKED_TO_ORGANIZATION,
                actor_id=actor.user_id,
                actor_role=actor.role,
                previous_values=previous,
                updated_values=expense.snapshot("organization_id"),
            ))

        await self._persist(drafts, entries, "link_personal_drafts", correlation_id)
        logger.info(
            "personal_drafts_linked",
            user_id=actor.user_id,
            organization_id=organization_id,
            count=len(drafts),
        )
        return len(drafts)

    # =========================================================================
    # REVIEW
    # =========================================================================

    async def submit(
        self,
        actor: Actor,
        expense_id: UUID,
        submission_type: SubmissionType,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """Send an expense to its managers for pre-approval or final approval."""
        correlation_id = correlation_id or create_correlation_id()
        actor = await self._resolve(actor, correlation_id)
        expense = await self._load_for_mutation(
            actor, expense_id, "submit", correlation_id
        )
        entry = await self._submit_checked(actor, expense, submission_type, correlation_id)
        await self._persist([expense], [entry], "submit", correlation_id)
        return expense

    async def _review(
        self,
        actor: Actor,
        expense_id: UUID,
        target: ExpenseState,
        operation: str,
        correlation_id: Optional[UUID],
        metadata: Optional[dict[str, Any]] = None,
    ) -> Expense:
        correlation_id = correlation_id or create_correlation_id()
        actor = await self._resolve(actor, correlation_id)
        expense = await self._load_for_mutation(
            actor, expense_id, operation, correlation_id
        )
        await self._check_transition(actor, expense, target, correlation_id)
        entry = apply_transition(expense, target, actor, metadata=metadata)
        await self._persist([expense], [entry], operation, correlation_id)
        return expense

    async def pre_approve(
        self,
        actor: Actor,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        return await self._review(
            actor, expense_id, ExpenseState.PRE_APPROVED, "pre_approve", correlation_id
        )

    async def approve(
        self,
        actor: Actor,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        return await self._review(
            actor, expense_id, ExpenseState.APPROVED, "approve", correlation_id
        )

    async def reject(
        self,
        actor: Actor,
        expense_id: UUID,
        comment: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """Send an expense back to its owner, with an optional comment."""
        comment = comment.strip() if comment else None
        return await self._review(
            actor,
            expense_id,
            ExpenseState.REJECTED,
            "reject",
            correlation_id,
            metadata={"comment": comment} if comment else None,
        )

    # =========================================================================
    # PAYOUT
    # =========================================================================

    async def reimburse(
        self,
        actor: Actor,
        expense_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """Mark one approved expense as paid out."""
        return await self._review(
            actor, expense_id, ExpenseState.REIMBURSED, "reimburse", correlation_id
        )

    async def reimburse_batch(
        self,
        actor: Actor,
        expense_ids: list[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> list[Expense]:
        """
        Reimburse several organization expenses at once.

        All-or-nothing: every expense is checked before any is changed.
        Only admins/owners of the organization the actor acts in may do it,
        and personal vault expenses are refused.

        Raises:
            ForbiddenError: Actor is not admin/owner, or owns one of the expenses
            ExpenseNotFoundError: An expense is missing or not visible
            ValidationFailedError: Empty batch or a personal vault expense
            InvalidTransitionError: An expense is not Approved
        """
        correlation_id = correlation_id or create_correlation_id()
        actor = await self._resolve(actor, correlation_id)
        organization_id = actor.organization_id

        if not organization_id or not await verify_permission(
            self._directory, actor.user_id, MemberRole.ADMIN, organization_id
        ):
            reason = "Only organization admins and owners can reimburse expenses"
            await self._audit_logger.log_access_denied(
                actor_id=actor.user_id,
                operation="reimburse_batch",
                reason=reason,
                correlation_id=correlation_id,
            )
            raise ForbiddenError(reason)

        unique_ids = list(dict.fromkeys(expense_ids))
        if not unique_ids:
            raise ValidationFailedError("Expense IDs are required")

        expenses = []
        for expense_id in unique_ids:
            expense = await self._load_for_mutation(
                actor, expense_id, "reimburse_batch", correlation_id
            )
            if expense.is_private:
                raise ValidationFailedError(
                    "Cannot reimburse personal expenses",
                    details={"expense_id": str(expense.id)},
                )
            await self._check_transition(
                actor, expense, ExpenseState.REIMBURSED, correlation_id
            )
            expenses.append(expense)

        metadata = {"batch_reimbursement": True, "expense_count": len(expenses)}
        entries = [
            apply_transition(expense, ExpenseState.REIMBURSED, actor, metadata=dict(metadata))
            for expense in expenses
        ]
        await self._persist(expenses, entries, "reimburse_batch", correlation_id)

        total = sum((e.total_amount for e in expenses), Decimal("0.00"))
        await self._audit_logger.log_batch_reimbursed(
            actor_id=actor.user_id,
            organization_id=organization_id,
            expense_ids=[str(e.id) for e in expenses],
            total_amount=str(total),
            correlation_id=correlation_id,
        )
        return expenses

    async def finance_queue(
        self,
        actor: Actor,
        correlation_id: Optional[UUID] = None,
    ) -> FinanceQueue:
        """Approved expenses awaiting payout in the actor's organization."""
        correlation_id = correlation_id or create_correlation_id()
        actor = await self._resolve(actor, correlation_id)
        try:
            queue = await self._visibility.finance_queue(actor, actor.organization_id)
        except ForbiddenError as e:
            await self._audit_logger.log_access_denied(
                actor_id=actor.user_id,
                operation="finance_queue",
                reason=e.message,
                correlation_id=correlation_id,
            )
            raise

        await self._audit_logger.log_finance_queue_viewed(
            actor_id=actor.user_id,
            organization_id=queue.organization_id,
            count=queue.count,
            total_payout=str(queue.total_payout),
            correlation_id=correlation_id,
        )
        return queue

    async def export_finance_csv(
        self,
        actor: Actor,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """CSV of the finance queue, with employee names from the directory."""
        queue = await self.finance_queue(actor, correlation_id)
        members = await self._directory.members(queue.organization_id)
        names = {m.user_id: m.name for m in members if m.name}
        return export_csv(queue.expenses, employee_names=names)

    # =========================================================================
    # READS
    # =========================================================================

    async def get_expense(
        self,
        actor: Actor,
        expense_id: UUID,
        include_deleted: bool = False,
    ) -> Expense:
        """
        Raises:
            ExpenseNotFoundError: Missing or not visible to the actor
        """
        actor = await self._resolve(actor)
        expense = await self._visibility.get_visible_expense(
            actor, expense_id, include_deleted=include_deleted
        )
        if expense is None:
            raise ExpenseNotFoundError(
                "Expense not found",
                details={"expense_id": str(expense_id)},
            )
        return expense

    async def list_expenses(
        self,
        actor: Actor,
        include_deleted: bool = False,
        states: Optional[list[ExpenseState]] = None,
    ) -> list[Expense]:
        actor = await self._resolve(actor)
        return await self._visibility.get_visible_expenses(
            actor, include_deleted=include_deleted, states=states
        )

    async def review_queue(self, actor: Actor) -> list[Expense]:
        """Expenses waiting on the actor as assigned manager."""
        actor = await self._resolve(actor)
        return await self._visibility.review_queue(actor.user_id, actor.organization_id)

    async def eligible_managers(
        self,
        actor: Actor,
        organization_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> list[Member]:
        """
        Members the actor may pick as managers in an organization:
        its admins and owners, the actor excluded.

        Raises:
            ForbiddenError: If the actor is not a member of the organization
        """
        correlation_id = correlation_id or create_correlation_id()
        actor = await self._resolve(actor, correlation_id)
        await self._require_membership(
            actor, organization_id, "eligible_managers", correlation_id
        )
        return await eligible_managers(
            self._directory, organization_id, exclude_user_id=actor.user_id
        )

    async def valid_next_states(
        self,
        actor: Actor,
        expense_id: UUID,
    ) -> list[ExpenseState]:
        expense = await self.get_expense(actor, expense_id)
        return valid_next_states(expense, await self._resolve(actor))

    async def history(
        self,
        actor: Actor,
        expense_id: UUID,
        include_deleted: bool = False,
    ) -> list[dict[str, Any]]:
        """Audit log of an expense with display labels, oldest first."""
        expense = await self.get_expense(actor, expense_id, include_deleted=include_deleted)
        return [
            {
                "label": action_label(entry.action),
                **entry.model_dump(mode="json"),
            }
            for entry in expense.audit_log
        ]

    async def query(
        self,
        actor: Actor,
        query: ExpenseQuery,
        correlation_id: Optional[UUID] = None,
    ) -> QueryResult:
        correlation_id = correlation_id or create_correlation_id()
        actor = await self._resolve(actor, correlation_id)
        result = await self._query_executor.execute(actor, query)

        if not result.success:
            await self._audit_logger.log_error(
                error_type="query_failed",
                error_message=result.error_message or "Query failed",
                details={"query_id": str(query.query_id), "actor_id": actor.user_id},
                correlation_id=correlation_id,
            )

        await self._audit_logger.log_query_executed(
            query_id=query.query_id,
            actor_id=actor.user_id,
            result_count=result.total,
            correlation_id=correlation_id,
        )
        return result

    async def export_expenses(
        self,
        actor: Actor,
        query: Optional[ExpenseQuery] = None,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        CSV of the actor's own expenses and the ones they manage.

        State, date range, search and scope filters come from the query;
        pagination is ignored and deleted expenses are never exported.

        Raises:
            ValidationFailedError: If the date range is inverted
            ExpenseNotFoundError: If nothing matches
        """
        correlation_id = correlation_id or create_correlation_id()
        actor = await self._resolve(actor, correlation_id)
        query = (query or ExpenseQuery()).model_copy(update={"include_deleted": False})

        try:
            matched = await self._query_executor.matching_expenses(actor, query)
        except QueryExecutionError as e:
            raise ValidationFailedError(str(e), details={"query_id": str(query.query_id)})

        expenses = [
            e for e in matched
            if e.user_id == actor.user_id or e.is_assigned_manager(actor.user_id)
        ]
        if not expenses:
            raise ExpenseNotFoundError("No expenses found for the given filters")

        names: dict[str, str] = {}
        if actor.organization_id:
            members = await self._directory.members(actor.organization_id)
            names = {m.user_id: m.name for m in members if m.name}

        await self._audit_logger.log_query_executed(
            query_id=query.query_id,
            actor_id=actor.user_id,
            result_count=len(expenses),
            correlation_id=correlation_id,
        )
        return export_csv(expenses, employee_names=names)


def create_app_components(
    storage_backend: Optional[str] = None,
) -> tuple[ExpenseWorkflow, InMemoryOrganizationDirectory, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        storage_backend: "memory" or "google_sheets". Defaults to the
                         configured backend.

    Returns:
        (workflow, directory, sheets_client)
    """
    backend = storage_backend or get_settings().app.storage_backend
    directory = InMemoryOrganizationDirectory()
    sheets_client = None

    if backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient()
            expense_storage = GoogleSheetsExpenseStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", backend=backend, error=str(e))
            sheets_client = None
            expense_storage = InMemoryExpenseStorage()
            audit_logger = AuditLogger(InMemoryAuditStorage())
    else:
        expense_storage = InMemoryExpenseStorage()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    workflow = ExpenseWorkflow(
        expense_storage=expense_storage,
        directory=directory,
        audit_logger=audit_logger,
    )
    return workflow, directory, sheets_client
