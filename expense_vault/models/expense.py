"""
Core Data Models for Expense Vault

These models define the strict schemas for the expense aggregate:
header fields, embedded line items and the embedded audit log.

They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Carry their own audit trail

DESIGN DECISION: Structural rules (positive amounts, attachment URL format,
line items on submitted expenses) live on the models. Rules that depend on
"now" or on configuration (future dates, total tolerance) live in the
validator so they can be reported instead of raised.
"""

import re
import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from expense_vault.config import get_settings
from expense_vault.utils import get_changed_fields


ATTACHMENT_URL_PATTERN = re.compile(r"^https?://.+")
TITLE_MAX_LENGTH = 50


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ExpenseState(str, Enum):
    """
    Lifecycle states of an expense.

    Draft -> Pre-Approval Pending -> Pre-Approved -> Approval Pending
          -> Approved -> Reimbursed, with Rejected reachable from any
    state that is waiting on a manager.
    """
    DRAFT = "Draft"
    PRE_APPROVAL_PENDING = "Pre-Approval Pending"
    PRE_APPROVED = "Pre-Approved"
    APPROVAL_PENDING = "Approval Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    REIMBURSED = "Reimbursed"


class SubmissionType(str, Enum):
    """How the owner sends an expense to its managers."""
    PRE_APPROVAL = "pre-approval"
    FINAL_APPROVAL = "final-approval"


class ExpenseCategory(str, Enum):
    """Categories offered for line items."""
    MEALS = "Meals"
    TRAVEL = "Travel"
    TRANSPORT = "Transport"
    OFFICE = "Office"
    SOFTWARE = "Software"
    OTHERS = "Others"


class MemberRole(str, Enum):
    """
    Roles an actor can hold.

    OWNER/ADMIN/MEMBER come from organization membership.
    EMPLOYEE is the baseline every authenticated user holds,
    including when acting outside any organization.
    """
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    EMPLOYEE = "employee"


class AuditAction(str, Enum):
    """Actions recorded in an expense's embedded audit log."""
    CREATED = "created"
    UPDATED = "updated"
    SUBMITTED_FOR_PRE_APPROVAL = "submitted-for-pre-approval"
    SUBMITTED_FOR_FINAL_APPROVAL = "submitted-for-final-approval"
    PRE_APPROVED = "pre-approved"
    APPROVED = "approved"
    REJECTED = "rejected"
    REIMBURSED = "reimbursed"
    DELETED = "deleted"
    RESTORED = "restored"
    LINKED_TO_ORGANIZATION = "linked-to-organization"


# =============================================================================
# ACTOR
# =============================================================================

class Actor(BaseModel):
    """
    The user performing an operation, in a given organization context.

    organization_id is the organization the user is currently acting in
    (None when working in their personal vault). role is their role in that
    organization.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1)
    organization_id: Optional[str] = None
    role: MemberRole = MemberRole.EMPLOYEE

    @property
    def can_view_organization_expenses(self) -> bool:
        """Admins and owners see every expense of their organization."""
        return self.organization_id is not None and self.role in (
            MemberRole.ADMIN,
            MemberRole.OWNER,
        )


# =============================================================================
# EXPENSE AGGREGATE
# =============================================================================

class LineItem(BaseModel):
    """A single dated monetary entry of an expense."""
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount, must be greater than 0"
    )
    date: dt.date = Field(
        ...,
        description="Date the cost was incurred"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=500,
    )
    category: Optional[ExpenseCategory] = None
    attachments: list[str] = Field(
        default_factory=list,
        description="Receipt file URLs"
    )

    @field_validator("attachments")
    @classmethod
    def validate_attachment_urls(cls, v: list[str]) -> list[str]:
        """Attachments must be absolute http(s) URLs."""
        for url in v:
            if not ATTACHMENT_URL_PATTERN.match(url):
                raise ValueError(f"Invalid attachment URL format: {url}")
        return v


class AuditEntry(BaseModel):
    """
    One entry of an expense's audit log.

    Entries are frozen: once appended they are never modified.
    Only fields that actually changed are kept in previous/updated values.
    """
    model_config = ConfigDict(frozen=True)

    action: AuditAction
    date: datetime = Field(default_factory=datetime.utcnow)
    actor_id: str = Field(..., min_length=1)
    actor_role: MemberRole = MemberRole.EMPLOYEE
    previous_values: Optional[dict[str, Any]] = None
    updated_values: Optional[dict[str, Any]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Expense(BaseModel):
    """
    An expense report: header, line items and audit log.

    organization_id is None for expenses in the owner's personal vault.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the expense"
    )
    organization_id: Optional[str] = Field(
        default=None,
        description="Owning organization, None for the personal vault"
    )
    manager_ids: list[str] = Field(
        default_factory=list,
        description="Managers assigned to review this expense"
    )

    # Content
    total_amount: Decimal = Field(
        default=Decimal("0.00"),
        ge=0,
        decimal_places=2,
    )
    state: ExpenseState = ExpenseState.DRAFT
    line_items: list[LineItem] = Field(default_factory=list)
    audit_log: list[AuditEntry] = Field(default_factory=list)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    deleted_at: Optional[datetime] = None

    @model_validator(mode="after")
    def validate_submitted_line_items(self) -> "Expense":
        """Only drafts may exist without line items."""
        if self.state != ExpenseState.DRAFT and not self.line_items:
            raise ValueError(
                "Expense must have at least one line item when submitted"
            )
        return self

    @property
    def is_private(self) -> bool:
        return self.organization_id is None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def calculated_total(self) -> Decimal:
        """Sum of the line item amounts."""
        return sum((item.amount for item in self.line_items), Decimal("0.00"))

    @property
    def title(self) -> str:
        """
        Short display title.

        First non-blank line item description, else the distinct categories,
        else a fallback built from the expense id.
        """
        if self.line_items:
            description = (self.line_items[0].description or "").strip()
            if description:
                if len(description) > TITLE_MAX_LENGTH:
                    return f"{description[:TITLE_MAX_LENGTH]}..."
                return description

            categories: list[str] = []
            for item in self.line_items:
                if item.category and item.category.value not in categories:
                    categories.append(item.category.value)
            if categories:
                return ", ".join(categories)

        return f"Expense #{str(self.id)[-8:]}"

    def is_assigned_manager(self, user_id: str) -> bool:
        """Owners never count as managers of their own expense."""
        return user_id != self.user_id and user_id in self.manager_ids

    def snapshot(self, *fields: str) -> dict[str, Any]:
        """JSON-safe copy of the given fields, for audit before/after values."""
        return self.model_dump(mode="json", include=set(fields))

    def add_audit_entry(
        self,
        action: AuditAction,
        actor_id: str,
        actor_role: MemberRole = MemberRole.EMPLOYEE,
        previous_values: Optional[dict[str, Any]] = None,
        updated_values: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditEntry:
        """
        Append an entry to the audit log.

        Only keys whose value changed are stored. When nothing changed the
        entry is still appended, with empty before/after values.
        """
        changed = get_changed_fields(previous_values, updated_values) or {}

        filtered_previous = {
            key: previous_values[key]
            for key in changed
            if previous_values and key in previous_values
        }
        filtered_updated = {
            key: updated_values[key]
            for key in changed
            if updated_values and key in updated_values
        }

        entry = AuditEntry(
            action=action,
            actor_id=actor_id,
            actor_role=actor_role,
            previous_values=filtered_previous or None,
            updated_values=filtered_updated or None,
            metadata=metadata or {},
        )
        self.audit_log.append(entry)
        return entry

    def summary(self) -> dict[str, Any]:
        """Flat representation used by listings and query results."""
        return {
            "id": str(self.id),
            "title": self.title,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "state": self.state.value,
            "total_amount": str(self.total_amount),
            "line_item_count": len(self.line_items),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue (e.g. 'line_items[0].date')"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'future_date', 'total_mismatch')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="How the owner can resolve the issue"
    )


class ValidationResult(BaseModel):
    """Outcome of validating an expense or a line item."""

    expense_id: Optional[UUID] = None
    validated_at: datetime = Field(default_factory=datetime.utcnow)

    is_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-blocking warnings"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def error_messages(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "error"]


# =============================================================================
# QUERY MODELS
# =============================================================================

class ExpenseQuery(BaseModel):
    """
    A listing/reporting request over the expenses visible to an actor.

    Executed deterministically by the query executor; it can never widen
    what the visibility rules allow.
    """

    query_id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    scope: str = Field(
        default="all",
        pattern="^(all|private|org)$",
        description="all, personal vault only, or organization expenses only"
    )
    search: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Case-insensitive match on line item descriptions and categories"
    )
    state: Optional[ExpenseState] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    include_deleted: bool = False

    # Pagination
    page: int = Field(default=1, ge=1)
    limit: int = Field(
        default_factory=lambda: get_settings().app.default_page_size,
        ge=1,
        le=100,
    )

    # Aggregations
    aggregation_type: Optional[str] = Field(
        default=None,
        pattern="^(sum|count|average)$"
    )
    group_by: Optional[str] = Field(
        default=None,
        pattern="^(state|category|month)$"
    )


class QueryResult(BaseModel):
    """Result of executing an ExpenseQuery."""

    query_id: UUID
    executed_at: datetime = Field(default_factory=datetime.utcnow)

    success: bool
    error_message: Optional[str] = None

    total: int = Field(ge=0, description="Matching expenses before pagination")
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)
    total_pages: int = Field(default=0, ge=0)

    results: list[dict] = Field(default_factory=list)
    aggregation_result: Optional[dict] = None

    query_description: str
