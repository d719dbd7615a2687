"""
Line Item Consistency Validation

DESIGN DECISION: Validation happens in two layers:

LAYER 1 - STRUCTURAL (models):
- Type checking, positive amounts, attachment URL format
- Enforced by pydantic when an expense or line item is built

LAYER 2 - SEMANTIC (this module):
- Dates in the future (depends on "now" and configuration)
- Manual total vs. sum of line items
- Submission readiness (managers assigned, owner not among them)

IMPORTANT: Validation NEVER silently fixes issues.
It reports them so the owner can correct the expense.
"""

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from expense_vault.config import get_settings
from expense_vault.models.expense import (
    Expense,
    LineItem,
    ValidationIssue,
    ValidationResult,
)


# Line items older than this are flagged for a second look
OLD_DATE_WARNING_DAYS = 365 * 2


class ExpenseValidator:
    """
    Validates expenses and line items before they move forward.

    Stateless apart from configuration; safe to share.
    """

    def __init__(self, today: Optional[date] = None):
        """
        Initialize validator.

        Args:
            today: Fixed "today" for date checks. Defaults to the real date
                   at each call.
        """
        self._today = today
        self._settings = get_settings().app

    def _current_date(self) -> date:
        return self._today or date.today()

    def validate_line_item(
        self,
        item: LineItem,
        index: Optional[int] = None,
    ) -> list[ValidationIssue]:
        """
        Check one line item.

        Returns the issues found; an empty list means the item is valid.
        """
        issues = []
        prefix = f"line_items[{index}]" if index is not None else "line_item"
        label = f"Line item {index + 1}: " if index is not None else ""
        today = self._current_date()

        if item.amount is None or item.amount <= 0:
            issues.append(ValidationIssue(
                field=f"{prefix}.amount",
                issue_type="invalid_value",
                message=f"{label}Amount must be greater than 0",
                severity="error",
            ))

        if item.date is None:
            issues.append(ValidationIssue(
                field=f"{prefix}.date",
                issue_type="missing",
                message=f"{label}Date is required",
                severity="error",
            ))
        else:
            max_date = today + timedelta(
                days=self._settings.future_date_tolerance_days
            )
            if item.date > max_date:
                issues.append(ValidationIssue(
                    field=f"{prefix}.date",
                    issue_type="future_date",
                    message=f"{label}Date cannot be in the future",
                    severity="error",
                    suggested_fix="Use the date the cost was incurred",
                ))
            elif item.date < today - timedelta(days=OLD_DATE_WARNING_DAYS):
                issues.append(ValidationIssue(
                    field=f"{prefix}.date",
                    issue_type="suspicious_date",
                    message=f"{label}Date ({item.date}) seems unusually old",
                    severity="warning",
                    suggested_fix="Please verify the date is correct",
                ))

        return issues

    def validate_line_items(self, items: list[LineItem]) -> ValidationResult:
        """Check every line item and the line item count."""
        issues = []
        for index, item in enumerate(items):
            issues.extend(self.validate_line_item(item, index))

        if len(items) > self._settings.max_line_items:
            issues.append(ValidationIssue(
                field="line_items",
                issue_type="too_many",
                message=(
                    f"An expense can have at most "
                    f"{self._settings.max_line_items} line items"
                ),
                severity="error",
            ))

        return self._build_result(issues)

    def validate_total_consistency(
        self,
        manual_total: Decimal,
        calculated_total: Decimal,
        tolerance: Optional[Decimal] = None,
    ) -> bool:
        """Whether a manual total matches the line item sum."""
        if tolerance is None:
            tolerance = self._settings.total_tolerance
        return abs(manual_total - calculated_total) < tolerance

    def validate_for_submission(self, expense: Expense) -> ValidationResult:
        """
        Check an expense is ready to be sent to its managers.

        Checks:
        - Total amount greater than 0
        - At least one manager, and the owner is not one of them
        - At least one line item, each valid
        - Total consistent with the line items
        """
        issues = []

        if expense.total_amount <= 0:
            issues.append(ValidationIssue(
                field="total_amount",
                issue_type="invalid_value",
                message="Total amount must be greater than 0",
                severity="error",
            ))

        if not expense.manager_ids:
            issues.append(ValidationIssue(
                field="manager_ids",
                issue_type="missing",
                message="At least one manager must be selected",
                severity="error",
            ))
        elif expense.user_id in expense.manager_ids:
            issues.append(ValidationIssue(
                field="manager_ids",
                issue_type="self_approval",
                message="You cannot assign yourself as a manager",
                severity="error",
                suggested_fix="Choose a different manager",
            ))

        if not expense.line_items:
            issues.append(ValidationIssue(
                field="line_items",
                issue_type="missing",
                message="At least one line item is required",
                severity="error",
            ))
        else:
            issues.extend(self.validate_line_items(expense.line_items).issues)

            calculated = expense.calculated_total
            if not self.validate_total_consistency(expense.total_amount, calculated):
                issues.append(ValidationIssue(
                    field="total_amount",
                    issue_type="total_mismatch",
                    message=(
                        f"Total ({expense.total_amount}) doesn't match "
                        f"the sum of line items ({calculated})"
                    ),
                    severity="error",
                    suggested_fix="Update the total or the line item amounts",
                ))

        result = self._build_result(issues)
        result.expense_id = expense.id
        return result

    def _build_result(self, issues: list[ValidationIssue]) -> ValidationResult:
        warnings = [issue.message for issue in issues if issue.severity == "warning"]
        return ValidationResult(
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.

        This is what we show to the expense owner.
        """
        if result.is_valid and not result.warnings:
            return "✅ All checks passed!"

        lines = []

        if result.has_errors:
            lines.append("❌ This expense can't be submitted yet:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
