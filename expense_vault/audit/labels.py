"""Human-readable labels for audit log actions."""

from typing import Union

from expense_vault.models.expense import AuditAction


ACTION_LABELS: dict[str, str] = {
    "created": "Expense Draft Created",
    "submitted": "Submitted for Approval",
    "submitted-for-pre-approval": "Submitted for Pre-Approval",
    "submitted-for-final-approval": "Submitted for Final Approval",
    "approved": "Approved by Manager",
    "pre-approved": "Pre-Approved by Manager",
    "rejected": "Rejected by Manager",
    "reimbursed": "Marked as Reimbursed",
    "deleted": "Deleted",
    "restored": "Restored",
    "updated": "Updated",
}


def action_label(action: Union[AuditAction, str]) -> str:
    """
    Label shown in an expense's history.

    Unknown actions fall back to title case with hyphens as spaces,
    e.g. "linked-to-organization" -> "Linked To Organization".
    """
    key = action.value if isinstance(action, AuditAction) else action
    if key in ACTION_LABELS:
        return ACTION_LABELS[key]
    return " ".join(word[:1].upper() + word[1:] for word in key.replace("-", " ").split(" "))
