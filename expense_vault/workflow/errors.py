"""
Workflow Errors

Each error carries the HTTP-style status code and machine-readable code a
caller can hand straight to its response layer.
"""

from typing import Optional


class WorkflowError(Exception):
    """Base exception for expense workflow operations."""

    status_code: int = 500
    code: str = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationFailedError(WorkflowError):
    """Input or expense content failed validation."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        issues: Optional[list[dict]] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details)
        self.issues = issues or []


class ForbiddenError(WorkflowError):
    """Actor lacks the authority for the operation."""

    status_code = 403
    code = "FORBIDDEN"


class ExpenseNotFoundError(WorkflowError):
    """
    Expense does not exist, or is not visible to the actor.

    Both cases raise the same error so existence is never leaked.
    """

    status_code = 404
    code = "NOT_FOUND"


class InvalidTransitionError(WorkflowError):
    """Requested state change is not allowed from the current state."""

    status_code = 409
    code = "CONFLICT"
