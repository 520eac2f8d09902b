"""
Error taxonomy for the workflow engine.

Every error carries a stable machine-readable code and an HTTP status so
the API layer can render it without inspecting the message.
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for errors surfaced to callers."""

    code = "WORKFLOW_ERROR"
    http_status = 500

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(WorkflowError):
    """Bad input shape, detected before any write."""

    code = "VALIDATION_ERROR"
    http_status = 400


class BusinessRuleError(WorkflowError):
    """Freelance/category/cardinality violation, detected before any write."""

    code = "BUSINESS_RULE_VIOLATION"
    http_status = 400


class ConflictError(WorkflowError):
    """Proposal already reviewed, duplicate association target."""

    code = "CONFLICT"
    http_status = 400


class NotFoundError(WorkflowError):
    code = "NOT_FOUND"
    http_status = 404


class AuthenticationError(WorkflowError):
    code = "UNAUTHENTICATED"
    http_status = 401


class AuthorizationError(WorkflowError):
    """Actor lacks the role or permission for the operation."""

    code = "FORBIDDEN"
    http_status = 403


class PersistenceError(WorkflowError):
    """A store call failed. The message is safe to show to users."""

    code = "PERSISTENCE_ERROR"
    http_status = 500


class AssociationWriteError(PersistenceError):
    """
    Inserting new association rows failed after the prior ones were ended.

    Attributes:
        ended_ids: Association ids ended earlier in the same reconcile
    """

    def __init__(self, message: str, ended_ids: Optional[list] = None):
        super().__init__(message)
        self.ended_ids = list(ended_ids or [])
