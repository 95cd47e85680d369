"""
Workflow error taxonomy.
Each error carries the HTTP status the API answers with; cms_api installs one handler for the base class.
"""

from typing import List, Optional


class WorkflowError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AccessDeniedError(WorkflowError):
    """Wrong role, or acting on a claim held by someone else"""
    status_code = 403


class NotRegisteredError(AccessDeniedError):
    """Identity resolved at the provider but maps to no active user"""


class NotFoundError(WorkflowError):
    status_code = 404


class ClaimConflictError(WorkflowError):
    """Conditional update matched zero rows: another reviewer got there first"""
    status_code = 409


class InvalidTransitionError(WorkflowError):
    status_code = 409


class QuotaExceededError(WorkflowError):
    status_code = 409


class ValidationFailedError(WorkflowError):
    status_code = 422


class UploadFailedError(WorkflowError):
    status_code = 502


class PartialWriteError(WorkflowError):
    """A later step failed after an earlier one was already committed"""
    status_code = 500

    def __init__(self, message: str, completed: Optional[List[str]] = None, failed: Optional[str] = None):
        super().__init__(message)
        self.completed = completed or []
        self.failed = failed
