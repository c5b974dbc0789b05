"""
Workflow error taxonomy.

Every refusal is a typed exception. Nothing is swallowed and nothing is
retried here; ConcurrentModificationError in particular is surfaced so the
caller can re-read and re-apply.

NotFoundError and ConcurrentModificationError originate at the storage
boundary and are re-exported from here so callers need one import.
"""

from typing import Optional
from uuid import UUID

from proxy_workflow.models.validation import ValidationIssue
from proxy_workflow.services.storage.interface import (
    ConcurrentModificationError,
    NotFoundError,
)


class WorkflowError(Exception):
    """Base exception for workflow engine failures."""
    pass


class InvalidTransitionError(WorkflowError):
    """A transition's guard failed."""

    def __init__(self, action_id: Optional[UUID], operation: str, message: str):
        self.action_id = action_id
        self.operation = operation
        super().__init__(f"Cannot {operation} action {action_id}: {message}")


class DuplicateApprovalError(WorkflowError):
    """The approver already has a vote in the ledger."""

    def __init__(self, action_id: UUID, approver: str):
        self.action_id = action_id
        self.approver = approver
        super().__init__(f"{approver} has already approved action {action_id}")


class TemplateNotFoundError(WorkflowError):
    """The referenced record is missing or is not a template."""

    def __init__(self, template_id: UUID):
        self.template_id = template_id
        super().__init__(f"Invalid template: {template_id}")


class CyclicDependencyError(WorkflowError):
    """Persisting the record would make it reachable from itself."""

    def __init__(self, action_id: UUID, path: list[UUID]):
        self.action_id = action_id
        self.path = path
        chain = " -> ".join(str(node) for node in path)
        super().__init__(f"Action {action_id} would depend on itself: {chain}")


class DependencyTooDeepError(WorkflowError):
    """The dependency/parent chain exceeds the configured depth bound."""

    def __init__(self, action_id: UUID, max_depth: int):
        self.action_id = action_id
        self.max_depth = max_depth
        super().__init__(
            f"Dependency chain of action {action_id} is deeper than {max_depth}"
        )


class ValidationError(WorkflowError):
    """Malformed input: bad enum value, out-of-range quorum, missing field."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        summary = "; ".join(f"{issue.field}: {issue.message}" for issue in issues)
        super().__init__(f"Validation failed: {summary}")


class TemplateUsageWarning(UserWarning):
    """The template's usage count could not be updated after instantiation."""
    pass


__all__ = [
    "ConcurrentModificationError",
    "CyclicDependencyError",
    "DependencyTooDeepError",
    "DuplicateApprovalError",
    "InvalidTransitionError",
    "NotFoundError",
    "TemplateNotFoundError",
    "TemplateUsageWarning",
    "ValidationError",
    "WorkflowError",
]
