"""Workflow engine package."""

from proxy_workflow.workflow.errors import (
    ConcurrentModificationError,
    CyclicDependencyError,
    DependencyTooDeepError,
    DuplicateApprovalError,
    InvalidTransitionError,
    NotFoundError,
    TemplateNotFoundError,
    TemplateUsageWarning,
    ValidationError,
    WorkflowError,
)
from proxy_workflow.workflow.engine import (
    BulkDecision,
    BulkDecisionResult,
    WorkflowEngine,
)

__all__ = [
    "BulkDecision",
    "BulkDecisionResult",
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
    "WorkflowEngine",
]
