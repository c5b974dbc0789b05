"""
Data Models Package

This package contains all Pydantic models used by the proxy workflow.
All data flowing through the engine must conform to these schemas.
"""

from proxy_workflow.models.action import (
    MAX_REQUIRED_APPROVALS,
    MIN_REQUIRED_APPROVALS,
    PRIORITY_RANK,
    TERMINAL_STATUSES,
    ActionDependency,
    ActionMetadata,
    ActionPriority,
    ActionRecord,
    ActionRequest,
    ActionStatus,
    ActionType,
    ApprovalDetails,
    ApprovalEntry,
    AuditEntry,
    Complexity,
    DependencyKind,
    ExecutionDetails,
    RequestSource,
    StepStatus,
    TemplateData,
    WorkflowStep,
)
from proxy_workflow.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from proxy_workflow.models.validation import (
    ValidationIssue,
    ValidationResult,
)

__all__ = [
    # Action models
    "MAX_REQUIRED_APPROVALS",
    "MIN_REQUIRED_APPROVALS",
    "PRIORITY_RANK",
    "TERMINAL_STATUSES",
    "ActionDependency",
    "ActionMetadata",
    "ActionPriority",
    "ActionRecord",
    "ActionRequest",
    "ActionStatus",
    "ActionType",
    "ApprovalDetails",
    "ApprovalEntry",
    "AuditEntry",
    "Complexity",
    "DependencyKind",
    "ExecutionDetails",
    "RequestSource",
    "StepStatus",
    "TemplateData",
    "WorkflowStep",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
]
