"""
Core Data Models for Proxy Workflow

These models define the strict schemas for proxy actions: requests made by
one member to act on behalf of another, which need approval from the group
before they are carried out.

They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Carry their own audit trail

DESIGN DECISION: Nothing that can be derived is stored. The approval count
comes from the ledger, progress comes from the steps, and expiry state is
computed against a clock supplied by the caller.
"""

import math
from datetime import datetime, timezone
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

from proxy_workflow.clock import utc_now


MIN_REQUIRED_APPROVALS = 1
MAX_REQUIRED_APPROVALS = 5

SECONDS_PER_DAY = 24 * 60 * 60


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ActionType(str, Enum):
    """What the delegate wants to do on the member's behalf."""
    PAYMENT = "payment"
    MEMBER_REGISTRATION = "member_registration"
    LOAN_APPROVAL = "loan_approval"
    MEETING_SCHEDULING = "meeting_scheduling"
    TRANSACTION_RECORD = "transaction_record"
    USER_MANAGEMENT = "user_management"


class ActionPriority(str, Enum):
    """
    Scheduling priority.

    Priority orders the pending queue. It never makes a transition legal
    or illegal.
    """
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


PRIORITY_RANK = {
    ActionPriority.LOW: 0,
    ActionPriority.NORMAL: 1,
    ActionPriority.HIGH: 2,
    ActionPriority.URGENT: 3,
}


class ActionStatus(str, Enum):
    """
    Lifecycle status.

    pending -> approved | rejected | expired | cancelled
    approved -> executed | cancelled
    Everything else is terminal.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset({
    ActionStatus.REJECTED,
    ActionStatus.EXECUTED,
    ActionStatus.CANCELLED,
    ActionStatus.EXPIRED,
})


class StepStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class DependencyKind(str, Enum):
    """
    How one action relates to another.

    prerequisite: the other action must be executed first
    blocker: the other action must be closed (any terminal status) first
    related: informational only
    """
    PREREQUISITE = "prerequisite"
    BLOCKER = "blocker"
    RELATED = "related"


class RequestSource(str, Enum):
    WEB = "web"
    MOBILE = "mobile"
    API = "api"
    SYSTEM = "system"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive datetimes are taken to be UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# LEDGER, STEPS, AUDIT, LINKS
# =============================================================================

class ApprovalEntry(BaseModel):
    """A single vote in the approval ledger."""
    model_config = ConfigDict(str_strip_whitespace=True)

    approver: str = Field(
        ...,
        min_length=1,
        description="Member who cast the vote"
    )
    approved_at: datetime = Field(
        default_factory=utc_now,
        description="When the vote was cast"
    )
    comment: str = Field(
        default="",
        max_length=300
    )
    conditions: list[str] = Field(default_factory=list)


class ApprovalDetails(BaseModel):
    """Comment and conditions attached to a direct approval."""

    comment: str = Field(default="", max_length=300)
    conditions: list[str] = Field(default_factory=list)
    notes: Optional[str] = None


class WorkflowStep(BaseModel):
    """One named item on an action's checklist."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Step name, unique within the action"
    )
    status: StepStatus = StepStatus.PENDING
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class AuditEntry(BaseModel):
    """
    One line of an action's own audit trail.

    The trail is append-only. performed_by is None only for system
    transitions such as expiry.
    """

    action: str = Field(
        ...,
        min_length=1,
        description="What happened (e.g. 'Approval added')"
    )
    performed_by: Optional[str] = None
    performed_at: datetime = Field(default_factory=utc_now)
    details: Optional[str] = Field(default=None, max_length=500)
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None


class ActionDependency(BaseModel):
    """A reference to another action this one depends on."""

    action_id: UUID
    kind: DependencyKind = DependencyKind.PREREQUISITE
    description: Optional[str] = Field(default=None, max_length=300)


class TemplateData(BaseModel):
    """Catalogue information carried only by template records."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    category: Optional[str] = Field(default=None, max_length=50)
    usage_count: int = Field(default=0, ge=0)


class ExecutionDetails(BaseModel):
    """What happened when the action was carried out."""

    notes: str = Field(default="", max_length=500)
    timestamp: datetime = Field(default_factory=utc_now)
    result: Optional[Any] = None
    success: bool = True
    error_message: Optional[str] = None


class ActionMetadata(BaseModel):
    """Request provenance and timing."""

    source: RequestSource = RequestSource.WEB
    estimated_duration: Optional[int] = Field(
        default=None,
        ge=0,
        description="Estimated minutes to carry out"
    )
    actual_duration: Optional[int] = Field(
        default=None,
        ge=0,
        description="Minutes from creation to execution"
    )
    complexity: Complexity = Complexity.MEDIUM


# =============================================================================
# CREATION REQUEST
# =============================================================================

class ActionRequest(BaseModel):
    """
    What a member submits to open a proxy action.

    This is PROPOSED data. The engine assigns identity, status, timestamps
    and an empty ledger when it turns a request into an ActionRecord.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    action_type: ActionType
    description: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="What should be done"
    )
    reason: Optional[str] = Field(
        default=None,
        max_length=300,
        description="Why the delegate is acting for the member"
    )
    requested_by: str = Field(
        ...,
        min_length=1,
        description="Member opening the request"
    )
    target_user: Optional[str] = Field(
        default=None,
        description="Member the action is performed for"
    )
    priority: ActionPriority = ActionPriority.NORMAL
    payload: dict[str, Any] = Field(
        ...,
        description="Action-specific data; the engine does not interpret it"
    )
    required_approvals: int = Field(
        default=1,
        ge=MIN_REQUIRED_APPROVALS,
        le=MAX_REQUIRED_APPROVALS,
        description="Votes needed before the action is approved"
    )
    expires_at: Optional[datetime] = Field(
        default=None,
        description="Explicit expiry; defaults to the configured window"
    )
    workflow_steps: list[str] = Field(
        default_factory=list,
        description="Names of checklist steps, in order"
    )
    dependencies: list[ActionDependency] = Field(default_factory=list)
    parent_action: Optional[UUID] = None
    is_template: bool = False
    template_data: Optional[TemplateData] = None
    tags: list[str] = Field(default_factory=list)
    notify_users: list[str] = Field(default_factory=list)
    metadata: ActionMetadata = Field(default_factory=ActionMetadata)

    @field_validator('expires_at')
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, v: list[str]) -> list[str]:
        """Tags are short labels."""
        cleaned = [tag.strip() for tag in v]
        for tag in cleaned:
            if not tag or len(tag) > 30:
                raise ValueError("Tags must be between 1 and 30 characters")
        return cleaned

    @model_validator(mode='after')
    def validate_template_fields(self) -> 'ActionRequest':
        if self.is_template and self.template_data is None:
            raise ValueError("Templates require template data")
        if not self.is_template and self.template_data is not None:
            raise ValueError("Template data is only allowed on templates")
        return self


# =============================================================================
# CORE ACTION RECORD
# =============================================================================

class ActionRecord(BaseModel):
    """
    A proxy action as persisted.

    CRITICAL: Records are only mutated by the workflow engine. Every
    mutation is written back conditioned on `version`, which the
    repository owns and which never leaves the storage boundary.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        frozen=True,
        description="Unique action ID"
    )
    version: int = Field(
        default=0,
        ge=0,
        exclude=True,
        description="Optimistic concurrency token, managed by the repository"
    )

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # What is being asked
    action_type: ActionType
    description: str = Field(..., min_length=1, max_length=500)
    reason: Optional[str] = Field(default=None, max_length=300)
    requested_by: str = Field(
        ...,
        min_length=1,
        frozen=True,
        description="Owning member; never changes"
    )
    target_user: Optional[str] = None
    priority: ActionPriority = ActionPriority.NORMAL
    payload: dict[str, Any]

    # Status tracking
    status: ActionStatus = ActionStatus.PENDING
    required_approvals: int = Field(
        default=1,
        ge=MIN_REQUIRED_APPROVALS,
        le=MAX_REQUIRED_APPROVALS
    )
    approvals: list[ApprovalEntry] = Field(default_factory=list)

    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    approval_details: Optional[ApprovalDetails] = None

    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = Field(default=None, max_length=300)

    executed_by: Optional[str] = None
    executed_at: Optional[datetime] = None
    execution_details: Optional[ExecutionDetails] = None

    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = Field(default=None, max_length=300)

    expires_at: Optional[datetime] = None

    # Checklist and history
    workflow_steps: list[WorkflowStep] = Field(default_factory=list)
    audit_trail: list[AuditEntry] = Field(default_factory=list)

    # Links to other actions (identifiers only)
    parent_action: Optional[UUID] = None
    child_actions: list[UUID] = Field(default_factory=list)
    dependencies: list[ActionDependency] = Field(default_factory=list)

    # Templates
    is_template: bool = False
    template_data: Optional[TemplateData] = None

    tags: list[str] = Field(default_factory=list)
    notify_users: list[str] = Field(default_factory=list)
    metadata: ActionMetadata = Field(default_factory=ActionMetadata)

    @field_validator('created_at', 'updated_at', 'expires_at')
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @model_validator(mode='after')
    def validate_template_fields(self) -> 'ActionRecord':
        if self.is_template and self.template_data is None:
            raise ValueError("Templates require template data")
        if not self.is_template and self.template_data is not None:
            raise ValueError("Template data is only allowed on templates")
        return self

    # -------------------------------------------------------------------------
    # Derived values (never stored)
    # -------------------------------------------------------------------------

    @property
    def current_approvals(self) -> int:
        """Number of votes in the ledger."""
        return len(self.approvals)

    @property
    def is_urgent(self) -> bool:
        return self.priority in (ActionPriority.HIGH, ActionPriority.URGENT)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def workflow_progress(self) -> int:
        """Percentage of checklist steps completed, rounded half up."""
        if not self.workflow_steps:
            return 0
        completed = sum(
            1 for step in self.workflow_steps
            if step.status == StepStatus.COMPLETED
        )
        return math.floor(completed * 100 / len(self.workflow_steps) + 0.5)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def time_remaining(self, now: datetime) -> Optional[int]:
        """Whole days until expiry, rounded up; 0 once past due."""
        if self.expires_at is None:
            return None
        remaining = (self.expires_at - now).total_seconds()
        if remaining <= 0:
            return 0
        return math.ceil(remaining / SECONDS_PER_DAY)

    def has_approved(self, member: str) -> bool:
        return any(entry.approver == member for entry in self.approvals)

    def find_step(self, name: str) -> Optional[WorkflowStep]:
        for step in self.workflow_steps:
            if step.name == name:
                return step
        return None

    def referenced_ids(self) -> list[UUID]:
        """Actions this record points at: its dependencies, then its parent."""
        refs = [dep.action_id for dep in self.dependencies]
        if self.parent_action is not None:
            refs.append(self.parent_action)
        return refs

    def to_client_dict(self, now: datetime) -> dict:
        """
        Representation handed to API callers.

        Includes the derived fields. The version token is excluded by the
        field definition.
        """
        data = self.model_dump(mode="json")
        data.update({
            "current_approvals": self.current_approvals,
            "is_expired": self.is_expired(now),
            "is_urgent": self.is_urgent,
            "time_remaining": self.time_remaining(now),
            "workflow_progress": self.workflow_progress,
        })
        return data
