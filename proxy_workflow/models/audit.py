"""
Audit Models for Proxy Workflow

Every significant action in the system is logged for audit purposes.
This provides:
1. Complete traceability of all operations
2. Debugging information when things go wrong
3. Accountability for decisions taken on a member's behalf
4. Ability to reconstruct history

These events form the operational audit stream. They are separate from
the audit trail stored inside each ActionRecord, which is part of the
record itself and travels with it.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from proxy_workflow.clock import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every engine operation has its own event type.
    """
    # Creation
    ACTION_SUBMITTED = "action_submitted"
    TEMPLATE_INSTANTIATED = "template_instantiated"
    TEMPLATE_USAGE_UPDATE_FAILED = "template_usage_update_failed"

    # Decisions
    APPROVAL_RECORDED = "approval_recorded"
    QUORUM_REACHED = "quorum_reached"
    ACTION_APPROVED = "action_approved"
    ACTION_REJECTED = "action_rejected"
    ACTION_EXECUTED = "action_executed"
    ACTION_CANCELLED = "action_cancelled"

    # Housekeeping
    EXPIRY_EXTENDED = "expiry_extended"
    ACTION_EXPIRED = "action_expired"
    SWEEP_COMPLETED = "sweep_completed"
    STEP_UPDATED = "step_updated"
    DEPENDENCY_ADDED = "dependency_added"

    # Refusals
    TRANSITION_REFUSED = "transition_refused"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    VALIDATION_FAILED = "validation_failed"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit stream.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default="proxy_action",
        description="Type of entity"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Who did it (None for system transitions)
    actor: Optional[str] = Field(
        default=None,
        description="Member who triggered the event"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g. one template instantiation)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "actor": self.actor,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         actor, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            self.actor or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.action_submitted(action_id, "payment", "m-1")
        event = AuditEventBuilder.quorum_reached(action_id, "m-3", 3)
    """

    @staticmethod
    def action_submitted(
        action_id: UUID,
        action_type: str,
        requested_by: str,
        is_template: bool = False,
    ) -> AuditEvent:
        kind = "Template" if is_template else "Proxy action"
        return AuditEvent(
            event_type=AuditEventType.ACTION_SUBMITTED,
            entity_id=action_id,
            actor=requested_by,
            description=f"{kind} submitted: {action_type}",
            details={
                "action_type": action_type,
                "is_template": is_template,
            },
        )

    @staticmethod
    def template_instantiated(
        action_id: UUID,
        template_id: UUID,
        requested_by: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TEMPLATE_INSTANTIATED,
            entity_id=action_id,
            actor=requested_by,
            correlation_id=correlation_id,
            description="Proxy action created from template",
            details={
                "template_id": str(template_id),
            },
        )

    @staticmethod
    def template_usage_update_failed(
        template_id: UUID,
        action_id: UUID,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TEMPLATE_USAGE_UPDATE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_id=template_id,
            correlation_id=correlation_id,
            description="Template usage count not updated; new action was kept",
            error_message=error_message,
            details={
                "action_id": str(action_id),
            },
        )

    @staticmethod
    def approval_recorded(
        action_id: UUID,
        approver: str,
        current_approvals: int,
        required_approvals: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.APPROVAL_RECORDED,
            entity_id=action_id,
            actor=approver,
            description=f"Approval {current_approvals}/{required_approvals} recorded",
            details={
                "current_approvals": current_approvals,
                "required_approvals": required_approvals,
            },
        )

    @staticmethod
    def quorum_reached(
        action_id: UUID,
        approver_of_record: str,
        required_approvals: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.QUORUM_REACHED,
            entity_id=action_id,
            actor=approver_of_record,
            description=f"Quorum of {required_approvals} reached; action approved",
            details={
                "required_approvals": required_approvals,
            },
        )

    @staticmethod
    def status_changed(
        event_type: AuditEventType,
        action_id: UUID,
        actor: Optional[str],
        old_status: str,
        new_status: str,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_id=action_id,
            actor=actor,
            description=f"Proxy action {old_status} -> {new_status}",
            details={
                "old_status": old_status,
                "new_status": new_status,
                **(details or {}),
            },
        )

    @staticmethod
    def expiry_extended(
        action_id: UUID,
        actor: str,
        days: int,
        new_expiry: datetime,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPIRY_EXTENDED,
            entity_id=action_id,
            actor=actor,
            description=f"Expiry extended by {days} days",
            details={
                "days": days,
                "expires_at": new_expiry.isoformat(),
            },
        )

    @staticmethod
    def sweep_completed(expired_count: int, skipped_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SWEEP_COMPLETED,
            entity_type=None,
            description=f"Expiry sweep expired {expired_count} actions",
            details={
                "expired": expired_count,
                "skipped": skipped_count,
            },
        )

    @staticmethod
    def step_updated(
        action_id: UUID,
        actor: str,
        step_name: str,
        status: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STEP_UPDATED,
            entity_id=action_id,
            actor=actor,
            description=f"Workflow step '{step_name}' marked {status}",
            details={
                "step": step_name,
                "status": status,
            },
        )

    @staticmethod
    def dependency_added(
        action_id: UUID,
        actor: str,
        depends_on: UUID,
        kind: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEPENDENCY_ADDED,
            entity_id=action_id,
            actor=actor,
            description=f"Dependency added ({kind})",
            details={
                "depends_on": str(depends_on),
                "kind": kind,
            },
        )

    @staticmethod
    def transition_refused(
        action_id: Optional[UUID],
        actor: Optional[str],
        operation: str,
        error_type: str,
        error_message: str,
    ) -> AuditEvent:
        event_type = (
            AuditEventType.CONCURRENT_MODIFICATION
            if error_type == "ConcurrentModificationError"
            else AuditEventType.VALIDATION_FAILED
            if error_type == "ValidationError"
            else AuditEventType.TRANSITION_REFUSED
        )
        return AuditEvent(
            event_type=event_type,
            severity=AuditSeverity.WARNING,
            entity_id=action_id,
            actor=actor,
            description=f"{operation} refused: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details={
                "operation": operation,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            entity_type=None,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
