"""
Proxy action state machine.

Pure functions: each one checks a guard against an ActionRecord, mutates
it in place and appends the transition's audit entry. Nothing here touches
storage or reads the clock; the engine supplies `now` and persists the
result with a conditioned write.

pending  -> approved | rejected | expired | cancelled
approved -> executed | cancelled
"""

from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from proxy_workflow.models.action import (
    ActionDependency,
    ActionRecord,
    ActionStatus,
    ApprovalDetails,
    ApprovalEntry,
    AuditEntry,
    DependencyKind,
    ExecutionDetails,
    StepStatus,
)
from proxy_workflow.models.validation import ValidationIssue
from proxy_workflow.workflow.errors import (
    DuplicateApprovalError,
    InvalidTransitionError,
    ValidationError,
)


ALLOWED_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PENDING: frozenset({
        ActionStatus.APPROVED,
        ActionStatus.REJECTED,
        ActionStatus.EXPIRED,
        ActionStatus.CANCELLED,
    }),
    ActionStatus.APPROVED: frozenset({
        ActionStatus.EXECUTED,
        ActionStatus.CANCELLED,
    }),
    ActionStatus.REJECTED: frozenset(),
    ActionStatus.EXECUTED: frozenset(),
    ActionStatus.CANCELLED: frozenset(),
    ActionStatus.EXPIRED: frozenset(),
}

# Changes to these fields get a consolidated "Updated: ..." audit entry
SIGNIFICANT_FIELDS = ("status", "priority", "approvals", "execution_details")


def ensure_transition(action: ActionRecord, to: ActionStatus, operation: str) -> None:
    """Raise InvalidTransitionError unless `action` may move to `to`."""
    if action.is_template and to != ActionStatus.CANCELLED:
        raise InvalidTransitionError(
            action.id, operation, "templates are instantiated, never acted on"
        )
    allowed = ALLOWED_TRANSITIONS.get(action.status, frozenset())
    if to not in allowed:
        raise InvalidTransitionError(
            action.id,
            operation,
            f"illegal transition {action.status.value} -> {to.value}",
        )


def ensure_open_for_approval(action: ActionRecord, now: datetime, operation: str) -> None:
    """Pending and not past due."""
    ensure_transition(action, ActionStatus.APPROVED, operation)
    if action.is_expired(now):
        raise InvalidTransitionError(action.id, operation, "action has expired")


def append_audit(
    action: ActionRecord,
    label: str,
    actor: Optional[str],
    now: datetime,
    details: Optional[str] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
) -> AuditEntry:
    entry = AuditEntry(
        action=label,
        performed_by=actor,
        performed_at=now,
        details=details[:500] if details else details,
        old_values=old_values,
        new_values=new_values,
    )
    action.audit_trail.append(entry)
    return entry


# =============================================================================
# DECISIONS
# =============================================================================

def apply_vote(
    action: ActionRecord,
    approver: str,
    comment: str,
    conditions: list[str],
    now: datetime,
) -> bool:
    """
    Append a vote to the ledger and evaluate quorum.

    Returns True when this vote carried the action to approved. The
    approver of record is the author of the latest vote, i.e. the one
    that crossed the threshold.
    """
    ensure_open_for_approval(action, now, "record approval for")
    if action.has_approved(approver):
        raise DuplicateApprovalError(action.id, approver)

    action.approvals.append(ApprovalEntry(
        approver=approver,
        approved_at=now,
        comment=comment,
        conditions=list(conditions),
    ))
    append_audit(action, "Approval added", approver, now, comment or "Approval granted")

    if (
        action.current_approvals >= action.required_approvals
        and action.status == ActionStatus.PENDING
    ):
        action.status = ActionStatus.APPROVED
        action.approved_at = now
        action.approved_by = action.approvals[-1].approver
        return True
    return False


def apply_approve(
    action: ActionRecord,
    approver: str,
    comment: str,
    conditions: list[str],
    now: datetime,
) -> None:
    """Direct approval, bypassing the ledger."""
    ensure_open_for_approval(action, now, "approve")
    action.status = ActionStatus.APPROVED
    action.approved_by = approver
    action.approved_at = now
    action.approval_details = ApprovalDetails(
        comment=comment,
        conditions=list(conditions),
    )
    append_audit(
        action, "Action approved", approver, now,
        comment or "Action approved for execution",
    )


def apply_reject(action: ActionRecord, actor: str, reason: str, now: datetime) -> None:
    ensure_transition(action, ActionStatus.REJECTED, "reject")
    action.status = ActionStatus.REJECTED
    action.rejected_by = actor
    action.rejected_at = now
    action.rejection_reason = reason
    append_audit(action, "Action rejected", actor, now, reason)


def apply_execute(
    action: ActionRecord,
    actor: str,
    notes: str,
    result: Any,
    now: datetime,
) -> None:
    ensure_transition(action, ActionStatus.EXECUTED, "execute")
    action.status = ActionStatus.EXECUTED
    action.executed_by = actor
    action.executed_at = now
    action.execution_details = ExecutionDetails(
        notes=notes,
        timestamp=now,
        result=result,
        success=True,
    )
    elapsed = (now - action.created_at).total_seconds()
    action.metadata.actual_duration = max(0, round(elapsed / 60))
    append_audit(
        action, "Action executed", actor, now,
        notes or "Action executed successfully",
    )


def apply_cancel(action: ActionRecord, actor: str, reason: str, now: datetime) -> None:
    ensure_transition(action, ActionStatus.CANCELLED, "cancel")
    action.status = ActionStatus.CANCELLED
    action.cancelled_by = actor
    action.cancelled_at = now
    action.cancellation_reason = reason
    append_audit(action, "Action cancelled", actor, now, reason)


def apply_expire(action: ActionRecord, now: datetime) -> None:
    """System transition: no actor."""
    ensure_transition(action, ActionStatus.EXPIRED, "expire")
    if not action.is_expired(now):
        raise InvalidTransitionError(action.id, "expire", "action is not past due")
    action.status = ActionStatus.EXPIRED
    append_audit(
        action, "Action expired", None, now,
        f"Expired at {action.expires_at.isoformat()}",
    )


def apply_extend_expiry(action: ActionRecord, actor: str, days: int, now: datetime) -> datetime:
    """Push the expiry back by whole days. Returns the new expiry."""
    if action.is_template or action.status != ActionStatus.PENDING:
        raise InvalidTransitionError(
            action.id, "extend expiry of", f"status is {action.status.value}"
        )
    old_expiry = action.expires_at
    new_expiry = (old_expiry or now) + timedelta(days=days)
    action.expires_at = new_expiry
    append_audit(
        action, "Expiry extended", actor, now,
        f"Extended by {days} days until {new_expiry.date().isoformat()}",
        old_values={"expires_at": old_expiry.isoformat() if old_expiry else None},
        new_values={"expires_at": new_expiry.isoformat()},
    )
    return new_expiry


# =============================================================================
# CHECKLIST AND LINKS
# =============================================================================

def apply_step_update(
    action: ActionRecord,
    actor: str,
    step_name: str,
    status: StepStatus,
    notes: Optional[str],
    now: datetime,
) -> None:
    if action.is_terminal:
        raise InvalidTransitionError(
            action.id, "update steps of", f"status is {action.status.value}"
        )
    step = action.find_step(step_name)
    if step is None:
        raise ValidationError([ValidationIssue(
            field="step_name",
            issue_type="unknown_step",
            message=f"Action has no workflow step named '{step_name}'",
            severity="error",
        )])

    old_status = step.status
    step.status = status
    if status == StepStatus.COMPLETED:
        step.completed_by = actor
        step.completed_at = now
    else:
        step.completed_by = None
        step.completed_at = None
    if notes is not None:
        step.notes = notes
    append_audit(
        action, "Workflow step updated", actor, now,
        f"{step_name}: {old_status.value} -> {status.value}",
    )


def apply_dependency(
    action: ActionRecord,
    actor: str,
    dependency: ActionDependency,
    now: datetime,
) -> None:
    if action.is_terminal:
        raise InvalidTransitionError(
            action.id, "add dependencies to", f"status is {action.status.value}"
        )
    if any(dep.action_id == dependency.action_id for dep in action.dependencies):
        raise ValidationError([ValidationIssue(
            field="depends_on",
            issue_type="duplicate",
            message="An action can only be listed once as a dependency",
            severity="error",
        )])
    action.dependencies.append(dependency)
    append_audit(
        action, "Dependency added", actor, now,
        f"{dependency.kind.value}: {dependency.action_id}",
    )


def unmet_dependencies(
    action: ActionRecord,
    referenced: dict[UUID, Optional[ActionRecord]],
) -> list[str]:
    """
    Describe dependencies that block execution.

    prerequisite: must be executed
    blocker: must be closed (terminal)
    related: never blocks
    """
    problems = []
    for dep in action.dependencies:
        if dep.kind == DependencyKind.RELATED:
            continue
        other = referenced.get(dep.action_id)
        if other is None:
            problems.append(f"{dep.kind.value} {dep.action_id} not found")
        elif dep.kind == DependencyKind.PREREQUISITE and other.status != ActionStatus.EXECUTED:
            problems.append(f"prerequisite {dep.action_id} is {other.status.value}")
        elif dep.kind == DependencyKind.BLOCKER and not other.is_terminal:
            problems.append(f"blocker {dep.action_id} is still {other.status.value}")
    return problems


# =============================================================================
# GENERIC AUDIT RULE
# =============================================================================

def changed_fields(before: ActionRecord, after: ActionRecord) -> list[str]:
    return [
        name for name in SIGNIFICANT_FIELDS
        if getattr(before, name) != getattr(after, name)
    ]


def record_changes(
    before: ActionRecord,
    after: ActionRecord,
    actor: Optional[str],
    now: datetime,
) -> Optional[AuditEntry]:
    """
    Append a consolidated entry naming every significant field that moved.

    Runs on every write except creation, after the transition's own entry.
    """
    changed = changed_fields(before, after)
    if not changed:
        return None
    fields = ", ".join(changed)
    return append_audit(
        after,
        f"Updated: {fields}",
        actor,
        now,
        f"Modified fields: {fields}",
        old_values=before.model_dump(mode="json", include=set(changed)),
        new_values=after.model_dump(mode="json", include=set(changed)),
    )
