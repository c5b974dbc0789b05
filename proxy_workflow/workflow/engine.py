"""
Proxy Action Workflow Engine

DESIGN DECISION: The engine is stateless. Each operation:
1. Loads the record fresh from the repository
2. Snapshots it
3. Applies one transition (guards, mutation, transition audit entry)
4. Appends the consolidated "Updated: ..." entry if significant fields moved
5. Writes back conditioned on the version it loaded

A lost race surfaces as ConcurrentModificationError. The engine never
retries and never locks; callers re-read and re-apply.

Every refusal is logged through the AuditLogger before it is raised.
"""

import warnings
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from proxy_workflow.audit import AuditLogger, create_correlation_id
from proxy_workflow.clock import Clock, SystemClock
from proxy_workflow.config import WorkflowSettings, get_settings
from proxy_workflow.models.action import (
    ActionDependency,
    ActionRecord,
    ActionRequest,
    ActionStatus,
    DependencyKind,
    StepStatus,
    WorkflowStep,
)
from proxy_workflow.models.audit import AuditEventBuilder, AuditEventType
from proxy_workflow.models.validation import ValidationIssue, ValidationResult
from proxy_workflow.services.storage import (
    ActionRepositoryInterface,
    ConcurrentModificationError,
    NotFoundError,
    StorageError,
)
from proxy_workflow.validation import ActionValidator, issues_from_pydantic
from proxy_workflow.validation.validator import MAX_NOTES_LENGTH, MAX_REASON_LENGTH
from proxy_workflow.workflow import transitions
from proxy_workflow.workflow.dependencies import ensure_acyclic, load_dependencies
from proxy_workflow.workflow.errors import (
    InvalidTransitionError,
    TemplateNotFoundError,
    TemplateUsageWarning,
    ValidationError,
    WorkflowError,
)


Mutation = Callable[[ActionRecord, Any], Any]
Verification = Callable[[ActionRecord], Awaitable[None]]

# Errors that are logged as refusals before propagating
_REFUSALS = (WorkflowError, StorageError)


class BulkDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class BulkDecisionResult(BaseModel):
    """Outcome of bulk_decide: one entry in `failures` per refused id."""

    matched: int = 0
    modified: int = 0
    failures: dict[str, str] = Field(default_factory=dict)


class WorkflowEngine:
    """
    Applies the proxy action state machine against a repository.

    Usage:
        engine = WorkflowEngine(InMemoryActionRepository())
        action_id = await engine.submit(request)
        action = await engine.record_approval(action_id, "m-2")
    """

    def __init__(
        self,
        repository: ActionRepositoryInterface,
        clock: Optional[Clock] = None,
        settings: Optional[WorkflowSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[ActionValidator] = None,
    ):
        self._repository = repository
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings().workflow
        self._audit_logger = audit_logger or AuditLogger()
        self._validator = validator or ActionValidator()
        self._logger = structlog.get_logger(__name__)

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def settings(self) -> WorkflowSettings:
        return self._settings

    # =========================================================================
    # CREATION
    # =========================================================================

    async def submit(self, request: Union[ActionRequest, dict[str, Any]]) -> UUID:
        """
        Validate a request and persist it as a pending action.

        Templates are stored the same way but get no default expiry.

        Raises:
            ValidationError: schema or semantic errors
            NotFoundError: a dependency or parent does not exist
            CyclicDependencyError / DependencyTooDeepError
        """
        now = self._clock.now()
        actor = request.requested_by if isinstance(request, ActionRequest) else None

        try:
            parsed, result = self._validator.validate_request(request, now)
            self._raise_if_invalid(result)
            actor = parsed.requested_by
            for message in result.warnings:
                self._logger.info(
                    "submission_warning",
                    requested_by=parsed.requested_by,
                    warning=message,
                )

            record = self._build_record(parsed, now)
            await ensure_acyclic(
                self._repository, record, self._settings.max_dependency_depth
            )
            stored = await self._repository.insert_action(record)
        except _REFUSALS as e:
            await self._audit_logger.log_refusal(None, actor, "submit", e)
            raise

        await self._audit_logger.log(AuditEventBuilder.action_submitted(
            action_id=stored.id,
            action_type=stored.action_type.value,
            requested_by=stored.requested_by,
            is_template=stored.is_template,
        ))
        return stored.id

    def _build_record(self, request: ActionRequest, now) -> ActionRecord:
        expires_at = request.expires_at
        if expires_at is None and not request.is_template:
            expires_at = now + timedelta(days=self._settings.default_expiry_days)

        fields = request.model_dump(exclude={"expires_at", "workflow_steps"})
        return ActionRecord(
            **fields,
            expires_at=expires_at,
            workflow_steps=[
                WorkflowStep(name=name.strip()) for name in request.workflow_steps
            ],
            created_at=now,
            updated_at=now,
        )

    async def create_from_template(
        self,
        template_id: UUID,
        requested_by: str,
        overrides: Optional[dict[str, Any]] = None,
    ) -> ActionRecord:
        """
        Instantiate a template as a new pending action.

        The template's usage count and child list are updated after the new
        action is stored. That second write is best-effort: if it fails the
        new action is kept and a TemplateUsageWarning is issued.
        """
        now = self._clock.now()
        try:
            self._raise_if_invalid(self._validator.validate_overrides(overrides))

            template = await self._repository.get_action(template_id)
            if (
                template is None
                or not template.is_template
                or template.status == ActionStatus.CANCELLED
            ):
                raise TemplateNotFoundError(template_id)

            try:
                record = ActionRecord(
                    action_type=template.action_type,
                    description=template.description,
                    reason=template.reason,
                    requested_by=requested_by,
                    target_user=template.target_user,
                    priority=template.priority,
                    payload={**template.payload, **(overrides or {})},
                    required_approvals=template.required_approvals,
                    expires_at=now + timedelta(days=self._settings.default_expiry_days),
                    parent_action=template.id,
                    tags=list(template.tags),
                    notify_users=list(template.notify_users),
                    metadata=template.metadata.model_copy(
                        update={"actual_duration": None}
                    ),
                    created_at=now,
                    updated_at=now,
                )
            except PydanticValidationError as e:
                raise ValidationError(issues_from_pydantic(e)) from e

            await ensure_acyclic(
                self._repository, record, self._settings.max_dependency_depth
            )
            stored = await self._repository.insert_action(record)
        except _REFUSALS as e:
            await self._audit_logger.log_refusal(
                template_id, requested_by, "instantiate template", e
            )
            raise

        correlation_id = create_correlation_id()
        await self._audit_logger.log(AuditEventBuilder.template_instantiated(
            action_id=stored.id,
            template_id=template_id,
            requested_by=requested_by,
            correlation_id=correlation_id,
        ))
        await self._record_template_usage(template_id, stored.id, correlation_id)
        return stored

    async def _record_template_usage(
        self,
        template_id: UUID,
        action_id: UUID,
        correlation_id: UUID,
    ) -> None:
        try:
            template = await self._repository.get_action(template_id)
            if template is None:
                raise NotFoundError(f"Template not found: {template_id}")
            expected_version = template.version
            template.template_data.usage_count += 1
            template.child_actions.append(action_id)
            template.updated_at = self._clock.now()
            await self._repository.save_action(template, expected_version)
        except StorageError as e:
            message = f"Usage of template {template_id} not recorded: {e}"
            warnings.warn(message, TemplateUsageWarning, stacklevel=3)
            await self._audit_logger.log_template_usage_failed(
                template_id=template_id,
                action_id=action_id,
                error_message=str(e),
                correlation_id=correlation_id,
            )

    # =========================================================================
    # READS
    # =========================================================================

    async def get_action(self, action_id: UUID) -> ActionRecord:
        """
        Load an action.

        With expire_on_read enabled, a past-due pending action is expired
        before it is returned. If that write loses a race the fresh record
        is returned as-is.
        """
        action = await self._load(action_id)
        if (
            self._settings.expire_on_read
            and action.status == ActionStatus.PENDING
            and not action.is_template
            and action.is_expired(self._clock.now())
        ):
            try:
                return await self._expire(action_id)
            except (ConcurrentModificationError, InvalidTransitionError):
                return await self._load(action_id)
        return action

    async def _load(self, action_id: UUID) -> ActionRecord:
        action = await self._repository.get_action(action_id)
        if action is None:
            raise NotFoundError(f"Action not found: {action_id}")
        return action

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def _apply(
        self,
        operation: str,
        action_id: UUID,
        actor: Optional[str],
        mutate: Mutation,
        verify: Optional[Verification] = None,
    ) -> tuple[ActionRecord, ActionRecord, Any]:
        """
        Run one transition under the conditioned-write discipline.

        Returns (before, saved, whatever `mutate` returned).
        """
        try:
            action = await self._load(action_id)
            before = action.model_copy(deep=True)
            now = self._clock.now()

            try:
                outcome = mutate(action, now)
            except PydanticValidationError as e:
                raise ValidationError(issues_from_pydantic(e)) from e
            if verify is not None:
                await verify(action)

            transitions.record_changes(before, action, actor, now)
            action.updated_at = now
            saved = await self._repository.save_action(
                action, expected_version=before.version
            )
        except _REFUSALS as e:
            await self._audit_logger.log_refusal(action_id, actor, operation, e)
            raise
        return before, saved, outcome

    async def _log_status_change(
        self,
        event_type: AuditEventType,
        before: ActionRecord,
        after: ActionRecord,
        actor: Optional[str],
        details: Optional[dict] = None,
    ) -> None:
        await self._audit_logger.log(AuditEventBuilder.status_changed(
            event_type=event_type,
            action_id=after.id,
            actor=actor,
            old_status=before.status.value,
            new_status=after.status.value,
            details=details,
        ))

    async def _checked_member(
        self,
        operation: str,
        action_id: UUID,
        member: Any,
    ) -> str:
        """Strip the acting member; a blank one is refused before any read."""
        result = self._validator.validate_member(member)
        if not result.is_valid:
            error = ValidationError(result.issues)
            await self._audit_logger.log_refusal(
                action_id,
                member if isinstance(member, str) else None,
                operation,
                error,
            )
            raise error
        return member.strip()

    def _checked_text(self, value: Any, field: str, max_length: int) -> str:
        self._raise_if_invalid(self._validator.validate_text(value, field, max_length))
        return (value or "").strip()

    def _check_decision(
        self,
        comment: Optional[str],
        conditions: Optional[list[str]],
    ) -> None:
        self._raise_if_invalid(self._validator.validate_decision(comment, conditions))

    async def record_approval(
        self,
        action_id: UUID,
        approver: str,
        comment: str = "",
        conditions: Optional[list[str]] = None,
    ) -> ActionRecord:
        """
        Add a vote to the ledger; approve once the quorum is met.

        Raises:
            InvalidTransitionError: not pending, expired or a template
            DuplicateApprovalError: approver already voted
        """
        approver = await self._checked_member("record approval", action_id, approver)
        conditions = conditions or []

        def vote(action: ActionRecord, now) -> bool:
            self._check_decision(comment, conditions)
            return transitions.apply_vote(action, approver, comment, conditions, now)

        before, saved, quorum = await self._apply(
            "record approval", action_id, approver, vote
        )

        await self._audit_logger.log(AuditEventBuilder.approval_recorded(
            action_id=saved.id,
            approver=approver,
            current_approvals=saved.current_approvals,
            required_approvals=saved.required_approvals,
        ))
        if quorum:
            await self._audit_logger.log(AuditEventBuilder.quorum_reached(
                action_id=saved.id,
                approver_of_record=saved.approved_by,
                required_approvals=saved.required_approvals,
            ))
        return saved

    async def approve(
        self,
        action_id: UUID,
        approver: str,
        comment: str = "",
        conditions: Optional[list[str]] = None,
    ) -> ActionRecord:
        """Approve directly without a ledger vote."""
        approver = await self._checked_member("approve", action_id, approver)
        conditions = conditions or []

        def approve(action: ActionRecord, now) -> None:
            self._check_decision(comment, conditions)
            transitions.apply_approve(action, approver, comment, conditions, now)

        before, saved, _ = await self._apply("approve", action_id, approver, approve)
        await self._log_status_change(
            AuditEventType.ACTION_APPROVED, before, saved, approver
        )
        return saved

    async def reject(self, action_id: UUID, actor: str, reason: str = "") -> ActionRecord:
        actor = await self._checked_member("reject", action_id, actor)

        def reject(action: ActionRecord, now) -> None:
            text = self._checked_text(reason, "reason", MAX_REASON_LENGTH)
            transitions.apply_reject(action, actor, text, now)

        before, saved, _ = await self._apply("reject", action_id, actor, reject)
        await self._log_status_change(
            AuditEventType.ACTION_REJECTED, before, saved, actor,
            {"reason": saved.rejection_reason},
        )
        return saved

    async def execute(
        self,
        action_id: UUID,
        actor: str,
        notes: str = "",
        result: Any = None,
    ) -> ActionRecord:
        """
        Mark an approved action as carried out.

        Prerequisites must already be executed and blockers closed.
        """
        actor = await self._checked_member("execute", action_id, actor)

        def carry_out(action: ActionRecord, now) -> None:
            text = self._checked_text(notes, "notes", MAX_NOTES_LENGTH)
            transitions.apply_execute(action, actor, text, result, now)

        async def dependencies_met(action: ActionRecord) -> None:
            referenced = await load_dependencies(self._repository, action)
            problems = transitions.unmet_dependencies(action, referenced)
            if problems:
                raise InvalidTransitionError(action.id, "execute", "; ".join(problems))

        before, saved, _ = await self._apply(
            "execute", action_id, actor, carry_out, verify=dependencies_met
        )
        await self._log_status_change(
            AuditEventType.ACTION_EXECUTED, before, saved, actor,
            {"actual_duration": saved.metadata.actual_duration},
        )
        return saved

    async def cancel(self, action_id: UUID, actor: str, reason: str = "") -> ActionRecord:
        actor = await self._checked_member("cancel", action_id, actor)

        def cancel(action: ActionRecord, now) -> None:
            text = self._checked_text(reason, "reason", MAX_REASON_LENGTH)
            transitions.apply_cancel(action, actor, text, now)

        before, saved, _ = await self._apply("cancel", action_id, actor, cancel)
        await self._log_status_change(
            AuditEventType.ACTION_CANCELLED, before, saved, actor,
            {"reason": saved.cancellation_reason},
        )
        return saved

    async def extend_expiry(self, action_id: UUID, actor: str, days: int) -> ActionRecord:
        actor = await self._checked_member("extend expiry of", action_id, actor)

        def extend(action: ActionRecord, now):
            self._raise_if_invalid(self._validator.validate_extension(
                days, self._settings.max_extension_days
            ))
            return transitions.apply_extend_expiry(action, actor, days, now)

        _, saved, new_expiry = await self._apply(
            "extend expiry of", action_id, actor, extend
        )
        await self._audit_logger.log(AuditEventBuilder.expiry_extended(
            action_id=saved.id,
            actor=actor,
            days=days,
            new_expiry=new_expiry,
        ))
        return saved

    async def _expire(self, action_id: UUID) -> ActionRecord:
        before, saved, _ = await self._apply(
            "expire", action_id, None,
            lambda action, now: transitions.apply_expire(action, now),
        )
        await self._log_status_change(AuditEventType.ACTION_EXPIRED, before, saved, None)
        return saved

    async def sweep_expired(self) -> int:
        """
        Expire every past-due pending action.

        Each record is expired under its own conditioned write. A record
        that changed since the scan is skipped and left for the next sweep.

        Returns:
            Number of actions transitioned to expired
        """
        now = self._clock.now()
        candidates = await self._repository.find_actions(
            lambda action: (
                action.status == ActionStatus.PENDING
                and not action.is_template
                and action.is_expired(now)
            )
        )

        expired = 0
        skipped = 0
        for candidate in candidates:
            try:
                await self._expire(candidate.id)
                expired += 1
            except (ConcurrentModificationError, InvalidTransitionError) as e:
                skipped += 1
                self._logger.info(
                    "sweep_skipped_action",
                    action_id=str(candidate.id),
                    reason=str(e),
                )

        await self._audit_logger.log(
            AuditEventBuilder.sweep_completed(expired, skipped)
        )
        return expired

    # =========================================================================
    # CHECKLIST AND LINKS
    # =========================================================================

    async def update_step(
        self,
        action_id: UUID,
        actor: str,
        step_name: str,
        status: Union[StepStatus, str],
        notes: Optional[str] = None,
    ) -> ActionRecord:
        """Set the status of one checklist step."""
        actor = await self._checked_member("update steps of", action_id, actor)

        def update(action: ActionRecord, now) -> StepStatus:
            step_status = self._coerce(StepStatus, status, "status")
            step_notes = (
                None if notes is None
                else self._checked_text(notes, "notes", MAX_NOTES_LENGTH)
            )
            transitions.apply_step_update(
                action, actor, step_name, step_status, step_notes, now
            )
            return step_status

        _, saved, step_status = await self._apply(
            "update steps of", action_id, actor, update
        )
        await self._audit_logger.log(AuditEventBuilder.step_updated(
            action_id=saved.id,
            actor=actor,
            step_name=step_name,
            status=step_status.value,
        ))
        return saved

    async def add_dependency(
        self,
        action_id: UUID,
        actor: str,
        depends_on: UUID,
        kind: Union[DependencyKind, str] = DependencyKind.PREREQUISITE,
        description: Optional[str] = None,
    ) -> ActionRecord:
        """
        Link an open action to another one.

        The cycle check runs against the record with the new edge in place,
        before anything is written.
        """
        actor = await self._checked_member("add dependency to", action_id, actor)

        def link(action: ActionRecord, now) -> ActionDependency:
            dependency = ActionDependency(
                action_id=depends_on,
                kind=kind,
                description=description,
            )
            transitions.apply_dependency(action, actor, dependency, now)
            return dependency

        async def acyclic(action: ActionRecord) -> None:
            await ensure_acyclic(
                self._repository, action, self._settings.max_dependency_depth
            )

        _, saved, dependency = await self._apply(
            "add dependency to", action_id, actor, link, verify=acyclic
        )
        await self._audit_logger.log(AuditEventBuilder.dependency_added(
            action_id=saved.id,
            actor=actor,
            depends_on=dependency.action_id,
            kind=dependency.kind.value,
        ))
        return saved

    # =========================================================================
    # BULK
    # =========================================================================

    async def bulk_decide(
        self,
        action_ids: list[UUID],
        actor: str,
        decision: Union[BulkDecision, str],
        comment: str = "",
    ) -> BulkDecisionResult:
        """
        Approve or reject several actions, each under its own write.

        matched counts ids that exist; modified counts successful
        transitions. A refused id is reported in failures and left as it was.
        """
        decision = self._coerce(BulkDecision, decision, "decision")
        self._raise_if_invalid(self._validator.validate_member(actor))
        actor = actor.strip()
        outcome = BulkDecisionResult()

        for action_id in action_ids:
            try:
                if decision == BulkDecision.APPROVE:
                    await self.approve(action_id, actor, comment)
                else:
                    await self.reject(action_id, actor, comment)
            except NotFoundError as e:
                outcome.failures[str(action_id)] = str(e)
                continue
            except _REFUSALS as e:
                outcome.matched += 1
                outcome.failures[str(action_id)] = str(e)
                continue
            outcome.matched += 1
            outcome.modified += 1

        self._logger.info(
            "bulk_decision_completed",
            decision=decision.value,
            actor=actor,
            matched=outcome.matched,
            modified=outcome.modified,
            failed=len(outcome.failures),
        )
        return outcome

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _raise_if_invalid(result: ValidationResult) -> None:
        if not result.is_valid:
            raise ValidationError(
                [issue for issue in result.issues if issue.severity == "error"]
            )

    @staticmethod
    def _coerce(enum_type, value, field: str):
        try:
            return enum_type(value)
        except ValueError as e:
            allowed = ", ".join(member.value for member in enum_type)
            raise ValidationError([ValidationIssue(
                field=field,
                issue_type="enum",
                message=f"Must be one of: {allowed}",
                severity="error",
            )]) from e
