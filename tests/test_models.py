"""
Tests for Proxy Workflow models

Test strategy:
1. Unit tests for individual components (models, validators, transitions)
2. Engine tests against the in-memory repository with a frozen clock
3. No real API calls in tests (Google Sheets is faked)
"""

import pytest
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from proxy_workflow.models import (
    ActionDependency,
    ActionPriority,
    ActionRecord,
    ActionRequest,
    ActionStatus,
    ActionType,
    ApprovalEntry,
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    DependencyKind,
    StepStatus,
    TemplateData,
    ValidationIssue,
    ValidationResult,
    WorkflowStep,
)


NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_record(**overrides) -> ActionRecord:
    data = {
        "action_type": ActionType.PAYMENT,
        "description": "Pay monthly contribution",
        "requested_by": "m-1",
        "payload": {"amount": 100},
        "created_at": NOW,
        "updated_at": NOW,
    }
    data.update(overrides)
    return ActionRecord(**data)


class TestActionRequest:
    """Tests for the creation request schema."""

    def test_minimal_request(self):
        """Defaults are filled in for everything optional."""
        request = ActionRequest(
            action_type="payment",
            description="Pay fees",
            requested_by="m-1",
            payload={},
        )
        assert request.priority == ActionPriority.NORMAL
        assert request.required_approvals == 1
        assert request.workflow_steps == []
        assert request.is_template is False

    def test_strips_whitespace(self):
        request = ActionRequest(
            action_type="payment",
            description="  Pay fees  ",
            requested_by="  m-1 ",
            payload={},
        )
        assert request.description == "Pay fees"
        assert request.requested_by == "m-1"

    def test_rejects_unknown_action_type(self):
        with pytest.raises(ValueError):
            ActionRequest(
                action_type="teleport",
                description="Pay fees",
                requested_by="m-1",
                payload={},
            )

    @pytest.mark.parametrize("quorum", [0, 6, -1])
    def test_rejects_quorum_out_of_range(self, quorum):
        with pytest.raises(ValueError):
            ActionRequest(
                action_type="payment",
                description="Pay fees",
                requested_by="m-1",
                payload={},
                required_approvals=quorum,
            )

    def test_payload_is_required(self):
        with pytest.raises(ValueError):
            ActionRequest(
                action_type="payment",
                description="Pay fees",
                requested_by="m-1",
            )

    def test_template_requires_template_data(self):
        with pytest.raises(ValueError, match="Templates require template data"):
            ActionRequest(
                action_type="payment",
                description="Monthly dues",
                requested_by="m-1",
                payload={},
                is_template=True,
            )

    def test_template_data_only_on_templates(self):
        with pytest.raises(ValueError, match="only allowed on templates"):
            ActionRequest(
                action_type="payment",
                description="Monthly dues",
                requested_by="m-1",
                payload={},
                template_data=TemplateData(name="Dues"),
            )

    def test_tag_length(self):
        with pytest.raises(ValueError, match="Tags must be between"):
            ActionRequest(
                action_type="payment",
                description="Pay fees",
                requested_by="m-1",
                payload={},
                tags=["x" * 31],
            )

    def test_naive_expiry_is_utc(self):
        request = ActionRequest(
            action_type="payment",
            description="Pay fees",
            requested_by="m-1",
            payload={},
            expires_at=datetime(2024, 3, 5, 12, 0),
        )
        assert request.expires_at.tzinfo == timezone.utc


class TestActionRecordDerived:
    """Derived values are computed, never stored."""

    def test_time_remaining_rounds_up(self):
        """36 hours left is reported as 2 days."""
        record = make_record(expires_at=NOW + timedelta(hours=36))
        assert record.time_remaining(NOW) == 2

    def test_time_remaining_past_due_is_zero(self):
        record = make_record(expires_at=NOW - timedelta(minutes=1))
        assert record.time_remaining(NOW) == 0

    def test_time_remaining_without_expiry(self):
        assert make_record().time_remaining(NOW) is None

    def test_is_expired_is_strict(self):
        record = make_record(expires_at=NOW)
        assert record.is_expired(NOW) is False
        assert record.is_expired(NOW + timedelta(seconds=1)) is True

    @pytest.mark.parametrize("priority,urgent", [
        ("low", False),
        ("normal", False),
        ("high", True),
        ("urgent", True),
    ])
    def test_is_urgent(self, priority, urgent):
        assert make_record(priority=priority).is_urgent is urgent

    @pytest.mark.parametrize("completed,total,expected", [
        (0, 0, 0),
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),
        (4, 4, 100),
    ])
    def test_workflow_progress(self, completed, total, expected):
        steps = [
            WorkflowStep(
                name=f"step-{i}",
                status=StepStatus.COMPLETED if i < completed else StepStatus.PENDING,
            )
            for i in range(total)
        ]
        assert make_record(workflow_steps=steps).workflow_progress == expected

    def test_current_approvals_counts_ledger(self):
        record = make_record(approvals=[
            ApprovalEntry(approver="m-2"),
            ApprovalEntry(approver="m-3"),
        ])
        assert record.current_approvals == 2
        assert record.has_approved("m-3")
        assert not record.has_approved("m-4")

    def test_referenced_ids_lists_dependencies_then_parent(self):
        dep, parent = uuid4(), uuid4()
        record = make_record(
            dependencies=[ActionDependency(action_id=dep)],
            parent_action=parent,
        )
        assert record.referenced_ids() == [dep, parent]

    def test_requested_by_is_frozen(self):
        record = make_record()
        with pytest.raises(ValueError):
            record.requested_by = "m-2"

    def test_client_dict_hides_version(self):
        record = make_record(expires_at=NOW + timedelta(days=3))
        record.version = 4
        data = record.to_client_dict(NOW)
        assert "version" not in data
        assert data["current_approvals"] == 0
        assert data["time_remaining"] == 3
        assert data["is_expired"] is False
        assert data["status"] == "pending"

    def test_json_round_trip_keeps_enums(self):
        record = make_record(
            dependencies=[ActionDependency(action_id=uuid4(), kind="blocker")],
        )
        restored = ActionRecord.model_validate_json(record.model_dump_json())
        assert restored.dependencies[0].kind == DependencyKind.BLOCKER
        assert restored.status == ActionStatus.PENDING
        assert restored.id == record.id


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.ACTION_SUBMITTED,
            description="Proxy action submitted",
        )
        assert event.event_id is not None
        assert event.timestamp is not None
        assert event.severity == AuditSeverity.INFO
        assert event.entity_type == "proxy_action"

    def test_audit_event_to_sheets_row(self):
        """Test AuditEvent conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.QUORUM_REACHED,
            entity_id=uuid4(),
            actor="m-3",
            description="Quorum reached",
            details={"required_approvals": 3},
        )
        row = event.to_sheets_row()
        assert len(row) == 11
        assert row[2] == "quorum_reached"
        assert row[6] == "m-3"
        assert '"required_approvals": 3' in row[9]

    def test_status_changed_description(self):
        event = AuditEventBuilder.status_changed(
            AuditEventType.ACTION_REJECTED, uuid4(), "m-2", "pending", "rejected",
        )
        assert event.description == "Proxy action pending -> rejected"
        assert event.details["new_status"] == "rejected"

    @pytest.mark.parametrize("error_type,event_type", [
        ("ConcurrentModificationError", AuditEventType.CONCURRENT_MODIFICATION),
        ("ValidationError", AuditEventType.VALIDATION_FAILED),
        ("InvalidTransitionError", AuditEventType.TRANSITION_REFUSED),
        ("DuplicateApprovalError", AuditEventType.TRANSITION_REFUSED),
    ])
    def test_refusal_event_types(self, error_type, event_type):
        event = AuditEventBuilder.transition_refused(
            uuid4(), "m-1", "approve", error_type, "nope",
        )
        assert event.event_type == event_type
        assert event.severity == AuditSeverity.WARNING
        assert event.error_code == error_type


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        result = ValidationResult(
            schema_valid=True,
            semantic_valid=False,
            issues=[
                ValidationIssue(
                    field="expires_at",
                    issue_type="in_past",
                    message="Expiration date must be in the future",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors
        assert result.error_count == 1
        assert not result.is_valid

    def test_validation_result_warnings_only(self):
        result = ValidationResult(
            schema_valid=True,
            semantic_valid=True,
            issues=[
                ValidationIssue(
                    field="description",
                    issue_type="too_short",
                    message="Description is short",
                    severity="warning",
                ),
            ],
        )
        assert result.is_valid
        assert result.warnings == ["Description is short"]

    def test_issue_severity_is_constrained(self):
        with pytest.raises(ValueError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")


class TestEnums:
    """Tests for enum vocabularies."""

    def test_action_types(self):
        assert {t.value for t in ActionType} == {
            "payment", "member_registration", "loan_approval",
            "meeting_scheduling", "transaction_record", "user_management",
        }

    def test_statuses(self):
        assert {s.value for s in ActionStatus} == {
            "pending", "approved", "rejected", "executed", "cancelled", "expired",
        }


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
