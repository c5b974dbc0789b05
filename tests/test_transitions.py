"""
Tests for the pure state machine functions.

These run against ActionRecord objects directly, with no repository.
"""

import pytest
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from proxy_workflow.models import (
    ActionDependency,
    ActionRecord,
    ActionStatus,
    StepStatus,
    TemplateData,
    WorkflowStep,
)
from proxy_workflow.workflow import transitions
from proxy_workflow.workflow.errors import (
    DuplicateApprovalError,
    InvalidTransitionError,
    ValidationError,
)


NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_record(**overrides) -> ActionRecord:
    data = {
        "action_type": "payment",
        "description": "Pay monthly contribution",
        "requested_by": "m-1",
        "payload": {"amount": 100},
        "created_at": NOW,
        "updated_at": NOW,
        "expires_at": NOW + timedelta(days=7),
    }
    data.update(overrides)
    return ActionRecord(**data)


class TestAllowedTransitions:
    """The transition table itself."""

    def test_terminal_statuses_have_no_exits(self):
        for status in ("rejected", "executed", "cancelled", "expired"):
            assert transitions.ALLOWED_TRANSITIONS[ActionStatus(status)] == frozenset()

    def test_approved_can_only_execute_or_cancel(self):
        assert transitions.ALLOWED_TRANSITIONS[ActionStatus.APPROVED] == {
            ActionStatus.EXECUTED,
            ActionStatus.CANCELLED,
        }

    def test_pending_cannot_execute(self):
        with pytest.raises(InvalidTransitionError, match="pending -> executed"):
            transitions.ensure_transition(make_record(), ActionStatus.EXECUTED, "execute")

    def test_templates_only_cancel(self):
        template = make_record(
            is_template=True,
            template_data=TemplateData(name="Dues"),
            expires_at=None,
        )
        with pytest.raises(InvalidTransitionError, match="templates"):
            transitions.ensure_transition(template, ActionStatus.APPROVED, "approve")
        transitions.ensure_transition(template, ActionStatus.CANCELLED, "cancel")


class TestVote:
    """Ledger and quorum."""

    def test_vote_below_quorum_stays_pending(self):
        record = make_record(required_approvals=2)
        reached = transitions.apply_vote(record, "m-2", "", [], NOW)
        assert reached is False
        assert record.status == ActionStatus.PENDING
        assert record.current_approvals == 1
        assert record.audit_trail[-1].action == "Approval added"

    def test_vote_reaching_quorum_approves(self):
        record = make_record(required_approvals=2)
        transitions.apply_vote(record, "m-2", "", [], NOW)
        reached = transitions.apply_vote(record, "m-3", "ok", ["receipt"], NOW)
        assert reached is True
        assert record.status == ActionStatus.APPROVED
        assert record.approved_by == "m-3"
        assert record.approved_at == NOW
        assert record.approvals[-1].conditions == ["receipt"]

    def test_duplicate_vote(self):
        record = make_record(required_approvals=3)
        transitions.apply_vote(record, "m-2", "", [], NOW)
        with pytest.raises(DuplicateApprovalError):
            transitions.apply_vote(record, "m-2", "", [], NOW)
        assert record.current_approvals == 1

    def test_vote_after_expiry(self):
        record = make_record()
        with pytest.raises(InvalidTransitionError, match="expired"):
            transitions.apply_vote(record, "m-2", "", [], NOW + timedelta(days=8))
        assert record.approvals == []


class TestOtherTransitions:
    """Direct decisions, execution and expiry."""

    def test_direct_approve_skips_ledger(self):
        record = make_record()
        transitions.apply_approve(record, "m-2", "fine", ["keep receipt"], NOW)
        assert record.status == ActionStatus.APPROVED
        assert record.approvals == []
        assert record.approval_details.conditions == ["keep receipt"]

    def test_execute_records_duration(self):
        record = make_record(status="approved")
        transitions.apply_execute(record, "m-2", "", {"ref": "TX1"}, NOW + timedelta(minutes=95))
        assert record.status == ActionStatus.EXECUTED
        assert record.metadata.actual_duration == 95
        assert record.execution_details.result == {"ref": "TX1"}
        assert record.audit_trail[-1].details == "Action executed successfully"

    def test_expire_requires_past_due(self):
        record = make_record()
        with pytest.raises(InvalidTransitionError, match="not past due"):
            transitions.apply_expire(record, NOW)

    def test_expire_has_no_actor(self):
        record = make_record()
        transitions.apply_expire(record, NOW + timedelta(days=8))
        assert record.status == ActionStatus.EXPIRED
        assert record.audit_trail[-1].performed_by is None

    def test_extend_expiry(self):
        record = make_record()
        new_expiry = transitions.apply_extend_expiry(record, "m-1", 3, NOW)
        assert new_expiry == NOW + timedelta(days=10)
        assert record.expires_at == new_expiry
        entry = record.audit_trail[-1]
        assert entry.action == "Expiry extended"
        assert entry.new_values == {"expires_at": new_expiry.isoformat()}

    def test_extend_expiry_needs_pending(self):
        with pytest.raises(InvalidTransitionError):
            transitions.apply_extend_expiry(make_record(status="approved"), "m-1", 3, NOW)


class TestStepsAndLinks:
    """Checklist updates and dependency links."""

    def test_complete_step(self):
        record = make_record(workflow_steps=[WorkflowStep(name="verify")])
        transitions.apply_step_update(record, "m-2", "verify", StepStatus.COMPLETED, None, NOW)
        step = record.find_step("verify")
        assert step.completed_by == "m-2"
        assert step.completed_at == NOW
        assert record.audit_trail[-1].action == "Workflow step updated"

    def test_unknown_step(self):
        with pytest.raises(ValidationError, match="no workflow step"):
            transitions.apply_step_update(
                make_record(), "m-2", "missing", StepStatus.COMPLETED, None, NOW
            )

    def test_duplicate_dependency(self):
        target = uuid4()
        record = make_record(dependencies=[ActionDependency(action_id=target)])
        with pytest.raises(ValidationError):
            transitions.apply_dependency(
                record, "m-1", ActionDependency(action_id=target), NOW
            )

    def test_unmet_dependencies(self):
        prereq, blocker, related = make_record(), make_record(), make_record()
        record = make_record(dependencies=[
            ActionDependency(action_id=prereq.id, kind="prerequisite"),
            ActionDependency(action_id=blocker.id, kind="blocker"),
            ActionDependency(action_id=related.id, kind="related"),
        ])
        referenced = {prereq.id: prereq, blocker.id: blocker, related.id: related}
        assert len(transitions.unmet_dependencies(record, referenced)) == 2

        prereq.status = ActionStatus.EXECUTED
        blocker.status = ActionStatus.REJECTED
        assert transitions.unmet_dependencies(record, referenced) == []


class TestRecordChanges:
    """The consolidated 'Updated: ...' entry."""

    def test_no_entry_without_significant_change(self):
        before = make_record()
        after = before.model_copy(deep=True)
        after.expires_at = NOW + timedelta(days=9)
        assert transitions.record_changes(before, after, "m-1", NOW) is None
        assert after.audit_trail == []

    def test_entry_names_changed_fields(self):
        before = make_record()
        after = before.model_copy(deep=True)
        transitions.apply_vote(after, "m-2", "", [], NOW)
        entry = transitions.record_changes(before, after, "m-2", NOW)
        assert entry.action == "Updated: status, approvals"
        assert entry.old_values == {"status": "pending", "approvals": []}
        assert entry.new_values["status"] == "approved"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
