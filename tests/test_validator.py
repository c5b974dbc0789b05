"""
Tests for the two-stage validation pipeline.
"""

import pytest
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from proxy_workflow.validation import ActionValidator


NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def validator():
    return ActionValidator()


def request_data(**overrides):
    data = {
        "action_type": "loan_approval",
        "description": "Approve emergency loan for Ann",
        "requested_by": "m-1",
        "target_user": "m-4",
        "payload": {"amount": 2500},
    }
    data.update(overrides)
    return data


class TestSchemaStage:
    """Stage 1: pydantic schema."""

    def test_valid_request(self, validator):
        parsed, result = validator.validate_request(request_data(), NOW)
        assert parsed is not None
        assert result.schema_valid
        assert result.is_valid
        assert result.issues == []

    def test_schema_errors_stop_the_pipeline(self, validator):
        parsed, result = validator.validate_request(
            request_data(action_type="teleport", required_approvals=9), NOW
        )
        assert parsed is None
        assert not result.schema_valid
        fields = {issue.field for issue in result.issues}
        assert {"action_type", "required_approvals"} <= fields

    def test_missing_payload_is_reported(self, validator):
        data = request_data()
        del data["payload"]
        _, result = validator.validate_request(data, NOW)
        assert [issue.field for issue in result.issues] == ["payload"]
        assert result.issues[0].issue_type == "missing"


class TestSemanticStage:
    """Stage 2: rules that need context."""

    def test_expiry_in_past(self, validator):
        _, result = validator.validate_request(
            request_data(expires_at=NOW - timedelta(seconds=1)), NOW
        )
        assert result.schema_valid
        assert not result.semantic_valid
        assert result.issues[0].issue_type == "in_past"

    def test_duplicate_steps(self, validator):
        _, result = validator.validate_request(
            request_data(workflow_steps=["verify", " verify "]), NOW
        )
        assert not result.is_valid

    def test_blank_step(self, validator):
        _, result = validator.validate_request(
            request_data(workflow_steps=["verify", "  "]), NOW
        )
        assert any(issue.issue_type == "missing" for issue in result.issues)

    def test_duplicate_dependencies(self, validator):
        target = str(uuid4())
        _, result = validator.validate_request(
            request_data(dependencies=[{"action_id": target}, {"action_id": target}]),
            NOW,
        )
        assert not result.is_valid

    def test_warnings_do_not_block(self, validator):
        _, result = validator.validate_request(
            request_data(
                description="Loan",
                target_user="m-1",
                required_approvals=3,
                notify_users=["m-2"],
            ),
            NOW,
        )
        assert result.is_valid
        assert len(result.warnings) == 3


class TestDecisionInput:
    """Comments, conditions and extensions."""

    def test_valid_decision(self, validator):
        assert validator.validate_decision("Fine", ["Keep receipt"]).is_valid

    def test_comment_too_long(self, validator):
        result = validator.validate_decision("x" * 301, [])
        assert result.has_errors

    @pytest.mark.parametrize("condition", ["", "   ", "x" * 201])
    def test_bad_condition(self, validator, condition):
        result = validator.validate_decision("", [condition])
        assert result.issues[0].field == "conditions.0"

    @pytest.mark.parametrize("member,valid", [
        ("m-2", True),
        (" m-2 ", True),
        ("", False),
        ("  \t", False),
        (None, False),
        (7, False),
    ])
    def test_member(self, validator, member, valid):
        result = validator.validate_member(member, "approver")
        assert result.is_valid is valid
        if not valid:
            assert result.issues[0].field == "approver"

    @pytest.mark.parametrize("value,issue_type", [
        ("x" * 301, "too_long"),
        (42, "string_type"),
        (["note"], "string_type"),
    ])
    def test_bad_text(self, validator, value, issue_type):
        result = validator.validate_text(value, "reason", 300)
        assert result.issues[0].issue_type == issue_type

    @pytest.mark.parametrize("value", [None, "", "x" * 300, " " + "x" * 300 + " "])
    def test_text_within_limit(self, validator, value):
        assert validator.validate_text(value, "reason", 300).is_valid

    @pytest.mark.parametrize("days,valid", [
        (1, True),
        (90, True),
        (0, False),
        (91, False),
        (True, False),
        (2.0, False),
    ])
    def test_extension_days(self, validator, days, valid):
        assert validator.validate_extension(days, 90).is_valid is valid

    def test_overrides_must_be_mapping(self, validator):
        assert validator.validate_overrides(None).is_valid
        assert validator.validate_overrides({"amount": 1}).is_valid
        assert not validator.validate_overrides([("amount", 1)]).is_valid


class TestSummary:
    """Messages for members."""

    def test_clean_summary(self, validator):
        _, result = validator.validate_request(request_data(), NOW)
        assert validator.get_user_friendly_summary(result) == "Request looks good."

    def test_error_summary(self, validator):
        _, result = validator.validate_request(
            request_data(expires_at=NOW - timedelta(days=1)), NOW
        )
        summary = validator.get_user_friendly_summary(result)
        assert summary.startswith("Found 1 problem(s):")
        assert "Expiration date must be in the future" in summary


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
