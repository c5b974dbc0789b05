"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking and enum membership (action type, priority)
- Required field presence (payload, description, requester)
- Range checks (quorum of 1 to 5)
- Delegated to the pydantic models

STAGE 2 - SEMANTIC VALIDATION:
- Explicit expiry must lie in the future
- Step names and dependency references must be unique
- Suspicious but legal requests produce warnings

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; the engine refuses to act on errors.
"""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from proxy_workflow.models.action import ActionRequest
from proxy_workflow.models.validation import ValidationIssue, ValidationResult


MAX_COMMENT_LENGTH = 300
MAX_CONDITION_LENGTH = 200
MAX_REASON_LENGTH = 300
MAX_NOTES_LENGTH = 500
MIN_DESCRIPTION_LENGTH = 10


def issues_from_pydantic(error: PydanticValidationError) -> list[ValidationIssue]:
    """Translate pydantic's error list into ValidationIssues."""
    issues = []
    for err in error.errors():
        location = ".".join(str(part) for part in err.get("loc", ())) or "request"
        issues.append(ValidationIssue(
            field=location,
            issue_type=err.get("type", "invalid"),
            message=err.get("msg", "Invalid value"),
            severity="error",
        ))
    return issues


class ActionValidator:
    """
    Validates proxy action input through a two-stage pipeline.

    Stateless: every check receives the moment it should be judged against.
    """

    def validate_request(
        self,
        request: Union[ActionRequest, dict[str, Any]],
        now: datetime,
    ) -> tuple[Optional[ActionRequest], ValidationResult]:
        """
        Validate a creation request.

        Returns:
            (parsed_request, result); parsed_request is None when stage 1 fails
        """
        if not isinstance(request, ActionRequest):
            try:
                request = ActionRequest.model_validate(request)
            except PydanticValidationError as e:
                return None, ValidationResult(
                    schema_valid=False,
                    semantic_valid=False,
                    issues=issues_from_pydantic(e),
                )

        issues = self._validate_semantics(request, now)
        semantic_valid = not any(issue.severity == "error" for issue in issues)
        return request, ValidationResult(
            schema_valid=True,
            semantic_valid=semantic_valid,
            issues=issues,
        )

    def _validate_semantics(
        self,
        request: ActionRequest,
        now: datetime,
    ) -> list[ValidationIssue]:
        """
        Stage 2: Semantic validation.

        Checks:
        - Expiry in the future
        - Unique step names and dependency targets
        - Requests that look mistaken
        """
        issues = []

        if request.expires_at is not None and request.expires_at <= now:
            issues.append(ValidationIssue(
                field="expires_at",
                issue_type="in_past",
                message="Expiration date must be in the future",
                severity="error",
                suggested_fix="Leave expires_at empty to use the default window",
            ))

        step_names = [name.strip() for name in request.workflow_steps]
        if any(not name for name in step_names):
            issues.append(ValidationIssue(
                field="workflow_steps",
                issue_type="missing",
                message="Workflow step names cannot be empty",
                severity="error",
            ))
        if len(set(step_names)) != len(step_names):
            issues.append(ValidationIssue(
                field="workflow_steps",
                issue_type="duplicate",
                message="Workflow step names must be unique",
                severity="error",
            ))

        dependency_ids = [dep.action_id for dep in request.dependencies]
        if len(set(dependency_ids)) != len(dependency_ids):
            issues.append(ValidationIssue(
                field="dependencies",
                issue_type="duplicate",
                message="An action can only be listed once as a dependency",
                severity="error",
            ))

        if len(request.description) < MIN_DESCRIPTION_LENGTH:
            issues.append(ValidationIssue(
                field="description",
                issue_type="too_short",
                message=f"Description is shorter than {MIN_DESCRIPTION_LENGTH} characters",
                severity="warning",
                suggested_fix="Describe what the delegate will do",
            ))

        if request.target_user and request.target_user == request.requested_by:
            issues.append(ValidationIssue(
                field="target_user",
                issue_type="self_target",
                message="Requester is acting on their own behalf",
                severity="warning",
            ))

        if request.notify_users and len(set(request.notify_users)) < request.required_approvals:
            issues.append(ValidationIssue(
                field="notify_users",
                issue_type="quorum_unreachable",
                message=(
                    f"Only {len(set(request.notify_users))} members will be notified "
                    f"but {request.required_approvals} approvals are required"
                ),
                severity="warning",
            ))

        return issues

    def validate_decision(
        self,
        comment: Optional[str],
        conditions: Optional[list[str]],
    ) -> ValidationResult:
        """Validate the comment and conditions attached to an approval."""
        issues = []

        if comment and len(comment.strip()) > MAX_COMMENT_LENGTH:
            issues.append(ValidationIssue(
                field="comment",
                issue_type="too_long",
                message=f"Comment must not exceed {MAX_COMMENT_LENGTH} characters",
                severity="error",
            ))

        for index, condition in enumerate(conditions or []):
            text = condition.strip() if isinstance(condition, str) else ""
            if not text or len(text) > MAX_CONDITION_LENGTH:
                issues.append(ValidationIssue(
                    field=f"conditions.{index}",
                    issue_type="out_of_range",
                    message=(
                        f"Each condition must be between 1 and "
                        f"{MAX_CONDITION_LENGTH} characters"
                    ),
                    severity="error",
                ))

        return ValidationResult(
            schema_valid=True,
            semantic_valid=not issues,
            issues=issues,
        )

    def validate_member(self, member: Any, field: str = "actor") -> ValidationResult:
        """
        A member identifier must be non-blank text.

        Surrounding whitespace is not significant: "m-2 " and "m-2" are
        the same member once stored.
        """
        issues = []
        if not isinstance(member, str) or not member.strip():
            issues.append(ValidationIssue(
                field=field,
                issue_type="missing",
                message="A member identifier is required",
                severity="error",
            ))
        return ValidationResult(
            schema_valid=not issues,
            semantic_valid=True,
            issues=issues,
        )

    def validate_text(
        self,
        value: Any,
        field: str,
        max_length: int,
    ) -> ValidationResult:
        """Free text written onto a record (reasons, notes)."""
        issues = []
        if value is not None and not isinstance(value, str):
            issues.append(ValidationIssue(
                field=field,
                issue_type="string_type",
                message="Must be text",
                severity="error",
            ))
        elif value and len(value.strip()) > max_length:
            issues.append(ValidationIssue(
                field=field,
                issue_type="too_long",
                message=f"Must not exceed {max_length} characters",
                severity="error",
            ))
        return ValidationResult(
            schema_valid=not issues,
            semantic_valid=True,
            issues=issues,
        )

    def validate_extension(self, days: Any, max_days: int) -> ValidationResult:
        """Validate an expiry extension in whole days."""
        issues = []
        if isinstance(days, bool) or not isinstance(days, int):
            issues.append(ValidationIssue(
                field="days",
                issue_type="int_type",
                message="Extension must be a whole number of days",
                severity="error",
            ))
        elif days < 1 or days > max_days:
            issues.append(ValidationIssue(
                field="days",
                issue_type="out_of_range",
                message=f"Extension must be between 1 and {max_days} days",
                severity="error",
            ))
        return ValidationResult(
            schema_valid=not issues,
            semantic_valid=True,
            issues=issues,
        )

    def validate_overrides(self, overrides: Any) -> ValidationResult:
        """Template overrides must be a mapping merged into the payload."""
        issues = []
        if overrides is not None and not isinstance(overrides, dict):
            issues.append(ValidationIssue(
                field="overrides",
                issue_type="dict_type",
                message="Overrides must be an object",
                severity="error",
            ))
        return ValidationResult(
            schema_valid=not issues,
            semantic_valid=True,
            issues=issues,
        )

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """One message a member can act on."""
        if result.is_valid and not result.warnings:
            return "Request looks good."
        lines = [
            f"- {issue.message}" for issue in result.issues
            if issue.severity == "error"
        ]
        lines.extend(f"- (warning) {message}" for message in result.warnings)
        header = (
            f"Found {result.error_count} problem(s):"
            if result.has_errors
            else "Request accepted with warnings:"
        )
        return "\n".join([header, *lines])
