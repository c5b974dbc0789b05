"""Validation package."""

from proxy_workflow.validation.validator import ActionValidator, issues_from_pydantic

__all__ = ["ActionValidator", "issues_from_pydantic"]
