"""Configuration package."""

from proxy_workflow.config.settings import (
    AppSettings,
    GoogleSheetsSettings,
    Settings,
    WorkflowSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "GoogleSheetsSettings",
    "Settings",
    "WorkflowSettings",
    "get_settings",
    "validate_all_settings",
]
