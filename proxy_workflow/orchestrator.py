"""
Application wiring for Proxy Workflow

Builds the engine and the query service over one shared repository, clock
and audit logger.

DESIGN DECISION: Storage is optional at startup.
If Google Sheets is not configured the components fall back to in-memory
storage with local-only audit logging, so the workflow can be exercised
without a spreadsheet. The fallback is logged, never silent.
"""

from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from proxy_workflow.audit import AuditLogger, configure_logging
from proxy_workflow.clock import Clock, SystemClock
from proxy_workflow.config import get_settings
from proxy_workflow.queries import ActionQueryService
from proxy_workflow.services.storage import (
    ActionRepositoryInterface,
    GoogleSheetsActionRepository,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    InMemoryActionRepository,
    StorageError,
)
from proxy_workflow.workflow import WorkflowEngine


logger = structlog.get_logger(__name__)


def create_app_components(
    use_storage: bool = True,
    clock: Optional[Clock] = None,
) -> tuple[WorkflowEngine, ActionQueryService, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False for testing without storage.
        clock: Time source shared by engine and queries.

    Returns:
        (engine, query_service, sheets_client)
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)
    clock = clock or SystemClock()

    sheets_client = None
    repository: ActionRepositoryInterface
    audit_logger: AuditLogger

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            sheets_client.connect()
            repository = GoogleSheetsActionRepository(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except (PydanticValidationError, StorageError) as e:
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            repository = InMemoryActionRepository()
            audit_logger = AuditLogger()  # Local-only logging
    else:
        repository = InMemoryActionRepository()
        audit_logger = AuditLogger()  # Local-only logging

    engine = WorkflowEngine(
        repository,
        clock=clock,
        settings=settings.workflow,
        audit_logger=audit_logger,
    )
    query_service = ActionQueryService(
        repository,
        clock=clock,
        settings=settings.workflow,
    )
    return engine, query_service, sheets_client
