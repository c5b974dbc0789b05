"""Query package."""

from proxy_workflow.queries.executor import (
    ActionFilter,
    ActionPage,
    ActionQueryService,
    QueryExecutionError,
)

__all__ = ["ActionFilter", "ActionPage", "ActionQueryService", "QueryExecutionError"]
