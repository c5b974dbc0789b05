"""
Dependency graph checks.

Dependencies and the parent link are both edges in one graph. A record
may only be persisted with edges that keep it unreachable from itself,
and chains deeper than the configured bound are refused outright so a
corrupted store cannot send the walk round forever.
"""

from typing import Optional
from uuid import UUID

import structlog

from proxy_workflow.models.action import ActionRecord
from proxy_workflow.services.storage import ActionRepositoryInterface, NotFoundError
from proxy_workflow.workflow.errors import CyclicDependencyError, DependencyTooDeepError


logger = structlog.get_logger(__name__)


async def ensure_acyclic(
    repository: ActionRepositoryInterface,
    action: ActionRecord,
    max_depth: int,
) -> None:
    """
    Walk every edge reachable from `action` and refuse if it leads back.

    Raises:
        NotFoundError: a direct reference of `action` does not exist
        CyclicDependencyError: `action` is reachable from itself
        DependencyTooDeepError: a chain is longer than max_depth
    """
    # (node, depth, path from action to node)
    stack = [
        (ref, 1, [action.id, ref])
        for ref in reversed(action.referenced_ids())
    ]
    visited: set[UUID] = set()

    while stack:
        node, depth, path = stack.pop()

        if node == action.id:
            raise CyclicDependencyError(action.id, path)
        if depth > max_depth:
            raise DependencyTooDeepError(action.id, max_depth)
        if node in visited:
            continue
        visited.add(node)

        record: Optional[ActionRecord] = await repository.get_action(node)
        if record is None:
            if depth == 1:
                raise NotFoundError(f"Referenced action not found: {node}")
            # Dangling link further down belongs to a record already stored
            logger.warning(
                "dangling_action_reference",
                action_id=str(action.id),
                missing=str(node),
            )
            continue

        for ref in reversed(record.referenced_ids()):
            stack.append((ref, depth + 1, path + [ref]))


async def load_dependencies(
    repository: ActionRepositoryInterface,
    action: ActionRecord,
) -> dict[UUID, Optional[ActionRecord]]:
    """Fetch every record `action` lists as a dependency."""
    return {
        dep.action_id: await repository.get_action(dep.action_id)
        for dep in action.dependencies
    }
