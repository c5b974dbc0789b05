"""
Query Execution for Proxy Actions

DESIGN DECISION: Queries are READ-ONLY and DETERMINISTIC.
They filter and order what the repository returns and never write, not
even to expire a past-due action. A past-due pending action is hidden
from listings that are about open work, so a listing can never offer a
member something the engine would refuse.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from proxy_workflow.clock import Clock, SystemClock
from proxy_workflow.config import WorkflowSettings, get_settings
from proxy_workflow.models.action import (
    PRIORITY_RANK,
    ActionPriority,
    ActionRecord,
    ActionStatus,
    ActionType,
)
from proxy_workflow.services.storage import ActionRepositoryInterface


class QueryExecutionError(Exception):
    """Error during query execution."""
    pass


# =============================================================================
# QUERY MODELS
# =============================================================================

class ActionFilter(BaseModel):
    """Filters and ordering for a general listing."""

    status: Optional[ActionStatus] = None
    action_type: Optional[ActionType] = None
    priority: Optional[ActionPriority] = None
    requested_by: Optional[str] = None
    target_user: Optional[str] = None
    tag: Optional[str] = None
    is_template: bool = False

    sort_by: str = Field(
        default="created_at",
        pattern="^(created_at|updated_at|expires_at|priority)$"
    )
    sort_order: str = Field(
        default="desc",
        pattern="^(asc|desc)$"
    )


class ActionPage(BaseModel):
    """One page of a listing."""

    actions: list[ActionRecord] = Field(default_factory=list)
    total: int = Field(ge=0, description="Matches across all pages")
    limit: int = Field(ge=1)
    offset: int = Field(ge=0)

    @property
    def has_next(self) -> bool:
        return self.offset + len(self.actions) < self.total

    @property
    def has_prev(self) -> bool:
        return self.offset > 0


# =============================================================================
# SERVICE
# =============================================================================

class ActionQueryService:
    """
    Read-side listings over the action repository.

    GUARANTEES:
    - Only returns stored records
    - Past-due pending actions never appear as open work
    - Templates only appear when asked for
    """

    def __init__(
        self,
        repository: ActionRepositoryInterface,
        clock: Optional[Clock] = None,
        settings: Optional[WorkflowSettings] = None,
    ):
        self._repository = repository
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings().workflow

    async def get_by_id(self, action_id: UUID) -> Optional[ActionRecord]:
        """Plain read; no expiry side effects."""
        return await self._repository.get_action(action_id)

    async def list_pending(
        self,
        priority: Optional[ActionPriority] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> ActionPage:
        """Open work queue: most urgent first, then oldest first."""
        now = self._clock.now()

        def is_open(action: ActionRecord) -> bool:
            return (
                action.status == ActionStatus.PENDING
                and not action.is_template
                and not action.is_expired(now)
                and (priority is None or action.priority == priority)
            )

        actions = await self._repository.find_actions(is_open)
        actions.sort(key=lambda a: (-PRIORITY_RANK[a.priority], a.created_at))
        return self._paginate(actions, limit, offset)

    async def list_for_requester(
        self,
        member: str,
        status: Optional[ActionStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> ActionPage:
        """A member's own requests, newest first."""
        actions = await self._repository.find_actions(
            lambda a: (
                a.requested_by == member
                and not a.is_template
                and (status is None or a.status == status)
            )
        )
        actions.sort(key=lambda a: a.created_at, reverse=True)
        return self._paginate(actions, limit, offset)

    async def list_actions(
        self,
        filters: Optional[ActionFilter] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> ActionPage:
        """
        General listing.

        Without a status filter, pending actions that are past due are
        left out. Asking for a status returns everything in that status.
        """
        filters = filters or ActionFilter()
        now = self._clock.now()

        def matches(action: ActionRecord) -> bool:
            if action.is_template != filters.is_template:
                return False
            if filters.status is not None:
                if action.status != filters.status:
                    return False
            elif action.status == ActionStatus.PENDING and action.is_expired(now):
                return False
            if filters.action_type is not None and action.action_type != filters.action_type:
                return False
            if filters.priority is not None and action.priority != filters.priority:
                return False
            if filters.requested_by is not None and action.requested_by != filters.requested_by:
                return False
            if filters.target_user is not None and action.target_user != filters.target_user:
                return False
            if filters.tag is not None and filters.tag not in action.tags:
                return False
            return True

        actions = await self._repository.find_actions(matches)
        actions.sort(
            key=self._sort_key(filters.sort_by),
            reverse=filters.sort_order == "desc",
        )
        return self._paginate(actions, limit, offset)

    @staticmethod
    def _sort_key(sort_by: str):
        if sort_by == "priority":
            return lambda a: (PRIORITY_RANK[a.priority], a.created_at)
        if sort_by == "expires_at":
            # Undated actions sort after dated ones when ascending
            return lambda a: (a.expires_at is None, a.expires_at or datetime.min, a.created_at)
        return lambda a: getattr(a, sort_by)

    def _paginate(
        self,
        actions: list[ActionRecord],
        limit: Optional[int],
        offset: int,
    ) -> ActionPage:
        limit = limit or self._settings.default_page_size
        if limit < 1 or offset < 0:
            raise QueryExecutionError(
                f"Invalid page window: limit={limit}, offset={offset}"
            )
        return ActionPage(
            actions=actions[offset:offset + limit],
            total=len(actions),
            limit=limit,
            offset=offset,
        )
