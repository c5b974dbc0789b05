"""
In-Memory Storage Implementation

Used by the test suite and by callers that embed the engine without a
backend. Every read hands out a deep copy and every write stores one, so a
caller holding a loaded record can never change stored state except
through save_action().

The compare-and-swap in save_action() contains no await, so on a single
event loop it cannot interleave with another save.
"""

from typing import Optional
from uuid import UUID

from proxy_workflow.models.action import ActionRecord
from proxy_workflow.models.audit import AuditEvent
from proxy_workflow.services.storage.interface import (
    ActionPredicate,
    ActionRepositoryInterface,
    AuditStorageInterface,
    ConcurrentModificationError,
    DuplicateError,
    NotFoundError,
)


class InMemoryActionRepository(ActionRepositoryInterface):
    """Dictionary-backed action storage with optimistic concurrency."""

    def __init__(self):
        self._actions: dict[UUID, ActionRecord] = {}

    def __len__(self) -> int:
        return len(self._actions)

    async def get_action(self, action_id: UUID) -> Optional[ActionRecord]:
        stored = self._actions.get(action_id)
        if stored is None:
            return None
        return stored.model_copy(deep=True)

    async def insert_action(self, action: ActionRecord) -> ActionRecord:
        if action.id in self._actions:
            raise DuplicateError(f"Action already exists: {action.id}")
        stored = action.model_copy(deep=True)
        stored.version = 1
        self._actions[stored.id] = stored
        return stored.model_copy(deep=True)

    async def save_action(
        self,
        action: ActionRecord,
        expected_version: int,
    ) -> ActionRecord:
        current = self._actions.get(action.id)
        if current is None:
            raise NotFoundError(f"Action not found: {action.id}")
        if current.version != expected_version:
            raise ConcurrentModificationError(
                action.id, expected_version, current.version
            )
        stored = action.model_copy(deep=True)
        stored.version = current.version + 1
        self._actions[stored.id] = stored
        return stored.model_copy(deep=True)

    async def find_actions(
        self,
        predicate: Optional[ActionPredicate] = None,
        limit: Optional[int] = None,
    ) -> list[ActionRecord]:
        results = []
        for action in self._actions.values():
            if predicate is not None and not predicate(action):
                continue
            results.append(action.model_copy(deep=True))
            if limit is not None and len(results) >= limit:
                break
        return results


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed audit storage."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            event for event in self.events
            if event.entity_type == entity_type and event.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self.events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
