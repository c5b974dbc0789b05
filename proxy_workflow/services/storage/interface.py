"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real document database later
2. Use in-memory storage for testing
3. Keep the workflow engine decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Load by id, insert, conditioned save, and query by predicate.

CONCURRENCY CONTRACT: every stored action carries a version token.
save_action() only succeeds when the stored version still equals the
version the caller loaded; otherwise it raises ConcurrentModificationError
and writes nothing. The repository bumps the version on every write.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional
from uuid import UUID

from proxy_workflow.models.action import ActionRecord
from proxy_workflow.models.audit import AuditEvent


ActionPredicate = Callable[[ActionRecord], bool]


class ActionRepositoryInterface(ABC):
    """
    Abstract interface for proxy action storage.

    Any storage implementation (Google Sheets, MongoDB, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def get_action(self, action_id: UUID) -> Optional[ActionRecord]:
        """
        Retrieve an action by its ID.

        Args:
            action_id: The action's unique identifier

        Returns:
            A private copy of the action, with `version` set, or None
        """
        pass

    @abstractmethod
    async def insert_action(self, action: ActionRecord) -> ActionRecord:
        """
        Store a new action.

        Args:
            action: The action to store

        Returns:
            The stored action with its initial version

        Raises:
            DuplicateError: If an action with this ID already exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def save_action(
        self,
        action: ActionRecord,
        expected_version: int,
    ) -> ActionRecord:
        """
        Write back an existing action, conditioned on its version.

        Args:
            action: The mutated action
            expected_version: Version observed when the action was loaded

        Returns:
            The stored action with its new version

        Raises:
            NotFoundError: If the action doesn't exist
            ConcurrentModificationError: If the stored version moved on
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def find_actions(
        self,
        predicate: Optional[ActionPredicate] = None,
        limit: Optional[int] = None,
    ) -> list[ActionRecord]:
        """
        Return actions matching a predicate.

        Args:
            predicate: Filter applied to each action; None matches all
            limit: Maximum number of results

        Returns:
            Matching actions in insertion order
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity, in chronological order.
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConcurrentModificationError(StorageError):
    """The entity changed between load and save."""

    def __init__(self, action_id: UUID, expected_version: int, actual_version: int):
        self.action_id = action_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Action {action_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
