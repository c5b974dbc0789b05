"""Services package."""

from proxy_workflow.services.storage import (
    ActionRepositoryInterface,
    AuditStorageInterface,
    ConcurrentModificationError,
    ConnectionError,
    DuplicateError,
    GoogleSheetsActionRepository,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    InMemoryActionRepository,
    InMemoryAuditStorage,
    NotFoundError,
    StorageError,
)

__all__ = [
    "ActionRepositoryInterface",
    "AuditStorageInterface",
    "ConcurrentModificationError",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsActionRepository",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "InMemoryActionRepository",
    "InMemoryAuditStorage",
    "NotFoundError",
    "StorageError",
]
