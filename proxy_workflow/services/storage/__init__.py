"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the production backend; the in-memory backend serves tests
and embedded use. Both honour the same versioned-write contract.
"""

from proxy_workflow.services.storage.interface import (
    ActionPredicate,
    ActionRepositoryInterface,
    AuditStorageInterface,
    ConcurrentModificationError,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    StorageError,
)
from proxy_workflow.services.storage.memory import (
    InMemoryActionRepository,
    InMemoryAuditStorage,
)
from proxy_workflow.services.storage.google_sheets import (
    GoogleSheetsActionRepository,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
)

__all__ = [
    # Interfaces
    "ActionPredicate",
    "ActionRepositoryInterface",
    "AuditStorageInterface",
    # Exceptions
    "ConcurrentModificationError",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryActionRepository",
    "InMemoryAuditStorage",
    # Google Sheets implementation
    "GoogleSheetsActionRepository",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
]
