"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The relational backend (SQLAlchemy) is the default; the in-memory backend
is used by tests and for running the flows without a database.
"""

from src.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    EventStorageInterface,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from src.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryEventStorage,
    InMemoryLedgerStorage,
)
from src.services.storage.sql import (
    SqlAuditStorage,
    SqlDatabase,
    SqlEventStorage,
    SqlLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "EventStorageInterface",
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryEventStorage",
    "InMemoryLedgerStorage",
    # SQLAlchemy implementation
    "SqlAuditStorage",
    "SqlDatabase",
    "SqlEventStorage",
    "SqlLedgerStorage",
]
