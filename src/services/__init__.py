"""Services package."""

from src.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    EventStorageInterface,
    InMemoryAuditStorage,
    InMemoryEventStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    SqlAuditStorage,
    SqlDatabase,
    SqlEventStorage,
    SqlLedgerStorage,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "EventStorageInterface",
    "InMemoryAuditStorage",
    "InMemoryEventStorage",
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "SqlAuditStorage",
    "SqlDatabase",
    "SqlEventStorage",
    "SqlLedgerStorage",
    "StorageError",
]
