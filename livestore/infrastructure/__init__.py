"""
Infrastructure package for livestore.

Centralizes persistence concerns (backend contracts, SQLite and Postgres
backends). Keep this layer focused on I/O and resource management, decoupled
from record and query logic. `backend_factory` is imported by its module path
because it depends on the store.
"""

from livestore.infrastructure.abstract import (
    AbstractStorageBackend,
    StorageBackend,
    StoredLink,
    StoredRecord,
    StoredState,
)
from livestore.infrastructure.sqlite_backend import SqliteBackend

__all__ = [
    "AbstractStorageBackend",
    "SqliteBackend",
    "StorageBackend",
    "StoredLink",
    "StoredRecord",
    "StoredState",
]
