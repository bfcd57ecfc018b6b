"""
livestore - an observable, query-able record store with two-way bindable records.

This package provides:

- A record store with stable identities, relationships and cascade deletion,
  written through to SQLite or PostgreSQL
- Predicate expression trees and sort descriptors for querying records
- Live queries that re-evaluate on every committed change
- Bound editors that write single-field edits straight through to the store
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from livestore.config import Settings, get_settings
from livestore.domain.models import DeleteRule, Job, Record, Relationship, User
from livestore.editor import Binding, BoundEditor
from livestore.errors import (
    DeleteDeniedError,
    DuplicateIdentityError,
    InvalidPredicateError,
    LiveStoreError,
    NotFoundError,
    StorageIOError,
)
from livestore.infrastructure.backend_factory import create_backend, open_store
from livestore.infrastructure.sqlite_backend import SqliteBackend
from livestore.query.live import LiveQuery
from livestore.query.predicate import compile_predicate, field
from livestore.query.sort import SortDescriptor, SortOrder
from livestore.store.changes import ChangeSet
from livestore.store.record_store import RecordStore
from livestore.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "DeleteRule",
    "Job",
    "Record",
    "Relationship",
    "User",
    # Store
    "ChangeSet",
    "RecordStore",
    "SqliteBackend",
    "create_backend",
    "open_store",
    # Queries
    "LiveQuery",
    "SortDescriptor",
    "SortOrder",
    "compile_predicate",
    "field",
    # Editing
    "Binding",
    "BoundEditor",
    # Errors
    "DeleteDeniedError",
    "DuplicateIdentityError",
    "InvalidPredicateError",
    "LiveStoreError",
    "NotFoundError",
    "StorageIOError",
    # Logging
    "configure_logging",
    "get_logger",
]
