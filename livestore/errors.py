"""
Domain exceptions for livestore.

All store, query and editor failures derive from LiveStoreError so callers can
catch the whole family at the UI boundary.
"""

from __future__ import annotations


class LiveStoreError(RuntimeError):
    """Base error for livestore operations."""


class DuplicateIdentityError(LiveStoreError):
    """Raised when inserting a record whose identity is already stored."""


class NotFoundError(LiveStoreError):
    """Raised when a record is not known to the store."""


class StorageIOError(LiveStoreError):
    """Raised when the backing store fails to read or write."""


class InvalidPredicateError(LiveStoreError):
    """Raised when a predicate is not a single closed expression tree."""


class DeleteDeniedError(LiveStoreError):
    """Raised when a deny delete rule blocks removing an owner with children."""


class SchemaError(LiveStoreError):
    """Raised for unknown record kinds, fields or relationships."""


class StoreClosedError(LiveStoreError):
    """Raised when operating on a store that is not open."""


class EditorClosedError(LiveStoreError):
    """Raised when writing through an editor after its session ended."""


__all__ = [
    "LiveStoreError",
    "DuplicateIdentityError",
    "NotFoundError",
    "StorageIOError",
    "InvalidPredicateError",
    "DeleteDeniedError",
    "SchemaError",
    "StoreClosedError",
    "EditorClosedError",
]
