"""
Store package for livestore.

Exports the record store and its change-notification types.
"""

from livestore.store.changes import ChangeSet, Subscription
from livestore.store.record_store import RecordStore

__all__ = [
    "ChangeSet",
    "RecordStore",
    "Subscription",
]
