"""
Storage backend interfaces and write-operation contracts for livestore.

The record store keeps live objects in memory and writes every change through a
StorageBackend. A backend persists two generic tables, one row per record and
one row per relationship link, and applies each batch of write operations in a
single transaction.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, Sequence, Tuple, Union, runtime_checkable
from uuid import UUID

RECORDS_TABLE = "livestore_records"
LINKS_TABLE = "livestore_links"


@dataclass(frozen=True)
class StoredRecord:
    id: UUID
    kind: str
    payload: Dict[str, Any]
    seq: int


@dataclass(frozen=True)
class StoredLink:
    parent_id: UUID
    relationship: str
    child_id: UUID
    position: int


@dataclass
class StoredState:
    """Everything a backend holds, in insertion/position order."""

    records: List[StoredRecord] = field(default_factory=list)
    links: List[StoredLink] = field(default_factory=list)


@dataclass(frozen=True)
class UpsertRecord:
    record: StoredRecord


@dataclass(frozen=True)
class DeleteRecord:
    """Remove a record row and every link row that mentions it."""

    id: UUID


@dataclass(frozen=True)
class InsertLink:
    link: StoredLink


@dataclass(frozen=True)
class DeleteLink:
    parent_id: UUID
    relationship: str
    child_id: UUID


WriteOp = Union[UpsertRecord, DeleteRecord, InsertLink, DeleteLink]


@runtime_checkable
class StorageBackend(Protocol):
    """
    Common interface all storage backends must implement.

    Attributes
    ----------
    name : str
        A short machine-friendly identifier.
    """

    name: str

    def open(self) -> None:
        """Open connections and create the schema if needed."""
        ...

    def close(self) -> None:
        """Release connections. Safe to call more than once."""
        ...

    def load(self) -> StoredState:
        """Read every persisted record and link."""
        ...

    def apply(self, ops: Sequence[WriteOp]) -> None:
        """
        Apply write operations atomically.

        Raises
        ------
        StorageIOError
            If the write fails; nothing from the batch is persisted.
        """
        ...


class AbstractStorageBackend(abc.ABC):
    """
    ABC helper for SQL backends.

    Subclasses set `name` and `placeholder`, implement the connection lifecycle
    and reuse the shared statements below.
    """

    name: str
    placeholder: str = "?"

    @abc.abstractmethod
    def open(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    def close(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    def load(self) -> StoredState:  # pragma: no cover - interface only
        raise NotImplementedError

    @abc.abstractmethod
    def apply(self, ops: Sequence[WriteOp]) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def encode_payload(self, payload: Dict[str, Any]) -> Any:
        return payload

    def select_records_sql(self) -> str:
        return f"SELECT id, kind, payload, seq FROM {RECORDS_TABLE} ORDER BY seq"

    def select_links_sql(self) -> str:
        return (
            f"SELECT parent_id, relationship, child_id, position FROM {LINKS_TABLE} "
            "ORDER BY position"
        )

    def statements_for(self, op: WriteOp) -> List[Tuple[str, Tuple[Any, ...]]]:
        """Translate one write operation into parameterized SQL statements."""
        p = self.placeholder
        if isinstance(op, UpsertRecord):
            rec = op.record
            return [
                (
                    f"INSERT INTO {RECORDS_TABLE} (id, kind, payload, seq) "
                    f"VALUES ({p}, {p}, {p}, {p}) "
                    "ON CONFLICT (id) DO UPDATE SET kind = excluded.kind, payload = excluded.payload",
                    (str(rec.id), rec.kind, self.encode_payload(rec.payload), rec.seq),
                )
            ]
        if isinstance(op, DeleteRecord):
            rid = str(op.id)
            return [
                (f"DELETE FROM {LINKS_TABLE} WHERE parent_id = {p} OR child_id = {p}", (rid, rid)),
                (f"DELETE FROM {RECORDS_TABLE} WHERE id = {p}", (rid,)),
            ]
        if isinstance(op, InsertLink):
            link = op.link
            return [
                (
                    f"INSERT INTO {LINKS_TABLE} (parent_id, relationship, child_id, position) "
                    f"VALUES ({p}, {p}, {p}, {p}) "
                    "ON CONFLICT (parent_id, relationship, child_id) "
                    "DO UPDATE SET position = excluded.position",
                    (str(link.parent_id), link.relationship, str(link.child_id), link.position),
                )
            ]
        if isinstance(op, DeleteLink):
            return [
                (
                    f"DELETE FROM {LINKS_TABLE} "
                    f"WHERE parent_id = {p} AND relationship = {p} AND child_id = {p}",
                    (str(op.parent_id), op.relationship, str(op.child_id)),
                )
            ]
        raise TypeError(f"Unsupported write operation {type(op).__name__}")


__all__ = [
    "RECORDS_TABLE",
    "LINKS_TABLE",
    "StoredRecord",
    "StoredLink",
    "StoredState",
    "UpsertRecord",
    "DeleteRecord",
    "InsertLink",
    "DeleteLink",
    "WriteOp",
    "StorageBackend",
    "AbstractStorageBackend",
]
