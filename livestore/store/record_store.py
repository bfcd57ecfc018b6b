"""
The record store: an identity map of live records written through to a backend.

Every mutation follows the same sequence under one re-entrant lock:

1. validate against the current in-memory state and build the write operations;
2. apply them to the backend in a single transaction;
3. only then change the live objects and notify subscribers.

A backend failure therefore leaves both the durable and the visible state as
they were before the call.
"""

from __future__ import annotations

import threading
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    TypeVar,
    Union,
)
from uuid import UUID

from pydantic import ValidationError

from livestore.domain.models import DEFAULT_MODELS, DeleteRule, Record, Relationship
from livestore.errors import (
    DeleteDeniedError,
    DuplicateIdentityError,
    NotFoundError,
    SchemaError,
    StorageIOError,
    StoreClosedError,
)
from livestore.infrastructure.abstract import (
    DeleteLink,
    DeleteRecord,
    InsertLink,
    StorageBackend,
    StoredLink,
    StoredRecord,
    StoredState,
    UpsertRecord,
    WriteOp,
)
from livestore.query.predicate import PredicateLike, compile_predicate
from livestore.query.sort import SortLike, apply_sort, sort_by, validate_sort
from livestore.store.changes import ChangeListener, ChangeSet, Subscription
from livestore.utils.logging import get_logger

log = get_logger(__name__)

R = TypeVar("R", bound=Record)
KindLike = Union[str, type[Record]]
Mutator = Union[Callable[[Any], None], Mapping[str, Any]]


class RecordStore:
    """
    Durable storage and retrieval of records with relationship integrity.

    Parameters
    ----------
    backend : StorageBackend
        Unopened backend; `open()` opens it and loads its contents.
    models : iterable of Record subclasses
        Record kinds this store accepts.
    """

    def __init__(
        self,
        backend: StorageBackend,
        models: Iterable[type[Record]] = DEFAULT_MODELS,
    ) -> None:
        self._backend = backend
        self._models: Dict[str, type[Record]] = {model.kind(): model for model in models}
        self._check_schema()
        self._records: Dict[UUID, Record] = {}
        self._seq: Dict[UUID, int] = {}
        self._next_seq = 0
        self._next_position = 0
        self._listeners: List[ChangeListener] = []
        self._lock = threading.RLock()
        self._open = False

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _check_schema(self) -> None:
        for model in self._models.values():
            for rel in model.relationships.values():
                target = self._models.get(rel.target)
                if target is None:
                    raise SchemaError(
                        f"{model.kind()}.{rel.name} targets unregistered kind '{rel.target}'"
                    )
                if rel.inverse is not None and rel.inverse not in target.back_references:
                    raise SchemaError(
                        f"{model.kind()}.{rel.name} names inverse '{rel.inverse}' "
                        f"which {target.kind()} does not declare"
                    )

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def models(self) -> Tuple[type[Record], ...]:
        return tuple(self._models.values())

    def model_for(self, kind: KindLike) -> type[Record]:
        """Resolve a kind name or class to the registered model class."""
        name = kind if isinstance(kind, str) else kind.kind()
        model = self._models.get(name)
        if model is None or (not isinstance(kind, str) and model is not kind):
            raise SchemaError(f"Record kind '{name}' is not registered with this store")
        return model

    def _relationship(self, model: type[Record], name: str) -> Relationship:
        rel = model.relationships.get(name)
        if rel is None:
            raise SchemaError(f"{model.kind()} has no relationship '{name}'")
        return rel

    def _relationship_for_inverse(
        self, parent_model: type[Record], child_model: type[Record], back_reference: str
    ) -> Relationship:
        for rel in parent_model.relationships.values():
            if rel.inverse == back_reference and rel.target == child_model.kind():
                return rel
        raise SchemaError(
            f"{parent_model.kind()} has no relationship to {child_model.kind()} "
            f"with inverse '{back_reference}'"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> "RecordStore":
        """Open the backend and load every persisted record into the identity map."""
        with self._lock:
            if self._open:
                return self
            self._backend.open()
            try:
                self._hydrate(self._backend.load())
            except Exception:
                self._backend.close()
                raise
            self._open = True
            log.info(
                "Record store opened",
                extra={"backend": self._backend.name, "records": len(self._records)},
            )
            return self

    def close(self) -> None:
        with self._lock:
            if not self._open:
                return
            try:
                self._backend.close()
            finally:
                self._open = False
                self._records = {}
                self._seq = {}
            log.info("Record store closed", extra={"backend": self._backend.name})

    def __enter__(self) -> "RecordStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_open(self) -> None:
        if not self._open:
            raise StoreClosedError("Record store is not open")

    def _hydrate(self, state: StoredState) -> None:
        records: Dict[UUID, Record] = {}
        seqs: Dict[UUID, int] = {}
        for row in state.records:
            model = self._models.get(row.kind)
            if model is None:
                raise SchemaError(f"Stored record {row.id} has unregistered kind '{row.kind}'")
            try:
                record = model.model_validate({**row.payload, "id": row.id})
            except ValidationError as exc:
                raise StorageIOError(f"Stored {row.kind} {row.id} failed validation") from exc
            records[row.id] = record
            seqs[row.id] = row.seq

        last_position = -1
        for link in state.links:
            last_position = max(last_position, link.position)
            parent = records.get(link.parent_id)
            child = records.get(link.child_id)
            rel = type(parent).relationships.get(link.relationship) if parent else None
            if parent is None or child is None or rel is None:
                log.warning(
                    "Skipping dangling link",
                    extra={
                        "parent_id": str(link.parent_id),
                        "relationship": link.relationship,
                        "child_id": str(link.child_id),
                    },
                )
                continue
            parent._children.setdefault(rel.name, []).append(child)
            if rel.inverse is not None:
                child._parents[rel.inverse] = parent

        self._records = records
        self._seq = seqs
        self._next_seq = max(seqs.values(), default=-1) + 1
        self._next_position = last_position + 1

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Subscription:
        """Register a listener called synchronously after every committed write."""
        with self._lock:
            self._listeners.append(listener)

        def _cancel() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return Subscription(_cancel)

    def _notify(self, changes: ChangeSet) -> None:
        if changes.is_empty:
            return
        for listener in list(self._listeners):
            try:
                listener(changes)
            except Exception:  # noqa: BLE001 - a failing observer must not undo a committed write
                log.exception(
                    "Change listener failed",
                    extra={"listener": getattr(listener, "__qualname__", repr(listener))},
                )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _live(self, record: Record) -> Record:
        live = self._records.get(record.id)
        if live is None or type(live) is not type(record):
            raise NotFoundError(f"{record.kind()} {record.id} is not in the store")
        return live

    def insert(self, record: R) -> R:
        """
        Insert a new record.

        A job constructed with ``owner=`` is linked into the owner's collection
        in the same write.

        Raises
        ------
        DuplicateIdentityError
            If a record with the same identity is already stored.
        NotFoundError
            If a pending owner is not in the store.
        """
        self.insert_all([record])
        return record

    def insert_all(self, records: Iterable[Record]) -> None:
        """Insert several records in one atomic write."""
        with self._lock:
            self._require_open()
            batch = list(records)
            pending: Dict[UUID, Record] = {}
            ops: List[WriteOp] = []
            seq = self._next_seq
            for record in batch:
                self.model_for(type(record))
                if record.id in self._records or record.id in pending:
                    raise DuplicateIdentityError(
                        f"{record.kind()} {record.id} is already in the store"
                    )
                pending[record.id] = record
                ops.append(UpsertRecord(StoredRecord(record.id, record.kind(), record.payload(), seq)))
                seq += 1

            position = self._next_position
            links: List[Tuple[Record, Relationship, Record]] = []
            for record in batch:
                for back_reference in type(record).back_references:
                    parent = record.pending_parent(back_reference)
                    if parent is None:
                        continue
                    owner = self._records.get(parent.id) or pending.get(parent.id)
                    if owner is None or type(owner) is not type(parent):
                        raise NotFoundError(
                            f"Owner {parent.kind()} {parent.id} of {record.kind()} {record.id} "
                            "is not in the store"
                        )
                    rel = self._relationship_for_inverse(type(owner), type(record), back_reference)
                    ops.append(InsertLink(StoredLink(owner.id, rel.name, record.id, position)))
                    links.append((owner, rel, record))
                    position += 1

            self._backend.apply(ops)

            for record in batch:
                self._records[record.id] = record
                self._seq[record.id] = self._next_seq
                self._next_seq += 1
            for owner, rel, record in links:
                owner._children.setdefault(rel.name, []).append(record)
                record._parents[rel.inverse] = owner  # type: ignore[index]
            for record in batch:
                record._pending.clear()
            self._next_position = position

            log.debug("Records inserted", extra={"count": len(batch)})
            self._notify(
                ChangeSet(
                    inserted=frozenset(pending),
                    updated=frozenset(o.id for o, _, _ in links if o.id not in pending),
                )
            )

    def update(self, record: R, mutator: Mutator) -> R:
        """
        Apply a field-level change to a stored record and persist it.

        Parameters
        ----------
        record : Record
            A record previously inserted into this store.
        mutator : callable | mapping
            Either a callable that changes fields on the working copy it receives,
            or a mapping of field name to new value.

        Returns
        -------
        Record
            The live record, now carrying the persisted values.

        Raises
        ------
        NotFoundError
            If the record was never inserted or has been deleted.
        StorageIOError
            If the backend write fails; the record keeps its previous values.
        """
        with self._lock:
            self._require_open()
            live = self._live(record)
            editable = type(live).scalar_fields()
            draft = live.model_copy()
            if isinstance(mutator, Mapping):
                for name, value in mutator.items():
                    if name not in editable:
                        raise SchemaError(f"{live.kind()} has no editable field '{name}'")
                    setattr(draft, name, value)
            else:
                mutator(draft)

            changed = {
                name: getattr(draft, name)
                for name in editable
                if getattr(draft, name) != getattr(live, name)
            }
            if not changed:
                return live  # type: ignore[return-value]

            self._backend.apply(
                [UpsertRecord(StoredRecord(live.id, live.kind(), draft.payload(), self._seq[live.id]))]
            )
            for name, value in changed.items():
                setattr(live, name, value)

            log.debug(
                "Record updated",
                extra={"kind": live.kind(), "record_id": str(live.id), "fields": sorted(changed)},
            )
            self._notify(ChangeSet(updated=frozenset({live.id})))
            return live  # type: ignore[return-value]

    def _collect_deletions(self, record: Record, doomed: List[Record], seen: Set[UUID]) -> None:
        """Depth-first: owned children in relationship order, then the record itself."""
        if record.id in seen:
            return
        seen.add(record.id)
        for rel in type(record).relationships.values():
            children = record.children(rel.name)
            if rel.delete_rule is DeleteRule.DENY and children:
                raise DeleteDeniedError(
                    f"{record.kind()} {record.id} still owns {len(children)} "
                    f"record(s) through '{rel.name}'"
                )
            if rel.delete_rule is DeleteRule.CASCADE:
                for child in children:
                    self._collect_deletions(child, doomed, seen)
        doomed.append(record)

    def delete(self, record: Record) -> None:
        """
        Delete a record, applying the delete rule of each relationship it owns.

        Raises
        ------
        NotFoundError
            If the record is not in the store.
        DeleteDeniedError
            If a deny rule blocks the deletion; nothing is deleted.
        """
        with self._lock:
            self._require_open()
            live = self._live(record)
            doomed: List[Record] = []
            self._collect_deletions(live, doomed, set())
            doomed_ids = {r.id for r in doomed}

            self._backend.apply([DeleteRecord(r.id) for r in doomed])

            updated: Set[UUID] = set()
            for rec in doomed:
                for back_reference in type(rec).back_references:
                    parent = rec.parent(back_reference)
                    if parent is None:
                        continue
                    if parent.id not in doomed_ids:
                        rel = self._relationship_for_inverse(type(parent), type(rec), back_reference)
                        parent._children[rel.name].remove(rec)
                        updated.add(parent.id)
                    rec._parents[back_reference] = None
                for rel in type(rec).relationships.values():
                    for child in rec._children.pop(rel.name, []):
                        if child.id not in doomed_ids and rel.inverse is not None:
                            child._parents[rel.inverse] = None
                            updated.add(child.id)
                del self._records[rec.id]
                self._seq.pop(rec.id, None)

            log.debug(
                "Records deleted",
                extra={"kind": live.kind(), "record_id": str(live.id), "count": len(doomed)},
            )
            self._notify(ChangeSet(updated=frozenset(updated), deleted=frozenset(doomed_ids)))

    def link(self, parent: Record, relationship: str, child: Record) -> None:
        """
        Add ``child`` to ``parent.<relationship>`` and set its back-reference.

        A child owned by another parent through the same inverse is moved.
        """
        with self._lock:
            self._require_open()
            owner = self._live(parent)
            member = self._live(child)
            rel = self._relationship(type(owner), relationship)
            if member.kind() != rel.target:
                raise SchemaError(
                    f"{owner.kind()}.{rel.name} holds {rel.target}, not {member.kind()}"
                )
            if member in owner.children(rel.name):
                return

            ops: List[WriteOp] = []
            previous: Optional[Record] = None
            previous_rel: Optional[Relationship] = None
            if rel.inverse is not None:
                previous = member.parent(rel.inverse)
                if previous is not None:
                    previous_rel = self._relationship_for_inverse(
                        type(previous), type(member), rel.inverse
                    )
                    ops.append(DeleteLink(previous.id, previous_rel.name, member.id))
            ops.append(InsertLink(StoredLink(owner.id, rel.name, member.id, self._next_position)))

            self._backend.apply(ops)

            self._next_position += 1
            if previous is not None and previous_rel is not None:
                previous._children[previous_rel.name].remove(member)
            owner._children.setdefault(rel.name, []).append(member)
            if rel.inverse is not None:
                member._parents[rel.inverse] = owner

            touched = {owner.id, member.id}
            if previous is not None:
                touched.add(previous.id)
            self._notify(ChangeSet(updated=frozenset(touched)))

    def unlink(self, parent: Record, relationship: str, child: Record) -> None:
        """
        Remove ``child`` from ``parent.<relationship>`` and clear its back-reference.

        The child itself stays in the store.

        Raises
        ------
        NotFoundError
            If the child is not currently in that collection.
        """
        with self._lock:
            self._require_open()
            owner = self._live(parent)
            member = self._live(child)
            rel = self._relationship(type(owner), relationship)
            if member not in owner.children(rel.name):
                raise NotFoundError(
                    f"{member.kind()} {member.id} is not in {owner.kind()}.{rel.name}"
                )

            self._backend.apply([DeleteLink(owner.id, rel.name, member.id)])

            owner._children[rel.name].remove(member)
            if rel.inverse is not None and member.parent(rel.inverse) is owner:
                member._parents[rel.inverse] = None
            self._notify(ChangeSet(updated=frozenset({owner.id, member.id})))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def contains(self, record: Record) -> bool:
        with self._lock:
            live = self._records.get(record.id)
            return live is not None and type(live) is type(record)

    def get(self, kind: KindLike, record_id: Union[UUID, str]) -> Record:
        """Return the live record of ``kind`` with the given identity."""
        with self._lock:
            self._require_open()
            model = self.model_for(kind)
            try:
                key = record_id if isinstance(record_id, UUID) else UUID(str(record_id))
            except ValueError as exc:
                raise NotFoundError(f"'{record_id}' is not a valid record identity") from exc
            record = self._records.get(key)
            if record is None or type(record) is not model:
                raise NotFoundError(f"{model.kind()} {record_id} is not in the store")
            return record

    def fetch(
        self,
        kind: KindLike,
        predicate: PredicateLike = None,
        sort: Union[SortLike, Iterable[SortLike], None] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Record]:
        """
        Return the records of ``kind`` matching ``predicate``, ordered by ``sort``.

        Parameters
        ----------
        kind : str | type[Record]
            Record kind to query.
        predicate : Expression | callable | None
            Filter; ``None`` matches everything.
        sort : str | SortDescriptor | sequence
            Sort keys, primary first. Ties keep insertion order.
        limit, offset : int
            Optional window over the ordered result.
        """
        with self._lock:
            self._require_open()
            model = self.model_for(kind)
            expression = compile_predicate(predicate, model)
            descriptors = sort_by(sort)
            validate_sort(descriptors, model)
            matches = [
                record
                for record in self._records.values()
                if type(record) is model and (expression is None or expression.matches(record))
            ]
            ordered = apply_sort(matches, descriptors)
            end = None if limit is None else offset + limit
            return ordered[offset:end]

    def count(self, kind: KindLike, predicate: PredicateLike = None) -> int:
        return len(self.fetch(kind, predicate))


__all__ = ["RecordStore", "Mutator", "KindLike"]
