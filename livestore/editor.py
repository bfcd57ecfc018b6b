"""
Bound editors: write-through field bindings over one stored record.

Reading a field returns the record's current persisted value. Writing a field
calls `RecordStore.update` immediately; there is no save step and no staging
buffer. A rejected write leaves the record, and therefore the binding, at its
last persisted value, and the error is re-raised to the caller.

Usage:
    with BoundEditor(store, user) as editor:
        editor["city"] = "Downey"
        name = editor.binding("name")
        name.value = "James Hetfield"
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Iterator, Optional, Tuple

from livestore.domain.models import Record
from livestore.errors import EditorClosedError, SchemaError
from livestore.store.record_store import RecordStore
from livestore.utils.logging import get_logger

log = get_logger(__name__)

ErrorHandler = Callable[[str, Exception], None]


class Binding:
    """Two-way binding to one field of an editor's record."""

    def __init__(self, editor: "BoundEditor", name: str) -> None:
        self._editor = editor
        self.name = name

    @property
    def value(self) -> Any:
        return self._editor.get(self.name)

    @value.setter
    def value(self, new_value: Any) -> None:
        self._editor.set(self.name, new_value)

    def __repr__(self) -> str:
        return f"Binding({self.name}={self.value!r})"


class BoundEditor:
    """
    Expose one record's fields as directly mutable, write-through bindings.

    Parameters
    ----------
    store : RecordStore
        Store that owns the record; every write goes through `store.update`.
    record : Record
        A record already inserted into ``store``.
    fields : iterable of str | None
        Fields to expose; defaults to all scalar fields of the record kind.
    on_error : callable | None
        Called with ``(field, exception)`` when a write is rejected, before the
        exception is re-raised.

    Raises
    ------
    NotFoundError
        If the record is not in the store.
    SchemaError
        If a requested field is not an editable field of the record.
    """

    def __init__(
        self,
        store: RecordStore,
        record: Record,
        fields: Optional[Iterable[str]] = None,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        self._store = store
        self._record = store.get(type(record), record.id)
        editable = type(self._record).scalar_fields()
        exposed = tuple(fields) if fields is not None else editable
        unknown = [name for name in exposed if name not in editable]
        if unknown:
            raise SchemaError(
                f"{self._record.kind()} has no editable field(s): {', '.join(unknown)}"
            )
        self._fields: Tuple[str, ...] = exposed
        self._on_error = on_error
        self._closed = False
        self.last_error: Optional[Exception] = None

    @property
    def record(self) -> Record:
        return self._record

    @property
    def fields(self) -> Tuple[str, ...]:
        return self._fields

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_field(self, name: str) -> None:
        if name not in self._fields:
            raise KeyError(name)

    def get(self, name: str) -> Any:
        self._check_field(name)
        return getattr(self._record, name)

    def set(self, name: str, value: Any) -> None:
        """
        Write ``value`` through to the store.

        Raises
        ------
        EditorClosedError
            If the edit session has ended.
        KeyError
            If ``name`` is not an exposed field.
        """
        if self._closed:
            raise EditorClosedError(f"Editor for {self._record.kind()} {self._record.id} is closed")
        self._check_field(name)
        try:
            self._store.update(self._record, {name: value})
        except Exception as exc:
            self.last_error = exc
            log.warning(
                "Bound write rejected",
                extra={
                    "kind": self._record.kind(),
                    "record_id": str(self._record.id),
                    "field": name,
                    "error": str(exc),
                },
            )
            if self._on_error is not None:
                try:
                    self._on_error(name, exc)
                except Exception:  # noqa: BLE001
                    log.exception(
                        "Bound write error handler failed",
                        extra={"kind": self._record.kind(), "field": name},
                    )
            raise
        self.last_error = None

    def binding(self, name: str) -> Binding:
        self._check_field(name)
        return Binding(self, name)

    def bindings(self) -> Iterator[Binding]:
        return (Binding(self, name) for name in self._fields)

    def values(self) -> dict[str, Any]:
        return {name: getattr(self._record, name) for name in self._fields}

    def close(self) -> None:
        self._closed = True

    def __getitem__(self, name: str) -> Any:
        return self.get(name)

    def __setitem__(self, name: str, value: Any) -> None:
        self.set(name, value)

    def __enter__(self) -> "BoundEditor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["Binding", "BoundEditor"]
