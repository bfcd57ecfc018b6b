from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from livestore.domain.models import Job, User
from livestore.editor import BoundEditor
from livestore.errors import EditorClosedError, NotFoundError, SchemaError, StorageIOError
from livestore.query.live import LiveQuery
from livestore.query.predicate import field
from livestore.store.record_store import RecordStore


@pytest.fixture()
def user(store: RecordStore, base_date) -> User:
    return store.insert(User(name="James Hetfield", city="Downey", join_date=base_date))


def _stored_payload(backend, record_id) -> dict:
    return {r.id: r.payload for r in backend.load().records}[record_id]


def test_exposes_scalar_fields_by_default(store: RecordStore, user: User) -> None:
    editor = BoundEditor(store, user)

    assert editor.fields == ("name", "city", "join_date")
    assert editor["name"] == "James Hetfield"
    assert editor.values()["city"] == "Downey"


def test_write_goes_straight_to_store(store: RecordStore, backend, user: User, base_date) -> None:
    editor = BoundEditor(store, user)

    editor["city"] = "San Francisco"
    editor.binding("join_date").value = base_date + timedelta(days=7)

    assert user.city == "San Francisco"
    payload = _stored_payload(backend, user.id)
    assert payload["city"] == "San Francisco"
    assert datetime.fromisoformat(payload["join_date"]) == base_date + timedelta(days=7)


def test_failed_write_reverts_to_persisted_value(store: RecordStore, backend, user: User) -> None:
    errors: list[tuple[str, Exception]] = []
    editor = BoundEditor(store, user, on_error=lambda name, exc: errors.append((name, exc)))
    city = editor.binding("city")

    backend.fail_writes = True
    with pytest.raises(StorageIOError):
        city.value = "Oslo"

    assert city.value == "Downey"
    assert _stored_payload(backend, user.id)["city"] == "Downey"
    assert [name for name, _ in errors] == ["city"]
    assert isinstance(editor.last_error, StorageIOError)


def test_failing_error_handler_keeps_original_error(
    store: RecordStore, backend, user: User
) -> None:
    def broken_handler(name: str, exc: Exception) -> None:
        raise RuntimeError("handler crashed")

    editor = BoundEditor(store, user, on_error=broken_handler)
    backend.fail_writes = True

    with pytest.raises(StorageIOError):
        editor["city"] = "Oslo"

    assert isinstance(editor.last_error, StorageIOError)
    assert editor["city"] == "Downey"


def test_invalid_value_is_rejected(store: RecordStore, base_date) -> None:
    owner = store.insert(User(name="Rhea", city="London", join_date=base_date))
    job = store.insert(Job(name="Write report", priority=2, owner=owner))
    editor = BoundEditor(store, job)

    with pytest.raises(ValidationError):
        editor["priority"] = "urgent"

    assert editor["priority"] == 2


def test_restricted_fields(store: RecordStore, user: User) -> None:
    editor = BoundEditor(store, user, fields=["name"])

    with pytest.raises(KeyError):
        editor["city"] = "Oslo"
    with pytest.raises(KeyError):
        editor.binding("city")
    with pytest.raises(SchemaError):
        BoundEditor(store, user, fields=["nickname"])


def test_editor_requires_stored_record(store: RecordStore, base_date) -> None:
    with pytest.raises(NotFoundError):
        BoundEditor(store, User(name="Kirk", city="Oslo", join_date=base_date))


def test_write_after_delete_fails(store: RecordStore, user: User) -> None:
    editor = BoundEditor(store, user)
    store.delete(user)

    with pytest.raises(NotFoundError):
        editor["name"] = "Ghost"


def test_closed_session_rejects_writes(store: RecordStore, user: User) -> None:
    with BoundEditor(store, user) as editor:
        editor["name"] = "Kirk Hammett"

    assert editor.closed
    with pytest.raises(EditorClosedError):
        editor["name"] = "Lars Ulrich"
    assert user.name == "Kirk Hammett"


def test_live_query_sees_bound_edits(store: RecordStore, user: User) -> None:
    query = LiveQuery(store, User, predicate=field("city") == "London")
    assert len(query) == 0

    BoundEditor(store, user)["city"] = "London"

    assert query.results == (user,)
