"""
Integration tests for the PostgreSQL storage backend.

These tests run against a real PostgreSQL instance and verify that:
1. Records and relationships survive closing and reopening the store
2. Cascade deletion is persisted
3. Live queries work unchanged over the Postgres backend

Run with: RUN_INTEGRATION_TESTS=1 pytest tests/integration/
"""

from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest

from livestore.domain.models import Job, User
from livestore.infrastructure.backend_factory import build_dsn, open_store
from livestore.infrastructure.postgres_backend import PostgresBackend
from livestore.query.live import LiveQuery
from livestore.query.predicate import field

JOINED = datetime(2024, 1, 1, 9, 0, 0, tzinfo=timezone.utc)
EXPECTED_JOBS = 2

pytestmark = pytest.mark.skipif(
    os.getenv("RUN_INTEGRATION_TESTS", "0") != "1",
    reason="Integration tests require RUN_INTEGRATION_TESTS=1 and reachable Postgres",
)


@pytest.fixture()
def pg_backend(test_settings):
    """Open a Postgres backend on empty tables for one test."""
    backend = PostgresBackend(build_dsn(test_settings))
    backend.open()
    backend.truncate()
    backend.close()
    yield backend
    backend.open()
    backend.truncate()
    backend.close()


def test_records_and_links_survive_reopen(pg_backend, test_settings):
    with open_store(test_settings, backend=pg_backend) as store:
        owner = store.insert(User(name="Rhea", city="London", join_date=JOINED))
        store.insert_all(
            [
                Job(name="Write report", priority=2, owner=owner),
                Job(name="Water plants", priority=1, owner=owner),
            ]
        )
        store.update(owner, {"city": "Paris"})

    with open_store(test_settings, backend=pg_backend) as store:
        (reloaded,) = store.fetch(User)
        assert reloaded.id == owner.id
        assert reloaded.city == "Paris"
        assert reloaded.join_date == JOINED
        assert [job.name for job in reloaded.jobs] == ["Write report", "Water plants"]


def test_cascade_delete_is_persisted(pg_backend, test_settings):
    with open_store(test_settings, backend=pg_backend) as store:
        owner = store.insert(User(name="Lars", city="Copenhagen", join_date=JOINED))
        for i in range(EXPECTED_JOBS):
            store.insert(Job(name=f"job-{i}", priority=i, owner=owner))
        assert store.count(Job) == EXPECTED_JOBS
        store.delete(owner)

    with open_store(test_settings, backend=pg_backend) as store:
        assert store.count(User) == 0
        assert store.count(Job) == 0


def test_live_query_over_postgres(pg_backend, test_settings):
    with open_store(test_settings, backend=pg_backend) as store:
        store.insert_all(
            [
                User(name="Piper", city="London", join_date=JOINED),
                User(name="Rhea", city="London", join_date=JOINED),
                User(name="Rhea", city="Paris", join_date=JOINED),
            ]
        )
        with LiveQuery(
            store,
            User,
            predicate=(field("city") == "London") & field("name").contains("R"),
            sort="name",
        ) as query:
            assert [(u.name, u.city) for u in query] == [("Rhea", "London")]
