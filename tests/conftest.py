"""
Pytest configuration for livestore.

Provides fixtures for:
- In-memory record stores (SQLite ``:memory:``)
- A backend whose writes can be made to fail on demand
- Settings isolation for CLI tests
- Postgres connectivity for integration tests
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Generator, Sequence

import pytest

from livestore.config import Settings, get_settings
from livestore.errors import StorageIOError
from livestore.infrastructure.abstract import WriteOp
from livestore.infrastructure.sqlite_backend import MEMORY_PATH, SqliteBackend
from livestore.store.record_store import RecordStore

BASE_DATE = datetime(2024, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


class FlakyBackend(SqliteBackend):
    """In-memory SQLite backend whose writes fail while `fail_writes` is set."""

    def __init__(self) -> None:
        super().__init__(MEMORY_PATH)
        self.fail_writes = False
        self.applied: list[Sequence[WriteOp]] = []

    def apply(self, ops: Sequence[WriteOp]) -> None:
        if self.fail_writes:
            raise StorageIOError("simulated disk failure")
        super().apply(ops)
        self.applied.append(list(ops))


@pytest.fixture()
def base_date() -> datetime:
    return BASE_DATE


@pytest.fixture()
def backend() -> FlakyBackend:
    return FlakyBackend()


@pytest.fixture()
def store(backend: FlakyBackend) -> Generator[RecordStore, None, None]:
    """
    Open record store over an in-memory backend, closed after the test.
    """
    record_store = RecordStore(backend)
    record_store.open()
    try:
        yield record_store
    finally:
        record_store.close()


@pytest.fixture()
def cli_env(tmp_path, monkeypatch) -> Generator[Settings, None, None]:
    """
    Point the CLI at a fresh SQLite file and reset the cached settings.
    """
    monkeypatch.setenv("STORE_BACKEND", "sqlite")
    monkeypatch.setenv("STORE_PATH", str(tmp_path / "cli.sqlite3"))
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    get_settings.cache_clear()
    try:
        yield get_settings()
    finally:
        get_settings.cache_clear()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides for the Postgres backend.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        store_backend="postgres",
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "livestore"),
        log_level="DEBUG",
    )
