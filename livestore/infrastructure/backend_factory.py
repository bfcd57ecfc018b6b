"""
Backend factory utilities for livestore.

Builds the configured StorageBackend from Settings and provides `open_store`, the
explicit open-at-startup / close-at-shutdown handle that every component
receives by parameter.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Iterable, Optional

from livestore.config import Settings, get_settings
from livestore.domain.models import DEFAULT_MODELS, Record
from livestore.infrastructure.abstract import StorageBackend
from livestore.infrastructure.sqlite_backend import SqliteBackend
from livestore.store.record_store import RecordStore


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Compose a DSN string from settings."""
    settings = settings or get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


def create_backend(settings: Optional[Settings] = None) -> StorageBackend:
    """
    Create the storage backend selected by ``STORE_BACKEND``.

    Returns
    -------
    StorageBackend
        An unopened backend; `RecordStore.open` opens it.
    """
    settings = settings or get_settings()
    if settings.store_backend == "postgres":
        # Imported lazily so the embedded default never needs libpq.
        from livestore.infrastructure.postgres_backend import PostgresBackend

        return PostgresBackend(
            build_dsn(settings),
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )
    if settings.store_backend == "sqlite":
        return SqliteBackend(settings.store_path)
    raise ValueError(f"Unknown store backend '{settings.store_backend}'")


@contextmanager
def open_store(
    settings: Optional[Settings] = None,
    models: Iterable[type[Record]] = DEFAULT_MODELS,
    backend: Optional[StorageBackend] = None,
) -> Generator[RecordStore, None, None]:
    """
    Open a record store for the duration of the block and close it afterwards.

    Example
    -------
        with open_store() as store:
            store.insert(User(name="Rhea", city="London", join_date=now))
    """
    store = RecordStore(backend or create_backend(settings), models=models)
    store.open()
    try:
        yield store
    finally:
        store.close()


__all__ = ["build_dsn", "create_backend", "open_store"]
