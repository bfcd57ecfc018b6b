"""
PostgreSQL implementation of StorageBackend.

Uses a psycopg ConnectionPool owned by the backend, so its lifecycle follows the
record store that opens and closes it. Opening the pool is retried for
transient connection failures using tenacity; writes are never retried.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence
from uuid import UUID

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from livestore.errors import StorageIOError
from livestore.infrastructure.abstract import (
    LINKS_TABLE,
    RECORDS_TABLE,
    AbstractStorageBackend,
    StoredLink,
    StoredRecord,
    StoredState,
    WriteOp,
)
from livestore.utils.logging import get_logger

log = get_logger(__name__)

SCHEMA_V1 = (
    f"""
    CREATE TABLE IF NOT EXISTS {RECORDS_TABLE} (
        id      TEXT PRIMARY KEY,
        kind    TEXT NOT NULL,
        payload JSONB NOT NULL,
        seq     BIGINT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {LINKS_TABLE} (
        parent_id    TEXT NOT NULL,
        relationship TEXT NOT NULL,
        child_id     TEXT NOT NULL,
        position     BIGINT NOT NULL,
        PRIMARY KEY (parent_id, relationship, child_id)
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_{LINKS_TABLE}_child ON {LINKS_TABLE}(child_id)",
)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    reraise=True,
)
def _open_pool(pool: ConnectionPool, timeout: float) -> None:
    """
    Open the pool and wait for its first connection, with automatic retry.

    Retries up to 3 times with exponential backoff for transient connection errors.
    """
    pool.open(wait=True, timeout=timeout)


class PostgresBackend(AbstractStorageBackend):
    """
    Postgres-backed storage with JSONB payloads.

    Parameters
    ----------
    dsn : str
        Connection string, e.g. from `build_dsn()`.
    min_size : int
        Minimum number of idle connections to keep.
    max_size : int
        Maximum total connections in the pool.
    open_timeout : float
        Seconds to wait for the first connection on each open attempt.
    """

    name: str = "postgres"
    placeholder: str = "%s"

    def __init__(
        self,
        dsn: str,
        min_size: int = 1,
        max_size: int = 4,
        open_timeout: float = 5.0,
    ) -> None:
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.open_timeout = open_timeout
        self._pool: Optional[ConnectionPool] = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self) -> None:
        if self._pool is not None:
            return
        pool = ConnectionPool(
            conninfo=self.dsn, min_size=self.min_size, max_size=self.max_size, open=False
        )
        try:
            _open_pool(pool, self.open_timeout)
            with pool.connection() as conn:
                with conn.transaction():
                    for ddl in SCHEMA_V1:
                        conn.execute(ddl)
        except psycopg.Error as exc:
            pool.close()
            raise StorageIOError(f"Cannot open Postgres store: {exc}") from exc
        self._pool = pool
        log.info(
            "Postgres backend opened",
            extra={"min_size": self.min_size, "max_size": self.max_size},
        )

    def close(self) -> None:
        if self._pool is None:
            return
        try:
            self._pool.close()
        finally:
            self._pool = None
        log.info("Postgres backend closed")

    def _require_pool(self) -> ConnectionPool:
        if self._pool is None:
            raise StorageIOError("Postgres backend is not open")
        return self._pool

    def encode_payload(self, payload: Dict[str, Any]) -> Any:
        return Jsonb(payload)

    def load(self) -> StoredState:
        pool = self._require_pool()
        try:
            with pool.connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(self.select_records_sql())
                    record_rows = cur.fetchall()
                    cur.execute(self.select_links_sql())
                    link_rows = cur.fetchall()
        except psycopg.Error as exc:
            raise StorageIOError(f"Cannot read Postgres store: {exc}") from exc
        return StoredState(
            records=[
                StoredRecord(
                    id=UUID(r["id"]), kind=r["kind"], payload=dict(r["payload"]), seq=int(r["seq"])
                )
                for r in record_rows
            ],
            links=[
                StoredLink(
                    parent_id=UUID(r["parent_id"]),
                    relationship=r["relationship"],
                    child_id=UUID(r["child_id"]),
                    position=int(r["position"]),
                )
                for r in link_rows
            ],
        )

    def apply(self, ops: Sequence[WriteOp]) -> None:
        pool = self._require_pool()
        try:
            with pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor() as cur:
                        for op in ops:
                            for sql, params in self.statements_for(op):
                                cur.execute(sql, params)
        except psycopg.Error as exc:
            raise StorageIOError(f"Postgres write failed: {exc}") from exc

    def truncate(self) -> None:
        """Remove every record and link. Intended for test isolation."""
        pool = self._require_pool()
        try:
            with pool.connection() as conn:
                with conn.transaction():
                    conn.execute(f"TRUNCATE TABLE {LINKS_TABLE}, {RECORDS_TABLE}")
        except psycopg.Error as exc:
            raise StorageIOError(f"Postgres truncate failed: {exc}") from exc


__all__ = ["PostgresBackend", "SCHEMA_V1"]
