"""
SQLite implementation of StorageBackend.

The embedded default. One connection is held for the lifetime of the backend so
that ``:memory:`` databases survive between operations; the record store
serializes access to it.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional, Sequence
from uuid import UUID

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

MEMORY_PATH = ":memory:"

SCHEMA_V1 = f"""
CREATE TABLE IF NOT EXISTS {RECORDS_TABLE} (
    id      TEXT PRIMARY KEY,
    kind    TEXT NOT NULL,
    payload TEXT NOT NULL,
    seq     INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS {LINKS_TABLE} (
    parent_id    TEXT NOT NULL,
    relationship TEXT NOT NULL,
    child_id     TEXT NOT NULL,
    position     INTEGER NOT NULL,
    PRIMARY KEY (parent_id, relationship, child_id)
);

CREATE INDEX IF NOT EXISTS idx_{LINKS_TABLE}_child ON {LINKS_TABLE}(child_id);
"""


class SqliteBackend(AbstractStorageBackend):
    """
    SQLite-backed storage.

    Parameters
    ----------
    path:
        Database file, or ``":memory:"``. The parent directory is created as
        needed.
    """

    name: str = "sqlite"
    placeholder: str = "?"

    def __init__(self, path: Path | str = MEMORY_PATH) -> None:
        self.path = str(path)
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> None:
        if self._conn is not None:
            return
        if self.path != MEMORY_PATH:
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self.path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            with conn:
                conn.executescript(SCHEMA_V1)
        except sqlite3.Error as exc:
            raise StorageIOError(f"Cannot open SQLite store at {self.path}: {exc}") from exc
        self._conn = conn
        log.debug("SQLite backend opened", extra={"path": self.path})

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        finally:
            self._conn = None
        log.debug("SQLite backend closed", extra={"path": self.path})

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageIOError("SQLite backend is not open")
        return self._conn

    def encode_payload(self, payload: Dict[str, Any]) -> Any:
        return json.dumps(payload, sort_keys=True)

    def load(self) -> StoredState:
        conn = self._connection()
        try:
            record_rows = conn.execute(self.select_records_sql()).fetchall()
            link_rows = conn.execute(self.select_links_sql()).fetchall()
        except sqlite3.Error as exc:
            raise StorageIOError(f"Cannot read SQLite store: {exc}") from exc
        return StoredState(
            records=[
                StoredRecord(
                    id=UUID(str(r["id"])),
                    kind=str(r["kind"]),
                    payload=json.loads(r["payload"]),
                    seq=int(r["seq"]),
                )
                for r in record_rows
            ],
            links=[
                StoredLink(
                    parent_id=UUID(str(r["parent_id"])),
                    relationship=str(r["relationship"]),
                    child_id=UUID(str(r["child_id"])),
                    position=int(r["position"]),
                )
                for r in link_rows
            ],
        )

    def apply(self, ops: Sequence[WriteOp]) -> None:
        conn = self._connection()
        try:
            with conn:
                for op in ops:
                    for sql, params in self.statements_for(op):
                        conn.execute(sql, params)
        except sqlite3.Error as exc:
            raise StorageIOError(f"SQLite write failed: {exc}") from exc


__all__ = ["SqliteBackend", "MEMORY_PATH", "SCHEMA_V1"]
