# sqlite.py
# SPDX-License-Identifier: MIT
"""SQLite-backed document store keyed by the dedup key.

Documents are stored as JSON text. Writes use ``INSERT ... ON CONFLICT DO
UPDATE`` so replacing a document is a single atomic statement.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from collections.abc import Iterator, Mapping, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..core.errors import StoreError
from ..core.log import get_logger
from .base import project_document

if TYPE_CHECKING:  # pragma: no cover - type-only import
    from ..core.config import DatabaseConfig

log = get_logger(__name__)

__all__ = ["SQLiteDocumentStore"]


class SQLiteDocumentStore:
    """Persist metadata documents in one SQLite table.

    Args:
        db_path: Database file; ``:memory:`` keeps it in memory.
        table: Table name (must be an identifier).
        drop_first: Drop existing documents when opening.
    """

    def __init__(self, db_path: str | Path, *, table: str = "exif", drop_first: bool = False) -> None:
        if not table.isidentifier():
            raise StoreError(f"invalid table name {table!r}")
        self.db_path = str(db_path) if str(db_path) == ":memory:" else str(Path(db_path).expanduser())
        self.table = table
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = self._connect()
        self._init_schema()
        if drop_first:
            self.drop()

    @classmethod
    def from_config(cls, cfg: DatabaseConfig) -> SQLiteDocumentStore:
        return cls(cfg.path, table=cfg.table, drop_first=cfg.drop_first)

    def _connect(self) -> sqlite3.Connection:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open {self.db_path}: {exc}") from exc
        if self.db_path != ":memory:":
            try:
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.Error:
                log.debug("Failed to set WAL pragmas on %s", self.db_path, exc_info=True)
        return conn

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("store is closed")
        return self._conn

    def _init_schema(self) -> None:
        with self._lock:
            self.conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    key TEXT PRIMARY KEY,
                    path TEXT,
                    document TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            self.conn.commit()

    def replace_one(self, key: str, document: Mapping[str, Any]) -> bool:
        """Insert or replace the document stored under ``key``.

        Raises:
            StoreError: If the document cannot be serialized or written.
        """
        try:
            payload = json.dumps(document, sort_keys=True, default=str)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"document {key} is not JSON serializable: {exc}") from exc
        with self._lock:
            try:
                existed = (
                    self.conn.execute(f"SELECT 1 FROM {self.table} WHERE key = ?", (key,)).fetchone()
                    is not None
                )
                self.conn.execute(
                    f"""
                    INSERT INTO {self.table} (key, path, document, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        path = excluded.path,
                        document = excluded.document,
                        updated_at = excluded.updated_at
                    """,
                    (key, document.get("_path"), payload, time.time()),
                )
                self.conn.commit()
            except sqlite3.Error as exc:
                self.conn.rollback()
                raise StoreError(f"cannot store {key}: {exc}") from exc
        return existed

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            row = self.conn.execute(f"SELECT document FROM {self.table} WHERE key = ?", (key,)).fetchone()
        return None if row is None else json.loads(row[0])

    def find(
        self,
        projection: Sequence[str] | None = None,
        *,
        limit: int | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Yield stored documents ordered by key, keeping only ``projection`` fields."""
        sql = f"SELECT document FROM {self.table} ORDER BY key"
        params: tuple[Any, ...] = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (int(limit),)
        with self._lock:
            try:
                rows = self.conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"query failed: {exc}") from exc
        for (payload,) in rows:
            yield project_document(json.loads(payload), projection)

    def count(self) -> int:
        with self._lock:
            return int(self.conn.execute(f"SELECT COUNT(*) FROM {self.table}").fetchone()[0])

    def drop(self) -> None:
        with self._lock:
            self.conn.execute(f"DELETE FROM {self.table}")
            self.conn.commit()
        log.info("Dropped all documents from %s:%s", self.db_path, self.table)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> SQLiteDocumentStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
