"""Shared SQLite connection handling.

Stage workers run in threads and share one store object, so every backend
opens its connection with ``check_same_thread=False`` and serializes access
through a re-entrant lock. Connections run in autocommit mode; multi-statement
writes go through ``transaction()``.
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


class SQLiteBacked:
    def __init__(self, db_path: str, schema: str):
        self.db_path = db_path
        self._conn = connect(db_path)
        self._lock = threading.RLock()
        with self._lock:
            self._conn.executescript(schema)

    @contextmanager
    def transaction(self):
        """BEGIN IMMEDIATE … COMMIT, rolled back if the block raises."""
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, params)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
