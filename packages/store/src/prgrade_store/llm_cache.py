"""SQLite-backed prompt response cache with per-entry expiry."""

from __future__ import annotations

import json
import time
from typing import Callable

from prgrade_core.providers.cache import BaseResponseCache
from prgrade_store.db import SQLiteBacked

_SCHEMA = """
CREATE TABLE IF NOT EXISTS llm_cache (
    key          TEXT PRIMARY KEY,
    value_json   TEXT NOT NULL,
    expires_at   REAL NOT NULL
);
"""


class SQLiteResponseCache(SQLiteBacked, BaseResponseCache):
    def __init__(self, db_path: str = ".prgrade.db", clock: Callable[[], float] = time.time):
        super().__init__(db_path, _SCHEMA)
        self._clock = clock

    def get(self, key: str) -> dict | None:
        row = self._fetchone("SELECT value_json, expires_at FROM llm_cache WHERE key=?", (key,))
        if row is None or row["expires_at"] <= self._clock():
            return None
        return json.loads(row["value_json"])

    def set(self, key: str, value: dict, ttl_seconds: float) -> None:
        self._execute(
            """
            INSERT INTO llm_cache (key, value_json, expires_at) VALUES (?, ?, ?)
            ON CONFLICT (key) DO UPDATE SET value_json=excluded.value_json, expires_at=excluded.expires_at
            """,
            (key, json.dumps(value), self._clock() + ttl_seconds),
        )

    def purge_expired(self) -> int:
        return self._execute("DELETE FROM llm_cache WHERE expires_at<=?", (self._clock(),)).rowcount
