"""Tests for the SQLite prompt response cache."""

from __future__ import annotations

import pytest

from prgrade_store.llm_cache import SQLiteResponseCache


class Clock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache(tmp_path, clock):
    c = SQLiteResponseCache(db_path=str(tmp_path / "cache.db"), clock=clock)
    yield c
    c.close()


def test_get_returns_stored_value(cache):
    cache.set("k1", {"code_quality": 7, "summary": "Clean"}, ttl_seconds=60)
    assert cache.get("k1") == {"code_quality": 7, "summary": "Clean"}


def test_missing_key(cache):
    assert cache.get("nope") is None


def test_entry_expires(cache, clock):
    cache.set("k1", {"summary": "old"}, ttl_seconds=60)
    clock.advance(59)
    assert cache.get("k1") is not None
    clock.advance(1)
    assert cache.get("k1") is None


def test_set_overwrites_and_extends(cache, clock):
    cache.set("k1", {"summary": "first"}, ttl_seconds=10)
    clock.advance(5)
    cache.set("k1", {"summary": "second"}, ttl_seconds=10)
    clock.advance(8)
    assert cache.get("k1") == {"summary": "second"}


def test_purge_expired(cache, clock):
    cache.set("old", {"summary": "a"}, ttl_seconds=10)
    cache.set("fresh", {"summary": "b"}, ttl_seconds=100)
    clock.advance(50)

    assert cache.purge_expired() == 1
    assert cache.purge_expired() == 0
    assert cache.get("fresh") == {"summary": "b"}
