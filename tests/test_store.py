"""Tests for the key-value persistence backends."""

from __future__ import annotations

import pytest

from sdcvault.core.errors import StorageError
from sdcvault.db import KeyValueStore, MemoryStore, SQLiteStore


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SQLiteStore(tmp_path / "db" / "vault.db")


def test_satisfies_protocol(any_store):
    assert isinstance(any_store, KeyValueStore)


def test_get_missing(any_store):
    assert any_store.get("nope") is None


def test_set_and_overwrite(any_store):
    any_store.set("sdc:1", b"\x00first")
    any_store.set("sdc:1", bytearray(b"second"))

    value = any_store.get("sdc:1")
    assert value == b"second"
    assert isinstance(value, bytes)


def test_rejects_non_bytes(any_store):
    with pytest.raises(StorageError):
        any_store.set("sdc:1", "text")


def test_sqlite_survives_reopen(tmp_path):
    path = tmp_path / "vault.db"
    SQLiteStore(path).set("signature:1", b"{}")
    assert SQLiteStore(path).get("signature:1") == b"{}"


def test_sqlite_unusable_path(tmp_path):
    # A directory cannot be opened as a database file
    with pytest.raises(StorageError):
        SQLiteStore(tmp_path)


def test_memory_len():
    store = MemoryStore()
    store.set("a", b"1")
    store.set("b", b"2")
    assert len(store) == 2
