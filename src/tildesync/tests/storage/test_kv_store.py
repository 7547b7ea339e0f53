"""Tests for the local key/value store."""

import os
import tempfile
from pathlib import Path

import pytest

from tildesync.errors import LocalStorageError
from tildesync.storage.kv_store import KeyValueStore


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    yield Path(path)
    if os.path.exists(path):
        os.unlink(path)


def test_set_then_get_round_trips(store, sample_tracks):
    assert store.set("tracks", sample_tracks) is True
    assert store.get("tracks") == sample_tracks


def test_missing_key_returns_none(store):
    assert store.get("nothing-here") is None


def test_values_survive_reopen(temp_db_path, sample_tracks):
    first = KeyValueStore(temp_db_path)
    first.set("approvedTracks", sample_tracks)
    first.close()

    second = KeyValueStore(temp_db_path)
    assert second.get("approvedTracks") == sample_tracks
    second.close()


def test_unserializable_value_is_rejected(store):
    assert store.set("tracks", [{"id": object()}]) is False
    assert isinstance(store.last_error, LocalStorageError)
    assert store.get("tracks") is None


def test_nan_is_rejected(store):
    assert store.set("tracks", [{"id": 1, "duration": float("nan")}]) is False


def test_quota_overflow_keeps_previous_value():
    kv = KeyValueStore(max_bytes=64)
    assert kv.set("small", [1, 2, 3]) is True
    assert kv.set("large", ["x" * 100]) is False
    assert "quota" in str(kv.last_error)
    assert kv.get("small") == [1, 2, 3]
    assert kv.get("large") is None
    kv.close()


def test_overwriting_a_key_does_not_count_twice():
    kv = KeyValueStore(max_bytes=40)
    assert kv.set("key", "a" * 30) is True
    assert kv.set("key", "b" * 30) is True
    assert kv.get("key") == "b" * 30
    kv.close()


def test_successful_write_clears_last_error(store):
    store.set("bad", {1, 2})
    assert store.last_error is not None
    store.set("good", [1])
    assert store.last_error is None


def test_corrupt_value_reads_as_none(store):
    store._conn.execute("INSERT INTO kv_store (key, value) VALUES (?, ?)", ("broken", "{not json"))
    assert store.get("broken") is None


def test_remove_keys_and_size(store):
    store.set("a", [1])
    store.set("b", {"x": 1})
    assert store.keys() == ["a", "b"]
    assert store.size() == len("[1]") + len('{"x":1}')

    assert store.remove("a") is True
    assert store.keys() == ["b"]
    assert store.get("a") is None


def test_serialization_is_canonical():
    assert KeyValueStore.serialize({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'
