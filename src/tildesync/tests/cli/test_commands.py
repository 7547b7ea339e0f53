"""Tests for the command line interface."""

import json

import pytest
from click.testing import CliRunner

from tildesync.cli.commands import cli
from tildesync.credentials import DOCUMENT_ID_KEY, TOKEN_KEY
from tildesync.storage.kv_store import KeyValueStore


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    """Config with a local database and an unreachable remote."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "storage:\n"
        f"  db_path: {tmp_path / 'data' / 'store.db'}\n"
        "remote:\n"
        "  base_url: http://127.0.0.1:9\n"
        "  timeout: 1\n"
        "  validation_attempts: 1\n"
    )
    return path


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "data" / "store.db"


def invoke(runner, config_file, *args):
    return runner.invoke(cli, ["--config", str(config_file), *args])


def test_save_and_load_locally(runner, config_file, tmp_path, sample_tracks):
    """Test saving a collection from a file and loading it back."""
    source = tmp_path / "tracks.json"
    source.write_text(json.dumps(sample_tracks))

    result = invoke(runner, config_file, "save", "approvedTracks", str(source))
    assert result.exit_code == 0, result.output
    assert "Saved 2 entries" in result.output

    result = invoke(runner, config_file, "load", "tracks")
    assert result.exit_code == 0, result.output
    assert "Night Drive" in result.output
    assert "Sunrise" in result.output


def test_save_rejects_invalid_json(runner, config_file, tmp_path):
    source = tmp_path / "broken.json"
    source.write_text("[{")

    result = invoke(runner, config_file, "save", "tracks", str(source))

    assert result.exit_code == 2
    assert "Invalid JSON" in result.output


def test_save_reports_malformed_collection(runner, config_file, tmp_path):
    source = tmp_path / "object.json"
    source.write_text('{"id": 1}')

    result = invoke(runner, config_file, "save", "tracks", str(source))

    assert result.exit_code == 1
    assert "Failed to save tracks" in result.output


def test_load_missing_collection(runner, config_file):
    result = invoke(runner, config_file, "load", "playlist")
    assert result.exit_code == 0
    assert "No data stored for playlist" in result.output


def test_unknown_collection_is_rejected(runner, config_file):
    result = invoke(runner, config_file, "load", "settings")
    assert result.exit_code == 2


def test_reconcile(runner, config_file, db_path, sample_tracks):
    """Test reconciling collections written by another process."""
    store = KeyValueStore(db_path)
    store.set("approvedTracks", sample_tracks)
    store.close()

    result = invoke(runner, config_file, "reconcile")
    assert result.exit_code == 0, result.output
    assert "Track collections already consistent" in result.output

    store = KeyValueStore(db_path)
    assert store.get("tracks") == sample_tracks
    store.close()


def test_sync_without_remote(runner, config_file, db_path, sample_tracks):
    store = KeyValueStore(db_path)
    store.set("approvedTracks", sample_tracks)
    store.close()

    result = invoke(runner, config_file, "sync")

    assert result.exit_code == 0, result.output
    assert "Synchronized collections" in result.output


def test_status(runner, config_file):
    result = invoke(runner, config_file, "status")

    assert result.exit_code == 0, result.output
    assert "local" in result.output
    assert "never" in result.output


def test_set_document(runner, config_file, db_path):
    """Test storing and clearing the document id."""
    result = invoke(runner, config_file, "set-document", "abc123")
    assert result.exit_code == 0, result.output
    assert "abc123" in result.output

    store = KeyValueStore(db_path)
    assert store.get(DOCUMENT_ID_KEY) == "abc123"
    store.close()

    result = invoke(runner, config_file, "set-document", "")
    assert result.exit_code == 0, result.output

    store = KeyValueStore(db_path)
    assert store.get(DOCUMENT_ID_KEY) is None
    store.close()


def test_set_token_with_unreachable_remote(runner, config_file, db_path):
    """Test that the token is stored even if it cannot be validated."""
    result = invoke(runner, config_file, "set-token", "secret")
    assert result.exit_code == 0, result.output
    assert "not valid yet" in result.output

    store = KeyValueStore(db_path)
    assert store.get(TOKEN_KEY) == "secret"
    store.close()

    result = invoke(runner, config_file, "set-token", "")
    assert result.exit_code == 0, result.output
    assert "Token cleared" in result.output
