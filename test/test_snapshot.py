"""
Unit tests for SnapshotManager.
"""

import json
import shutil
import tempfile
import zipfile
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from requestbox.config_manager import ConfigManager
from requestbox.models import ChatMessage, SongRequest
from requestbox.snapshot import DATA_FILENAME, SnapshotManager
from requestbox.state import StateStore


@pytest.fixture
def temp_dir():
    """Create a temporary directory holding a fake deployment and its backups."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def deployment(temp_dir):
    """A small deployment tree with the backup directory inside it."""
    root = temp_dir / "app"
    (root / "requestbox").mkdir(parents=True)
    (root / "requestbox" / "main.py").write_text("print('hello')\n")
    (root / "README").write_text("readme\n")
    return root


@pytest.fixture
def config_manager(deployment):
    return ConfigManager({"deployment_root": str(deployment)}, environ={})


@pytest.fixture
def snapshots(config_manager):
    return SnapshotManager(config_manager)


@pytest.fixture
def backup_dir(deployment):
    return str(deployment / "backups")


@pytest.fixture
def state(config_manager):
    state = StateStore(config_manager)
    state.enqueue(SongRequest(song="a", song_title="Song A", requested_by="Alice"))
    state.set_current_song(SongRequest(song="b", song_title="Song B", requested_by="Bob"))
    state.add_chat_message(ChatMessage(sender="Alice", text="hello"))
    state.header_color = "#123456"
    state.youtube_api_key = "key-1"
    return state


def test_backup_writes_snapshot_and_archive(snapshots, state, backup_dir):
    now = datetime(2026, 10, 19, 12, 30, 5, tzinfo=timezone.utc)

    result = snapshots.backup(backup_dir, state.to_snapshot(), now=now)

    assert result.success is True
    data_path = Path(result.data_path)
    code_path = Path(result.code_path)
    assert data_path.name == DATA_FILENAME
    assert code_path.name == "music_system_full_backup_2026-10-19T12-30-05.zip"
    assert result.date == "2026-10-19T12:30:05.000Z"

    data = json.loads(data_path.read_text())
    assert set(data) == {
        "songQueue",
        "songHistory",
        "chatHistory",
        "headerColor",
        "youtubeApiKey",
        "backupDate",
    }
    assert data["songQueue"][0]["songTitle"] == "Song A"
    assert data["headerColor"] == "#123456"
    assert data["backupDate"] == "2026-10-19T12:30:05.000Z"


def test_archive_contains_deployment_but_not_backups(snapshots, state, backup_dir):
    result = snapshots.backup(backup_dir, state.to_snapshot())

    with zipfile.ZipFile(result.code_path) as archive:
        names = set(archive.namelist())

    assert "README" in names
    assert "requestbox/main.py" in names
    assert not any(name.startswith("backups") for name in names)


def test_backup_keeps_only_one_of_each(snapshots, state, backup_dir):
    first = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
    second = datetime(2026, 10, 19, 13, 0, 0, tzinfo=timezone.utc)

    snapshots.backup(backup_dir, state.to_snapshot(), now=first)
    result = snapshots.backup(backup_dir, state.to_snapshot(), now=second)

    files = sorted(path.name for path in Path(backup_dir).iterdir())
    assert files == [DATA_FILENAME, Path(result.code_path).name]


def test_archive_failure_keeps_snapshot(snapshots, state, backup_dir):
    """No rollback: the JSON survives a failed archive step."""
    with patch.object(snapshots, "_archive_directory", side_effect=OSError("disk full")):
        result = snapshots.backup(backup_dir, state.to_snapshot())

    assert result.success is False
    assert "disk full" in result.message
    assert (Path(backup_dir) / DATA_FILENAME).exists()
    assert result.to_dict() == {"success": False, "message": result.message}


def test_backup_to_unwritable_location(snapshots, state, temp_dir):
    blocker = temp_dir / "not-a-directory"
    blocker.write_text("file in the way")

    result = snapshots.backup(str(blocker / "backups"), state.to_snapshot())

    assert result.success is False
    assert result.message.startswith("An error occurred during backup")


def test_load_missing(snapshots, backup_dir):
    result = snapshots.load(backup_dir)
    assert result.success is False
    assert result.message == "Backup file not found."


def test_load_malformed(snapshots, backup_dir):
    Path(backup_dir).mkdir(parents=True)
    (Path(backup_dir) / DATA_FILENAME).write_text("{not json")

    result = snapshots.load(backup_dir)

    assert result.success is False
    assert result.message.startswith("An error occurred during restore")


def test_load_non_object(snapshots, backup_dir):
    Path(backup_dir).mkdir(parents=True)
    (Path(backup_dir) / DATA_FILENAME).write_text("[1, 2, 3]")

    assert snapshots.load(backup_dir).success is False


def test_backup_restore_round_trip(snapshots, state, backup_dir, config_manager):
    """backup, mutate, restore yields the backed-up persisted state."""
    before = state.to_snapshot()
    snapshots.backup(backup_dir, before)

    state.song_queue.clear()
    state.add_chat_message(ChatMessage(sender="Bob", text="later"))
    state.header_color = "#000000"
    state.youtube_api_key = "other"

    result = snapshots.load(backup_dir)
    assert result.success is True
    state.replace_from_snapshot(result.data)

    assert state.to_snapshot() == before
