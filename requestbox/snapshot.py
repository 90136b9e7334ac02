"""
Backup and restore for requestbox.

A backup writes two artifacts into the backup directory:

- music_system_data.json: the persisted part of the shared state
- music_system_full_backup_<timestamp>.zip: an archive of the whole deployment

Exactly one of each is retained; older ones are deleted before writing. There
is no rollback: if archiving fails after the JSON was written, the JSON stays.

These methods do blocking file I/O; async callers run them in a worker thread.
"""

import json
import logging
import os
import zipfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from .config_manager import ConfigManager
from .models import format_timestamp, utcnow

DATA_FILENAME = "music_system_data.json"
ARCHIVE_PREFIX = "music_system_full_backup_"
ARCHIVE_SUFFIX = ".zip"


@dataclass
class SnapshotResult:
    """Outcome of a backup or restore, reported back to the requesting client."""

    success: bool
    message: str
    data_path: Optional[str] = None
    code_path: Optional[str] = None
    date: Optional[str] = None
    data: Optional[Dict[str, Any]] = None  # Parsed snapshot (restore only)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data_path:
            payload["dataPath"] = self.data_path
        if self.code_path:
            payload["codePath"] = self.code_path
        if self.date:
            payload["date"] = self.date
        return payload


class SnapshotManager:
    """Writes and reads state snapshots and full deployment archives."""

    def __init__(self, config_manager: ConfigManager):
        """
        Initialize SnapshotManager.

        Args:
            config_manager: ConfigManager providing deployment_root
        """
        self.config_manager = config_manager
        self.logger = logging.getLogger(__name__)

    @property
    def deployment_root(self) -> Path:
        return Path(self.config_manager.get("deployment_root")).resolve()

    def data_path(self, backup_path: str) -> Path:
        return Path(backup_path) / DATA_FILENAME

    def backup(
        self, backup_path: str, snapshot: Dict[str, Any], now: Optional[datetime] = None
    ) -> SnapshotResult:
        """
        Write the state snapshot and a full archive of the deployment.

        Args:
            backup_path: Directory to write into (created if missing)
            snapshot: Persisted state fields (see StateStore.to_snapshot)
            now: Backup time (defaults to now, UTC)

        Returns:
            SnapshotResult describing what was written or what failed
        """
        now = now or utcnow()
        backup_date = format_timestamp(now)
        backup_dir = Path(backup_path)
        data_path = backup_dir / DATA_FILENAME
        archive_path = backup_dir / f"{ARCHIVE_PREFIX}{now.strftime('%Y-%m-%dT%H-%M-%S')}{ARCHIVE_SUFFIX}"

        try:
            backup_dir.mkdir(parents=True, exist_ok=True)
            self._remove_previous(backup_dir)

            data = dict(snapshot)
            data["backupDate"] = backup_date
            with open(data_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            self.logger.info("State snapshot written: %s", data_path)

            size = self._archive_directory(self.deployment_root, archive_path, exclude=backup_dir)
            self.logger.info("Full archive written: %s (%s bytes)", archive_path, size)
        except Exception as e:
            self.logger.error("Backup failed: %s", e, exc_info=True)
            return SnapshotResult(
                success=False, message=f"An error occurred during backup: {e}"
            )

        return SnapshotResult(
            success=True,
            message="System backed up successfully. Both data and code were archived.",
            data_path=str(data_path),
            code_path=str(archive_path),
            date=backup_date,
        )

    def _remove_previous(self, backup_dir: Path) -> None:
        """Delete the previous snapshot and any previous full archives."""
        data_path = backup_dir / DATA_FILENAME
        if data_path.exists():
            data_path.unlink()
            self.logger.info("Removed previous state snapshot")

        for archive in backup_dir.glob(f"{ARCHIVE_PREFIX}*{ARCHIVE_SUFFIX}"):
            archive.unlink()
            self.logger.info("Removed previous full archive: %s", archive.name)

    def _archive_directory(self, source_dir: Path, archive_path: Path, exclude: Path) -> int:
        """
        Zip source_dir into archive_path, skipping the exclude directory.

        Returns:
            Size of the written archive in bytes
        """
        exclude = exclude.resolve()
        with zipfile.ZipFile(
            archive_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9
        ) as archive:
            for dirpath, dirnames, filenames in os.walk(source_dir):
                current = Path(dirpath).resolve()
                # Prune in place so os.walk does not descend into the backup directory
                dirnames[:] = [
                    name for name in dirnames if (current / name).resolve() != exclude
                ]
                for filename in filenames:
                    file_path = current / filename
                    archive.write(file_path, file_path.relative_to(source_dir))
        return archive_path.stat().st_size

    def load(self, backup_path: str) -> SnapshotResult:
        """
        Read the state snapshot from the backup directory.

        Returns:
            SnapshotResult whose data holds the parsed snapshot on success
        """
        data_path = self.data_path(backup_path)
        if not data_path.exists():
            self.logger.warning("No snapshot found at %s", data_path)
            return SnapshotResult(success=False, message="Backup file not found.")

        try:
            with open(data_path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("snapshot is not a JSON object")
        except (OSError, ValueError) as e:
            self.logger.error("Failed to read snapshot %s: %s", data_path, e)
            return SnapshotResult(
                success=False, message=f"An error occurred during restore: {e}"
            )

        return SnapshotResult(
            success=True,
            message="System restored successfully.",
            data_path=str(data_path),
            date=data.get("backupDate"),
            data=data,
        )
