"""Backup manager: timestamped snapshots of the live deployment directory."""

from __future__ import annotations

import re
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

import structlog

from app_deployer.core.exceptions import BackupFailed
from app_deployer.core.models import BackupSnapshot
from app_deployer.utils.fs import chown_tree, clear_directory, copy_contents, is_empty_dir

logger = structlog.get_logger()

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
_SUFFIX_RE = re.compile(r"^(\d{8}_\d{6})(?:_\d+)?$")


class BackupManager:
    """Creates, restores and expires backups of the deployment directory.

    Backups live next to the deployment directory as
    ``<deploy_path>.backup.<YYYYMMDD_HHMMSS>``.
    """

    def __init__(self, deploy_user: Optional[str] = None):
        self.deploy_user = deploy_user

    @staticmethod
    def backup_prefix(deploy_path: Path) -> str:
        return f"{deploy_path.name}.backup."

    def snapshot(self, deploy_path: Path, now: Optional[datetime] = None) -> Optional[BackupSnapshot]:
        """Copy deploy_path to a new timestamped backup.

        Returns:
            The snapshot, or None when there is nothing to back up

        Raises:
            BackupFailed: If the copy cannot complete
        """
        if is_empty_dir(deploy_path):
            logger.info("No existing deployment to backup", deploy_path=str(deploy_path))
            return None

        now = now or datetime.now()
        backup_path = self._unique_backup_path(deploy_path, now)
        logger.info("Creating backup of current deployment", backup_path=str(backup_path))

        try:
            shutil.copytree(deploy_path, backup_path, symlinks=True)
            chown_tree(backup_path, self.deploy_user)
        except (OSError, shutil.Error, KeyError) as e:
            logger.error("Failed to create backup", backup_path=str(backup_path), error=str(e))
            shutil.rmtree(backup_path, ignore_errors=True)
            raise BackupFailed(f"Failed to create backup {backup_path}: {e}") from e

        logger.info("Backup created", backup_path=str(backup_path))
        return BackupSnapshot(path=backup_path, source_path=deploy_path, created_at=now)

    def restore(self, snapshot: BackupSnapshot, deploy_path: Path) -> None:
        """Overwrite deploy_path with the contents of snapshot.

        Raises:
            BackupFailed: If the snapshot is gone or the copy fails
        """
        if not snapshot.path.is_dir():
            raise BackupFailed(f"Backup not found: {snapshot.path}")

        logger.info("Restoring backup", backup_path=str(snapshot.path), deploy_path=str(deploy_path))
        try:
            deploy_path.mkdir(parents=True, exist_ok=True)
            clear_directory(deploy_path)
            copy_contents(snapshot.path, deploy_path)
            chown_tree(deploy_path, self.deploy_user)
        except (OSError, shutil.Error, KeyError) as e:
            raise BackupFailed(f"Failed to restore backup {snapshot.path}: {e}") from e

    def discard(self, snapshot: BackupSnapshot) -> None:
        """Delete a snapshot that rollback has consumed."""
        shutil.rmtree(snapshot.path, ignore_errors=True)
        logger.debug("Backup discarded", backup_path=str(snapshot.path))

    def list_backups(self, deploy_path: Path) -> List[BackupSnapshot]:
        """All backups of deploy_path, oldest first."""
        parent = deploy_path.parent
        if not parent.is_dir():
            return []

        prefix = self.backup_prefix(deploy_path)
        snapshots = []
        try:
            candidates = list(parent.iterdir())
        except OSError as e:
            logger.warning("Cannot list backups", parent=str(parent), error=str(e))
            return []

        for candidate in candidates:
            if not candidate.name.startswith(prefix) or not candidate.is_dir():
                continue
            try:
                created_at = self._created_at(candidate, prefix)
            except OSError as e:
                logger.warning("Skipping unreadable backup", backup_path=str(candidate), error=str(e))
                continue
            snapshots.append(BackupSnapshot(path=candidate, source_path=deploy_path, created_at=created_at))
        return sorted(snapshots, key=lambda s: (s.created_at, s.path.name))

    def sweep(
        self,
        deploy_path: Path,
        retention_days: int = 7,
        now: Optional[datetime] = None,
    ) -> List[Path]:
        """Remove backups older than the retention window.

        Returns:
            Paths that were removed
        """
        now = now or datetime.now()
        cutoff = now - timedelta(days=retention_days)
        removed = []
        for snapshot in self.list_backups(deploy_path):
            if snapshot.created_at >= cutoff:
                continue
            try:
                shutil.rmtree(snapshot.path)
                removed.append(snapshot.path)
                logger.info("Removed expired backup", backup_path=str(snapshot.path),
                            age_days=round(snapshot.age_days(now), 1))
            except OSError as e:
                logger.warning("Failed to remove expired backup", backup_path=str(snapshot.path), error=str(e))
        return removed

    def _unique_backup_path(self, deploy_path: Path, now: datetime) -> Path:
        base = deploy_path.parent / f"{self.backup_prefix(deploy_path)}{now.strftime(TIMESTAMP_FORMAT)}"
        candidate = base
        counter = 1
        while candidate.exists():
            candidate = base.with_name(f"{base.name}_{counter}")
            counter += 1
        return candidate

    @staticmethod
    def _created_at(path: Path, prefix: str) -> datetime:
        match = _SUFFIX_RE.match(path.name[len(prefix):])
        if match:
            return datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
        return datetime.fromtimestamp(path.stat().st_mtime)
