"""Public API for backup operations."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from tiercore.settings import BackupConfig

from .create import Clock, create_backup
from .errors import BackupError, SourceNotFoundError
from .lock import BackupLock
from .logs import BackupLogger
from .notify import FileNotifier, Notifier
from .restore import restore_backup
from .retention import RetentionPolicy, apply_retention, load_archives
from .types import BackupSummary, RetentionSummary, RunSummary, VerifyResult
from .verify import checksum_path_for, verify_archive, verify_new_archive


class BackupService:
    """Coordinate locking, creation, verification, rotation, restore and listing."""

    def __init__(
        self,
        config: BackupConfig,
        *,
        logger: Optional[BackupLogger] = None,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config
        self._logger = logger or BackupLogger(config.log_file)
        self._notifier = notifier or FileNotifier(config.email_file, logger=self._logger)
        self._clock = clock

    # ------------------------------------------------------------------
    @property
    def config(self) -> BackupConfig:
        return self._config

    @property
    def destination(self) -> Path:
        return self._config.destination

    def retention_policy(self) -> RetentionPolicy:
        return RetentionPolicy(
            daily_keep=self._config.daily_keep,
            weekly_keep=self._config.weekly_keep,
            monthly_keep=self._config.monthly_keep,
        )

    def lock(self) -> BackupLock:
        return BackupLock(
            self._config.lock_file,
            logger=self._logger,
            stale_after_s=self._config.lock_stale_after_s,
            reclaim_dead_owner=self._config.lock_reclaim_dead_owner,
        )

    # ------------------------------------------------------------------
    def run(self, source: Path, *, dry_run: bool = False) -> RunSummary:
        """Create, verify and rotate under the run lock.

        The source is checked before the lock is taken, so a missing source
        leaves the destination untouched. A dry run only reports what would
        be archived and takes no lock.
        Any failure stops the remaining phases; the lock is always released.
        """

        source = Path(source)
        try:
            if not source.is_dir():
                raise SourceNotFoundError(f"Source directory not found: {source}")
            if dry_run:
                backup = create_backup(
                    source,
                    self.destination,
                    logger=self._logger,
                    notifier=self._notifier,
                    exclude_patterns=self._config.exclude_patterns,
                    dry_run=True,
                    clock=self._clock,
                )
                return RunSummary(backup=backup)

            with self.lock():
                backup = create_backup(
                    source,
                    self.destination,
                    logger=self._logger,
                    notifier=self._notifier,
                    exclude_patterns=self._config.exclude_patterns,
                    clock=self._clock,
                )
                verified = verify_new_archive(backup.path, logger=self._logger, notifier=self._notifier)
                retention = apply_retention(self.destination, self.retention_policy(), logger=self._logger)
        except BackupError as exc:
            self._logger.error("run_failed", kind=type(exc).__name__, error=str(exc))
            raise

        self._logger.event(event="run_complete", phase="run", ok=True, archive=backup.name)
        return RunSummary(backup=backup, verify=verified, retention=retention)

    # ------------------------------------------------------------------
    def list_backups(self) -> List[BackupSummary]:
        summaries: List[BackupSummary] = []
        for info in load_archives(self.destination):
            summaries.append(
                BackupSummary(
                    name=info.name,
                    created=info.modified.astimezone(),
                    size_bytes=info.size_bytes,
                    has_checksum=checksum_path_for(info.path).is_file(),
                    path=info.path,
                )
            )
        return summaries

    # ------------------------------------------------------------------
    def verify(self, name: str) -> VerifyResult:
        try:
            return verify_archive(self.destination, name, logger=self._logger)
        except BackupError as exc:
            self._logger.error("verify_failed", kind=type(exc).__name__, error=str(exc))
            raise

    # ------------------------------------------------------------------
    def restore(self, name: str, target: Path) -> Dict[str, object]:
        try:
            return restore_backup(self.destination, name, Path(target), logger=self._logger)
        except BackupError as exc:
            self._logger.error("restore_error", kind=type(exc).__name__, error=str(exc))
            raise

    # ------------------------------------------------------------------
    def apply_retention(self, *, now: Optional[datetime] = None) -> RetentionSummary:
        return apply_retention(self.destination, self.retention_policy(), logger=self._logger, now=now)


__all__ = [
    "BackupError",
    "BackupService",
    "BackupSummary",
    "RetentionPolicy",
    "RetentionSummary",
]
