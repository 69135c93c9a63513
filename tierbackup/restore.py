"""Restore an archive into a target directory."""
from __future__ import annotations

from pathlib import Path
from typing import Dict

from .codec import extract_archive
from .errors import BackupNotFoundError, RestoreFailedError
from .logs import BackupLogger


def restore_backup(
    destination: Path,
    name: str,
    target: Path,
    *,
    logger: BackupLogger,
) -> Dict[str, object]:
    """Extract archive *name* from *destination* into *target*.

    Existing files in *target* are overwritten. A failed extraction leaves
    whatever was already written in place.
    """

    archive_path = Path(destination) / name
    if not name or Path(name).name != name or not archive_path.is_file():
        raise BackupNotFoundError(f"Backup file not found: {archive_path}")

    target = Path(target)
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.event(event="restore_failed", phase="restore", ok=False, archive=name, error=str(exc))
        raise RestoreFailedError(f"Cannot create restore directory {target}: {exc}") from exc

    logger.info("restore_start", archive=name, target=str(target))
    try:
        members = extract_archive(archive_path, target)
    except RestoreFailedError as exc:
        logger.event(event="restore_failed", phase="restore", ok=False, archive=name, error=str(exc))
        raise

    logger.event(event="backup_restored", phase="restore", ok=True, archive=name, target=str(target))
    return {
        "archive": name,
        "target": str(target),
        "members": members,
    }


__all__ = ["restore_backup"]
