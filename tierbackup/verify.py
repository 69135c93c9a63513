"""Write and verify SHA-256 fingerprint records for archives."""
from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Optional

from .codec import CHECKSUM_SUFFIX, is_archive_name
from .errors import BackupNotFoundError, ChecksumMismatchError, ChecksumWriteError
from .logs import BackupLogger
from .notify import SUBJECT_SUCCESS, SUBJECT_VERIFY_FAILED, Notifier, notify_failure
from .types import VerifyResult

_RECORD_LINE = re.compile(r"^(?P<digest>[0-9a-fA-F]{64}) [ *](?P<name>.+)$")


def sha256_for_path(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def checksum_path_for(archive_path: Path) -> Path:
    return archive_path.with_name(archive_path.name + CHECKSUM_SUFFIX)


def read_checksum(record_path: Path, archive_name: str) -> str:
    """Return the digest stored for *archive_name* in a ``sha256sum`` style record."""

    try:
        lines = record_path.read_text(encoding="utf-8").splitlines()
    except FileNotFoundError as exc:
        raise ChecksumMismatchError(f"Checksum file not found: {record_path.name}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ChecksumMismatchError(f"Checksum file unreadable: {record_path.name}: {exc}") from exc
    for line in lines:
        match = _RECORD_LINE.match(line.strip())
        if match and Path(match.group("name")).name == archive_name:
            return match.group("digest").lower()
    raise ChecksumMismatchError(f"No checksum entry for {archive_name} in {record_path.name}")


def _compare(archive_path: Path, record_path: Path) -> str:
    expected = read_checksum(record_path, archive_path.name)
    try:
        actual = sha256_for_path(archive_path)
    except OSError as exc:
        raise ChecksumMismatchError(f"Cannot read {archive_path.name}: {exc}") from exc
    if actual != expected:
        raise ChecksumMismatchError(
            f"Checksum mismatch for {archive_path.name}: expected {expected}, got {actual}"
        )
    return actual


def verify_new_archive(archive_path: Path, *, logger: BackupLogger, notifier: Notifier) -> VerifyResult:
    """Fingerprint a freshly written archive, then re-read and compare it.

    The second pass recomputes the digest from disk so that truncated or
    silently corrupted writes are caught before rotation runs.
    """

    name = archive_path.name
    record_path = checksum_path_for(archive_path)
    try:
        digest = sha256_for_path(archive_path)
        record_path.write_text(f"{digest}  {name}\n", encoding="utf-8")
    except OSError as exc:
        logger.event(event="checksum_write_failed", phase="verify", ok=False, archive=name, error=str(exc))
        raise ChecksumWriteError(f"Failed to create checksum for {name}: {exc}") from exc
    logger.info("checksum_written", archive=name, record=record_path.name)

    try:
        verified = _compare(archive_path, record_path)
    except ChecksumMismatchError as exc:
        logger.event(event="backup_verify_failed", phase="verify", ok=False, archive=name, error=str(exc))
        notify_failure(notifier, SUBJECT_VERIFY_FAILED, f"Checksum failed for {name}", logger=logger)
        raise

    logger.event(event="backup_verified", phase="verify", ok=True, archive=name, sha256=verified)
    notifier.notify(SUBJECT_SUCCESS, f"Backup {name} verified successfully.")
    return VerifyResult(name=name, digest=verified, record_path=record_path)


def verify_archive(
    destination: Path,
    name: str,
    *,
    logger: BackupLogger,
    notifier: Optional[Notifier] = None,
) -> VerifyResult:
    """Re-verify an existing archive against its stored fingerprint record."""

    archive_path = Path(destination) / name
    if Path(name).name != name or not is_archive_name(name) or not archive_path.is_file():
        raise BackupNotFoundError(f"Backup file not found: {archive_path}")
    record_path = checksum_path_for(archive_path)
    try:
        verified = _compare(archive_path, record_path)
    except ChecksumMismatchError as exc:
        logger.event(event="backup_verify_failed", phase="verify", ok=False, archive=name, error=str(exc))
        if notifier is not None:
            notify_failure(notifier, SUBJECT_VERIFY_FAILED, f"Checksum failed for {name}", logger=logger)
        raise
    logger.event(event="backup_verified", phase="verify", ok=True, archive=name, sha256=verified)
    return VerifyResult(name=name, digest=verified, record_path=record_path)


__all__ = [
    "checksum_path_for",
    "read_checksum",
    "sha256_for_path",
    "verify_archive",
    "verify_new_archive",
]
