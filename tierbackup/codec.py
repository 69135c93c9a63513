"""Tar/gzip archive codec with exclusion globs and snapshot-driven incremental mode."""
from __future__ import annotations

import contextlib
import fnmatch
import json
import os
import tarfile
import uuid
import zlib
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import ArchiveCreationError, RestoreFailedError
from .logs import BackupLogger
from .types import CodecResult

ARCHIVE_PREFIX = "backup-"
ARCHIVE_SUFFIX = ".tar.gz"
CHECKSUM_SUFFIX = ".sha256"
SNAPSHOT_NAME = "backup.snar"
_SNAPSHOT_VERSION = 1

FileState = Dict[str, Dict[str, int]]


def is_archive_name(name: str) -> bool:
    return name.startswith(ARCHIVE_PREFIX) and name.endswith(ARCHIVE_SUFFIX)


def is_excluded(relative: str, patterns: Sequence[str]) -> bool:
    """Return True when *relative* (POSIX, relative to the source root) matches a pattern.

    A pattern matches the whole relative path or any single path component,
    the way ``tar --exclude`` treats unanchored patterns.
    """

    if not patterns or not relative:
        return False
    parts = relative.split("/")
    for pattern in patterns:
        if fnmatch.fnmatchcase(relative, pattern):
            return True
        if any(fnmatch.fnmatchcase(part, pattern) for part in parts):
            return True
    return False


# ----------------------------------------------------------------------
# snapshot state

def load_snapshot(path: Path) -> Optional[FileState]:
    """Return the recorded file state, or None when no snapshot exists yet."""

    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ArchiveCreationError(f"Snapshot state {path} is unreadable: {exc}") from exc
    files = data.get("files") if isinstance(data, dict) else None
    if not isinstance(files, dict):
        raise ArchiveCreationError(f"Snapshot state {path} has no file table")
    return {str(key): dict(value) for key, value in files.items() if isinstance(value, dict)}


def _discard(path: Path) -> None:
    with contextlib.suppress(OSError):
        path.unlink(missing_ok=True)


def _temp_sibling(path: Path) -> Path:
    return path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")


def _stage_snapshot(path: Path, files: FileState, source: Path) -> Path:
    payload = {
        "version": _SNAPSHOT_VERSION,
        "updated_utc": datetime.now(timezone.utc).isoformat(),
        "source": str(source),
        "files": files,
    }
    temp_path = _temp_sibling(path)
    with temp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, sort_keys=True)
        handle.flush()
        os.fsync(handle.fileno())
    return temp_path


# ----------------------------------------------------------------------
# archive creation

def _nested_destination(source: Path, destination: Path) -> Optional[str]:
    """Return the destination relative to *source* when it lives inside the source tree."""

    try:
        relative = destination.resolve().relative_to(source.resolve())
    except ValueError:
        return None
    text = relative.as_posix()
    return None if text in ("", ".") else text


def write_archive(
    source: Path,
    archive_path: Path,
    *,
    snapshot_path: Path,
    exclude_patterns: Iterable[str] = (),
    logger: Optional[BackupLogger] = None,
) -> CodecResult:
    """Write *source* into *archive_path* and update the snapshot state.

    Without a snapshot state every file is archived (full mode). With one,
    only files whose size or modification time changed, plus all
    directories, are archived. The archive and the snapshot state are only
    committed once the whole tree has been written.
    """

    patterns = list(exclude_patterns)
    previous = load_snapshot(snapshot_path)
    incremental = previous is not None
    prev_files: FileState = previous or {}
    current: FileState = {}
    counters = {"added": 0, "skipped": 0}
    arc_root = source.name or "root"
    skip_relative = _nested_destination(source, archive_path.parent)

    def _filter(tarinfo: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        relative = tarinfo.name[len(arc_root):].lstrip("/")
        if is_excluded(relative, patterns):
            return None
        if skip_relative is not None and relative == skip_relative:
            return None
        if tarinfo.isdir():
            return tarinfo
        try:
            stat = os.lstat(source / relative)
            state = {"mtime_ns": int(stat.st_mtime_ns), "size": int(stat.st_size)}
        except OSError:
            state = {"mtime_ns": int(tarinfo.mtime) * 1_000_000_000, "size": int(tarinfo.size)}
        current[relative] = state
        if incremental and prev_files.get(relative) == state:
            counters["skipped"] += 1
            return None
        counters["added"] += 1
        return tarinfo

    partial = archive_path.with_name(f".{archive_path.name}.part")
    staged: Optional[Path] = None
    try:
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(partial, "w:gz") as tar:
            tar.add(str(source), arcname=arc_root, filter=_filter)
        staged = _stage_snapshot(snapshot_path, current, source)
        os.replace(partial, archive_path)
    except (OSError, tarfile.TarError) as exc:
        _discard(partial)
        if staged is not None:
            _discard(staged)
        raise ArchiveCreationError(f"Failed to create archive {archive_path.name}: {exc}") from exc
    try:
        os.replace(staged, snapshot_path)
    except OSError as exc:
        _discard(archive_path)
        _discard(staged)
        raise ArchiveCreationError(f"Failed to update snapshot state {snapshot_path}: {exc}") from exc

    if logger:
        logger.info(
            "archive_written",
            archive=archive_path.name,
            mode="incremental" if incremental else "full",
            added=counters["added"],
            unchanged=counters["skipped"],
        )
    return CodecResult(files_added=counters["added"], files_skipped=counters["skipped"], incremental=incremental)


# ----------------------------------------------------------------------
# extraction

def _escapes(name: str) -> bool:
    return name.startswith("/") or os.path.isabs(name) or ".." in PurePosixPath(name).parts


def _checked_members(tar: tarfile.TarFile, target: Path) -> List[tarfile.TarInfo]:
    """Validate member paths before anything is written.

    Symlink targets are restored verbatim, so names are checked lexically:
    no absolute or ``..`` names, nothing beneath a link stored in the same
    archive, nothing beneath a symlink already present in *target*, and no
    hard link pointing outside the archive.
    """

    root = Path(os.path.abspath(target))
    members = tar.getmembers()
    names = {PurePosixPath(member.name).as_posix() for member in members}
    links = {PurePosixPath(member.name).as_posix() for member in members if member.issym() or member.islnk()}
    for member in members:
        if _escapes(member.name):
            raise RestoreFailedError(f"Archive member {member.name!r} would extract outside {target}")
        parts = PurePosixPath(member.name).parts
        for depth in range(1, len(parts)):
            parent = "/".join(parts[:depth])
            if parent in links:
                raise RestoreFailedError(f"Archive member {member.name!r} lies beneath link {parent!r}")
            if parent not in names and (root / parent).is_symlink():
                raise RestoreFailedError(f"Archive member {member.name!r} lies beneath a symlink in {target}")
        if member.islnk() and _escapes(member.linkname):
            raise RestoreFailedError(f"Hard link {member.name!r} points outside the archive")
    return members


def _unlink_replaced_links(members: Sequence[tarfile.TarInfo], root: Path) -> None:
    # extraction must replace an existing symlink, never write through it
    for member in members:
        path = root / PurePosixPath(member.name).as_posix()
        if path.is_symlink():
            path.unlink()


def extract_archive(archive_path: Path, target: Path) -> int:
    """Extract every member of *archive_path* into *target*, overwriting files. Returns the member count."""

    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            members = _checked_members(tar, target)
            _unlink_replaced_links(members, target)
            if hasattr(tarfile, "fully_trusted_filter"):
                tar.extractall(target, members=members, filter="fully_trusted")
            else:  # pragma: no cover - interpreters without extraction filters
                tar.extractall(target, members=members)
    except (OSError, tarfile.TarError, EOFError, zlib.error) as exc:
        raise RestoreFailedError(f"Failed to extract {archive_path.name}: {exc}") from exc
    return len(members)


__all__ = [
    "ARCHIVE_PREFIX",
    "ARCHIVE_SUFFIX",
    "CHECKSUM_SUFFIX",
    "SNAPSHOT_NAME",
    "extract_archive",
    "is_archive_name",
    "is_excluded",
    "load_snapshot",
    "write_archive",
]
