import io
import os
import tarfile
from datetime import datetime

import pytest

from tierbackup.create import create_backup
from tierbackup.errors import BackupNotFoundError, RestoreFailedError
from tierbackup.restore import restore_backup


class StubLogger:
    def __init__(self) -> None:
        self.events = []

    def info(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("info", event, extra))

    def warning(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("warning", event, extra))

    def error(self, event: str, **extra):  # pragma: no cover - recorder
        self.events.append(("error", event, extra))

    def event(self, *, event: str, phase: str, ok: bool, **extra):  # pragma: no cover - recorder
        self.events.append(("event", event, phase, ok, extra))


class StubNotifier:
    def notify(self, subject: str, message: str) -> None:  # pragma: no cover - unused
        pass


def _backup(tmp_path, source_tree):
    dest = tmp_path / "dest"
    result = create_backup(
        source_tree,
        dest,
        logger=StubLogger(),
        notifier=StubNotifier(),
        clock=lambda: datetime(2024, 6, 1, 12, 0),
    )
    return dest, result.name


def test_restore_extracts_full_tree(tmp_path, source_tree):
    dest, name = _backup(tmp_path, source_tree)
    target = tmp_path / "restore" / "here"
    logger = StubLogger()

    result = restore_backup(dest, name, target, logger=logger)

    assert (target / "project" / "README.md").read_text(encoding="utf-8") == "hello\n"
    assert (target / "project" / "docs" / "guide.txt").exists()
    assert result["members"] >= 4
    assert logger.events[-1][1] == "backup_restored"


def test_restore_overwrites_existing_files(tmp_path, source_tree):
    dest, name = _backup(tmp_path, source_tree)
    target = tmp_path / "restore"
    (target / "project").mkdir(parents=True)
    (target / "project" / "README.md").write_text("stale", encoding="utf-8")
    (target / "unrelated.txt").write_text("untouched", encoding="utf-8")

    restore_backup(dest, name, target, logger=StubLogger())

    assert (target / "project" / "README.md").read_text(encoding="utf-8") == "hello\n"
    assert (target / "unrelated.txt").read_text(encoding="utf-8") == "untouched"


def test_missing_archive_leaves_target_untouched(tmp_path, source_tree):
    dest, _ = _backup(tmp_path, source_tree)
    existing = tmp_path / "existing"
    existing.mkdir()
    (existing / "keep.txt").write_text("keep", encoding="utf-8")
    fresh = tmp_path / "fresh"

    with pytest.raises(BackupNotFoundError):
        restore_backup(dest, "backup-1999-01-01-0000.tar.gz", existing, logger=StubLogger())
    with pytest.raises(BackupNotFoundError):
        restore_backup(dest, "backup-1999-01-01-0000.tar.gz", fresh, logger=StubLogger())
    with pytest.raises(BackupNotFoundError):
        restore_backup(dest, "../dest/backup.snar", fresh, logger=StubLogger())

    assert [p.name for p in existing.iterdir()] == ["keep.txt"]
    assert not fresh.exists()


def test_corrupt_archive_fails_restore(tmp_path):
    dest = tmp_path / "dest"
    dest.mkdir()
    name = "backup-2024-06-01-1200.tar.gz"
    (dest / name).write_bytes(b"definitely not gzip")
    logger = StubLogger()

    with pytest.raises(RestoreFailedError):
        restore_backup(dest, name, tmp_path / "target", logger=logger)

    assert any(entry[1] == "restore_failed" for entry in logger.events)


def test_member_escaping_target_is_rejected(tmp_path):
    dest = tmp_path / "dest"
    dest.mkdir()
    name = "backup-2024-06-01-1300.tar.gz"
    payload = b"owned"
    with tarfile.open(dest / name, "w:gz") as archive:
        info = tarfile.TarInfo("../escaped.txt")
        info.size = len(payload)
        archive.addfile(info, io.BytesIO(payload))
    target = tmp_path / "target"

    with pytest.raises(RestoreFailedError):
        restore_backup(dest, name, target, logger=StubLogger())

    assert not (tmp_path / "escaped.txt").exists()


def test_symlinks_are_restored_verbatim(tmp_path, source_tree):
    os.symlink("/nonexistent/absolute/target", source_tree / "abs_link")
    os.symlink("../../outside.txt", source_tree / "docs" / "up_link")
    dest, name = _backup(tmp_path, source_tree)
    target = tmp_path / "restore"

    restore_backup(dest, name, target, logger=StubLogger())
    # a second restore replaces the links it finds instead of following them
    restore_backup(dest, name, target, logger=StubLogger())

    assert os.readlink(target / "project" / "abs_link") == "/nonexistent/absolute/target"
    assert os.readlink(target / "project" / "docs" / "up_link") == "../../outside.txt"
    assert (target / "project" / "README.md").read_text(encoding="utf-8") == "hello\n"


def _crafted_archive(dest, name, members):
    with tarfile.open(dest / name, "w:gz") as archive:
        for info, payload in members:
            archive.addfile(info, io.BytesIO(payload) if payload is not None else None)


def test_member_beneath_archived_symlink_is_rejected(tmp_path):
    dest = tmp_path / "dest"
    dest.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    name = "backup-2024-06-01-1400.tar.gz"
    link = tarfile.TarInfo("project/link")
    link.type = tarfile.SYMTYPE
    link.linkname = str(outside)
    payload = b"owned"
    child = tarfile.TarInfo("project/link/evil.txt")
    child.size = len(payload)
    _crafted_archive(dest, name, [(link, None), (child, payload)])

    with pytest.raises(RestoreFailedError):
        restore_backup(dest, name, tmp_path / "target", logger=StubLogger())

    assert not (outside / "evil.txt").exists()


def test_member_beneath_existing_symlink_in_target_is_rejected(tmp_path):
    dest = tmp_path / "dest"
    dest.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    target = tmp_path / "target"
    (target / "project").mkdir(parents=True)
    os.symlink(outside, target / "project" / "sub")
    name = "backup-2024-06-01-1500.tar.gz"
    payload = b"owned"
    member = tarfile.TarInfo("project/sub/evil.txt")
    member.size = len(payload)
    _crafted_archive(dest, name, [(member, payload)])

    with pytest.raises(RestoreFailedError):
        restore_backup(dest, name, target, logger=StubLogger())

    assert not (outside / "evil.txt").exists()
