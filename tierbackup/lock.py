"""Advisory run lock backed by an exclusively created marker file."""
from __future__ import annotations

import contextlib
import json
import os
import socket
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .errors import AlreadyRunningError, LockError
from .logs import BackupLogger

# (inode, mtime_ns, serialized owner) of the marker as it was observed
MarkerId = Tuple[int, int, str]


@dataclass(slots=True)
class LockHandle:
    path: Path
    pid: int
    host: str
    ts: float


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except OSError:
        # EPERM: the process exists but belongs to someone else
        return True
    return True


class BackupLock(contextlib.AbstractContextManager):
    """Guarantee at most one active run per destination.

    ``acquire`` never waits: if the marker exists it raises
    :class:`AlreadyRunningError`. Used as a context manager the marker is
    removed on every exit path, but only by the instance that created it and
    only while the marker still names that instance as its owner.

    Stale markers are replaced while holding a sibling ``.reclaim`` guard,
    and only if the marker is still the exact file that was judged stale.
    """

    def __init__(
        self,
        path: Path,
        *,
        logger: Optional[BackupLogger] = None,
        stale_after_s: float = 0.0,
        reclaim_dead_owner: bool = False,
    ) -> None:
        self._path = Path(path)
        self._logger = logger
        self._stale_after_s = float(stale_after_s or 0)
        self._reclaim_dead_owner = bool(reclaim_dead_owner)
        self._handle: Optional[LockHandle] = None

    # ------------------------------------------------------------------
    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._handle is not None

    @property
    def guard_path(self) -> Path:
        return self._path.with_name(self._path.name + ".reclaim")

    def read_owner(self) -> Optional[Dict[str, Any]]:
        """Return the metadata stored in the marker, if any can be parsed."""

        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError:
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    def _identify(self) -> Optional[MarkerId]:
        try:
            stat = self._path.stat()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise LockError(f"Cannot inspect lock {self._path}: {exc}") from exc
        return (stat.st_ino, stat.st_mtime_ns, json.dumps(self.read_owner(), sort_keys=True))

    def _stale_reason(self) -> Optional[str]:
        try:
            age = time.time() - self._path.stat().st_mtime
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise LockError(f"Cannot inspect lock {self._path}: {exc}") from exc
        if self._stale_after_s > 0 and age > self._stale_after_s:
            return f"age {int(age)}s exceeds {int(self._stale_after_s)}s"
        if self._reclaim_dead_owner:
            owner = self.read_owner() or {}
            pid = owner.get("pid")
            if isinstance(pid, int) and owner.get("host") == socket.gethostname() and not _pid_alive(pid):
                return f"owner pid {pid} is gone"
        return None

    def _try_create(self) -> bool:
        try:
            fd = os.open(self._path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        except OSError as exc:
            raise LockError(f"Cannot create lock {self._path}: {exc}") from exc
        handle = LockHandle(path=self._path, pid=os.getpid(), host=socket.gethostname(), ts=time.time())
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as stream:
                json.dump({"pid": handle.pid, "host": handle.host, "ts": handle.ts}, stream)
        except OSError as exc:
            self._path.unlink(missing_ok=True)
            raise LockError(f"Cannot write lock {self._path}: {exc}") from exc
        self._handle = handle
        return True

    def _reclaim(self, observed: MarkerId, reason: str) -> bool:
        guard = self.guard_path
        try:
            fd = os.open(guard, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        except OSError as exc:
            raise LockError(f"Cannot create reclaim guard {guard}: {exc}") from exc
        os.close(fd)
        try:
            if self._identify() != observed:
                return False
            if self._logger:
                self._logger.warning("lock_reclaimed", path=str(self._path), reason=reason)
            try:
                self._path.unlink(missing_ok=True)
            except OSError as exc:
                raise LockError(f"Cannot remove stale lock {self._path}: {exc}") from exc
            return self._try_create()
        finally:
            guard.unlink(missing_ok=True)

    def acquire(self) -> LockHandle:
        if self._handle is not None:
            return self._handle
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            if self._logger:
                self._logger.error("lock_failed", path=str(self._path), error=str(exc))
            raise LockError(f"Cannot create lock directory {self._path.parent}: {exc}") from exc
        if self._try_create():
            return self._acquired()
        observed = self._identify()
        if observed is None:
            if self._try_create():
                return self._acquired()
        else:
            reason = self._stale_reason()
            if reason is not None and self._reclaim(observed, reason):
                return self._acquired()
        if self._logger:
            self._logger.error("lock_busy", path=str(self._path), owner=self.read_owner())
        raise AlreadyRunningError(f"Another backup process is already running (lock: {self._path})")

    def _acquired(self) -> LockHandle:
        assert self._handle is not None
        if self._logger:
            self._logger.info("lock_acquired", path=str(self._path), pid=self._handle.pid)
        return self._handle

    def _owns_marker(self, handle: LockHandle) -> bool:
        owner = self.read_owner() or {}
        return (
            owner.get("pid") == handle.pid
            and owner.get("host") == handle.host
            and owner.get("ts") == handle.ts
        )

    def release(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        if not self._owns_marker(handle):
            if self._logger:
                self._logger.warning("lock_lost", path=str(self._path), owner=self.read_owner())
            return
        try:
            self._path.unlink(missing_ok=True)
        except OSError as exc:
            if self._logger:
                self._logger.error("lock_release_failed", path=str(self._path), error=str(exc))
            raise LockError(f"Cannot remove lock {self._path}: {exc}") from exc
        if self._logger:
            self._logger.info("lock_released", path=str(self._path))

    # ------------------------------------------------------------------
    def __enter__(self) -> LockHandle:
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False


__all__ = ["BackupLock", "LockHandle"]
