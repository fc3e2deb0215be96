"""Single-instance lock.

Two toolkit processes operating on the same devices would undo each other's
unmounts and interleave writes, so only one may run at a time.

The lock is a directory holding a ``pid`` file. It is built under a
staging name and renamed into place, so the lock never exists without its
pid. A lock whose pid is no longer alive is stale and is taken over; a
directory without a pid is stale only once it is older than
``STALE_GRACE_SECONDS``.

Usage:
    from usb_toolkit.storage.device_lock import InstanceLock

    with InstanceLock():
        run_menu()
"""

from __future__ import annotations

import os
import shutil
import time
from pathlib import Path

from usb_toolkit.config import settings
from usb_toolkit.logging import LoggerFactory
from usb_toolkit.storage.exceptions import LockHeldError


log = LoggerFactory.for_system()

STALE_GRACE_SECONDS = 10.0


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    return True


class InstanceLock:
    def __init__(self, path: os.PathLike | str | None = None):
        self.path = Path(path or settings.get_setting("lock_path", settings.DEFAULT_LOCK_PATH))
        self.pid_file = self.path / "pid"
        self.acquired = False

    def read_pid(self) -> int | None:
        try:
            return int(self.pid_file.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def acquire(self) -> None:
        """Take the lock or raise :class:`LockHeldError` without waiting."""
        for _ in range(2):
            if self.path.exists() or self.path.is_symlink():
                self._reclaim_if_stale()
                continue
            if self._publish():
                self.acquired = True
                log.debug(f"Acquired instance lock {self.path}")
                return
        raise LockHeldError(self.read_pid() or 0, str(self.path))

    def _reclaim_if_stale(self) -> None:
        holder = self.read_pid()
        if holder is None:
            # Only a crashed release leaves a directory without a pid.
            try:
                age = time.time() - self.path.stat().st_mtime
            except OSError:
                return
            if age < STALE_GRACE_SECONDS:
                raise LockHeldError(0, str(self.path))
        elif holder != os.getpid() and pid_alive(holder):
            raise LockHeldError(holder, str(self.path))
        log.warning(f"Removing stale lock {self.path} (pid {holder})")
        shutil.rmtree(self.path, ignore_errors=True)

    def _publish(self) -> bool:
        """Rename a staging directory that already holds our pid into place."""
        staging = self.path.with_name(f"{self.path.name}.tmp.{os.getpid()}")
        shutil.rmtree(staging, ignore_errors=True)
        staging.mkdir()
        (staging / "pid").write_text(f"{os.getpid()}\n", encoding="utf-8")
        try:
            # Fails when another instance published a (non-empty) lock first.
            os.rename(staging, self.path)
        except OSError:
            shutil.rmtree(staging, ignore_errors=True)
            return False
        return True

    def release(self) -> None:
        """Remove the lock, but only if this process owns it."""
        if not self.path.exists():
            self.acquired = False
            return
        if self.read_pid() != os.getpid():
            log.debug(f"Not releasing {self.path}: owned by another process")
            self.acquired = False
            return
        shutil.rmtree(self.path, ignore_errors=True)
        self.acquired = False
        log.debug(f"Released instance lock {self.path}")

    def __enter__(self) -> InstanceLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
