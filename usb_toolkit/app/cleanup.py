"""Cleanup of partial results on exit or interrupt.

Operations register the output file they are writing and any temporary
mount they create. When the process exits, or receives SIGINT/SIGTERM,
the registry removes partial files, unmounts temporary mounts and releases
the instance lock. Signals end the process with exit code 130.
"""

from __future__ import annotations

import os
import signal
import sys
from contextlib import contextmanager
from typing import Iterator

from usb_toolkit.logging import LoggerFactory
from usb_toolkit.storage.commands import run_command
from usb_toolkit.storage.device_lock import InstanceLock


log = LoggerFactory.for_system()

INTERRUPT_EXIT_CODE = 130


class CleanupRegistry:
    def __init__(self, lock: InstanceLock | None = None):
        self.lock = lock
        self.in_progress_files: list[str] = []
        self.temp_mounts: list[str] = []
        self._previous_handlers: dict[int, object] = {}
        self._cleaned = False

    # -- registration --------------------------------------------------------

    def add_file(self, path: str) -> None:
        if path not in self.in_progress_files:
            self.in_progress_files.append(path)

    def discard_file(self, path: str) -> None:
        if path in self.in_progress_files:
            self.in_progress_files.remove(path)

    @contextmanager
    def tracking_file(self, path: str) -> Iterator[str]:
        """Remove ``path`` if the block fails; forget it if it succeeds."""
        self.add_file(path)
        try:
            yield path
        except BaseException:
            self._remove_file(path)
            self.discard_file(path)
            raise
        self.discard_file(path)

    def add_mount(self, mount_point: str) -> None:
        if mount_point not in self.temp_mounts:
            self.temp_mounts.append(mount_point)

    def discard_mount(self, mount_point: str) -> None:
        if mount_point in self.temp_mounts:
            self.temp_mounts.remove(mount_point)

    # -- teardown ------------------------------------------------------------

    def _remove_file(self, path: str) -> None:
        try:
            os.remove(path)
            log.info(f"Removed incomplete file {path}")
        except FileNotFoundError:
            pass
        except OSError as error:
            log.warning(f"Could not remove incomplete file {path}: {error}")

    def cleanup(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True
        for path in list(self.in_progress_files):
            self._remove_file(path)
        self.in_progress_files.clear()
        for mount_point in list(self.temp_mounts):
            run_command(["sync"], check=False, log_output=False)
            result = run_command(["umount", mount_point], check=False)
            if result.returncode == 0:
                try:
                    os.rmdir(mount_point)
                except OSError:
                    log.debug(f"Keeping mount point directory {mount_point}")
            else:
                log.warning(f"Could not unmount temporary mount {mount_point}")
        self.temp_mounts.clear()
        if self.lock is not None:
            self.lock.release()

    def _handle_signal(self, signum, frame) -> None:
        log.warning(f"Interrupted by signal {signum}")
        self.cleanup()
        sys.exit(INTERRUPT_EXIT_CODE)

    def install_signal_handlers(self) -> None:
        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def __enter__(self) -> CleanupRegistry:
        self.install_signal_handlers()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            self.cleanup()
        finally:
            self.restore_signal_handlers()
