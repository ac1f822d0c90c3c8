"""
hostsweep/base/lock.py

Purpose:
    Guarantees that at most one sweep runs on a host at a time.

Semantics:
    - FlockLock (primary): an advisory exclusive flock on a lock file. The
      kernel drops it when the process dies, so a crash never leaves a stuck
      lock. The holder's PID is written into the file after acquisition.
    - MkdirLock (fallback): atomic creation of a lock directory holding a
      ``pid`` file. Used when flock is not available. If the process is
      killed without running its cleanup the directory stays behind and
      must be removed by an operator; staleness is never guessed.
    - Acquisition never waits: a busy lock raises LockBusyError at once.
    - Dry-run sweeps do not lock at all (the orchestrator skips this module).
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import signal
from abc import ABC, abstractmethod
from typing import Iterable, Optional

from hostsweep.base.exceptions import LockBusyError
from hostsweep.errors import ErrorCode, SweepError

try:
    import fcntl
except ImportError:  # not a POSIX platform
    fcntl = None

log = logging.getLogger(__name__)

DEFAULT_LOCK_DIR = "/var/lock"
LOCK_FILE_NAME = "hostsweep.lock"
LOCK_DIR_NAME = "hostsweep.lockdir"


def _read_pid(path: str) -> Optional[int]:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            text = fh.read().strip()
    except OSError:
        return None
    return int(text) if text.isdigit() else None


class ExclusiveLock(ABC):
    """Shared acquire/release contract for both lock mechanisms."""

    mechanism = "abstract"

    def __init__(self, path: str):
        self.path = path
        self.pid: Optional[int] = None

    @property
    def held(self) -> bool:
        return self.pid is not None

    @abstractmethod
    def acquire(self) -> "ExclusiveLock":
        """Take the lock or raise LockBusyError. Never blocks."""

    @abstractmethod
    def release(self) -> None:
        """Give the lock back. Safe to call more than once."""

    def __enter__(self) -> "ExclusiveLock":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} path={self.path} pid={self.pid}>"


class FlockLock(ExclusiveLock):
    mechanism = "flock"

    def __init__(self, path: str):
        super().__init__(path)
        self._fd: Optional[int] = None

    def acquire(self) -> "FlockLock":
        if fcntl is None:
            raise SweepError(ErrorCode.LOCK_UNAVAILABLE, "fcntl.flock is not available")

        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            os.close(fd)
            if exc.errno in (errno.EWOULDBLOCK, errno.EAGAIN, errno.EACCES):
                raise LockBusyError(self.path, _read_pid(self.path)) from exc
            raise SweepError(
                ErrorCode.LOCK_UNAVAILABLE,
                f"flock unsupported on {self.path}: {exc}",
                details={"errno": exc.errno},
            ) from exc

        pid = os.getpid()
        os.ftruncate(fd, 0)
        os.write(fd, f"{pid}\n".encode("ascii"))
        self._fd = fd
        self.pid = pid
        log.debug(f"Lock acquired via flock: {self.path} (pid {pid})")
        return self

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
            self.pid = None
        log.debug(f"Lock released: {self.path}")


class MkdirLock(ExclusiveLock):
    mechanism = "mkdir"

    @property
    def pid_file(self) -> str:
        return os.path.join(self.path, "pid")

    def acquire(self) -> "MkdirLock":
        try:
            os.mkdir(self.path, 0o700)
        except FileExistsError as exc:
            raise LockBusyError(self.path, _read_pid(self.pid_file)) from exc

        pid = os.getpid()
        try:
            with open(self.pid_file, "w", encoding="utf-8") as fh:
                fh.write(f"{pid}\n")
        except OSError:
            shutil.rmtree(self.path, ignore_errors=True)
            raise
        self.pid = pid
        log.debug(f"Lock acquired via lock directory: {self.path} (pid {pid})")
        return self

    def release(self) -> None:
        if self.pid is None:
            return
        try:
            os.remove(self.pid_file)
        except FileNotFoundError:
            pass
        try:
            os.rmdir(self.path)
        except OSError:
            # Something else was dropped inside; still ours, so take it all.
            shutil.rmtree(self.path, ignore_errors=True)
        self.pid = None
        log.debug(f"Lock released: {self.path}")


def flock_supported() -> bool:
    return fcntl is not None and hasattr(fcntl, "flock")


def acquire_lock(lock_dir: str = DEFAULT_LOCK_DIR) -> ExclusiveLock:
    """
    Take the single-instance lock with whichever mechanism the host supports.

    flock is tried first; the lock directory is used only when flock is
    missing or rejected by the filesystem. LockBusyError propagates from
    either mechanism.
    """
    os.makedirs(lock_dir, exist_ok=True)

    if flock_supported():
        try:
            return FlockLock(os.path.join(lock_dir, LOCK_FILE_NAME)).acquire()
        except LockBusyError:
            raise
        except SweepError as exc:
            log.warning(f"{exc}; falling back to lock directory")

    return MkdirLock(os.path.join(lock_dir, LOCK_DIR_NAME)).acquire()


def exit_on_signals(signals: Iterable[int] = (signal.SIGTERM, signal.SIGHUP)) -> None:
    """
    Turn termination signals into SystemExit so scoped lock release runs.

    SIGINT already raises KeyboardInterrupt. Must be called from the main
    thread.
    """
    def _handler(signum, frame):
        raise SystemExit(128 + signum)

    for sig in signals:
        signal.signal(sig, _handler)
