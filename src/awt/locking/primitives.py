"""
Low-level lock primitives.

``FlockPrimitive`` takes an advisory ``flock`` on the lock file itself and is
released by the kernel when the holder dies. ``ExclusiveFilePrimitive`` is
the fallback for filesystems without ``flock`` (some network and FUSE
mounts): it creates ``<name>.lock.exclusive`` with O_EXCL and records the
owner's pid in it.
"""

import errno
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from loguru import logger

try:
    import fcntl
except ImportError:  # not available on Windows
    fcntl = None

EXCLUSIVE_SUFFIX = ".exclusive"
PROBE_NAME = ".probe.lock"
# Empty tokens younger than this may still be getting their pid written.
EMPTY_TOKEN_GRACE_SECONDS = 10.0

_CONTENDED_ERRNOS = {errno.EWOULDBLOCK, errno.EAGAIN, errno.EACCES}


class LockUnsupportedError(OSError):
    """The filesystem does not support this primitive."""


def exclusive_path(lock_path: Path) -> Path:
    return lock_path.with_name(lock_path.name + EXCLUSIVE_SUFFIX)


class LockPrimitive(ABC):
    """A way of taking a non-blocking exclusive lock on a path."""

    mode: str = ""

    @abstractmethod
    def try_acquire(self, lock_path: Path) -> Optional[int]:
        """Try once to lock lock_path.

        Returns:
            An open file descriptor owned by the lock, or None if the lock is held.

        Raises:
            LockUnsupportedError: the primitive cannot work on this filesystem.
        """

    @abstractmethod
    def release(self, lock_path: Path, fd: int) -> None:
        """Release a lock taken by try_acquire."""


class FlockPrimitive(LockPrimitive):
    mode = "flock"

    def try_acquire(self, lock_path: Path) -> Optional[int]:
        if fcntl is None:
            raise LockUnsupportedError(errno.ENOSYS, "flock is not available on this platform")
        fd = os.open(str(lock_path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            os.close(fd)
            if e.errno in _CONTENDED_ERRNOS:
                return None
            raise LockUnsupportedError(e.errno, f"flock failed on {lock_path}: {e.strerror}") from e
        return fd

    def release(self, lock_path: Path, fd: int) -> None:
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


class ExclusiveFilePrimitive(LockPrimitive):
    mode = "exclusive"

    def try_acquire(self, lock_path: Path) -> Optional[int]:
        token = exclusive_path(lock_path)
        try:
            fd = os.open(str(token), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return None
        os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        # Keep the plain lock file around so the lock shows up in listings.
        lock_path.touch(exist_ok=True)
        return fd

    def release(self, lock_path: Path, fd: int) -> None:
        try:
            os.close(fd)
        finally:
            try:
                exclusive_path(lock_path).unlink()
            except FileNotFoundError:
                pass

    @staticmethod
    def owner_pid(lock_path: Path) -> Optional[int]:
        """Return the pid recorded in a fallback token, if readable."""
        try:
            content = exclusive_path(lock_path).read_text(encoding="ascii").strip()
        except (FileNotFoundError, UnicodeDecodeError):
            return None
        return int(content) if content.isdigit() else None

    @staticmethod
    def is_stale(lock_path: Path) -> bool:
        """True when the token's owner is dead, or it never got a pid and is old."""
        token = exclusive_path(lock_path)
        pid = ExclusiveFilePrimitive.owner_pid(lock_path)
        if pid is not None:
            return pid != os.getpid() and not pid_alive(pid)
        try:
            age = time.time() - token.stat().st_mtime
        except FileNotFoundError:
            return False
        return age > EMPTY_TOKEN_GRACE_SECONDS


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def select_lock_primitive(locks_dir: Path) -> LockPrimitive:
    """Probe locks_dir and return the best primitive it supports."""
    probe = Path(locks_dir) / PROBE_NAME
    flock = FlockPrimitive()
    try:
        fd = flock.try_acquire(probe)
    except LockUnsupportedError as e:
        logger.warning("flock unsupported in {} ({}), using exclusive-create locks", locks_dir, e)
        return ExclusiveFilePrimitive()
    if fd is not None:
        flock.release(probe, fd)
    return flock
