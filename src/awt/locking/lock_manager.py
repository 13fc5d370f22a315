"""
Named advisory locks for coordinating awt processes.

There is one global lock (``global.lock``) that orders every worktree
creation and removal in a repository, and one lock per task
(``task-<id>.lock``) that orders the state transitions of that task. Task
locks live in their own namespace so that no task ID can alias the global
lock. A process that needs both takes the task lock first and the global
lock second.
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger

from ..idgen import validate_task_id
from ..utils.status_codes import (
    create_invalid_task_id_error,
    create_lock_held_error,
    create_lock_timeout_error,
)
from .primitives import (
    EXCLUSIVE_SUFFIX,
    PROBE_NAME,
    ExclusiveFilePrimitive,
    LockPrimitive,
    LockUnsupportedError,
    exclusive_path,
    select_lock_primitive,
)

GLOBAL_LOCK = "global"
TASK_LOCK_PREFIX = "task-"
DEFAULT_TIMEOUT = 30.0
RETRY_INTERVAL = 0.1
LOCK_SUFFIX = ".lock"


def task_lock_name(task_id: str) -> str:
    if not validate_task_id(task_id):
        raise create_invalid_task_id_error(task_id)
    return f"{TASK_LOCK_PREFIX}{task_id}"


class LockHandle:
    """An acquired lock. Releasing it twice is a no-op."""

    def __init__(self, name: str, path: Path, primitive: LockPrimitive, fd: int):
        self.name = name
        self.path = path
        self.primitive = primitive
        self._fd = fd
        self._released = False

    @property
    def mode(self) -> str:
        return self.primitive.mode

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            self.primitive.release(self.path, self._fd)
        except OSError as e:
            logger.warning("Error releasing lock {}: {}", self.name, e)
        logger.debug("Released lock {}", self.name)

    def __enter__(self) -> "LockHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"LockHandle({self.name!r}, {self.mode}, {state})"


@dataclass
class LockInfo:
    name: str
    path: Path
    held: bool
    owner_pid: Optional[int] = None


class LockManager:
    """Acquires named locks in a locks directory."""

    def __init__(
        self,
        locks_dir: Union[str, Path],
        timeout: float = DEFAULT_TIMEOUT,
        retry_interval: float = RETRY_INTERVAL,
        primitive: Optional[LockPrimitive] = None,
    ):
        self.locks_dir = Path(locks_dir)
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self.retry_interval = retry_interval
        self.primitive = primitive or select_lock_primitive(self.locks_dir)
        self._fallback = ExclusiveFilePrimitive()

    def lock_path(self, name: str) -> Path:
        if not validate_task_id(name):
            raise create_invalid_task_id_error(name)
        return self.locks_dir / f"{name}{LOCK_SUFFIX}"

    def _attempt(self, name: str, path: Path) -> Optional[LockHandle]:
        primitive = self.primitive
        try:
            fd = primitive.try_acquire(path)
        except LockUnsupportedError as e:
            logger.debug("Lock {} falling back to exclusive-create: {}", name, e)
            primitive = self._fallback
            fd = primitive.try_acquire(path)
        if fd is None:
            return None
        logger.debug("Acquired lock {} ({})", name, primitive.mode)
        return LockHandle(name, path, primitive, fd)

    def try_acquire(self, name: str) -> LockHandle:
        """Acquire a lock without waiting.

        Raises:
            LockHeldError: another process holds the lock
        """
        handle = self._attempt(name, self.lock_path(name))
        if handle is None:
            raise create_lock_held_error(name)
        return handle

    def acquire(self, name: str, timeout: Optional[float] = None) -> LockHandle:
        """Acquire a lock, retrying until timeout seconds have passed.

        Raises:
            LockTimeoutError: the lock stayed held for the whole timeout
        """
        timeout = self.timeout if timeout is None else timeout
        path = self.lock_path(name)
        deadline = time.monotonic() + timeout
        waited = False
        while True:
            handle = self._attempt(name, path)
            if handle is not None:
                return handle
            if time.monotonic() >= deadline:
                raise create_lock_timeout_error(name, timeout)
            if not waited:
                logger.info("Waiting for lock {}", name)
                waited = True
            time.sleep(self.retry_interval)

    def acquire_global(self, timeout: Optional[float] = None) -> LockHandle:
        return self.acquire(GLOBAL_LOCK, timeout)

    def acquire_task(self, task_id: str, timeout: Optional[float] = None) -> LockHandle:
        return self.acquire(task_lock_name(task_id), timeout)

    def try_acquire_task(self, task_id: str) -> LockHandle:
        return self.try_acquire(task_lock_name(task_id))

    def _lock_names(self) -> List[str]:
        names = []
        for entry in sorted(self.locks_dir.glob(f"*{LOCK_SUFFIX}")):
            if entry.name == PROBE_NAME:
                continue
            names.append(entry.name[: -len(LOCK_SUFFIX)])
        return names

    def list_locks(self) -> List[LockInfo]:
        """Report every lock file and whether it is currently held."""
        infos = []
        for name in self._lock_names():
            path = self.locks_dir / f"{name}{LOCK_SUFFIX}"
            try:
                handle = self._attempt(name, path)
            except OSError as e:
                logger.warning("Cannot inspect lock {}: {}", name, e)
                continue
            if handle is None:
                infos.append(LockInfo(name, path, True, ExclusiveFilePrimitive.owner_pid(path)))
            else:
                handle.release()
                infos.append(LockInfo(name, path, False))
        return infos

    def cleanup(self) -> List[str]:
        """Remove lock files that nobody holds.

        Known race: if another process opens and locks the same file between
        this sweep's release and its unlink, that process ends up holding a
        lock on an unlinked file while a later process creates a fresh one.
        Only run cleanup when no awt process is expected to be starting.

        Returns:
            Names of the lock files that were removed.
        """
        removed = []
        for token in sorted(self.locks_dir.glob(f"*{LOCK_SUFFIX}{EXCLUSIVE_SUFFIX}")):
            lock_path = token.with_name(token.name[: -len(EXCLUSIVE_SUFFIX)])
            if ExclusiveFilePrimitive.is_stale(lock_path):
                logger.info("Removing stale exclusive lock token {}", token.name)
                try:
                    token.unlink()
                except FileNotFoundError:
                    pass

        for name in self._lock_names():
            path = self.locks_dir / f"{name}{LOCK_SUFFIX}"
            try:
                handle = self._attempt(name, path)
            except OSError as e:
                logger.warning("Cannot inspect lock {}: {}", name, e)
                continue
            if handle is None:
                continue
            handle.release()
            try:
                path.unlink()
            except FileNotFoundError:
                pass
            else:
                removed.append(name)
                logger.info("Removed stale lock {}", name)

        for path in (self.locks_dir / PROBE_NAME, exclusive_path(self.locks_dir / PROBE_NAME)):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
        return removed
