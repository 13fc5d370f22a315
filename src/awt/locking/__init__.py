from .lock_manager import (
    DEFAULT_TIMEOUT,
    GLOBAL_LOCK,
    RETRY_INTERVAL,
    TASK_LOCK_PREFIX,
    LockHandle,
    LockInfo,
    LockManager,
    task_lock_name,
)
from .primitives import (
    ExclusiveFilePrimitive,
    FlockPrimitive,
    LockPrimitive,
    LockUnsupportedError,
    select_lock_primitive,
)

__all__ = [
    "DEFAULT_TIMEOUT",
    "GLOBAL_LOCK",
    "RETRY_INTERVAL",
    "TASK_LOCK_PREFIX",
    "ExclusiveFilePrimitive",
    "FlockPrimitive",
    "LockHandle",
    "LockInfo",
    "LockManager",
    "LockPrimitive",
    "LockUnsupportedError",
    "select_lock_primitive",
    "task_lock_name",
]
