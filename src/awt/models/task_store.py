"""
Task record store for awt.

One ``<id>.json`` file per task. Writes go to a temporary sibling that is
fsynced and then renamed over the target, so a reader sees either the old
record or the new one and never a torn write. The store does no locking of
its own; callers hold the appropriate lock.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import List, Union

from loguru import logger
from pydantic import ValidationError

from ..utils.status_codes import (
    TaskValidationError,
    create_invalid_task_id_error,
    create_task_not_found_error,
)
from .task import Task

TEMP_PREFIX = ".tmp-"


def atomic_write_json(path: Path, data: dict) -> None:
    """Write JSON to path via temp file, fsync and rename."""
    fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=".json", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
            fh.write("\n")
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    _fsync_dir(path.parent)


def _fsync_dir(directory: Path) -> None:
    # Makes the rename itself durable; not supported everywhere.
    try:
        fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


class TaskStore:
    """Task record persistence."""

    def __init__(self, tasks_dir: Union[str, Path]):
        self.tasks_dir = Path(tasks_dir)
        self.tasks_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, task_id: str) -> Path:
        if not task_id or "/" in task_id or "\\" in task_id or task_id in (".", ".."):
            raise create_invalid_task_id_error(task_id)
        return self.tasks_dir / f"{task_id}.json"

    def exists(self, task_id: str) -> bool:
        return self.path_for(task_id).is_file()

    def save(self, task: Task) -> None:
        """Persist a task record atomically."""
        atomic_write_json(self.path_for(task.id), task.to_record())
        logger.debug("Saved task {} (state={})", task.id, task.state.value)

    def load(self, task_id: str) -> Task:
        """Load a task record.

        Raises:
            TaskNotFoundError: no record exists for task_id
            TaskValidationError: the record exists but is corrupt or invalid
        """
        path = self.path_for(task_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise create_task_not_found_error(task_id) from None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise TaskValidationError(f"task record {path.name} is not valid JSON: {e}", cause=e) from e

        if not isinstance(data, dict):
            raise TaskValidationError(f"task record {path.name} is not a JSON object")

        try:
            task = Task.model_validate(data)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise TaskValidationError(f"task record {path.name} is invalid ({fields})", cause=e) from e

        if task.id != task_id:
            raise TaskValidationError(
                f"task record {path.name} contains mismatched id '{task.id}'"
            )
        return task

    def list_task_ids(self) -> List[str]:
        ids = []
        for entry in sorted(self.tasks_dir.glob("*.json")):
            if entry.name.startswith(TEMP_PREFIX) or entry.name.startswith("_"):
                continue
            ids.append(entry.stem)
        return ids

    def list(self) -> List[Task]:
        """Return every loadable task, oldest first. Unreadable records are skipped."""
        tasks = []
        for task_id in self.list_task_ids():
            try:
                tasks.append(self.load(task_id))
            except Exception as e:
                logger.warning("Skipping unreadable task record {}: {}", task_id, e)
        tasks.sort(key=lambda t: (t.created_at, t.id))
        return tasks

    def delete(self, task_id: str) -> None:
        """Delete a task record. Deleting a missing record is not an error."""
        try:
            self.path_for(task_id).unlink()
        except FileNotFoundError:
            return
        logger.debug("Deleted task {}", task_id)
