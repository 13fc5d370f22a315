"""
Task identifiers and branch naming.
"""

import re
import secrets
from datetime import datetime
from typing import Iterable, Optional

MAX_TASK_ID_BYTES = 255

# Characters that are unsafe in file names, refs or shell words.
_TASK_ID_FORBIDDEN_CHARS = set('/\\:*?"<>|~^[]$`&;(){}')
_TASK_ID_FORBIDDEN_SEQUENCES = ("..", "@{", "//")

_NAME_FORBIDDEN_SEQUENCES = (
    "..", "@{", "//", "~", "^", ":", "?", "*", "[", "]", "\\", "$", "`",
    "&", "|", ";", "<", ">", "(", ")", "{", "}", '"', "'",
)
_WHITESPACE_RUN = re.compile(r"\s+")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def generate_task_id(now: Optional[datetime] = None) -> str:
    """Generate a sortable, collision-resistant task ID: YYYYmmdd-HHMMSS-xxxxxx."""
    now = now or datetime.now()
    return f"{now.strftime('%Y%m%d-%H%M%S')}-{secrets.token_hex(3)}"


def validate_task_id(task_id: str) -> bool:
    """Return True if task_id is safe as a file name, lock name and branch component."""
    if not task_id or len(task_id.encode("utf-8")) > MAX_TASK_ID_BYTES:
        return False
    if any(ch in _TASK_ID_FORBIDDEN_CHARS for ch in task_id):
        return False
    if any(ch.isspace() for ch in task_id) or _CONTROL_CHARS.search(task_id):
        return False
    if any(seq in task_id for seq in _TASK_ID_FORBIDDEN_SEQUENCES):
        return False
    if task_id.startswith(".") or task_id.endswith(".") or task_id.startswith("-"):
        return False
    if task_id.endswith(".lock"):
        return False
    return True


def sanitize_name(name: str) -> str:
    """Turn free text (e.g. an agent name) into a single branch path component."""
    result = _CONTROL_CHARS.sub("", name.strip())
    result = _WHITESPACE_RUN.sub("-", result)
    for seq in _NAME_FORBIDDEN_SEQUENCES:
        result = result.replace(seq, "")
    result = result.replace("/", "-")
    result = re.sub(r"-{2,}", "-", result)
    result = result.lower().strip("-/.")
    if result.endswith(".lock"):
        result = result[: -len(".lock")].rstrip("-.")
    return result


def generate_branch_name(prefix: str, agent: str, task_id: str) -> str:
    """Build the branch name for a task: <prefix>/<agent>/<task_id>."""
    agent_part = sanitize_name(agent) or "agent"
    prefix = prefix.strip("/")
    if not prefix:
        return f"{agent_part}/{task_id}"
    return f"{prefix}/{agent_part}/{task_id}"


def task_id_from_branch(branch: str) -> Optional[str]:
    """Extract the task ID from a <prefix>/<agent>/<id> branch name."""
    parts = branch.split("/")
    if len(parts) < 3 or not validate_task_id(parts[-1]):
        return None
    return parts[-1]


def find_case_collision(name: str, existing: Iterable[str]) -> Optional[str]:
    """Return an existing name that differs from name only by case, if any."""
    folded = name.casefold()
    for other in existing:
        if other != name and other.casefold() == folded:
            return other
    return None
