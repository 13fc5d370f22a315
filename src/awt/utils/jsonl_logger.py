"""
Logging setup for awt.

Human-readable records go to stderr. Optionally every record is also written
as one JSON object per line to a daily-rotated file under the state root, so
that concurrent agent runs can be audited after the fact.
"""

import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

STDERR_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"
)
LOG_FILE_NAME = "awt.jsonl"


def setup_logger(
    level: str = "INFO",
    log_dir: Optional[Union[str, Path]] = None,
    retention_days: int = 30,
) -> Optional[Path]:
    """Configure loguru sinks for the current process.

    Args:
        level: Minimum level for the stderr sink.
        log_dir: Directory for the JSONL audit log. No file sink when None.
        retention_days: How many days of rotated files to keep.

    Returns:
        Path of the JSONL file, or None when file logging is disabled.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=STDERR_FORMAT)

    if log_dir is None:
        return None

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME
    logger.add(
        str(log_file),
        level="DEBUG",
        serialize=True,
        rotation="00:00",
        retention=f"{retention_days} days",
        enqueue=False,
    )
    return log_file

