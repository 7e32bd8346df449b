"""
Logging configuration for the consolidator.

Uses loguru for structured logging. Console output goes to stderr; the
audit log is a separate JSON-lines sink that only receives records bound
with ``audit=True`` (one per consolidation run, with the loser -> survivor
mapping).
"""

import os
import sys
from pathlib import Path

from loguru import logger

from consolidator.config import settings


def setup_logging(level: str | None = None) -> None:
    """
    Configure console logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    level = level or settings.pipeline.log_level

    # Remove default handler
    logger.remove()

    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        colorize=True,
    )

    logger.debug(f"Logging configured: level={level}")


def _is_audit_record(record) -> bool:
    return bool(record["extra"].get("audit"))


def add_audit_log(
    log_file: Path,
    rotation: str = "10 MB",
    retention: str = "1 week",
) -> int:
    """
    Add the JSON-lines audit sink.

    Args:
        log_file: File the audit records are appended to
        rotation: Log rotation setting (e.g., "10 MB", "1 day")
        retention: Log retention setting (e.g., "1 week", "10 files")

    Returns:
        loguru handler id, for ``logger.remove``
    """
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    return logger.add(
        log_file,
        level="INFO",
        filter=_is_audit_record,
        serialize=True,
        rotation=rotation,
        retention=retention,
    )


# Only configure logging if not explicitly disabled
if os.environ.get("DISABLE_LOGGING") != "1":
    setup_logging()
