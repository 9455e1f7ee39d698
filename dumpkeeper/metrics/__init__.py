from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

from prometheus_client import write_to_textfile

from .registry import (
    DUMP_BYTES,
    DUMP_DURATION_SECONDS,
    DUMPS_TOTAL,
    LAST_RUN_TIMESTAMP_SECONDS,
    PRUNED_FILES_TOTAL,
    REGISTRY,
)

logger = logging.getLogger(__name__)


def observe_dump(
    database: str,
    status: str,
    latency_s: float,
    size_bytes: Optional[int] = None,
) -> None:
    """
    Record one finished dump. `status` is "success" or "failure".

    Metric errors are logged and never interrupt the backup.
    """
    try:
        DUMPS_TOTAL.labels(status=status).inc()
        DUMP_DURATION_SECONDS.labels(status=status).observe(latency_s)
        if status == "success" and size_bytes is not None:
            DUMP_BYTES.labels(database=database).set(size_bytes)
    except Exception:
        logger.debug("Failed to record dump metrics", exc_info=True)


def observe_prune(deleted: int, failed: int) -> None:
    try:
        if deleted:
            PRUNED_FILES_TOTAL.labels(status="deleted").inc(deleted)
        if failed:
            PRUNED_FILES_TOTAL.labels(status="failed").inc(failed)
    except Exception:
        logger.debug("Failed to record prune metrics", exc_info=True)


def observe_run(result: str, timestamp: Optional[float] = None) -> None:
    """`result` is "ok", "partial" or "aborted"."""
    try:
        LAST_RUN_TIMESTAMP_SECONDS.labels(result=result).set(
            time.time() if timestamp is None else timestamp
        )
    except Exception:
        logger.debug("Failed to record run metrics", exc_info=True)


def write_metrics_textfile(path: Path) -> None:
    """
    Write all backup metrics in the node-exporter textfile format.

    Raises:
        OSError: If the file cannot be written
    """
    write_to_textfile(str(path), REGISTRY)


__all__ = [
    "observe_dump",
    "observe_prune",
    "observe_run",
    "write_metrics_textfile",
]
