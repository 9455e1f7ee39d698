from __future__ import annotations

import logging
import os
import stat
import time
from pathlib import Path
from typing import Optional

from ..errors import PruneError
from ..metrics import observe_prune
from ..models import PruneReport

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def is_expired(ctime: float, now: float, max_age_days: int) -> bool:
    """
    Whole-day age comparison, as `find -ctime +N` does it: the fractional
    part of the age is dropped, so with N=14 a file goes at 15 full days.
    """
    age_days = int((now - ctime) // SECONDS_PER_DAY)
    return age_days > max_age_days


def prune_old_dumps(
    dump_dir: Path,
    max_age_days: int,
    now: Optional[float] = None,
) -> PruneReport:
    """
    Delete every regular file under `dump_dir` whose inode change time is
    more than `max_age_days` whole days old.

    Subdirectories are walked; symlinks and other non-regular entries are
    left alone. Failures are collected in the report, never raised.
    """
    now = time.time() if now is None else now
    report = PruneReport()

    def record(path: str, exc: OSError) -> None:
        error = PruneError(path, exc.strerror or str(exc))
        logger.warning("Could not prune: %s", error)
        report.failed.append(error)

    def on_walk_error(exc: OSError) -> None:
        record(exc.filename or str(dump_dir), exc)

    for root, _dirs, files in os.walk(dump_dir, onerror=on_walk_error):
        for filename in files:
            path = Path(root) / filename
            try:
                st = path.lstat()
            except FileNotFoundError:
                continue
            except OSError as exc:
                record(str(path), exc)
                continue

            if not stat.S_ISREG(st.st_mode):
                continue
            if not is_expired(st.st_ctime, now, max_age_days):
                continue

            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                record(str(path), exc)
                continue
            logger.info("Deleted expired dump '%s'", path)
            report.deleted.append(path)

    logger.info(
        "event=prune_done dir=%s max_age_days=%d deleted=%d failed=%d",
        dump_dir,
        max_age_days,
        len(report.deleted),
        len(report.failed),
    )
    observe_prune(deleted=len(report.deleted), failed=len(report.failed))
    return report
