from __future__ import annotations

from .pipeline import DumpPipeline, dump_target_path
from .retention import prune_old_dumps
from .runner import BackupRunner, check_destination

__all__ = [
    "BackupRunner",
    "DumpPipeline",
    "check_destination",
    "dump_target_path",
    "prune_old_dumps",
]
