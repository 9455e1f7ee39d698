from .backup.runner import BackupRunner
from .config import BackupConfig
from .models import BatchResult, ConsistencyStrategy, RunResult, ServerCapabilities

__all__ = [
    "BackupRunner",
    "BackupConfig",
    "BatchResult",
    "ConsistencyStrategy",
    "RunResult",
    "ServerCapabilities",
]
