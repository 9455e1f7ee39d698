from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from .errors import DumpkeeperError

Version = Tuple[int, int, int]


@dataclass(frozen=True)
class ServerCapabilities:
    """
    What the target server supports, derived once per run.
    """
    version: Optional[Version]
    supports_event_dump: bool
    gtid_mode_enabled: bool

    @classmethod
    def conservative(cls) -> "ServerCapabilities":
        """Capabilities to assume when detection fails."""
        return cls(version=None, supports_event_dump=False, gtid_mode_enabled=False)


@dataclass(frozen=True)
class DatabaseDescriptor:
    name: str


class ConsistencyStrategy(str, Enum):
    TRANSACTIONAL = "transactional"
    LOCK_BASED = "lock_based"

    @property
    def dump_flag(self) -> str:
        if self is ConsistencyStrategy.TRANSACTIONAL:
            return "--single-transaction"
        return "--lock-tables"


@dataclass(frozen=True)
class DumpJob:
    database: DatabaseDescriptor
    strategy: ConsistencyStrategy
    target_path: Path


@dataclass(frozen=True)
class StageResult:
    """Exit status of one process in the dump pipeline."""
    stage: str
    returncode: Optional[int]
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class DumpOutcome:
    database: str
    success: bool
    # failure details are not used by the batch logic, only reported
    error: Optional[DumpkeeperError] = None


@dataclass
class BatchResult:
    total: int = 0
    failed: list[str] = field(default_factory=list)
    outcomes: list[DumpOutcome] = field(default_factory=list)
    # set when the catalog could not be listed; the run is then failed
    catalog_error: Optional[DumpkeeperError] = None

    def record(self, outcome: DumpOutcome) -> None:
        self.outcomes.append(outcome)
        self.total += 1
        if not outcome.success:
            self.failed.append(outcome.database)

    @property
    def succeeded(self) -> list[str]:
        return [o.database for o in self.outcomes if o.success]


@dataclass
class PruneReport:
    deleted: list[Path] = field(default_factory=list)
    failed: list[DumpkeeperError] = field(default_factory=list)


class RunState(str, Enum):
    INIT = "init"
    PROBING_CAPABILITIES = "probing_capabilities"
    LISTING = "listing"
    PRUNING = "pruning"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class RunResult:
    state: RunState
    batch: Optional[BatchResult] = None
    prune: Optional[PruneReport] = None
    capabilities: Optional[ServerCapabilities] = None
    fatal_error: Optional[DumpkeeperError] = None

    @property
    def aborted(self) -> bool:
        return self.state is RunState.ABORTED

    @property
    def has_failures(self) -> bool:
        """True when non-fatal failures (dumps or prune) were recorded."""
        if self.batch is not None and self.batch.failed:
            return True
        return self.prune is not None and bool(self.prune.failed)
