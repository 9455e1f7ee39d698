from __future__ import annotations


class DumpkeeperError(Exception):
    """Base exception for dumpkeeper errors."""


class PreconditionError(DumpkeeperError):
    """The run cannot start (e.g. dump directory missing or not writable)."""


class ConfigError(PreconditionError):
    """Invalid configuration value."""


class CatalogListError(DumpkeeperError):
    """The list of databases could not be read from the server."""


class CapabilityDetectionError(DumpkeeperError):
    """Server version or GTID mode could not be determined."""


class ClassificationError(DumpkeeperError):
    """Table engine metadata for a database could not be read."""

    def __init__(self, database: str, message: str) -> None:
        super().__init__(f"{database}: {message}")
        self.database = database


class DumpError(DumpkeeperError):
    """A stage of the dump pipeline failed for one database."""

    def __init__(
        self,
        database: str,
        stage: str,
        returncode: int | None = None,
        detail: str = "",
    ) -> None:
        message = f"Dump of database '{database}' failed in stage '{stage}'"
        if returncode is not None:
            message += f" (exit status {returncode})"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.database = database
        self.stage = stage
        self.returncode = returncode
        self.detail = detail


class PruneError(DumpkeeperError):
    """An expired dump file could not be removed."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
