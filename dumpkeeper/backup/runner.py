from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from ..config import BackupConfig
from ..db.catalog import iter_databases
from ..db.classifier import select_strategy
from ..db.helpers import validate_database_name
from ..db.probe import probe_capabilities
from ..db.session import SessionFactory
from ..errors import CatalogListError, DumpError, DumpkeeperError, PreconditionError
from ..metrics import observe_dump, observe_run
from ..models import (
    BatchResult,
    DatabaseDescriptor,
    DumpJob,
    DumpOutcome,
    PruneReport,
    RunResult,
    RunState,
    ServerCapabilities,
)
from .pipeline import DumpPipeline, dump_target_path
from .retention import prune_old_dumps

LOGGER = logging.getLogger(__name__)


def check_destination(dump_dir: Path) -> None:
    """
    Raises:
        PreconditionError: If dump_dir is missing or not writable
    """
    if not dump_dir.is_dir():
        raise PreconditionError(f"Missing dump dir '{dump_dir}', unable to proceed")
    if not os.access(dump_dir, os.W_OK | os.X_OK):
        raise PreconditionError(f"Dump dir '{dump_dir}' is not writable, unable to proceed")


@dataclass
class BackupRunner:
    """
    Drives one complete backup run:

        check destination -> probe capabilities -> for each database:
        classify, dump -> prune

    Databases are dumped one after another, never in parallel. A failed
    dump is recorded and the next database is attempted. Only a bad
    destination directory or an unreadable database list abort the run;
    pruning is skipped in both cases.
    """
    config: BackupConfig
    session_factory: SessionFactory
    clock: Callable[[], datetime] = datetime.now
    logger: logging.Logger = LOGGER

    def run(self, prune: bool = True) -> RunResult:
        result = RunResult(state=RunState.INIT)
        self.logger.info("event=run_start dump_dir=%s", self.config.dump_dir)

        previous_umask = os.umask(self.config.umask)
        try:
            try:
                check_destination(self.config.dump_dir)
            except PreconditionError as exc:
                return self._abort(result, exc)

            result.state = RunState.PROBING_CAPABILITIES
            capabilities = probe_capabilities(self.session_factory)
            result.capabilities = capabilities
            self.logger.info(
                "event=capabilities version=%s events=%s gtid_mode=%s",
                ".".join(map(str, capabilities.version)) if capabilities.version else "unknown",
                capabilities.supports_event_dump,
                capabilities.gtid_mode_enabled,
            )

            result.state = RunState.LISTING
            result.batch = self.run_batch(iter_databases(self.session_factory), capabilities)
            if result.batch.catalog_error is not None:
                return self._abort(result, result.batch.catalog_error)

            if prune:
                result.state = RunState.PRUNING
                result.prune = prune_old_dumps(
                    self.config.dump_dir, self.config.delete_after_days
                )
            else:
                result.prune = PruneReport()
                self.logger.warning("event=prune_skipped reason=no_prune")

            result.state = RunState.DONE
            self.logger.info(
                "event=run_complete total=%d failed=%d failed_databases=%s",
                result.batch.total,
                len(result.batch.failed),
                ",".join(result.batch.failed) or "-",
            )
            observe_run("partial" if result.has_failures else "ok")
            return result
        finally:
            os.umask(previous_umask)

    def run_batch(
        self,
        databases: Iterable[DatabaseDescriptor],
        capabilities: ServerCapabilities,
    ) -> BatchResult:
        """
        Dump every database from `databases`, in order, isolating failures.

        A CatalogListError raised by the listing stops the loop and is stored
        on the result; the caller decides the run is failed.
        """
        batch = BatchResult()
        pipeline = DumpPipeline(self.config, capabilities)
        iterator = iter(databases)
        while True:
            try:
                descriptor = next(iterator)
            except StopIteration:
                break
            except CatalogListError as exc:
                batch.catalog_error = exc
                break
            batch.record(self.backup_database(pipeline, descriptor))
        return batch

    def backup_database(
        self,
        pipeline: DumpPipeline,
        descriptor: DatabaseDescriptor,
    ) -> DumpOutcome:
        name = descriptor.name
        self.logger.info("event=dump_start database=%s", name)
        started = time.monotonic()
        try:
            validate_database_name(name)
        except ValueError as exc:
            return self._failed(DumpError(name, "validate", detail=str(exc)), started)

        strategy = select_strategy(self.session_factory, name)
        job = DumpJob(
            database=descriptor,
            strategy=strategy,
            target_path=dump_target_path(self.config, name, self.clock()),
        )
        try:
            pipeline.run(job)
        except DumpError as exc:
            return self._failed(exc, started)

        latency = time.monotonic() - started
        size = job.target_path.stat().st_size
        observe_dump(name, "success", latency, size_bytes=size)
        self.logger.info(
            "event=dump_success database=%s strategy=%s path=%s bytes=%d seconds=%.1f",
            name,
            strategy.value,
            job.target_path,
            size,
            latency,
        )
        return DumpOutcome(database=name, success=True)

    def _failed(self, error: DumpError, started: float) -> DumpOutcome:
        observe_dump(error.database, "failure", time.monotonic() - started)
        self.logger.error(
            "event=dump_failure database=%s stage=%s error=%s",
            error.database,
            error.stage,
            error,
        )
        return DumpOutcome(database=error.database, success=False, error=error)

    def _abort(self, result: RunResult, error: DumpkeeperError) -> RunResult:
        result.state = RunState.ABORTED
        result.fatal_error = error
        self.logger.error("event=run_aborted error=%s", error)
        observe_run("aborted")
        return result
