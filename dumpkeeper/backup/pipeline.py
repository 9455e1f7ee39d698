from __future__ import annotations

import logging
import os
import signal
import subprocess
import tempfile
import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import IO, Optional

from ..config import BackupConfig
from ..db.helpers import client_connection_args, usable_defaults_file
from ..db.probe import capability_flags
from ..errors import DumpError
from ..models import ConsistencyStrategy, DumpJob, ServerCapabilities, StageResult

logger = logging.getLogger(__name__)

DUMP_STAGE = "dump"
COMPRESS_STAGE = "compress"
TIMEOUT_STAGE = "timeout"

# Bytes of stderr kept per stage for error reports.
_STDERR_TAIL = 2000


def dump_target_path(config: BackupConfig, database: str, day: date) -> Path:
    """<dump_dir>/<database>.<date>.<suffix>, e.g. /var/backup/shop.20240131.bz2"""
    return config.dump_dir / f"{database}.{day.strftime(config.date_format)}.{config.compressor_suffix}"


def build_dump_command(
    config: BackupConfig,
    capabilities: ServerCapabilities,
    strategy: ConsistencyStrategy,
    database: str,
) -> tuple[list[str], dict[str, str]]:
    """
    Return the dump client argv and any extra environment for the child.

    The option file used for the metadata queries is handed over as
    --defaults-extra-file, which the client only accepts as the first
    option; operator options follow it.
    """
    connection_args, env = client_connection_args(config.db_url)
    defaults_file = usable_defaults_file(config)
    option_file_args = [] if defaults_file is None else [f"--defaults-extra-file={defaults_file}"]
    argv = [
        *config.dump_command,
        *option_file_args,
        *config.dump_options,
        *connection_args,
        *capability_flags(capabilities),
        strategy.dump_flag,
        database,
    ]
    return argv, env


def build_compress_command(config: BackupConfig) -> list[str]:
    return [*config.compressor_command, *config.compressor_options]


def _stderr_tail(stream: IO[bytes]) -> str:
    stream.seek(0)
    data = stream.read()
    return data[-_STDERR_TAIL:].decode("utf-8", errors="replace").strip()


def _first_failure(stages: list[StageResult]) -> Optional[StageResult]:
    failed = [stage for stage in stages if not stage.ok]
    if not failed:
        return None
    # A dump client killed by SIGPIPE is a symptom of the compressor dying.
    if len(failed) > 1 and failed[0].returncode == -signal.SIGPIPE:
        return failed[1]
    return failed[0]


def _kill(proc: subprocess.Popen) -> None:
    if proc.poll() is None:
        proc.kill()
    proc.wait()


@dataclass
class DumpPipeline:
    """
    Runs `dump | compress > target` for one database at a time.

    Both processes run concurrently, connected by a pipe. The job succeeds
    only if *both* exit with status 0: a dump client that dies mid-stream
    still lets the compressor exit cleanly on truncated input, so the
    compressor's status alone proves nothing.

    The target file is truncated when the job starts. After a failure it may
    hold a partial artifact; it is not removed.
    """
    config: BackupConfig
    capabilities: ServerCapabilities

    def run(self, job: DumpJob) -> list[StageResult]:
        """
        Execute the pipeline for `job`.

        Returns:
            Per-stage results, dump stage first

        Raises:
            DumpError: If either stage fails to start, exits non-zero, or the
                       pipeline exceeds config.dump_timeout
        """
        database = job.database.name
        dump_argv, dump_env = build_dump_command(
            self.config, self.capabilities, job.strategy, database
        )
        compress_argv = build_compress_command(self.config)
        env = {**os.environ, **dump_env} if dump_env else None

        logger.debug("Running %s | %s > %s", dump_argv, compress_argv, job.target_path)

        with tempfile.TemporaryFile() as dump_err, tempfile.TemporaryFile() as compress_err:
            try:
                target = open(job.target_path, "wb")
            except OSError as exc:
                raise DumpError(database, COMPRESS_STAGE, detail=str(exc)) from exc

            with target:
                try:
                    dump_proc = subprocess.Popen(
                        dump_argv, stdout=subprocess.PIPE, stderr=dump_err, env=env
                    )
                except OSError as exc:
                    raise DumpError(database, DUMP_STAGE, detail=str(exc)) from exc
                try:
                    compress_proc = subprocess.Popen(
                        compress_argv, stdin=dump_proc.stdout, stdout=target, stderr=compress_err
                    )
                except OSError as exc:
                    _kill(dump_proc)
                    dump_proc.stdout.close()
                    raise DumpError(database, COMPRESS_STAGE, detail=str(exc)) from exc
                # Allow the dump client to receive SIGPIPE if the compressor dies
                dump_proc.stdout.close()

                self._wait(database, dump_proc, compress_proc)

            stages = [
                StageResult(DUMP_STAGE, dump_proc.returncode, _stderr_tail(dump_err)),
                StageResult(COMPRESS_STAGE, compress_proc.returncode, _stderr_tail(compress_err)),
            ]

        failed = _first_failure(stages)
        if failed is not None:
            raise DumpError(database, failed.stage, failed.returncode, failed.stderr)
        for stage in stages:
            if stage.stderr:
                logger.debug("%s stage for '%s' wrote: %s", stage.stage, database, stage.stderr)
        return stages

    def _wait(
        self,
        database: str,
        dump_proc: subprocess.Popen,
        compress_proc: subprocess.Popen,
    ) -> None:
        timeout: Optional[float] = self.config.dump_timeout
        deadline = None if timeout is None else time.monotonic() + timeout

        def remaining() -> Optional[float]:
            if deadline is None:
                return None
            return max(0.0, deadline - time.monotonic())

        try:
            compress_proc.wait(timeout=remaining())
            dump_proc.wait(timeout=remaining())
        except subprocess.TimeoutExpired as exc:
            _kill(dump_proc)
            _kill(compress_proc)
            raise DumpError(
                database,
                TIMEOUT_STAGE,
                detail=f"pipeline did not finish within {timeout} seconds",
            ) from exc
