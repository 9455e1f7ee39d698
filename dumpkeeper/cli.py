"""Command line entry point: one unattended backup run per invocation."""
from __future__ import annotations

import argparse
import dataclasses
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Mapping, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from .backup.runner import BackupRunner
from .config import BackupConfig
from .db.helpers import make_engine
from .db.session import DbSession
from .errors import ConfigError
from .metrics import observe_run, write_metrics_textfile
from .models import RunResult

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 3

SYSLOG_SOCKET = "/dev/log"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dumpkeeper",
        description=(
            "Dump and compress every MySQL database to its own file, then delete "
            "dumps older than the retention age. Settings are read from the "
            "environment (MYSQLDUMP_DIR, DELETE_AFTER, ...); options below "
            "override them."
        ),
    )
    parser.add_argument("--dump-dir", type=Path, help="Destination directory (MYSQLDUMP_DIR).")
    parser.add_argument(
        "--delete-after",
        type=int,
        metavar="DAYS",
        help="Delete dumps older than DAYS days (DELETE_AFTER).",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        metavar="SECONDS",
        help="Per-database pipeline timeout, 0 for none (DUMP_TIMEOUT).",
    )
    parser.add_argument("--no-prune", action="store_true", help="Skip deleting old dumps.")
    parser.add_argument(
        "--allow-partial",
        action="store_true",
        help="Exit 0 even if some databases failed to dump.",
    )
    parser.add_argument("--syslog", action="store_true", help="Also log to the local syslog.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging.")
    parser.add_argument("-q", "--quiet", action="count", default=0, help="Less logging.")
    return parser


def configure_logging(verbosity: int, use_syslog: bool = False) -> None:
    level = {-1: logging.WARNING, 0: logging.INFO}.get(
        verbosity, logging.DEBUG if verbosity > 0 else logging.ERROR
    )
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if use_syslog:
        handler = logging.handlers.SysLogHandler(address=SYSLOG_SOCKET)
        handler.setFormatter(logging.Formatter("dumpkeeper[%(process)d]: %(levelname)s %(message)s"))
        logging.getLogger().addHandler(handler)


def load_config(args: argparse.Namespace, environ: Mapping[str, str]) -> BackupConfig:
    """
    Raises:
        ConfigError: If a setting is invalid
    """
    config = BackupConfig.from_env(environ)
    overrides = {}
    if args.dump_dir is not None:
        overrides["dump_dir"] = args.dump_dir
    if args.delete_after is not None:
        overrides["delete_after_days"] = args.delete_after
    if args.timeout is not None:
        overrides["dump_timeout"] = args.timeout
    if overrides:
        config = dataclasses.replace(config, **overrides)
    return config


def exit_status(result: RunResult, allow_partial: bool = False) -> int:
    if result.aborted:
        return EXIT_FATAL
    if result.has_failures and not allow_partial:
        return EXIT_PARTIAL
    return EXIT_OK


def export_metrics(path: Path) -> None:
    try:
        write_metrics_textfile(path)
    except OSError as exc:
        logger.warning("Could not write metrics to '%s': %s", path, exc)


def main(argv: Optional[Sequence[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose - args.quiet, args.syslog)
    environ = os.environ if environ is None else environ

    try:
        config = load_config(args, environ)
        engine = make_engine(config)
    except (ConfigError, SQLAlchemyError) as exc:
        logger.error("event=run_aborted error=Invalid configuration: %s", exc)
        observe_run("aborted")
        textfile = environ.get("METRICS_TEXTFILE")
        if textfile:
            export_metrics(Path(textfile))
        return EXIT_FATAL

    try:
        runner = BackupRunner(config, session_factory=lambda: DbSession(engine))
        result = runner.run(prune=not args.no_prune)
    finally:
        engine.dispose()

    if config.metrics_textfile is not None:
        export_metrics(config.metrics_textfile)

    return exit_status(result, allow_partial=args.allow_partial)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
