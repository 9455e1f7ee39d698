from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url

from ..config import BackupConfig

# MySQL rejects these in schema names; "-" first would read as a dump option.
_FORBIDDEN_NAME_CHARS = ("\x00", "/", "\\", ".")


def validate_database_name(name: str) -> str:
    """
    Validate that a database name is safe to hand to the dump client.

    Names come from the server itself but are still treated as untrusted:
    queries receive them as bound parameters and the dump client receives
    them as a single argv element, never through a shell.

    Returns:
        The validated name (unchanged if valid)

    Raises:
        TypeError: If name is not a string
        ValueError: If name is empty, too long, or contains unsafe characters

    Example:
        >>> validate_database_name("shop")
        'shop'
        >>> validate_database_name("--all-databases")
        ValueError: Invalid database name '--all-databases': ...
    """
    if not isinstance(name, str):
        raise TypeError(f"database name must be a string, got {type(name).__name__}")

    if not name:
        raise ValueError("database name cannot be empty")

    if len(name) > 64:
        raise ValueError(f"database name {name!r} exceeds MySQL's 64-character limit")

    if name.startswith("-"):
        raise ValueError(
            f"Invalid database name {name!r}: must not start with '-'"
        )

    for char in _FORBIDDEN_NAME_CHARS:
        if char in name:
            raise ValueError(
                f"Invalid database name {name!r}: must not contain {char!r}"
            )

    return name


def usable_defaults_file(config: BackupConfig) -> Optional[Path]:
    """The configured MySQL option file, or None if unset or missing."""
    if config.defaults_file is not None and Path(config.defaults_file).is_file():
        return Path(config.defaults_file)
    return None


def make_engine(config: BackupConfig) -> Engine:
    """
    Create the engine used for catalog and metadata queries.

    When the configured MySQL option file exists, the driver reads its
    [client] section, so the same ~/.my.cnf serves both the queries and
    the dump client.
    """
    connect_args: dict[str, Any] = {}
    defaults_file = usable_defaults_file(config)
    if defaults_file is not None:
        connect_args["read_default_file"] = str(defaults_file)
    return create_engine(config.db_url, pool_pre_ping=True, connect_args=connect_args)


def client_connection_args(db_url: str) -> tuple[list[str], dict[str, str]]:
    """
    Translate explicit connection details in db_url into dump client flags.

    Returns (argv flags, extra child environment). The password goes into
    MYSQL_PWD of the child only, so it never shows up in a process listing.
    Parts absent from the URL are left to the client's option files.
    """
    url = make_url(db_url)
    args: list[str] = []
    env: dict[str, str] = {}
    if url.host:
        args.append(f"--host={url.host}")
    if url.port:
        args.append(f"--port={url.port}")
    if url.username:
        args.append(f"--user={url.username}")
    if url.password:
        env["MYSQL_PWD"] = str(url.password)
    socket = url.query.get("unix_socket")
    if socket:
        args.append(f"--socket={socket}")
    return args, env
