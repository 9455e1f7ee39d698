from __future__ import annotations

import sys
import textwrap
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import pytest
from sqlalchemy.exc import OperationalError

from dumpkeeper.config import BackupConfig


def db_error(message: str = "boom") -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception(message))


@dataclass
class FakeServer:
    """
    In-memory stand-in for a MySQL server, answering the queries the
    prober, lister and classifier issue.

    `fail` holds query kinds that should raise: "connect", "version",
    "gtid", "catalog", or "engines:<database>".
    """
    version: Any = "8.0.36-0ubuntu0.22.04.1"
    gtid_mode: Any = "OFF"
    databases: list[Any] = field(
        default_factory=lambda: ["information_schema", "mysql", "performance_schema", "sys"]
    )
    non_transactional: dict[str, int] = field(default_factory=dict)
    fail: set[str] = field(default_factory=set)
    queries: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    sessions_opened: int = 0

    def session(self) -> "FakeSession":
        return FakeSession(self)

    @property
    def session_factory(self) -> Callable[[], "FakeSession"]:
        return self.session


class FakeSession:
    def __init__(self, server: FakeServer) -> None:
        self.server = server

    def __enter__(self) -> "FakeSession":
        if "connect" in self.server.fail:
            raise db_error("Can't connect to MySQL server")
        self.server.sessions_opened += 1
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return False

    def _record(self, sql: Any, params: Mapping[str, Any] | None) -> str:
        sql_text = str(sql)
        self.server.queries.append((sql_text, dict(params or {})))
        return sql_text

    def scalar(self, sql: Any, params: Mapping[str, Any] | None = None) -> Any:
        sql_text = self._record(sql, params)
        if "VERSION()" in sql_text:
            if "version" in self.server.fail:
                raise db_error()
            return self.server.version
        if "gtid_mode" in sql_text:
            if "gtid" in self.server.fail:
                raise db_error("Unknown system variable 'gtid_mode'")
            return self.server.gtid_mode
        if "INFORMATION_SCHEMA.TABLES" in sql_text:
            schema = params["schema"]
            if f"engines:{schema}" in self.server.fail:
                raise db_error()
            return self.server.non_transactional.get(schema, 0)
        raise AssertionError(f"unexpected query: {sql_text}")

    def fetch_column(self, sql: Any, params: Mapping[str, Any] | None = None) -> list[Any]:
        sql_text = self._record(sql, params)
        if sql_text == "SHOW DATABASES":
            if "catalog" in self.server.fail:
                raise db_error("Access denied")
            return list(self.server.databases)
        raise AssertionError(f"unexpected query: {sql_text}")


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


FAKE_DUMP = textwrap.dedent(
    """
    import os, sys, time
    database = sys.argv[-1]
    if os.environ.get("FAKE_DUMP_SLEEP"):
        time.sleep(float(os.environ["FAKE_DUMP_SLEEP"]))
    if database in os.environ.get("FAKE_DUMP_FAIL", "").split(","):
        sys.stderr.write("mysqldump: Got error: 1044: Access denied for " + database + "\\n")
        sys.exit(2)
    sys.stdout.write("-- dump of " + database + "\\n")
    sys.stdout.write("-- args: " + " ".join(sys.argv[1:]) + "\\n")
    """
)

FAKE_COMPRESS = textwrap.dedent(
    """
    import bz2, os, sys
    data = sys.stdin.buffer.read()
    if os.environ.get("FAKE_COMPRESS_FAIL"):
        sys.stderr.write("bzip2: I/O or other error\\n")
        sys.exit(1)
    sys.stdout.buffer.write(bz2.compress(data))
    """
)


@dataclass
class FakeTools:
    dump_command: list[str]
    compressor_command: list[str]


@pytest.fixture
def fake_tools(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeTools:
    """
    Python scripts standing in for mysqldump and bzip2.

    Behaviour is steered through the environment the children inherit:
    FAKE_DUMP_FAIL (comma separated database names), FAKE_DUMP_SLEEP,
    FAKE_COMPRESS_FAIL.
    """
    for name in ("FAKE_DUMP_FAIL", "FAKE_DUMP_SLEEP", "FAKE_COMPRESS_FAIL"):
        monkeypatch.delenv(name, raising=False)
    tools_dir = tmp_path / "tools"
    tools_dir.mkdir()
    dump = tools_dir / "fake_mysqldump.py"
    dump.write_text(FAKE_DUMP)
    compress = tools_dir / "fake_bzip2.py"
    compress.write_text(FAKE_COMPRESS)
    return FakeTools(
        dump_command=[sys.executable, str(dump)],
        compressor_command=[sys.executable, str(compress)],
    )


@pytest.fixture
def dump_dir(tmp_path: Path) -> Path:
    path = tmp_path / "dumps"
    path.mkdir()
    return path


@pytest.fixture
def backup_config(dump_dir: Path, fake_tools: FakeTools) -> BackupConfig:
    return BackupConfig(
        dump_dir=dump_dir,
        dump_command=fake_tools.dump_command,
        compressor_command=fake_tools.compressor_command,
        compressor_options=[],
        db_url="mysql+pymysql://",
        defaults_file=None,
        dump_timeout=60,
    )
