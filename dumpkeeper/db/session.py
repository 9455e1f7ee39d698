from __future__ import annotations

from typing import Any, Callable, ContextManager, Mapping, Protocol

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import TextClause


class QuerySession(Protocol):
    """
    The read-only query surface the prober, lister and classifier need.

    DbSession implements it against a live server; tests provide fakes.
    """

    def scalar(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """Execute a statement expected to return a single scalar value."""
        ...

    def fetch_column(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> list[Any]:
        """Execute a SELECT and return the first column of every row."""
        ...


# Opens a short-lived session; each component scopes its own queries.
SessionFactory = Callable[[], ContextManager[QuerySession]]


class DbSession:
    """
    Short-lived, read-only wrapper around a SQLAlchemy Engine connection.

    The transaction is always rolled back on exit: nothing done through a
    DbSession is meant to change server state.

    Use as:
        with DbSession(engine) as session:
            version = session.scalar("SELECT VERSION()")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._conn: Connection | None = None
        self._tx = None

    def __enter__(self) -> "DbSession":
        if self._conn is not None:
            raise RuntimeError("DbSession is already active; nested sessions are not allowed")
        self._conn = self.engine.connect()
        self._tx = self._conn.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if self._tx is not None:
                self._tx.rollback()
        finally:
            if self._conn is not None:
                self._conn.close()

            self._conn = None
            self._tx = None

        return False

    def _connection(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("DbSession is not active; use within a context manager")
        return self._conn

    def scalar(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        """
        Execute a statement expected to return a single scalar value.
        Returns None when no row is produced.
        """
        conn = self._connection()
        stmt = text(sql) if isinstance(sql, str) else sql
        result = conn.execute(stmt, params or {})
        try:
            return result.scalar_one_or_none()
        finally:
            result.close()

    def fetch_column(
        self,
        sql: str | TextClause,
        params: Mapping[str, Any] | None = None,
    ) -> list[Any]:
        """
        Execute a SELECT and return the first column of each row, in order.
        """
        conn = self._connection()
        stmt = text(sql) if isinstance(sql, str) else sql
        result = conn.execute(stmt, params or {})
        return list(result.scalars())
