from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy.exc import SQLAlchemyError

from ..errors import CatalogListError
from ..models import DatabaseDescriptor
from .session import SessionFactory

# Never dumped. Matching is case-sensitive; information_schema is a prefix
# match, the others are exact.
EXCLUDED_SCHEMA_PREFIXES = ("information_schema",)
EXCLUDED_SCHEMAS = frozenset({"performance_schema", "sys"})


def is_excluded(name: str) -> bool:
    return name in EXCLUDED_SCHEMAS or name.startswith(EXCLUDED_SCHEMA_PREFIXES)


def iter_databases(session_factory: SessionFactory) -> Iterator[DatabaseDescriptor]:
    """
    Lazily yield the databases eligible for backup, in server listing order.

    The listing query runs on first iteration. Any failure while connecting,
    querying or decoding the listing raises CatalogListError before a single
    name is yielded, so a partial listing is never mistaken for a complete
    one.

    Raises:
        CatalogListError: If the database list cannot be read
    """
    try:
        with session_factory() as session:
            raw_names = session.fetch_column("SHOW DATABASES")
    except SQLAlchemyError as exc:
        raise CatalogListError(f"Unable to get databases: {exc}") from exc

    names: list[str] = []
    for raw in raw_names:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise CatalogListError(f"Undecodable database name {raw!r}") from exc
        if not isinstance(raw, str):
            raise CatalogListError(f"Unexpected database name value {raw!r}")
        names.append(raw)

    for name in names:
        if is_excluded(name):
            continue
        yield DatabaseDescriptor(name=name)
