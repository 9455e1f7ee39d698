from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..errors import ClassificationError
from ..models import ConsistencyStrategy
from .session import QuerySession, SessionFactory

logger = logging.getLogger(__name__)

TRANSACTIONAL_ENGINE = "InnoDB"

# Views have a NULL engine and are not counted.
_NON_TRANSACTIONAL_COUNT = text(
    "SELECT COUNT(ENGINE) FROM INFORMATION_SCHEMA.TABLES "
    "WHERE TABLE_SCHEMA = :schema AND ENGINE <> :engine"
)


def count_non_transactional_tables(session: QuerySession, database: str) -> int:
    """
    Count the tables of `database` that do not use the transactional engine.

    The database name is passed as a bound parameter.

    Raises:
        ClassificationError: If the metadata query fails or returns garbage
    """
    try:
        count = session.scalar(
            _NON_TRANSACTIONAL_COUNT,
            {"schema": database, "engine": TRANSACTIONAL_ENGINE},
        )
    except SQLAlchemyError as exc:
        raise ClassificationError(database, f"engine metadata query failed: {exc}") from exc

    if count is None:
        raise ClassificationError(database, "engine metadata query returned no row")
    try:
        return int(count)
    except (TypeError, ValueError):
        raise ClassificationError(
            database, f"engine metadata query returned {count!r}"
        ) from None


def select_strategy(session_factory: SessionFactory, database: str) -> ConsistencyStrategy:
    """
    Choose how the dump of `database` is kept consistent.

    - TRANSACTIONAL (--single-transaction): every table supports snapshots,
      so the dump does not block writers.
    - LOCK_BASED (--lock-tables): at least one table (e.g. MyISAM) does
      not; tables are locked for the duration of the dump.

    If the metadata cannot be read, LOCK_BASED is returned.
    """
    try:
        with session_factory() as session:
            count = count_non_transactional_tables(session, database)
    except ClassificationError as exc:
        logger.warning("%s; falling back to lock-based dump", exc)
        return ConsistencyStrategy.LOCK_BASED
    except SQLAlchemyError as exc:
        logger.warning(
            "%s; falling back to lock-based dump",
            ClassificationError(database, f"cannot connect: {exc}"),
        )
        return ConsistencyStrategy.LOCK_BASED

    if count > 0:
        logger.debug(
            "Database '%s' has %d non-transactional table(s), using table locks",
            database,
            count,
        )
        return ConsistencyStrategy.LOCK_BASED
    return ConsistencyStrategy.TRANSACTIONAL
