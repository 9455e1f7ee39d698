from __future__ import annotations

import logging

import pytest

from dumpkeeper.db.classifier import count_non_transactional_tables, select_strategy
from dumpkeeper.errors import ClassificationError
from dumpkeeper.models import ConsistencyStrategy


def test_all_innodb_tables_select_transactional(fake_server) -> None:
    fake_server.non_transactional = {"shop": 0}
    assert select_strategy(fake_server.session_factory, "shop") is ConsistencyStrategy.TRANSACTIONAL


@pytest.mark.parametrize("count", [1, 2, 250])
def test_any_non_transactional_table_selects_lock_based(fake_server, count: int) -> None:
    fake_server.non_transactional = {"legacy": count}
    assert select_strategy(fake_server.session_factory, "legacy") is ConsistencyStrategy.LOCK_BASED


def test_database_name_is_bound_not_interpolated(fake_server) -> None:
    hostile = "x' OR '1'='1"
    select_strategy(fake_server.session_factory, hostile)

    sql, params = fake_server.queries[-1]
    assert hostile not in sql
    assert params == {"schema": hostile, "engine": "InnoDB"}


def test_query_failure_falls_back_to_lock_based(fake_server, caplog) -> None:
    fake_server.fail.add("engines:shop")
    with caplog.at_level(logging.WARNING):
        strategy = select_strategy(fake_server.session_factory, "shop")
    assert strategy is ConsistencyStrategy.LOCK_BASED
    assert "falling back to lock-based dump" in caplog.text


def test_connection_failure_falls_back_to_lock_based(fake_server) -> None:
    fake_server.fail.add("connect")
    assert select_strategy(fake_server.session_factory, "shop") is ConsistencyStrategy.LOCK_BASED


def test_count_raises_classification_error(fake_server) -> None:
    fake_server.fail.add("engines:shop")
    with fake_server.session() as session:
        with pytest.raises(ClassificationError) as excinfo:
            count_non_transactional_tables(session, "shop")
    assert excinfo.value.database == "shop"


def test_count_rejects_missing_result() -> None:
    class EmptySession:
        def scalar(self, sql, params=None):
            return None

    with pytest.raises(ClassificationError, match="no row"):
        count_non_transactional_tables(EmptySession(), "shop")


def test_dump_flags() -> None:
    assert ConsistencyStrategy.TRANSACTIONAL.dump_flag == "--single-transaction"
    assert ConsistencyStrategy.LOCK_BASED.dump_flag == "--lock-tables"
