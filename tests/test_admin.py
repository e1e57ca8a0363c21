import asyncio

import pytest

from fakes import FakeDB
from sqlpanel.admin import create_database, drop_database, run_raw_query
from sqlpanel.connection import StatementResult
from sqlpanel.errors import DriverError, NotFoundError, ValidationError


def test_create_database_quotes_name():
    db = FakeDB()
    asyncio.run(create_database(db, "new`db"))
    assert db.statements() == ["CREATE DATABASE `new``db`"]


def test_create_database_requires_name():
    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(create_database(FakeDB(), "   "))
    assert excinfo.value.validation_kind == ValidationError.INVALID_NAME


def test_drop_database_unknown_is_not_found():
    db = FakeDB().on("DROP DATABASE", DriverError("Can't drop database 'x'; database doesn't exist", code=1008))
    with pytest.raises(NotFoundError):
        asyncio.run(drop_database(db, "x"))


def test_drop_database_other_errors_pass_through():
    db = FakeDB().on("DROP DATABASE", DriverError("Access denied for user", code=1044))
    with pytest.raises(DriverError) as excinfo:
        asyncio.run(drop_database(db, "mysql"))
    assert excinfo.value.status_code == 500


def test_run_raw_query_returns_rows_and_columns():
    db = FakeDB().on("SELECT", StatementResult(rows=[{"n": 1}], columns=["n"], rowcount=1))

    result = asyncio.run(run_raw_query(db, "shop", "SELECT 1 AS n"))

    assert result == {"rows": [{"n": 1}], "columns": ["n"], "affected_rows": None, "insert_id": None}
    assert db.sessions == ["shop"]


def test_run_raw_query_reports_affected_rows():
    db = FakeDB().on("UPDATE", StatementResult(rowcount=3))

    result = asyncio.run(run_raw_query(db, None, "UPDATE t SET x = 1"))

    assert result["affected_rows"] == 3
    assert result["rows"] == []
    assert db.sessions == [None]


def test_run_raw_query_passes_params_through():
    db = FakeDB().on("SELECT", StatementResult(rows=[], columns=["id"]))
    asyncio.run(run_raw_query(db, "shop", "SELECT id FROM t WHERE id = %s", [4]))
    assert db.calls == [("SELECT id FROM t WHERE id = %s", [4])]


def test_run_raw_query_rejects_blank_sql():
    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(run_raw_query(FakeDB(), "shop", "  \n"))
    assert excinfo.value.validation_kind == ValidationError.EMPTY_QUERY


def test_run_raw_query_driver_errors_propagate():
    db = FakeDB().on("SELEC", DriverError("You have an error in your SQL syntax", code=1064, sqlstate="42000"))
    with pytest.raises(DriverError) as excinfo:
        asyncio.run(run_raw_query(db, None, "SELEC 1"))
    assert excinfo.value.to_dict() == {
        "ok": False,
        "error": "DriverError",
        "message": "You have an error in your SQL syntax",
        "code": 1064,
        "sqlstate": "42000",
    }
