import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from fakes import FakeDB, column_row, missing_table
from sqlpanel.connection import StatementResult
from sqlpanel.errors import DriverError, NotConnectedError
from sqlpanel.main import app, get_app_settings, get_connections
from sqlpanel.settings import Settings


@pytest.fixture
def db():
    fake = FakeDB()
    app.dependency_overrides[get_connections] = lambda: fake
    yield fake
    app.dependency_overrides.clear()


@pytest.fixture
def client(db):
    return TestClient(app)


def _use_settings(**overrides):
    settings = Settings(**overrides)
    app.dependency_overrides[get_app_settings] = lambda: settings


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_connect_requires_host_and_user(client):
    response = client.post("/api/connect", json={"host": "db.local"})
    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "ValidationError", "kind": "MissingParameters",
                               "message": "Missing required connection parameters (host or user)"}


def test_connect_and_status(client, db):
    response = client.post("/api/connect", json={"host": "db.local", "user": "admin", "password": "pw"})
    assert response.status_code == 200
    assert response.json()["connection"] == {"connected": True, "host": "db.local", "port": 3306,
                                             "user": "admin", "database": None}

    status = client.get("/api/status").json()
    assert status["ok"] is True
    assert status["connected"] is True

    assert client.post("/api/disconnect").json()["ok"] is True
    assert client.get("/api/status").json()["connected"] is False


def test_connect_failure_payload(client, db):
    db.connect_error = "Access denied for user 'admin'"
    response = client.post("/api/connect", json={"host": "db.local", "user": "admin"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "ConnectionError"
    assert body["details"] == "Access denied for user 'admin'"


def test_not_connected_maps_to_409(client, db):
    db.on("SHOW DATABASES", NotConnectedError())
    response = client.get("/api/databases")
    assert response.status_code == 409
    assert response.json() == {"ok": False, "error": "NotConnected",
                               "message": "Database connection not established"}


def test_list_databases_and_tables(client, db):
    db.on("SHOW DATABASES", [{"Database": "shop"}])
    db.on("SHOW TABLES FROM", [{"Tables_in_shop": "orders"}])
    assert client.get("/api/databases").json() == {"ok": True, "data": ["shop"]}
    assert client.get("/api/databases/shop/tables").json() == {"ok": True, "data": ["orders"]}


def test_create_and_drop_database(client, db):
    assert client.post("/api/databases", json={"name": "fresh"}).status_code == 200
    assert client.delete("/api/databases/fresh").status_code == 200
    assert db.statements() == ["CREATE DATABASE `fresh`", "DROP DATABASE `fresh`"]


def test_create_database_without_name(client):
    response = client.post("/api/databases", json={})
    assert response.status_code == 400
    assert response.json()["kind"] == "InvalidName"


def test_table_structure(client, db):
    db.on("DESCRIBE", [{"Field": "id", "Type": "int", "Null": "NO", "Key": "PRI", "Default": None,
                        "Extra": "auto_increment"}])
    db.on("SHOW INDEX", [])
    body = client.get("/api/databases/shop/tables/orders/structure").json()
    assert body["primary_key"] == ["id"]
    assert body["columns"][0]["declared_type"] == "int"
    assert body["indexes"] == []


def test_table_data_is_json_safe(client, db):
    db.on("COUNT(*) AS total", [{"total": 1}])
    db.on("SELECT * FROM", [{
        "id": 1,
        "price": Decimal("9.50"),
        "placed_at": datetime.datetime(2024, 1, 2, 3, 4, 5),
        "window": datetime.timedelta(hours=1, minutes=30),
        "blob": b"\xff\x00",
    }])

    body = client.get("/api/databases/shop/tables/orders/data?limit=abc&offset=-1").json()

    assert body["total"] == 1
    assert body["limit"] == 10
    assert body["offset"] == 0
    assert body["data"] == [{"id": 1, "price": 9.5, "placed_at": "2024-01-02 03:04:05",
                             "window": "01:30:00", "blob": "ff00"}]


def test_table_data_missing_table(client, db):
    db.on("COUNT(*)", missing_table("ghost"))
    response = client.get("/api/databases/shop/tables/ghost/data")
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


def test_insert_record_missing_columns(client, db):
    db.on("INFORMATION_SCHEMA.COLUMNS", [column_row("id", key="PRI", extra="auto_increment"),
                                         column_row("title", data_type="varchar")])
    response = client.post("/api/databases/blog/tables/posts/records", json={})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "ValidationError"
    assert body["kind"] == "MissingColumns"
    assert body["missing_columns"] == ["title"]


def test_insert_update_delete_record(client, db):
    db.on("INFORMATION_SCHEMA.COLUMNS", [column_row("id", key="PRI", extra="auto_increment"),
                                         column_row("title", data_type="varchar")])
    db.on("KEY_COLUMN_USAGE", [{"name": "id"}])
    db.on("INSERT INTO", StatementResult(rowcount=1, lastrowid=3))
    db.on("UPDATE", StatementResult(rowcount=1))
    db.on("DELETE FROM", StatementResult(rowcount=1))

    inserted = client.post("/api/databases/blog/tables/posts/records", json={"title": "Hello"}).json()
    assert inserted["insert_id"] == 3

    updated = client.put("/api/databases/blog/tables/posts/records/3", json={"title": "Hi"}).json()
    assert updated["affected_rows"] == 1

    deleted = client.delete("/api/databases/blog/tables/posts/records/3").json()
    assert deleted["affected_rows"] == 1
    assert db.calls[-1] == ("DELETE FROM `blog`.`posts` WHERE `id` = %s", ["3"])


def test_create_table_accepts_table_name_alias(client, db):
    response = client.post("/api/databases/blog/tables", json={
        "tableName": "notes",
        "columns": [{"id": 1, "name": "id", "type": "INT", "constraints": ["PRIMARY KEY"]}],
    })
    assert response.status_code == 200
    assert db.statements() == ["CREATE TABLE `blog`.`notes` (`id` INT PRIMARY KEY)"]


def test_drop_and_clear_table(client, db):
    db.on("COUNT(*) AS count", [{"count": 1}])
    assert client.post("/api/databases/blog/tables/posts/clear").status_code == 200
    assert client.delete("/api/databases/blog/tables/posts").status_code == 200
    assert db.statements()[-2:] == ["TRUNCATE TABLE `blog`.`posts`", "DROP TABLE `blog`.`posts`"]


def test_driver_error_payload(client, db):
    db.on("DROP TABLE", DriverError("DROP command denied", code=1142, sqlstate="42000"))
    response = client.delete("/api/databases/blog/tables/posts")
    assert response.status_code == 500
    assert response.json()["code"] == 1142


def test_export_database_download(client, db):
    db.on("BASE TABLE", [])
    db.on("SCHEMATA", [{"SCHEMA_NAME": "shop"}])
    response = client.get("/api/databases/shop/export")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/sql")
    assert response.headers["content-disposition"] == 'attachment; filename="shop_dump.sql"'
    assert "CREATE DATABASE IF NOT EXISTS `shop`;" in response.text


def test_export_table_csv_download(client, db):
    db.on("INFORMATION_SCHEMA.COLUMNS", [column_row("id")])
    db.on("SELECT * FROM", [{"id": 1}])
    response = client.get("/api/databases/shop/tables/orders/export")
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == 'attachment; filename="orders_export.csv"'
    assert response.text == '"id"\n"1"\n'


def test_import_reports_statements(client, db):
    db.on("missing", DriverError("Table 'shop.missing' doesn't exist", code=1146))
    payload = b"CREATE TABLE a (id INT);\nINSERT INTO missing VALUES (1);\n"

    response = client.post("/api/import", files={"file": ("dump.sql", payload, "application/sql")},
                           data={"database": "shop"})

    assert response.status_code == 200
    body = response.json()
    assert body["imported_count"] == 1
    assert body["skipped_count"] == 1
    assert db.sessions == ["shop"]


def test_import_strict_failure_is_422(client, db):
    db.on("missing", DriverError("Table 'shop.missing' doesn't exist", code=1146))
    response = client.post("/api/import", files={"file": ("dump.sql", b"INSERT INTO missing VALUES (1);")},
                           data={"strict": "true"})
    assert response.status_code == 422
    assert response.json()["error"] == "ImportPartialFailure"


def test_import_without_file(client):
    response = client.post("/api/import", data={"database": "shop"})
    assert response.status_code == 400
    assert response.json()["kind"] == "MissingParameters"


def test_import_too_large(client):
    _use_settings(max_import_bytes=10)
    response = client.post("/api/import", files={"file": ("dump.sql", b"SELECT 1; SELECT 2; SELECT 3;")})
    assert response.status_code == 413
    assert response.json()["error"] == "PayloadTooLarge"


def test_import_at_the_size_limit_is_accepted(client, db):
    _use_settings(max_import_bytes=9)
    response = client.post("/api/import", files={"file": ("dump.sql", b"SELECT 1;")})
    assert response.status_code == 200
    assert response.json()["imported_count"] == 1


def test_import_rejects_non_utf8(client):
    response = client.post("/api/import", files={"file": ("dump.sql", b"SELECT \xff\xfe;")})
    assert response.status_code == 400
    assert response.json()["kind"] == "InvalidFile"


def test_invalid_request_body_uses_error_shape(client):
    response = client.post("/api/connect", json={"host": "db.local", "user": "admin", "port": "not-a-port"})
    assert response.status_code == 422
    body = response.json()
    assert body["ok"] is False
    assert body["kind"] == "InvalidRequest"
    assert body["details"]


def test_unknown_route_uses_error_shape(client):
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.json()["ok"] is False
    assert response.json()["error"] == "HTTPError"


def test_raw_query(client, db):
    db.on("SELECT", StatementResult(rows=[{"n": Decimal("2")}], columns=["n"], rowcount=1))
    response = client.post("/api/query", json={"database": "shop", "sql": "SELECT 1 + 1 AS n"})
    assert response.status_code == 200
    assert response.json() == {"ok": True, "rows": [{"n": 2.0}], "columns": ["n"],
                               "affected_rows": None, "insert_id": None}


def test_raw_query_can_be_disabled(client, db):
    _use_settings(allow_raw_queries=False)
    response = client.post("/api/query", json={"sql": "DROP DATABASE shop"})
    assert response.status_code == 403
    assert response.json()["error"] == "Forbidden"
    assert db.calls == []
