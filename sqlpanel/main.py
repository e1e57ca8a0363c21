import re
import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Optional, Dict, Any, List

from fastapi import Body, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse, Response

from . import __version__
from .admin import create_database, drop_database, run_raw_query
from .connection import ConnectionManager
from .dump import export_database_sql, export_table_csv, import_sql
from .errors import (
    DatabaseConnectionError,
    ForbiddenError,
    PayloadTooLargeError,
    SQLPanelError,
    ValidationError,
)
from .introspection import describe, list_databases, list_tables
from .rows import clear_table, create_table, delete_row, drop_table, insert_row, list_rows, update_row
from .settings import Settings, get_settings
from .sql import compact_sql, format_timedelta

settings = get_settings()


def _configure_logging(settings: Settings) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=handlers
    )


_configure_logging(settings)
logger = logging.getLogger('sqlpanel')


def _log_event(step: str, message: str, level: str = "info"):
    full_message = f"[{step}] {message}"
    if level == "warning":
        logger.warning(full_message)
    elif level == "error":
        logger.error(full_message)
    else:
        logger.info(full_message)


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return format_timedelta(value)
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return bytes(value).hex()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return value


def _jsonable_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{key: _json_value(value) for key, value in row.items()} for row in rows]


def _download_name(name: str) -> str:
    return re.sub(r'[^A-Za-z0-9._-]', '_', name) or "export"


app = FastAPI(title="SQLPanel", version=__version__)
app.state.settings = settings

logger.info('SQLPanel backend application starting up')


@app.get("/health")
async def health_check_simple():
    return {"status": "ok"}


@app.head("/health")
async def health_check_head():
    return Response(status_code=200)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SQLPanelError)
async def sqlpanel_error_handler(request: Request, exc: SQLPanelError):
    level = "error" if exc.status_code >= 500 else "warning"
    _log_event("api", f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}", level=level)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": "HTTPError", "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    _log_event("api", f"{request.method} {request.url.path} rejected: invalid request", level="warning")
    return JSONResponse(
        status_code=422,
        content={
            "ok": False,
            "error": "ValidationError",
            "kind": ValidationError.INVALID_REQUEST,
            "message": "Request body or parameters are invalid",
            "details": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"ok": False, "error": "InternalError", "message": str(exc)},
    )


@app.on_event("startup")
async def startup():
    app.state.connections = ConnectionManager(
        pool_size=settings.pool_size,
        isolation_level=settings.isolation_level,
    )
    _log_event("startup", f"Pool size {settings.pool_size}, isolation {settings.isolation_level or 'server default'}")

    if settings.autoconnect:
        try:
            await app.state.connections.connect(
                host=settings.mysql_host,
                user=settings.mysql_user,
                password=settings.mysql_password,
                database=settings.mysql_database,
                port=settings.mysql_port,
            )
            _log_event("startup", f"Connected to {settings.mysql_host} from environment settings")
        except DatabaseConnectionError as e:
            _log_event("startup", f"Startup connection failed: {e.reason}", level="warning")


@app.on_event("shutdown")
async def shutdown():
    connections = getattr(app.state, "connections", None)
    if connections is not None:
        await connections.disconnect()


def get_connections(request: Request) -> ConnectionManager:
    return request.app.state.connections


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


class ConnectRequest(BaseModel):
    host: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = ""
    database: Optional[str] = None
    port: int = 3306


class CreateDatabaseRequest(BaseModel):
    name: Optional[str] = None


class ColumnSpec(BaseModel):
    name: str = ""
    type: str = ""
    constraints: List[str] = []


class CreateTableRequest(BaseModel):
    name: Optional[str] = None
    tableName: Optional[str] = None
    columns: List[ColumnSpec] = []


class QueryRequest(BaseModel):
    database: Optional[str] = None
    sql: Optional[str] = None
    params: Optional[List[Any]] = None


@app.get("/")
async def root_get():
    return {"message": "Welcome to SQLPanel API", "version": __version__}


@app.post("/api/connect")
async def connect(req: ConnectRequest, connections: ConnectionManager = Depends(get_connections)):
    if not req.host or not req.user:
        raise ValidationError(ValidationError.MISSING_PARAMETERS,
                              "Missing required connection parameters (host or user)")

    _log_event("connect", f"Connecting to {req.user}@{req.host}:{req.port}")
    await connections.connect(
        host=req.host,
        user=req.user,
        password=req.password or "",
        database=req.database,
        port=req.port,
    )
    return {"ok": True, "message": "Connected successfully", "connection": connections.status()}


@app.post("/api/disconnect")
async def disconnect(connections: ConnectionManager = Depends(get_connections)):
    await connections.disconnect()
    _log_event("disconnect", "Disconnected")
    return {"ok": True, "message": "Disconnected successfully"}


@app.get("/api/status")
async def connection_status(connections: ConnectionManager = Depends(get_connections)):
    return {"ok": True, **connections.status()}


@app.get("/api/databases")
async def get_databases(connections: ConnectionManager = Depends(get_connections)):
    return {"ok": True, "data": await list_databases(connections)}


@app.post("/api/databases")
async def post_database(req: CreateDatabaseRequest, connections: ConnectionManager = Depends(get_connections)):
    await create_database(connections, req.name)
    _log_event("databases", f"Created database {req.name}")
    return {"ok": True, "message": f"Database {req.name} created successfully"}


@app.delete("/api/databases/{name}")
async def delete_database(name: str, connections: ConnectionManager = Depends(get_connections)):
    await drop_database(connections, name)
    _log_event("databases", f"Dropped database {name}")
    return {"ok": True, "message": f"Database {name} deleted successfully"}


@app.get("/api/databases/{database}/export")
async def export_database(
    database: str,
    connections: ConnectionManager = Depends(get_connections),
    app_settings: Settings = Depends(get_app_settings),
):
    dump = await export_database_sql(connections, database, rows_per_insert=app_settings.dump_rows_per_insert)
    _log_event("export", f"Exported database {database} ({len(dump)} bytes)")
    return Response(
        content=dump,
        media_type="application/sql",
        headers={"Content-Disposition": f'attachment; filename="{_download_name(database)}_dump.sql"'},
    )


@app.post("/api/import")
async def import_database(
    file: Optional[UploadFile] = File(None),
    database: Optional[str] = Form(None),
    strict: bool = Form(False),
    connections: ConnectionManager = Depends(get_connections),
    app_settings: Settings = Depends(get_app_settings),
):
    if file is None:
        raise ValidationError(ValidationError.MISSING_PARAMETERS, "No SQL file provided")

    limit = app_settings.max_import_bytes
    content = await file.read(limit + 1)
    if len(content) > limit:
        raise PayloadTooLargeError(f"SQL file exceeds {limit} bytes")
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError(ValidationError.INVALID_FILE, "SQL file must be UTF-8 encoded")

    _log_event("import", f"Importing {file.filename} ({len(content)} bytes)")
    report = await import_sql(connections, text, database=database or None, strict=strict)
    message = "Database imported successfully"
    if report.skipped_count:
        message = f"Database imported with {report.skipped_count} skipped statements"
    return {"ok": True, "message": message, **report.to_dict()}


@app.get("/api/databases/{database}/tables")
async def get_tables(database: str, connections: ConnectionManager = Depends(get_connections)):
    return {"ok": True, "data": await list_tables(connections, database)}


@app.post("/api/databases/{database}/tables")
async def post_table(database: str, req: CreateTableRequest,
                     connections: ConnectionManager = Depends(get_connections)):
    name = req.name or req.tableName
    await create_table(connections, database, name, [column.model_dump() for column in req.columns])
    _log_event("tables", f"Created table {database}.{name}")
    return {"ok": True, "message": f"Table {name} created successfully"}


@app.get("/api/databases/{database}/tables/{table}/structure")
async def get_table_structure(database: str, table: str,
                              connections: ConnectionManager = Depends(get_connections)):
    columns, indexes = await describe(connections, database, table)
    primary_key = [c.name for c in columns if c.key_role == "PRIMARY"]
    return {
        "ok": True,
        "columns": [c.to_dict() for c in columns],
        "indexes": [i.to_dict() for i in indexes],
        "primary_key": primary_key,
    }


@app.get("/api/databases/{database}/tables/{table}/data")
async def get_table_data(
    database: str,
    table: str,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
    search: Optional[str] = "",
    connections: ConnectionManager = Depends(get_connections),
):
    page = await list_rows(connections, database, table, limit=limit, offset=offset, search=search)
    return {
        "ok": True,
        "data": _jsonable_rows(page["rows"]),
        "total": page["total"],
        "limit": page["limit"],
        "offset": page["offset"],
    }


@app.get("/api/databases/{database}/tables/{table}/export")
async def export_table(database: str, table: str, connections: ConnectionManager = Depends(get_connections)):
    content = await export_table_csv(connections, database, table)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{_download_name(table)}_export.csv"'},
    )


@app.post("/api/databases/{database}/tables/{table}/records")
async def insert_record(database: str, table: str, record: Dict[str, Any] = Body(...),
                        connections: ConnectionManager = Depends(get_connections)):
    result = await insert_row(connections, database, table, record)
    return {"ok": True, "message": "Record inserted successfully", **result}


@app.put("/api/databases/{database}/tables/{table}/records/{record_id}")
async def update_record(database: str, table: str, record_id: str, record: Dict[str, Any] = Body(...),
                        connections: ConnectionManager = Depends(get_connections)):
    result = await update_row(connections, database, table, record_id, record)
    return {"ok": True, "message": "Record updated successfully", **result}


@app.delete("/api/databases/{database}/tables/{table}/records/{record_id}")
async def delete_record(database: str, table: str, record_id: str,
                        connections: ConnectionManager = Depends(get_connections)):
    result = await delete_row(connections, database, table, record_id)
    return {"ok": True, "message": "Record deleted successfully", **result}


@app.delete("/api/databases/{database}/tables/{table}")
async def delete_table(database: str, table: str, connections: ConnectionManager = Depends(get_connections)):
    await drop_table(connections, database, table)
    _log_event("tables", f"Dropped table {database}.{table}")
    return {"ok": True, "message": f"Table {table} deleted successfully"}


@app.post("/api/databases/{database}/tables/{table}/clear")
async def clear_table_rows(database: str, table: str, connections: ConnectionManager = Depends(get_connections)):
    await clear_table(connections, database, table)
    _log_event("tables", f"Cleared table {database}.{table}")
    return {"ok": True, "message": f"Table {table} cleared successfully"}


@app.post("/api/query")
async def execute_query(
    req: QueryRequest,
    connections: ConnectionManager = Depends(get_connections),
    app_settings: Settings = Depends(get_app_settings),
):
    if not app_settings.allow_raw_queries:
        raise ForbiddenError("Raw queries are disabled on this server")

    _log_event("query", f"{req.database or '(no database)'}: {compact_sql(req.sql, 200)}")
    result = await run_raw_query(connections, req.database, req.sql, req.params)
    result["rows"] = _jsonable_rows(result["rows"])
    return {"ok": True, **result}
