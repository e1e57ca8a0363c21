"""Server-level operations: databases and the raw query console."""

import logging
from typing import Any, Dict, Optional, Sequence

from .errors import DriverError, NotFoundError, ValidationError
from .sql import compact_sql, quote_identifier

logger = logging.getLogger("sqlpanel.admin")


def _require_name(name: Optional[str]) -> str:
    cleaned = str(name or "").strip()
    if not cleaned:
        raise ValidationError(ValidationError.INVALID_NAME, "Database name is required")
    return cleaned


async def create_database(db, name: str) -> None:
    name = _require_name(name)
    await db.run(f"CREATE DATABASE {quote_identifier(name)}")
    logger.info("Created database %s", name)


async def drop_database(db, name: str) -> None:
    name = _require_name(name)
    try:
        await db.run(f"DROP DATABASE {quote_identifier(name)}")
    except DriverError as e:
        if e.is_missing_object:
            raise NotFoundError(f"Database '{name}' does not exist") from e
        raise
    logger.info("Dropped database %s", name)


async def run_raw_query(db, database: Optional[str], sql: str,
                        params: Optional[Sequence[Any]] = None) -> Dict[str, Any]:
    """
    Run caller-supplied SQL verbatim.

    No statement filtering happens here: DDL, DML and anything else the
    account may run goes through. Callers gate access to this themselves.
    ``USE database`` only applies to the connection this statement runs on.
    """
    if not str(sql or "").strip():
        raise ValidationError(ValidationError.EMPTY_QUERY, "SQL text is required")

    logger.info("Raw query%s: %s", f" on {database}" if database else "", compact_sql(sql))
    async with db.session(database or None) as session:
        result = await session.execute(sql, params)

    return {
        "rows": result.rows,
        "columns": result.columns,
        "affected_rows": None if result.has_rows else result.rowcount,
        "insert_id": result.lastrowid or None,
    }
