"""
Row-level operations on a single table.

``RowQueryBuilder`` turns a (database, table, columns) tuple into ``(sql,
params)`` pairs: identifiers are quoted, values are ``%s`` placeholders bound
by the driver. The coroutines below validate requests against the catalog
before building anything, so a rejected request never reaches the table.
"""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import DriverError, NotFoundError, ValidationError
from .introspection import columns_of, primary_key_columns, table_exists
from .sql import ALLOWED_CONSTRAINTS, COLUMN_TYPE_PATTERN, escape_like, qualified, quote_identifier

logger = logging.getLogger("sqlpanel.rows")

DEFAULT_LIMIT = 10
MAX_LIMIT = 100

Statement = Tuple[str, List[Any]]

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def _coerce_int(value: Any, default: int) -> int:
    """Leading integer of ``value`` ("20abc" and "10.5" read as 20 and 10), else ``default``."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else default


def clamp_limit(value: Any) -> int:
    """Page size in [1, 100]; anything unparseable (or zero) means the default of 10."""
    return max(1, min(MAX_LIMIT, _coerce_int(value, DEFAULT_LIMIT) or DEFAULT_LIMIT))


def clamp_offset(value: Any) -> int:
    return max(0, _coerce_int(value, 0))


def _bind(value: Any) -> Any:
    # JSON columns arrive from the UI already parsed
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return value


class RowQueryBuilder:
    def __init__(self, database: str, table: str):
        self.database = database
        self.table = table
        self.target = qualified(database, table)

    def count(self) -> Statement:
        return f"SELECT COUNT(*) AS total FROM {self.target}", []

    def select_all(self) -> Statement:
        return f"SELECT * FROM {self.target}", []

    def select_page(self, columns: Sequence[str], limit: int, offset: int, search: str = "") -> Statement:
        sql = f"SELECT * FROM {self.target}"
        params: List[Any] = []
        if search and columns:
            pattern = f"%{escape_like(search)}%"
            sql += " WHERE " + " OR ".join(
                f"CAST({quote_identifier(column)} AS CHAR) LIKE %s" for column in columns
            )
            params.extend(pattern for _ in columns)
        sql += " LIMIT %s OFFSET %s"
        params.extend([limit, offset])
        return sql, params

    def insert(self, record: Mapping[str, Any]) -> Statement:
        keys = list(record)
        columns = ", ".join(quote_identifier(key) for key in keys)
        placeholders = ", ".join("%s" for _ in keys)
        return (
            f"INSERT INTO {self.target} ({columns}) VALUES ({placeholders})",
            [_bind(record[key]) for key in keys],
        )

    def update(self, primary_key: str, row_id: Any, record: Mapping[str, Any]) -> Statement:
        keys = list(record)
        assignments = ", ".join(f"{quote_identifier(key)} = %s" for key in keys)
        return (
            f"UPDATE {self.target} SET {assignments} WHERE {quote_identifier(primary_key)} = %s",
            [_bind(record[key]) for key in keys] + [row_id],
        )

    def delete(self, primary_key: str, row_id: Any) -> Statement:
        return f"DELETE FROM {self.target} WHERE {quote_identifier(primary_key)} = %s", [row_id]

    def truncate(self) -> Statement:
        return f"TRUNCATE TABLE {self.target}", []

    def drop(self) -> Statement:
        return f"DROP TABLE {self.target}", []

    def create(self, columns: Iterable[Mapping[str, Any]]) -> Statement:
        """
        CREATE TABLE from UI column specs ``{name, type, constraints}``.

        Types and constraints cannot be bound as parameters, so anything
        outside the whitelist is rejected with ``ValidationError``.
        """
        definitions: List[str] = []
        names: List[str] = []
        primary: List[str] = []
        invalid: List[str] = []
        seen = set()

        for column in columns:
            name = str(column.get("name") or "").strip()
            column_type = " ".join(str(column.get("type") or "").split()).upper()
            constraints = [" ".join(str(c).split()).upper() for c in column.get("constraints") or []]

            if (not name or name.lower() in seen or not COLUMN_TYPE_PATTERN.match(column_type)
                    or any(c not in ALLOWED_CONSTRAINTS for c in constraints)):
                invalid.append(name or "<unnamed>")
                continue
            seen.add(name.lower())

            if "PRIMARY KEY" in constraints:
                primary.append(name)
            parts = [quote_identifier(name), column_type]
            parts.extend(c for c in ALLOWED_CONSTRAINTS if c in constraints and c != "PRIMARY KEY")
            definitions.append(" ".join(parts))
            names.append(name)

        if invalid:
            raise ValidationError(ValidationError.INVALID_COLUMNS,
                                  f"Invalid column definitions: {', '.join(invalid)}", invalid)
        if not definitions:
            raise ValidationError(ValidationError.INVALID_COLUMNS, "A table needs at least one column")

        if len(primary) == 1:
            # keep single-column keys inline, where AUTO_INCREMENT expects them
            definitions[names.index(primary[0])] += " PRIMARY KEY"
        elif primary:
            definitions.append(f"PRIMARY KEY ({', '.join(quote_identifier(p) for p in primary)})")

        return f"CREATE TABLE {self.target} ({', '.join(definitions)})", []


def _table_missing(database: str, table: str) -> NotFoundError:
    return NotFoundError(f"Table '{table}' does not exist in database '{database}'")


async def _single_primary_key(db, database: str, table: str, action: str) -> str:
    keys = await primary_key_columns(db, database, table)
    if len(keys) == 1:
        return keys[0]
    if not keys and not await table_exists(db, database, table):
        raise _table_missing(database, table)
    if keys:
        message = f"Table has a composite primary key ({', '.join(keys)}); {action} needs a single-column key"
    else:
        message = f"Table must have a primary key for {action}"
    raise ValidationError(ValidationError.NO_PRIMARY_KEY, message, keys)


def _check_known(record: Mapping[str, Any], known: Iterable[str]) -> None:
    known = set(known)
    unknown = [key for key in record if key not in known]
    if unknown:
        raise ValidationError(ValidationError.UNKNOWN_COLUMNS,
                              f"Unknown columns: {', '.join(unknown)}", unknown)


async def list_rows(db, database: str, table: str, limit: Any = DEFAULT_LIMIT, offset: Any = 0,
                    search: Optional[str] = "") -> Dict[str, Any]:
    limit = clamp_limit(limit)
    offset = clamp_offset(offset)
    search = search or ""
    builder = RowQueryBuilder(database, table)

    try:
        sql, params = builder.count()
        counted = await db.run(sql, params)
        total = int(counted[0]["total"]) if counted else 0

        columns: List[str] = []
        if search:
            columns = [c.name for c in await columns_of(db, database, table)]
        sql, params = builder.select_page(columns, limit, offset, search)
        rows = await db.run(sql, params)
    except DriverError as e:
        if e.is_missing_object:
            raise _table_missing(database, table) from e
        raise

    return {"rows": rows, "total": total, "limit": limit, "offset": offset}


async def insert_row(db, database: str, table: str, record: Mapping[str, Any]) -> Dict[str, Any]:
    columns = await columns_of(db, database, table)
    if not columns:
        raise _table_missing(database, table)

    _check_known(record, (c.name for c in columns))
    missing = [c.name for c in columns if c.required and c.name not in record]
    if missing:
        raise ValidationError(ValidationError.MISSING_COLUMNS,
                              f"Missing required columns: {', '.join(missing)}", missing)

    sql, params = RowQueryBuilder(database, table).insert(record)
    result = await db.execute(sql, params)
    logger.info("Inserted row into %s.%s (insert_id=%s)", database, table, result.lastrowid)
    return {"affected_rows": result.rowcount, "insert_id": result.lastrowid}


async def update_row(db, database: str, table: str, row_id: Any, record: Mapping[str, Any]) -> Dict[str, Any]:
    primary_key = await _single_primary_key(db, database, table, "updates")

    # the key identifies the row; it is never rewritten through this path
    changes = {key: value for key, value in record.items() if key != primary_key}
    if not changes:
        raise ValidationError(ValidationError.NO_FIELDS_TO_UPDATE, "No data to update")
    _check_known(changes, (c.name for c in await columns_of(db, database, table)))

    sql, params = RowQueryBuilder(database, table).update(primary_key, row_id, changes)
    result = await db.execute(sql, params)
    logger.info("Updated %s.%s where %s=%s (%s rows)", database, table, primary_key, row_id, result.rowcount)
    return {"affected_rows": result.rowcount}


async def delete_row(db, database: str, table: str, row_id: Any) -> Dict[str, Any]:
    primary_key = await _single_primary_key(db, database, table, "deletion")
    sql, params = RowQueryBuilder(database, table).delete(primary_key, row_id)
    result = await db.execute(sql, params)
    logger.info("Deleted from %s.%s where %s=%s (%s rows)", database, table, primary_key, row_id, result.rowcount)
    return {"affected_rows": result.rowcount}


async def clear_table(db, database: str, table: str) -> None:
    if not await table_exists(db, database, table):
        raise _table_missing(database, table)
    # TRUNCATE skips row-level DELETE triggers; every row goes
    sql, params = RowQueryBuilder(database, table).truncate()
    await db.run(sql, params)
    logger.info("Cleared table %s.%s", database, table)


async def drop_table(db, database: str, table: str) -> None:
    sql, params = RowQueryBuilder(database, table).drop()
    try:
        await db.run(sql, params)
    except DriverError as e:
        if e.is_missing_object:
            raise _table_missing(database, table) from e
        raise
    logger.info("Dropped table %s.%s", database, table)


async def create_table(db, database: str, table: str, columns: Sequence[Mapping[str, Any]]) -> None:
    if not str(table or "").strip():
        raise ValidationError(ValidationError.INVALID_NAME, "Table name is required")
    sql, params = RowQueryBuilder(database, table.strip()).create(columns)
    await db.run(sql, params)
    logger.info("Created table %s.%s with %d columns", database, table, len(columns))
