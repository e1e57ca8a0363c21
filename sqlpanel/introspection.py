"""
Schema metadata for databases and tables.

Everything is read fresh from the server on each call: ``SHOW``/``DESCRIBE``
for what the UI displays, ``INFORMATION_SCHEMA`` for the flags the row
operations validate against. Table references are always qualified with
their database, so no request depends on a connection's current ``USE``.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

from .errors import DriverError, NotFoundError
from .sql import qualified, quote_identifier

PRIMARY = "PRIMARY"
UNIQUE = "UNIQUE"
NONE = "NONE"

_KEY_ROLES = {"PRI": PRIMARY, "UNI": UNIQUE}


def _text(value: Any) -> Any:
    # Older connector releases hand back SHOW/DESCRIBE cells as bytearray
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    return value


@dataclass
class ColumnDescriptor:
    name: str
    declared_type: str
    nullable: bool
    key_role: str
    default: Optional[str]
    extra: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TableIndex:
    index_name: str
    column_name: str
    sequence: int
    unique: bool
    nullable: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ColumnInfo:
    name: str
    nullable: bool
    is_primary_key: bool
    has_default: bool = False
    data_type: str = ""
    generated: bool = False

    @property
    def required(self) -> bool:
        """NOT NULL, not the primary key, and nothing the server would fill in."""
        return not self.nullable and not self.is_primary_key and not self.has_default

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def list_databases(db) -> List[str]:
    rows = await db.run("SHOW DATABASES")
    return [_text(row.get("Database", next(iter(row.values())))) for row in rows]


async def list_tables(db, database: str) -> List[str]:
    try:
        rows = await db.run(f"SHOW TABLES FROM {quote_identifier(database)}")
    except DriverError as e:
        if e.is_missing_object:
            raise NotFoundError(f"Database '{database}' does not exist") from e
        raise
    return [_text(next(iter(row.values()))) for row in rows]


async def describe(db, database: str, table: str) -> Tuple[List[ColumnDescriptor], List[TableIndex]]:
    target = qualified(database, table)
    try:
        structure = await db.run(f"DESCRIBE {target}")
        index_rows = await db.run(f"SHOW INDEX FROM {target}")
    except DriverError as e:
        if e.is_missing_object:
            raise NotFoundError(f"Table '{table}' does not exist in database '{database}'") from e
        raise

    columns = [
        ColumnDescriptor(
            name=_text(row["Field"]),
            declared_type=_text(row["Type"]),
            nullable=_text(row["Null"]) == "YES",
            key_role=_KEY_ROLES.get(_text(row.get("Key") or ""), NONE),
            default=_text(row.get("Default")),
            extra=_text(row.get("Extra") or ""),
        )
        for row in structure
    ]
    indexes = [
        TableIndex(
            index_name=_text(row["Key_name"]),
            column_name=_text(row["Column_name"]),
            sequence=int(row["Seq_in_index"]),
            unique=int(row["Non_unique"]) == 0,
            nullable=_text(row.get("Null") or "") == "YES",
        )
        for row in index_rows
    ]
    return columns, indexes


async def columns_of(db, database: str, table: str) -> List[ColumnInfo]:
    rows = await db.run(
        """
        SELECT COLUMN_NAME AS name, IS_NULLABLE AS is_nullable, COLUMN_KEY AS column_key,
               COLUMN_DEFAULT AS column_default, EXTRA AS extra, DATA_TYPE AS data_type
        FROM INFORMATION_SCHEMA.COLUMNS
        WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
        ORDER BY ORDINAL_POSITION
        """,
        [database, table],
    )
    columns = []
    for row in rows:
        extra = (_text(row.get("extra")) or "").lower()
        columns.append(ColumnInfo(
            name=_text(row["name"]),
            nullable=_text(row["is_nullable"]) == "YES",
            is_primary_key=_text(row.get("column_key")) == "PRI",
            has_default=row.get("column_default") is not None
            or "auto_increment" in extra
            or "generated" in extra,
            data_type=_text(row.get("data_type")) or "",
            # DEFAULT_GENERATED only marks an expression default; the value is still writable
            generated="virtual generated" in extra or "stored generated" in extra,
        ))
    return columns


async def primary_key_columns(db, database: str, table: str) -> List[str]:
    rows = await db.run(
        """
        SELECT COLUMN_NAME AS name
        FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE
        WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s AND CONSTRAINT_NAME = 'PRIMARY'
        ORDER BY ORDINAL_POSITION
        """,
        [database, table],
    )
    return [_text(row["name"]) for row in rows]


async def table_exists(db, database: str, table: str) -> bool:
    rows = await db.run(
        "SELECT COUNT(*) AS count FROM INFORMATION_SCHEMA.TABLES WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s",
        [database, table],
    )
    return bool(rows and rows[0]["count"])


async def list_base_tables(db, database: str) -> List[str]:
    """Base tables only (views have no CREATE TABLE), in name order."""
    rows = await db.run(
        """
        SELECT TABLE_NAME AS name
        FROM INFORMATION_SCHEMA.TABLES
        WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE'
        ORDER BY TABLE_NAME
        """,
        [database],
    )
    return [_text(row["name"]) for row in rows]
