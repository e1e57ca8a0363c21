"""
Database dumps (SQL), table exports (CSV) and dump replay.

A dump is plain text: create/use the database, switch foreign-key checks off,
then per base table ``DROP TABLE IF EXISTS``, the server's own
``SHOW CREATE TABLE`` output and the rows as ``INSERT`` statements. Import
splits text into statements and replays them in order on one connection,
skipping (and reporting) the ones the server rejects.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from . import __version__
from .errors import DriverError, ImportPartialFailure, NotFoundError
from .introspection import columns_of, list_base_tables
from .rows import RowQueryBuilder
from .sql import compact_sql, qualified, quote_identifier, split_statements, sql_literal

logger = logging.getLogger("sqlpanel.dump")


@dataclass
class StatementOutcome:
    index: int
    statement: str
    ok: bool
    error: Optional[str] = None
    code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"index": self.index, "statement": compact_sql(self.statement, 200), "ok": self.ok}
        if not self.ok:
            payload["error"] = self.error
            payload["code"] = self.code
        return payload


@dataclass
class ImportReport:
    results: List[StatementOutcome] = field(default_factory=list)

    @property
    def imported_count(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def skipped_count(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "imported_count": self.imported_count,
            "skipped_count": self.skipped_count,
            "results": [r.to_dict() for r in self.results],
        }


def _insert_statement(table: str, columns: List[str], rows: List[Dict[str, Any]]) -> str:
    column_list = ", ".join(quote_identifier(c) for c in columns)
    values = ",\n".join(
        "(" + ", ".join(sql_literal(row[c]) for c in columns) + ")" for row in rows
    )
    return f"INSERT INTO {quote_identifier(table)} ({column_list}) VALUES\n{values};\n\n"


async def export_database_sql(db, database: str, rows_per_insert: Optional[int] = None) -> str:
    """
    Dump schema and data of ``database``.

    Each non-empty table gets one INSERT by default; ``rows_per_insert``
    splits large tables into several statements to stay under the server's
    ``max_allowed_packet``.
    """
    try:
        tables = await list_base_tables(db, database)
        if not tables and not await db.run(
            "SELECT SCHEMA_NAME FROM INFORMATION_SCHEMA.SCHEMATA WHERE SCHEMA_NAME = %s", [database]
        ):
            raise NotFoundError(f"Database '{database}' does not exist")

        out = io.StringIO()
        out.write(f"-- MySQL dump for database {database}\n")
        out.write(f"-- Generated by sqlpanel {__version__} on {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n\n")
        out.write(f"CREATE DATABASE IF NOT EXISTS {quote_identifier(database)};\n")
        out.write(f"USE {quote_identifier(database)};\n\n")
        out.write("SET FOREIGN_KEY_CHECKS = 0;\n\n")

        for table in tables:
            created = await db.run(f"SHOW CREATE TABLE {qualified(database, table)}")
            create_statement = created[0]["Create Table"]
            if isinstance(create_statement, (bytes, bytearray)):
                create_statement = bytes(create_statement).decode("utf-8")

            out.write(f"DROP TABLE IF EXISTS {quote_identifier(table)};\n")
            out.write(create_statement + ";\n\n")

            sql, params = RowQueryBuilder(database, table).select_all()
            result = await db.execute(sql, params)
            if not result.rows:
                continue
            # the server computes generated columns and rejects explicit values for them
            computed = {c.name for c in await columns_of(db, database, table) if c.generated}
            columns = [c for c in result.columns if c not in computed]
            batch = rows_per_insert or len(result.rows)
            for start in range(0, len(result.rows), batch):
                out.write(_insert_statement(table, columns, result.rows[start:start + batch]))

        out.write("SET FOREIGN_KEY_CHECKS = 1;\n")
    except DriverError as e:
        if e.is_missing_object:
            raise NotFoundError(f"Database '{database}' does not exist") from e
        raise

    logger.info("Exported database %s (%d tables)", database, len(tables))
    return out.getvalue()


def _csv_field(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    return str(value)


async def export_table_csv(db, database: str, table: str) -> str:
    columns = [c.name for c in await columns_of(db, database, table)]
    if not columns:
        raise NotFoundError(f"Table '{table}' does not exist in database '{database}'")

    sql, params = RowQueryBuilder(database, table).select_all()
    rows = await db.run(sql, params)

    out = io.StringIO()
    writer = csv.writer(out, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([_csv_field(row.get(c)) for c in columns])

    logger.info("Exported %d rows from %s.%s as CSV", len(rows), database, table)
    return out.getvalue()


async def import_sql(db, text: str, database: Optional[str] = None, strict: bool = False) -> ImportReport:
    """
    Replay SQL text statement by statement.

    All statements share one connection so ``USE`` and ``SET`` in the dump
    carry over. A failing statement is logged and skipped. With ``strict``
    the replay still runs to the end, then ``ImportPartialFailure`` is raised
    if anything was skipped.
    """
    statements = split_statements(text)
    report = ImportReport()
    logger.info("Importing %d statements%s", len(statements), f" into {database}" if database else "")

    async with db.session(database) as session:
        for index, statement in enumerate(statements):
            try:
                await session.execute(statement)
            except DriverError as e:
                logger.warning("Import statement %d failed (%s): %s -- %s",
                               index, e.code, e.message, compact_sql(statement, 120))
                report.results.append(StatementOutcome(index, statement, False, e.message, e.code))
                continue
            report.results.append(StatementOutcome(index, statement, True))

    logger.info("Import finished: %d imported, %d skipped", report.imported_count, report.skipped_count)
    if strict and report.skipped_count:
        raise ImportPartialFailure(report)
    return report
