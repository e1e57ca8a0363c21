"""
SQL text helpers shared by the query builder and the dump engine.

Nothing in here talks to the server. Identifiers are always quoted with
``quote_identifier``; values go through driver placeholders everywhere except
the dump writer, which renders literals with ``sql_literal``.
"""

import datetime
import re
from decimal import Decimal
from typing import Any, List, Optional

COLUMN_TYPE_PATTERN = re.compile(
    r"""^(
        TINYINT|SMALLINT|MEDIUMINT|INT|INTEGER|BIGINT|
        DECIMAL|NUMERIC|FLOAT|DOUBLE|REAL|BIT|BOOLEAN|BOOL|
        DATE|DATETIME|TIMESTAMP|TIME|YEAR|
        CHAR|VARCHAR|BINARY|VARBINARY|
        TINYTEXT|TEXT|MEDIUMTEXT|LONGTEXT|
        TINYBLOB|BLOB|MEDIUMBLOB|LONGBLOB|JSON
    )
    (\(\s*\d+\s*(,\s*\d+\s*)?\))?
    (\s+UNSIGNED)?$""",
    re.IGNORECASE | re.VERBOSE,
)

ALLOWED_CONSTRAINTS = (
    "PRIMARY KEY",
    "NOT NULL",
    "UNIQUE",
    "DEFAULT NULL",
    "AUTO_INCREMENT",
)


def quote_identifier(identifier: Any) -> str:
    """Safely quote MySQL identifiers by escaping backticks and wrapping in backticks."""
    escaped = str(identifier).replace('`', '``')
    return f'`{escaped}`'


def qualified(database: Optional[str], table: str) -> str:
    if not database:
        return quote_identifier(table)
    return f"{quote_identifier(database)}.{quote_identifier(table)}"


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so ``text`` matches as a literal substring."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def format_timedelta(value: datetime.timedelta) -> str:
    # TIME columns come back from the driver as timedelta
    total = value.days * 86400 + value.seconds
    sign = "-" if total < 0 else ""
    total = abs(total)
    text = f"{sign}{total // 3600:02d}:{total % 3600 // 60:02d}:{total % 60:02d}"
    if value.microseconds:
        text += f".{value.microseconds:06d}"
    return text


def sql_literal(value: Any) -> str:
    """Render a Python value the driver returned as a MySQL literal for a dump file."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return f"X'{bytes(value).hex()}'"
    if isinstance(value, datetime.datetime):
        text = value.isoformat(sep=" ")
    elif isinstance(value, (datetime.date, datetime.time)):
        text = value.isoformat()
    elif isinstance(value, datetime.timedelta):
        text = format_timedelta(value)
    elif isinstance(value, (set, frozenset)):
        text = ",".join(sorted(str(v) for v in value))
    else:
        text = str(value)
    return "'" + text.replace("\\", "\\\\").replace("'", "\\'") + "'"


def split_statements(text: str) -> List[str]:
    """
    Split SQL text on ``;`` terminators.

    Semicolons inside quoted strings, quoted identifiers and comments do not
    terminate a statement. Statements are trimmed; empty and comment-only
    chunks are dropped. Versioned comments (``/*!40101 ... */``) count as code.
    """
    statements: List[str] = []
    buf: List[str] = []
    has_code = False
    quote = None
    i = 0
    n = len(text)

    def flush():
        statement = "".join(buf).strip()
        if statement and has_code:
            statements.append(statement)
        buf.clear()

    while i < n:
        ch = text[i]
        if quote:
            buf.append(ch)
            if ch == "\\" and quote != "`" and i + 1 < n:
                buf.append(text[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue

        if ch in ("'", '"', "`"):
            quote = ch
            has_code = True
            buf.append(ch)
            i += 1
            continue

        if (ch == "-" and text.startswith("--", i) and (i + 2 >= n or text[i + 2].isspace())) or ch == "#":
            end = text.find("\n", i)
            end = n if end == -1 else end
            buf.append(text[i:end])
            i = end
            continue

        if ch == "/" and text.startswith("/*", i):
            end = text.find("*/", i + 2)
            end = n if end == -1 else end + 2
            comment = text[i:end]
            if comment.startswith("/*!"):
                has_code = True
            buf.append(comment)
            i = end
            continue

        if ch == ";":
            flush()
            has_code = False
            i += 1
            continue

        if not ch.isspace():
            has_code = True
        buf.append(ch)
        i += 1

    flush()
    return statements


def compact_sql(sql: Any, max_len: int = 300) -> str:
    """One-line, length-capped rendering of SQL text for log lines."""
    if sql is None:
        return ""
    text = " ".join(str(sql).split())
    if max_len and len(text) > max_len:
        return text[:max_len] + "..."
    return text
