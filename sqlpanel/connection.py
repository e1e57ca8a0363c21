"""
Connection management for the single MySQL server the panel talks to.

The driver (mysql-connector-python) is blocking, so every call into it runs in
a worker thread via ``asyncio.to_thread``; the event loop only ever waits on
those threads. A semaphore sized like the pool keeps excess requests queued
instead of letting the pool raise ``PoolError`` when it runs dry.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import mysql.connector
from mysql.connector import pooling

from .errors import DatabaseConnectionError, DriverError, NotConnectedError
from .settings import ISOLATION_LEVELS, MAX_POOL_SIZE
from .sql import compact_sql, quote_identifier

logger = logging.getLogger("sqlpanel.connection")


@dataclass
class StatementResult:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    rowcount: int = -1
    lastrowid: Optional[int] = None

    @property
    def has_rows(self) -> bool:
        return bool(self.columns)


def _execute_on(cnx, sql: str, params: Optional[Sequence[Any]] = None) -> StatementResult:
    cursor = cnx.cursor(dictionary=True, buffered=True)
    try:
        # None keeps literal '%' in raw SQL from being treated as a placeholder
        cursor.execute(sql, tuple(params) if params else None)
        if cursor.with_rows:
            rows = cursor.fetchall()
            columns = list(cursor.column_names)
        else:
            rows, columns = [], []
        return StatementResult(rows=rows, columns=columns, rowcount=cursor.rowcount, lastrowid=cursor.lastrowid)
    except mysql.connector.Error as e:
        logger.debug("Statement failed (%s): %s", getattr(e, "errno", None), compact_sql(sql))
        raise DriverError.from_driver(e) from e
    finally:
        cursor.close()


class Session:
    """A run of statements pinned to one pooled connection."""

    def __init__(self, cnx):
        self._cnx = cnx

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> StatementResult:
        return await asyncio.to_thread(_execute_on, self._cnx, sql, params)

    async def run(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        result = await self.execute(sql, params)
        return result.rows


class ConnectionManager:
    """
    Owns at most one connection pool to one MySQL server.

    ``connect`` replaces any open pool, ``disconnect`` is idempotent, and
    ``run``/``execute``/``session`` fail with ``NotConnectedError`` while no
    pool is open. One instance is created per application and shared by all
    request handlers.
    """

    def __init__(self, pool_size: int = 10, isolation_level: Optional[str] = "READ COMMITTED",
                 pool_name: str = "sqlpanel"):
        if not 1 <= pool_size <= MAX_POOL_SIZE:
            raise ValueError(f"pool size must be between 1 and {MAX_POOL_SIZE}, got {pool_size}")
        if isolation_level and isolation_level not in ISOLATION_LEVELS:
            raise ValueError(f"Unsupported isolation level: {isolation_level}")
        self.pool_size = pool_size
        self.isolation_level = isolation_level or None
        self.pool_name = pool_name
        self._pool = None
        self._target: Optional[Dict[str, Any]] = None
        self._slots = asyncio.Semaphore(pool_size)
        self._lifecycle = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    def status(self) -> Dict[str, Any]:
        if self._target is None:
            return {"connected": False}
        return {"connected": True, **self._target}

    def _open_pool(self, config: Dict[str, Any]):
        pool = pooling.MySQLConnectionPool(
            pool_name=self.pool_name,
            pool_size=self.pool_size,
            pool_reset_session=True,
            **config,
        )
        # Probe one round trip so bad credentials fail here, not on first use
        cnx = pool.get_connection()
        try:
            cursor = cnx.cursor()
            try:
                cursor.execute("SELECT 1")
                cursor.fetchall()
            finally:
                cursor.close()
        except mysql.connector.Error:
            cnx.close()
            pool._remove_connections()
            raise
        cnx.close()
        return pool

    async def connect(self, host: str, user: str, password: str = "", database: Optional[str] = None,
                      port: int = 3306) -> None:
        async with self._lifecycle:
            if self._pool is not None:
                logger.info("Closing existing pool before reconnecting")
                await self._close_pool()

            config: Dict[str, Any] = {
                "host": host,
                "port": int(port or 3306),
                "user": user,
                "password": password or "",
                "autocommit": True,
                "charset": "utf8mb4",
            }
            if database:
                config["database"] = database

            logger.info("Connecting to MySQL %s@%s:%s", user, host, config["port"])
            try:
                pool = await asyncio.to_thread(self._open_pool, config)
            except mysql.connector.Error as e:
                reason = getattr(e, "msg", None) or str(e)
                logger.error("Error connecting to MySQL %s@%s: %s", user, host, reason)
                raise DatabaseConnectionError(reason) from e

            self._pool = pool
            self._target = {"host": host, "port": config["port"], "user": user, "database": database}
            logger.info("Successfully connected to MySQL %s@%s:%s", user, host, config["port"])

    async def _close_pool(self) -> None:
        pool, self._pool, self._target = self._pool, None, None
        # closes the idle connections; checked-out ones are disconnected by _release
        try:
            await asyncio.to_thread(pool._remove_connections)
        except mysql.connector.Error as e:
            logger.warning("Error while closing connection pool: %s", e)

    async def disconnect(self) -> None:
        async with self._lifecycle:
            if self._pool is None:
                return
            await self._close_pool()
            logger.info("Disconnected from MySQL")

    def _require_pool(self):
        pool = self._pool
        if pool is None:
            raise NotConnectedError()
        return pool

    def _checkout(self, pool):
        try:
            cnx = pool.get_connection()
        except mysql.connector.Error as e:
            raise DriverError.from_driver(e) from e
        if self.isolation_level:
            try:
                _execute_on(cnx, f"SET SESSION TRANSACTION ISOLATION LEVEL {self.isolation_level}")
            except DriverError:
                cnx.close()
                raise
        return cnx

    def _release(self, pool, cnx):
        if pool is self._pool:
            cnx.close()
            return
        # the pool was replaced or closed while this connection was checked out
        try:
            cnx.disconnect()
        except mysql.connector.Error as e:
            logger.warning("Error closing connection from a retired pool: %s", e)

    @asynccontextmanager
    async def session(self, database: Optional[str] = None) -> AsyncIterator[Session]:
        """
        Hold one pooled connection for several statements.

        ``USE database`` only affects this connection, which is reset when it
        goes back to the pool.
        """
        self._require_pool()
        async with self._slots:
            pool = self._require_pool()
            cnx = await asyncio.to_thread(self._checkout, pool)
            try:
                session = Session(cnx)
                if database:
                    await session.execute(f"USE {quote_identifier(database)}")
                yield session
            finally:
                await asyncio.to_thread(self._release, pool, cnx)

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> StatementResult:
        async with self.session() as session:
            return await session.execute(sql, params)

    async def run(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        result = await self.execute(sql, params)
        return result.rows
