"""MySQL driver built on an aiomysql connection pool"""

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Sequence

import aiomysql
from pymysql.constants import CLIENT

from ..config import MysqlConnectionConfig
from ..dialect import Dialect
from .base import Driver, ExecuteResult

logger = logging.getLogger(__name__)


def to_pyformat(sql: str) -> str:
    """Translate ``?`` placeholders into the ``%s`` style aiomysql expects

    Placeholders inside quoted literals are left alone. Literal ``%`` signs are
    doubled because the statement always goes through ``%`` interpolation.

    Examples:
        >>> to_pyformat("SELECT * FROM t WHERE a = ? AND b LIKE '50%?'")
        "SELECT * FROM t WHERE a = %s AND b LIKE '50%%?'"
    """
    out = []
    quote: str | None = None
    for char in sql:
        if char == "%":
            out.append("%%")
            continue
        if quote:
            if char == quote:
                quote = None
            out.append(char)
        elif char in ("'", '"', "`"):
            quote = char
            out.append(char)
        elif char == "?":
            out.append("%s")
        else:
            out.append(char)
    return "".join(out)


class MySQLDriver(Driver):
    """Pooled MySQL driver

    Outside a transaction every statement borrows a pooled connection for
    its own duration. ``begin_transaction()`` pins one connection to the
    calling task until ``release()``.
    """

    dialect = Dialect.MYSQL

    def __init__(self, config: MysqlConnectionConfig) -> None:
        self._config = config
        self._pool: aiomysql.Pool | None = None
        self._tx_conn: ContextVar[aiomysql.Connection | None] = ContextVar(
            f"keel_mysql_tx_{id(self)}", default=None
        )

    async def connect(self) -> None:
        self._pool = await aiomysql.create_pool(
            host=self._config.host,
            port=self._config.port,
            user=self._config.user,
            password=self._config.password,
            db=self._config.database,
            maxsize=self._config.pool_size,
            autocommit=True,
            client_flag=CLIENT.FOUND_ROWS,
            cursorclass=aiomysql.DictCursor,
        )
        logger.info(
            "Connected to MySQL database %s on %s:%s",
            self._config.database,
            self._config.host,
            self._config.port,
        )

    async def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            await self._pool.wait_closed()
            self._pool = None

    def _require_pool(self) -> aiomysql.Pool:
        if self._pool is None:
            raise RuntimeError("MySQLDriver not connected. Call connect() first.")
        return self._pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiomysql.Connection]:
        conn = self._tx_conn.get()
        if conn is not None:
            yield conn
            return
        pool = self._require_pool()
        conn = await pool.acquire()
        try:
            yield conn
        finally:
            pool.release(conn)

    async def query(
        self, sql: str, params: Sequence[Any] = ()
    ) -> list[dict[str, Any]]:
        async with self._connection() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(to_pyformat(sql), tuple(params))
                rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        async with self._connection() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(to_pyformat(sql), tuple(params))
                return ExecuteResult(cursor.lastrowid, cursor.rowcount)

    async def begin_transaction(self) -> None:
        if self._tx_conn.get() is not None:
            raise RuntimeError("A transaction is already open in this task")
        pool = self._require_pool()
        conn = await pool.acquire()
        try:
            await conn.begin()
        except BaseException:
            pool.release(conn)
            raise
        self._tx_conn.set(conn)

    async def commit(self) -> None:
        conn = self._tx_conn.get()
        if conn is not None:
            await conn.commit()

    async def rollback(self) -> None:
        conn = self._tx_conn.get()
        if conn is not None:
            await conn.rollback()

    async def release(self) -> None:
        conn = self._tx_conn.get()
        if conn is None:
            return
        self._tx_conn.set(None)
        self._require_pool().release(conn)
