"""SQLite driver built on aiosqlite"""

import logging
from pathlib import Path
from typing import Any, Sequence

import aiosqlite

from ..config import SqliteConnectionConfig
from ..dialect import Dialect
from .base import Driver, ExecuteResult

logger = logging.getLogger(__name__)


class SqliteDriver(Driver):
    """Single-connection SQLite driver

    The connection runs in autocommit mode; transactions are opened and
    closed with explicit ``BEGIN`` / ``COMMIT`` / ``ROLLBACK`` statements.

    Example:
        async with SqliteDriver(SqliteConnectionConfig(filename="app.db")) as db:
            rows = await db.query("SELECT * FROM users WHERE id = ?", [1])
    """

    dialect = Dialect.SQLITE

    def __init__(self, config: SqliteConnectionConfig) -> None:
        self._config = config
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        filename = self._config.filename
        if filename != ":memory:" and not self._config.create:
            self._conn = await aiosqlite.connect(
                f"file:{Path(filename).as_posix()}?mode=rw",
                uri=True,
                isolation_level=None,
            )
        else:
            self._conn = await aiosqlite.connect(filename, isolation_level=None)
        self._conn.row_factory = aiosqlite.Row
        logger.info("Connected to SQLite database %s", filename)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("SqliteDriver not connected. Call connect() first.")
        return self._conn

    async def query(
        self, sql: str, params: Sequence[Any] = ()
    ) -> list[dict[str, Any]]:
        async with self._connection().execute(sql, tuple(params)) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        async with self._connection().execute(sql, tuple(params)) as cursor:
            return ExecuteResult(cursor.lastrowid, cursor.rowcount)

    async def begin_transaction(self) -> None:
        await self._connection().execute("BEGIN")

    async def commit(self) -> None:
        await self._connection().execute("COMMIT")

    async def rollback(self) -> None:
        await self._connection().execute("ROLLBACK")

    async def release(self) -> None:
        # The single connection stays open until close()
        return None
