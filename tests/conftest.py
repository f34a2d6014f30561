from typing import Any, Sequence

import pytest
import pytest_asyncio

import keel
from keel.dialect import Dialect
from keel.drivers import Driver, ExecuteResult


class RecordingDriver(Driver):
    """In-memory driver that records every statement and replays scripted rows

    ``responses`` is consumed in order by ``query()``; once it runs out every
    further query returns no rows. ``execute()`` returns ``(last_insert_id,
    affected_rows)`` from ``execute_results`` the same way, defaulting to
    ``(1, 1)``.
    """

    def __init__(
        self,
        responses: Sequence[list[dict[str, Any]]] = (),
        execute_results: Sequence[tuple[Any, int]] = (),
        dialect: Dialect = Dialect.SQLITE,
    ):
        self.dialect = dialect
        self.responses = list(responses)
        self.execute_results = list(execute_results)
        self.statements: list[tuple[str, list[Any]]] = []
        self.events: list[str] = []

    @property
    def queries(self) -> list[str]:
        return [sql for sql, _ in self.statements if sql.startswith("SELECT")]

    async def connect(self) -> None:
        self.events.append("connect")

    async def close(self) -> None:
        self.events.append("close")

    async def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        self.statements.append((sql, list(params)))
        return self.responses.pop(0) if self.responses else []

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        self.statements.append((sql, list(params)))
        if self.execute_results:
            return ExecuteResult(*self.execute_results.pop(0))
        return ExecuteResult(1, 1)

    async def begin_transaction(self) -> None:
        self.events.append("begin")

    async def commit(self) -> None:
        self.events.append("commit")

    async def rollback(self) -> None:
        self.events.append("rollback")

    async def release(self) -> None:
        self.events.append("release")


@pytest.fixture
def recorder():
    """Factory that connects a fresh RecordingDriver and returns it"""

    async def _connect(*responses, execute_results=(), dialect=Dialect.SQLITE):
        driver = RecordingDriver(responses, execute_results, dialect)
        await keel.connect(driver)
        return driver

    return _connect


@pytest_asyncio.fixture
async def db_url(tmp_path):
    """A throwaway SQLite file; the connection is closed after the test"""
    url = f"sqlite:{tmp_path / 'test.db'}?mode=rwc"
    yield url
    await keel.disconnect()


@pytest.fixture(autouse=True)
def cleanup_models():
    """Reset the engine and forget every model defined by the test"""
    yield
    keel.reset_engine()
    keel.clear_registry()
