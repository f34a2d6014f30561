"""The narrow driver interface consumed by the query engine"""

from abc import ABC, abstractmethod
from typing import Any, NamedTuple, Sequence

from ..dialect import Dialect


class ExecuteResult(NamedTuple):
    """Outcome of a write statement"""

    last_insert_id: Any
    affected_rows: int


class Driver(ABC):
    """Execute SQL against one database

    Implementations accept ``?`` placeholders and return rows as plain
    dictionaries. Errors raised by the underlying library propagate
    unchanged; the engine never interprets or retries them.
    """

    dialect: Dialect

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def query(
        self, sql: str, params: Sequence[Any] = ()
    ) -> list[dict[str, Any]]:
        """Run a statement that returns rows"""

    @abstractmethod
    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        """Run a write statement"""

    @abstractmethod
    async def begin_transaction(self) -> None: ...

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...

    @abstractmethod
    async def release(self) -> None:
        """Give back whatever the current transaction held on to"""

    async def __aenter__(self) -> "Driver":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
