import asyncio

import pytest

import keel
from keel import DatabaseConfig, Model
from keel.drivers import create_driver
from keel.exceptions import ConfigurationError


@pytest.fixture
def Ledger():
    class Ledger(Model, timestamps=False):
        id: int | None = None
        amount: int = 0

    return Ledger


@pytest.mark.asyncio
async def test_commit_on_success(Ledger, recorder):
    driver = await recorder()

    async with keel.transaction():
        await Ledger.create(amount=5)

    assert driver.events == ["connect", "begin", "commit", "release"]
    assert driver.statements[0][0] == "INSERT INTO ledger (amount) VALUES (?)"


@pytest.mark.asyncio
async def test_rollback_and_reraise(Ledger, recorder):
    driver = await recorder()

    with pytest.raises(RuntimeError, match="boom"):
        async with keel.transaction():
            await Ledger.create(amount=5)
            raise RuntimeError("boom")

    assert driver.events == ["connect", "begin", "rollback", "release"]


@pytest.mark.asyncio
async def test_nested_transaction_joins_outer(Ledger, recorder):
    driver = await recorder()

    async with keel.transaction():
        async with keel.transaction():
            await Ledger.create(amount=1)
        await Ledger.create(amount=2)

    assert driver.events.count("begin") == 1
    assert driver.events.count("commit") == 1


@pytest.mark.asyncio
async def test_model_transaction_returns_callback_result(Ledger, recorder):
    driver = await recorder(execute_results=[(9, 1)])

    record = await Ledger.transaction(lambda: Ledger.create(amount=3))

    assert record.id == 9
    assert driver.events[-2:] == ["commit", "release"]


@pytest.mark.asyncio
async def test_concurrent_tasks_do_not_share_transaction_state(Ledger, recorder):
    driver = await recorder()
    entered = asyncio.Event()

    async def in_transaction():
        async with keel.transaction():
            entered.set()
            await asyncio.sleep(0)

    async def outside():
        await entered.wait()
        async with keel.transaction():
            pass

    await asyncio.gather(in_transaction(), outside())

    assert driver.events.count("begin") == 2


@pytest.mark.asyncio
async def test_transaction_requires_connection():
    with pytest.raises(ConfigurationError, match="not initialized"):
        async with keel.transaction():
            pass


@pytest.mark.asyncio
async def test_failed_begin_still_releases(Ledger, recorder):
    driver = await recorder()
    attempts = []

    async def flaky_begin():
        attempts.append("begin")
        driver.events.append("begin")
        if len(attempts) == 1:
            raise ConnectionError("server went away")

    driver.begin_transaction = flaky_begin

    with pytest.raises(ConnectionError):
        async with keel.transaction():
            pass

    assert driver.events == ["connect", "begin", "release"]

    async with keel.transaction():
        await Ledger.create(amount=1)

    assert driver.events[-3:] == ["begin", "commit", "release"]


class _FailingConnection:
    async def begin(self):
        raise ConnectionError("server went away")


class _Pool:
    def __init__(self):
        self.released = []

    async def acquire(self):
        return _FailingConnection()

    def release(self, conn):
        self.released.append(conn)


@pytest.mark.asyncio
async def test_mysql_failed_begin_returns_connection_to_pool():
    driver = create_driver(DatabaseConfig.from_url("mysql://root:pw@localhost/app"))
    pool = driver._pool = _Pool()

    with pytest.raises(ConnectionError):
        await driver.begin_transaction()

    assert len(pool.released) == 1
    # nothing stays pinned, so the next attempt is not "already open"
    with pytest.raises(ConnectionError):
        await driver.begin_transaction()
    assert len(pool.released) == 2
