"""Connection lifecycle, statement execution and transactions"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Sequence

from .config import DatabaseConfig
from .dialect import format_value
from .drivers import Driver, ExecuteResult, create_driver
from .exceptions import ConfigurationError
from .state import _CURRENT_TRANSACTION, _ENGINE

logger = logging.getLogger(__name__)


async def connect(
    config: str | DatabaseConfig | Driver, auto_migrate: bool = False
) -> Driver:
    """
    Establish a connection to the database.

    Args:
        config: A connection string (e.g. ``"sqlite::memory:"``), a
            :class:`DatabaseConfig`, or an already constructed driver.
        auto_migrate: If True, create tables for all registered models.

    Returns:
        The connected driver.
    """
    from .relations import resolve_relationships

    resolve_relationships()

    if isinstance(config, Driver):
        driver = config
    else:
        if isinstance(config, str):
            config = DatabaseConfig.from_url(config)
        driver = create_driver(config)

    previous = _ENGINE["driver"]
    if previous is not None and previous is not driver:
        await previous.close()

    await driver.connect()
    _ENGINE["driver"] = driver

    if auto_migrate:
        from .migrations import create_tables

        await create_tables()
    return driver


async def disconnect() -> None:
    """Close the active driver, if any"""
    driver = _ENGINE["driver"]
    _ENGINE["driver"] = None
    if driver is not None:
        await driver.close()


def reset_engine() -> None:
    """Forget the active driver without closing it"""
    _ENGINE["driver"] = None


def get_driver() -> Driver:
    """Return the connected driver

    Raises:
        ConfigurationError: If ``connect()`` has not been called.
    """
    driver = _ENGINE["driver"]
    if driver is None:
        raise ConfigurationError(
            "Database connection is not initialized. Call keel.connect() first."
        )
    return driver


async def run_query(sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
    """Format parameters for the active dialect and run a row query"""
    driver = get_driver()
    bound = [format_value(driver.dialect, p) for p in params]
    logger.debug("%s -- %d params", sql, len(bound))
    return await driver.query(sql, bound)


async def run_execute(sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
    """Format parameters for the active dialect and run a write statement"""
    driver = get_driver()
    bound = [format_value(driver.dialect, p) for p in params]
    logger.debug("%s -- %d params", sql, len(bound))
    return await driver.execute(sql, bound)


@asynccontextmanager
async def transaction():
    """
    Asynchronous context manager for database transactions.

    The transaction commits when the block exits normally and rolls back
    when it raises; the exception is re-raised. The driver's transaction
    resources are released in every case. A nested ``transaction()`` joins
    the outer one.

    Usage:
        async with keel.transaction():
            await User.create(username="alice")
            ...
    """
    if _CURRENT_TRANSACTION.get():
        yield
        return

    driver = get_driver()
    try:
        await driver.begin_transaction()
    except BaseException:
        await driver.release()
        raise
    token = _CURRENT_TRANSACTION.set(True)
    try:
        yield
        await driver.commit()
    except BaseException:
        logger.warning("Rolling back transaction after an error")
        await driver.rollback()
        raise
    finally:
        _CURRENT_TRANSACTION.reset(token)
        await driver.release()
