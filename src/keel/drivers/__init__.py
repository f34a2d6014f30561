"""Database drivers and the factory that picks one for a config"""

from ..config import DatabaseConfig
from ..dialect import Dialect
from ..exceptions import ConfigurationError
from .base import Driver, ExecuteResult


def create_driver(config: DatabaseConfig) -> Driver:
    """Instantiate the driver matching ``config.client``

    Drivers are imported lazily so that only the selected back-end's
    library has to be importable.

    Raises:
        ConfigurationError: If the client is not supported.
    """
    if config.client is Dialect.SQLITE:
        from .sqlite import SqliteDriver

        return SqliteDriver(config.connection)
    if config.client is Dialect.MYSQL:
        from .mysql import MySQLDriver

        return MySQLDriver(config.connection)
    raise ConfigurationError(f"Unsupported database client: {config.client}")


__all__ = ["Driver", "ExecuteResult", "create_driver"]
