"""
Keel: an async Active-Record ORM on top of Pydantic.

Keel pairs Pydantic models with a fluent query builder, declared relations
with N+1-safe eager loading, and pluggable MySQL and SQLite drivers.
"""

import logging

from .base import BelongsTo, BelongsToMany, HasMany, HasOne, KeelField
from .config import DatabaseConfig, ModelOptions
from .engine import connect, disconnect, get_driver, reset_engine, transaction
from .exceptions import (
    ConfigurationError,
    KeelError,
    QueryValidationError,
    RelationNotLoadedError,
)
from .migrations import create_tables, get_metadata
from .models import Model
from .query.builder import Page, Query
from .relations import clear_registry
from .relations.resolver import EagerLoad, RelationResolver

# Set up the Keel logger
_logger = logging.getLogger("keel")
# Only add a handler if none exists (to avoid duplicate logs)
if not _logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(name)s: %(levelname)s: %(message)s"))
    _logger.addHandler(_handler)
    _logger.setLevel(logging.INFO)
    # Prevent propagation to root logger to avoid duplicate messages
    _logger.propagate = False


__all__ = [
    "connect",
    "disconnect",
    "get_driver",
    "transaction",
    "create_tables",
    "get_metadata",
    "reset_engine",
    "clear_registry",
    "Model",
    "KeelField",
    "HasOne",
    "HasMany",
    "BelongsTo",
    "BelongsToMany",
    "Query",
    "Page",
    "EagerLoad",
    "RelationResolver",
    "DatabaseConfig",
    "ModelOptions",
    "KeelError",
    "ConfigurationError",
    "QueryValidationError",
    "RelationNotLoadedError",
]
