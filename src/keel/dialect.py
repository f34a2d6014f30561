"""Dialect-specific value formatting and SQL fragments.

The clause compiler is dialect-neutral; the few places where generated SQL
depends on the back-end live here.
"""

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic_core import to_json

from .exceptions import QueryValidationError


class Dialect(str, Enum):
    """Supported database back-ends."""

    MYSQL = "mysql"
    SQLITE = "sqlite"


def format_value(dialect: Dialect, value: Any) -> Any:
    """Convert a Python value into something the driver can bind

    Args:
        dialect: Dialect of the connected driver.
        value: Bound parameter value.

    Returns:
        The value converted for binding.

    Examples:
        >>> format_value(Dialect.MYSQL, datetime(2024, 1, 2, 3, 4, 5))
        '2024-01-02 03:04:05'
        >>> format_value(Dialect.SQLITE, datetime(2024, 1, 2, 3, 4, 5))
        '2024-01-02T03:04:05'
    """
    if isinstance(value, datetime):
        if dialect is Dialect.MYSQL:
            return value.strftime("%Y-%m-%d %H:%M:%S")
        return value.isoformat()
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        return to_json(value).decode()
    return value


def json_contains(dialect: Dialect, column: str, value: Any) -> tuple[str, list[Any]]:
    """Return a fragment testing that a JSON column contains ``value``"""
    if dialect is Dialect.MYSQL:
        return f"JSON_CONTAINS({column}, ?)", [to_json(value).decode()]

    if isinstance(value, dict):
        raise QueryValidationError(
            "JSON object containment is not supported on SQLite"
        )
    values = list(value) if isinstance(value, (list, tuple)) else [value]
    if not values:
        raise QueryValidationError("JSON containment needs at least one value")
    checks = [
        f"EXISTS (SELECT 1 FROM json_each({column}) WHERE json_each.value = ?)"
        for _ in values
    ]
    if len(checks) == 1:
        return checks[0], values
    return "(" + " AND ".join(checks) + ")", values


def json_length(dialect: Dialect, column: str, operator: str) -> str:
    """Return a fragment comparing the length of a JSON array column"""
    if dialect is Dialect.MYSQL:
        return f"JSON_LENGTH({column}) {operator} ?"
    return f"json_array_length({column}) {operator} ?"


def full_text(
    dialect: Dialect, columns: list[str], query: str, mode: str = "natural"
) -> tuple[str, list[Any]]:
    """Return a full-text search fragment

    MySQL uses ``MATCH ... AGAINST``. SQLite has no full-text index on plain
    tables, so each column is matched with ``LIKE``.
    """
    if mode not in ("natural", "boolean"):
        raise QueryValidationError("mode must be 'natural' or 'boolean'")
    if dialect is Dialect.MYSQL:
        suffix = " IN BOOLEAN MODE" if mode == "boolean" else ""
        return f"MATCH({', '.join(columns)}) AGAINST(?{suffix})", [query]

    pattern = f"%{query}%"
    clauses = [f"{column} LIKE ?" for column in columns]
    return "(" + " OR ".join(clauses) + ")", [pattern] * len(columns)
