"""Compile condition trees and query state into parameterized SQL

Everything here is dialect-neutral and uses ``?`` placeholders. The same
input always renders byte-identical SQL with identical parameter order.
"""

from typing import Any, Iterable, NamedTuple, Sequence

from .nodes import (
    Between,
    Comparison,
    Condition,
    Group,
    InList,
    NullCheck,
    RawFragment,
)


class CompiledClause(NamedTuple):
    """SQL text plus its positional parameters"""

    sql: str
    params: list[Any]


class OrderTerm(NamedTuple):
    column: str
    direction: str


def _compile_condition(condition: Condition, params: list[Any]) -> str | None:
    """Render one node, appending its parameters to ``params``

    Returns None when the node renders to nothing (empty IN list, empty group).
    """
    if isinstance(condition, Group):
        parts = []
        for child in condition.children:
            sql = _compile_condition(child, params)
            if sql:
                parts.append(sql)
        if not parts:
            return None
        return "(" + f" {condition.conjunction} ".join(parts) + ")"

    if isinstance(condition, InList):
        # An empty IN () is invalid SQL
        if not condition.values:
            return None
        params.extend(condition.values)
        placeholders = ", ".join("?" for _ in condition.values)
        return f"{condition.column} {condition.operator} ({placeholders})"

    if isinstance(condition, Between):
        params.append(condition.low)
        params.append(condition.high)
        return f"{condition.column} {condition.operator} ? AND ?"

    if isinstance(condition, NullCheck):
        return f"{condition.column} {condition.operator}"

    if isinstance(condition, RawFragment):
        params.extend(condition.params)
        return condition.sql

    if isinstance(condition, Comparison):
        params.append(condition.value)
        return f"{condition.column} {condition.operator} ?"

    raise TypeError(f"Cannot compile condition of type {type(condition).__name__}")


def compile_where(conditions: Iterable[Condition]) -> CompiledClause:
    """Compile top-level conditions into a ``WHERE`` clause

    Top-level conditions are always joined by ``AND``. When nothing renders,
    the returned SQL is empty.

    Examples:
        >>> compile_where([Comparison("status", "=", "active")])
        CompiledClause(sql='WHERE status = ?', params=['active'])
        >>> compile_where([InList("id", [])]).sql
        ''
    """
    params: list[Any] = []
    parts = []
    for condition in conditions:
        sql = _compile_condition(condition, params)
        if sql:
            parts.append(sql)
    if not parts:
        return CompiledClause("", [])
    return CompiledClause("WHERE " + " AND ".join(parts), params)


def compile_order_by(order_by: Sequence[OrderTerm]) -> str:
    if not order_by:
        return ""
    return "ORDER BY " + ", ".join(f"{t.column} {t.direction}" for t in order_by)


def compile_limit(limit: int | None, offset: int | None) -> str:
    if limit is None:
        return ""
    if offset:
        return f"LIMIT {int(limit)} OFFSET {int(offset)}"
    return f"LIMIT {int(limit)}"


def compile_clauses(
    conditions: Iterable[Condition],
    order_by: Sequence[OrderTerm] = (),
    limit: int | None = None,
    offset: int | None = None,
) -> CompiledClause:
    """Compile the WHERE, ORDER BY and LIMIT/OFFSET tail of a statement

    Args:
        conditions: Top-level condition nodes.
        order_by: Ordering terms in priority order.
        limit: Maximum number of rows, or None.
        offset: Rows to skip; only rendered with a limit and when positive.

    Returns:
        The clause tail, without a leading space, and its parameters.
    """
    where = compile_where(conditions)
    pieces = [where.sql, compile_order_by(order_by), compile_limit(limit, offset)]
    return CompiledClause(" ".join(p for p in pieces if p), where.params)


def compile_select(
    table: str,
    conditions: Iterable[Condition] = (),
    order_by: Sequence[OrderTerm] = (),
    limit: int | None = None,
    offset: int | None = None,
    sum_fields: dict[str, str] | None = None,
    columns: Sequence[str] | None = None,
) -> CompiledClause:
    """Compile a full ``SELECT`` statement

    Examples:
        >>> compile_select(
        ...     "users",
        ...     [Comparison("status", "=", "active"), Comparison("age", ">", 18)],
        ...     [OrderTerm("name", "DESC")],
        ...     limit=10,
        ...     offset=5,
        ... ).sql
        'SELECT * FROM users WHERE status = ? AND age > ? ORDER BY name DESC LIMIT 10 OFFSET 5'
    """
    if sum_fields:
        projection = ", ".join(
            f"SUM({field}) AS {alias}" for alias, field in sum_fields.items()
        )
    elif columns:
        projection = ", ".join(columns)
    else:
        projection = "*"

    tail = compile_clauses(conditions, order_by, limit, offset)
    sql = f"SELECT {projection} FROM {table}"
    if tail.sql:
        sql = f"{sql} {tail.sql}"
    return CompiledClause(sql, tail.params)


def compile_count(table: str, conditions: Iterable[Condition] = ()) -> CompiledClause:
    where = compile_where(conditions)
    sql = f"SELECT COUNT(*) AS total FROM {table}"
    if where.sql:
        sql = f"{sql} {where.sql}"
    return CompiledClause(sql, where.params)


def compile_insert(table: str, data: dict[str, Any]) -> CompiledClause:
    columns = list(data)
    placeholders = ", ".join("?" for _ in columns)
    sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
    return CompiledClause(sql, [data[c] for c in columns])


def compile_update(
    table: str, data: dict[str, Any], conditions: Iterable[Condition]
) -> CompiledClause:
    """Compile an ``UPDATE``; the caller guarantees a non-empty WHERE"""
    assignments = ", ".join(f"{column} = ?" for column in data)
    where = compile_where(conditions)
    sql = f"UPDATE {table} SET {assignments} {where.sql}"
    return CompiledClause(sql, [*data.values(), *where.params])


def compile_delete(table: str, conditions: Iterable[Condition]) -> CompiledClause:
    """Compile a ``DELETE``; the caller guarantees a non-empty WHERE"""
    where = compile_where(conditions)
    return CompiledClause(f"DELETE FROM {table} {where.sql}", where.params)
