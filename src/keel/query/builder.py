"""Build fluent queries, compile them and execute them through the driver"""

import logging
import math
import re
from collections.abc import Callable, Iterable
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Generic, Type, TypeVar

from pydantic import BaseModel

from ..dialect import full_text, json_contains, json_length
from ..engine import get_driver, run_execute, run_query
from ..exceptions import QueryValidationError
from ..relations.resolver import DEFAULT_MAX_DEPTH, EagerLoad, RelationResolver
from .compiler import (
    CompiledClause,
    OrderTerm,
    compile_count,
    compile_delete,
    compile_insert,
    compile_select,
    compile_update,
    compile_where,
)
from .nodes import (
    Between,
    Comparison,
    Condition,
    FieldProxy,
    Group,
    InList,
    NullCheck,
    RawFragment,
)

if TYPE_CHECKING:
    from ..models import Model

T = TypeVar("T", bound="Model")

logger = logging.getLogger(__name__)

FORBIDDEN_KEYWORDS = ("DROP", "DELETE", "TRUNCATE", "INSERT", "UPDATE", "GRANT")

# Words allowed in raw SQL besides whitelisted columns
SQL_VOCABULARY = frozenset(
    """
    AND OR NOT NULL IS IN LIKE GLOB BETWEEN EXISTS TRUE FALSE ESCAPE COLLATE
    NOCASE BINARY CASE WHEN THEN ELSE END CAST AS INTEGER TEXT REAL
    DATE TIME DATETIME YEAR MONTH DAY LOWER UPPER LENGTH TRIM SUBSTR SUBSTRING
    COALESCE IFNULL NULLIF ABS ROUND INSTR CONCAT JSON_EXTRACT JSON_CONTAINS
    JSON_LENGTH JSON_ARRAY_LENGTH JSON_EACH VALUE MATCH AGAINST BOOLEAN MODE
    """.split()
)

_FORBIDDEN_RE = re.compile(r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE)
_LITERAL_RE = re.compile(r"'(?:[^']|'')*'")
_QUOTED_IDENTIFIER_RE = re.compile(r"\"((?:[^\"]|\"\")*)\"|`([^`]*)`")
_NUMBER_RE = re.compile(r"\b\d+(?:\.\d+)?(?:[eE][+-]?\d+)?\b")
_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_COLUMN_REF_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def _column_name(field: Any) -> str:
    return field.column if isinstance(field, FieldProxy) else field


class QueryState:
    """Mutable clause state owned by exactly one :class:`Query`

    Attributes:
        conditions: Top-level conditions, implicitly joined by AND.
        order_by: Ordering terms in priority order.
        limit: Maximum number of rows, or None.
        offset: Rows to skip, or None.
        sum_fields: ``SUM`` projections keyed by alias.
        eager_load: Relations to load on the next fetch.
    """

    def __init__(self):
        self.conditions: list[Condition] = []
        self.order_by: list[OrderTerm] = []
        self.limit: int | None = None
        self.offset: int | None = None
        self.sum_fields: dict[str, str] = {}
        self.eager_load: EagerLoad | None = None

    def is_empty(self) -> bool:
        return not (
            self.conditions
            or self.order_by
            or self.limit is not None
            or self.offset is not None
            or self.sum_fields
            or self.eager_load
        )

    def __repr__(self):
        return (
            f"QueryState(conditions={self.conditions!r}, order_by={self.order_by!r}, "
            f"limit={self.limit!r}, offset={self.offset!r})"
        )


class Page(BaseModel):
    """One page of results plus the numbers needed to navigate"""

    data: list[Any]
    total: int
    per_page: int
    current_page: int
    last_page: int


class Query(Generic[T]):
    """Build and execute fluent ORM queries.

    Every fluent method mutates this instance and returns it, so two
    references to the same query share pending state. Terminal operations
    (`all`, `first`, `count`, `exists`, `sum`, `paginate`, `update`,
    `delete`) take the pending state out of the builder before running,
    leaving it as if freshly constructed.

    Attributes:
        model_cls: Model class used to hydrate results.
        state: Pending clause state.
    """

    def __init__(self, model_cls: Type[T], resolver: RelationResolver | None = None):
        """Initialize a query for a model class.

        Args:
            model_cls: Model class that defines the target table.
            resolver: Relation resolver used for eager loading.

        Examples:
            >>> query = Query(User)
            >>> query.model_cls is User
            True
        """
        self.model_cls = model_cls
        self.state = QueryState()
        self._scopes: list[list[Condition]] = [self.state.conditions]
        self._resolver = resolver or RelationResolver()

    @property
    def where_clause(self) -> list[Condition]:
        return self.state.conditions

    @property
    def order_by_clause(self) -> list[OrderTerm]:
        return self.state.order_by

    @property
    def group_depth(self) -> int:
        """How many ``where_group`` scopes are currently open"""
        return len(self._scopes) - 1

    @property
    def _options(self):
        return self.model_cls.keel_options

    def _add(self, condition: Condition) -> "Query[T]":
        self._scopes[-1].append(condition)
        return self

    def _take_state(self) -> QueryState:
        """Detach the pending state and start over with a fresh one"""
        if self.group_depth:
            raise QueryValidationError("Cannot execute a query inside where_group()")
        state = self.state
        self.reset()
        return state

    def reset(self) -> "Query[T]":
        """Discard all pending state"""
        self.state = QueryState()
        self._scopes = [self.state.conditions]
        return self

    # -- predicates ----------------------------------------------------

    def where(self, field: Any, *args: Any) -> "Query[T]":
        """Add a filter condition to the query

        Accepts a condition node (``User.age >= 18``), a field and a value
        (equality), or a field, an operator and a value. ``IN``, ``NOT IN``,
        ``BETWEEN``, ``NOT BETWEEN``, ``IS NULL`` and ``IS NOT NULL`` are
        routed to the matching node.

        Raises:
            QueryValidationError: If a comparison value is None; use
                `where_null` / `where_not_null` to test for NULL.

        Examples:
            >>> query = User.query().where("status", "active").where("age", ">", 18)
            >>> len(query.where_clause)
            2
        """
        if isinstance(field, Condition):
            if args:
                raise TypeError("where() with a condition node takes no other arguments")
            self._reject_null_comparisons(field)
            return self._add(field)

        column = _column_name(field)
        if len(args) == 1:
            operator, value = "=", args[0]
        elif len(args) == 2:
            operator, value = args
        else:
            raise TypeError(
                "where() takes a condition, (field, value) or (field, operator, value)"
            )

        operator = str(operator).upper().strip()
        if operator in ("IN", "NOT IN"):
            return self._add(InList(column, value, negated=operator == "NOT IN"))
        if operator in ("BETWEEN", "NOT BETWEEN"):
            low, high = value
            return self._add(Between(column, low, high, negated=operator == "NOT BETWEEN"))
        if operator in ("IS NULL", "IS NOT NULL"):
            return self._add(NullCheck(column, is_not=operator == "IS NOT NULL"))

        node = Comparison(column, operator, value)
        self._reject_null_comparisons(node)
        return self._add(node)

    @staticmethod
    def _reject_null_comparisons(node: Condition) -> None:
        if isinstance(node, Group):
            for child in node.children:
                Query._reject_null_comparisons(child)
        elif isinstance(node, Comparison) and node.value is None:
            raise QueryValidationError(
                f"Cannot compare '{node.column}' with None; "
                "use where_null() or where_not_null()"
            )

    def where_in(self, field: Any, values: Iterable[Any]) -> "Query[T]":
        """Add an ``IN`` condition; an empty sequence adds nothing to the SQL"""
        return self._add(InList(_column_name(field), list(values)))

    def where_not_in(self, field: Any, values: Iterable[Any]) -> "Query[T]":
        return self._add(InList(_column_name(field), list(values), negated=True))

    def where_between(self, field: Any, low: Any, high: Any) -> "Query[T]":
        return self._add(Between(_column_name(field), low, high))

    def where_not_between(self, field: Any, low: Any, high: Any) -> "Query[T]":
        return self._add(Between(_column_name(field), low, high, negated=True))

    def where_null(self, field: Any) -> "Query[T]":
        return self._add(NullCheck(_column_name(field)))

    def where_not_null(self, field: Any) -> "Query[T]":
        return self._add(NullCheck(_column_name(field), is_not=True))

    def where_group(self, fn: Callable[["Query[T]"], Any]) -> "Query[T]":
        """Run ``fn`` against this builder and AND-join what it adds

        Conditions added inside ``fn`` are folded into a single parenthesised
        group appended to the enclosing scope. Groups nest.

        Examples:
            >>> q = User.query().where("active", True).or_where_group(
            ...     lambda q: q.where("role", "admin").where("role", "owner")
            ... )
            >>> q.to_sql().sql
            'SELECT * FROM users WHERE active = ? AND (role = ? OR role = ?)'
        """
        return self._group("AND", fn)

    def or_where_group(self, fn: Callable[["Query[T]"], Any]) -> "Query[T]":
        """Like `where_group`, but the group's children are OR-joined"""
        return self._group("OR", fn)

    def _group(self, conjunction: str, fn: Callable[["Query[T]"], Any]) -> "Query[T]":
        scope: list[Condition] = []
        self._scopes.append(scope)
        try:
            fn(self)
        finally:
            self._scopes.pop()
        if scope:
            self._add(Group(conjunction, scope))
        return self

    def _allowed_identifiers(self) -> set[str]:
        options = self._options
        return {options.primary_key, options.table, *options.allowed_fields}

    def _checked_column(self, field: Any) -> str:
        column = _column_name(field)
        if column not in self._allowed_identifiers():
            raise QueryValidationError(f"Field {column} is not allowed in raw where clause")
        return column

    def where_raw(self, sql: str, params: Iterable[Any] = ()) -> "Query[T]":
        """Add a raw SQL fragment after validating it

        Every identifier outside single-quoted literals must be the primary
        key, an allowed field, the table name, or a known SQL keyword or
        function. Double-quoted and backtick-quoted names are identifiers
        and must be whitelisted without the keyword escape.

        Raises:
            QueryValidationError: If the fragment references a column outside
                the whitelist or contains a statement-altering keyword.

        Examples:
            >>> User.query().where_raw("age > ? AND status = ?", [18, "active"])
            <Query model=User ...>
        """
        match = _FORBIDDEN_RE.search(sql)
        if match:
            raise QueryValidationError(
                f"Potentially dangerous SQL detected: {match.group(1).upper()}"
            )

        allowed = self._allowed_identifiers()
        stripped = _LITERAL_RE.sub(" ", sql)
        # "name" and `name` are identifiers, never literals
        for double, backtick in _QUOTED_IDENTIFIER_RE.findall(stripped):
            name = double.replace('""', '"') if double else backtick
            if name not in allowed:
                raise QueryValidationError(f"Field {name} is not allowed in raw where clause")
        stripped = _NUMBER_RE.sub(" ", _QUOTED_IDENTIFIER_RE.sub(" ", stripped))
        for token in _IDENTIFIER_RE.findall(stripped):
            if token in allowed or token.upper() in SQL_VOCABULARY:
                continue
            raise QueryValidationError(f"Field {token} is not allowed in raw where clause")

        return self._add(RawFragment(sql, list(params)))

    def where_column(self, first: str, operator: str, second: str) -> "Query[T]":
        """Compare two columns, e.g. to correlate a `where_exists` subquery

        Examples:
            >>> Post.query().where_column("posts.user_id", "=", "users.id")
            <Query model=Post ...>
        """
        operator = operator.strip()
        if operator not in ("=", "!=", "<>", "<", "<=", ">", ">="):
            raise QueryValidationError(f"Unsupported comparison operator: {operator}")
        for ref in (first, second):
            if not _COLUMN_REF_RE.match(ref):
                raise QueryValidationError(f"Invalid column reference: {ref!r}")
        return self._add(RawFragment(f"{first} {operator} {second}"))

    def where_exists(
        self, model_cls: type, fn: Callable[["Query"], Any], negate: bool = False
    ) -> "Query[T]":
        """Add an ``EXISTS`` subquery built against ``model_cls``"""
        subquery = model_cls.query()
        fn(subquery)
        compiled = subquery._take_state_sql(columns=["1"])
        keyword = "NOT EXISTS" if negate else "EXISTS"
        return self._add(RawFragment(f"{keyword} ({compiled.sql})", compiled.params))

    def where_not_exists(self, model_cls: type, fn: Callable[["Query"], Any]) -> "Query[T]":
        return self.where_exists(model_cls, fn, negate=True)

    def where_json_contains(self, field: Any, value: Any) -> "Query[T]":
        column = self._checked_column(field)
        sql, params = json_contains(get_driver().dialect, column, value)
        return self._add(RawFragment(sql, params))

    def where_json_length(self, field: Any, operator: str, length: int) -> "Query[T]":
        column = self._checked_column(field)
        if operator not in ("=", "!=", "<>", "<", "<=", ">", ">="):
            raise QueryValidationError(f"Unsupported comparison operator: {operator}")
        sql = json_length(get_driver().dialect, column, operator)
        return self._add(RawFragment(sql, [length]))

    def where_date(self, field: Any, operator: str, value: date | str) -> "Query[T]":
        """Compare the date part of a datetime column"""
        column = self._checked_column(field)
        if isinstance(value, datetime):
            value = value.date()
        if isinstance(value, date):
            value = value.isoformat()
        return self._add(RawFragment(f"DATE({column}) {self._operator(operator)} ?", [value]))

    def where_time(self, field: Any, operator: str, value: datetime | str) -> "Query[T]":
        """Compare the time part of a datetime column"""
        column = self._checked_column(field)
        if isinstance(value, datetime):
            value = value.strftime("%H:%M:%S")
        return self._add(RawFragment(f"TIME({column}) {self._operator(operator)} ?", [value]))

    def where_full_text(
        self, fields: Iterable[Any], query: str, mode: str = "natural"
    ) -> "Query[T]":
        columns = [self._checked_column(f) for f in fields]
        if not columns:
            raise QueryValidationError("Full-text search needs at least one field")
        sql, params = full_text(get_driver().dialect, columns, query, mode)
        return self._add(RawFragment(sql, params))

    @staticmethod
    def _operator(operator: str) -> str:
        operator = operator.strip()
        if operator not in ("=", "!=", "<>", "<", "<=", ">", ">="):
            raise QueryValidationError(f"Unsupported comparison operator: {operator}")
        return operator

    # -- soft-delete scopes -------------------------------------------

    def only_trashed(self) -> "Query[T]":
        """Restrict the query to soft-deleted rows

        Raises:
            ConfigurationError: If the model does not enable soft deletes.
        """
        return self.where_not_null(self._options.require_soft_deletes())

    def without_trashed(self) -> "Query[T]":
        """Exclude soft-deleted rows"""
        return self.where_null(self._options.require_soft_deletes())

    def with_trashed(self) -> "Query[T]":
        """Include soft-deleted rows, which queries do unless told otherwise"""
        self._options.require_soft_deletes()
        return self

    # -- ordering, paging, projections ----------------------------------

    def order_by(self, field: Any, direction: str = "asc") -> "Query[T]":
        """Add an ordering clause to the query

        Raises:
            QueryValidationError: If direction is not "asc" or "desc".

        Examples:
            >>> query = User.query().order_by(User.username, "desc")
            >>> query.order_by_clause[-1]
            OrderTerm(column='username', direction='DESC')
        """
        if direction.lower() not in ("asc", "desc"):
            raise QueryValidationError("direction must be 'asc' or 'desc'")
        self.state.order_by.append(OrderTerm(_column_name(field), direction.upper()))
        return self

    def limit(self, value: int, offset: int | None = None) -> "Query[T]":
        """Limit the number of records returned, optionally with an offset"""
        if not isinstance(value, int) or value < 0:
            raise QueryValidationError("limit must be a non-negative integer")
        self.state.limit = value
        if offset is not None:
            self.offset(offset)
        return self

    def offset(self, value: int) -> "Query[T]":
        """Skip a number of records; only rendered together with a limit"""
        if not isinstance(value, int) or value < 0:
            raise QueryValidationError("offset must be a non-negative integer")
        self.state.offset = value
        return self

    def select_sum(self, field: Any, alias: str | None = None) -> "Query[T]":
        """Project ``SUM(field)``; fetched rows become plain dictionaries"""
        column = _column_name(field)
        self.state.sum_fields[alias or column] = column
        return self

    def with_(
        self,
        relations: str | Iterable[str],
        constraints: dict[str, Callable[["Query"], Any]] | None = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> "Query[T]":
        """Eager load relations on the records of the next fetch

        Args:
            relations: Relation names or dotted paths such as ``"posts.comments"``.
            constraints: Callables keyed by dotted path that receive the target
                query before its batch is fetched.
            max_depth: Maximum nesting depth.

        Raises:
            ConfigurationError: If a path names an undeclared relation.

        Examples:
            >>> users = await User.query().with_(
            ...     ["posts.comments"],
            ...     constraints={"posts": lambda q: q.where("published", True)},
            ... ).all()
        """
        request = EagerLoad(relations, constraints, max_depth)
        self._resolver.validate(self.model_cls, request.paths)
        self.state.eager_load = request
        return self

    # -- compilation -----------------------------------------------------

    def _compile_select(
        self, state: QueryState, columns: list[str] | None = None
    ) -> CompiledClause:
        return compile_select(
            self._options.table,
            state.conditions,
            state.order_by,
            state.limit,
            state.offset,
            state.sum_fields,
            columns,
        )

    def to_sql(self) -> CompiledClause:
        """Compile the pending SELECT without executing or resetting"""
        return self._compile_select(self.state)

    def _take_state_sql(self, columns: list[str] | None = None) -> CompiledClause:
        return self._compile_select(self._take_state(), columns)

    # -- terminal operations --------------------------------------------

    async def _fetch(self, state: QueryState, chunk_size: int | None = None) -> list[Any]:
        compiled = self._compile_select(state)
        rows = await run_query(compiled.sql, compiled.params)
        if state.sum_fields:
            return rows

        records = [self.model_cls._hydrate(row) for row in rows]
        if state.eager_load is not None and records:
            if chunk_size and len(records) > chunk_size:
                for start in range(0, len(records), chunk_size):
                    await self._resolver.load(
                        self.model_cls, records[start : start + chunk_size], state.eager_load
                    )
            else:
                await self._resolver.load(self.model_cls, records, state.eager_load)
        return records

    async def all(self, chunk_size: int | None = None) -> list[T]:
        """Return all model instances that match the current query

        Args:
            chunk_size: When set, eager loads are resolved in batches of this
                many records.

        Examples:
            >>> users = await User.where(User.active == True).all()
            >>> isinstance(users, list)
            True
        """
        return await self._fetch(self._take_state(), chunk_size)

    get = all

    async def first(self) -> T | None:
        """Return the first matching record, or None

        Examples:
            >>> user = await User.query().order_by(User.id).first()
            >>> user is None or isinstance(user, User)
            True
        """
        state = self._take_state()
        state.limit = 1
        results = await self._fetch(state)
        return results[0] if results else None

    async def _count(self, conditions: list[Condition]) -> int:
        compiled = compile_count(self._options.table, conditions)
        rows = await run_query(compiled.sql, compiled.params)
        return int(rows[0]["total"]) if rows and rows[0]["total"] is not None else 0

    async def count(self) -> int:
        """Return the number of records that match the current query"""
        return await self._count(self._take_state().conditions)

    async def exists(self) -> bool:
        """Return whether at least one record matches the current query"""
        return await self.count() > 0

    async def sum(self) -> dict[str, Any]:
        """Return the `select_sum` projections as ``{alias: total}``

        Raises:
            QueryValidationError: If no `select_sum` field is pending.
        """
        state = self._take_state()
        if not state.sum_fields:
            raise QueryValidationError("sum() requires at least one select_sum() field")
        aliases = list(state.sum_fields)
        rows = await self._fetch(state)
        row = rows[0] if rows else {}
        return {alias: row.get(alias) for alias in aliases}

    async def paginate(self, per_page: int, page: int = 1) -> Page:
        """Return one page of results along with the total count

        The count ignores limit, offset and ordering; the page is fetched with
        ``LIMIT per_page OFFSET (page - 1) * per_page``.

        Examples:
            >>> page = await User.query().where("active", True).paginate(10, page=2)
            >>> page.current_page
            2
        """
        if per_page < 1:
            raise QueryValidationError("per_page must be at least 1")
        if page < 1:
            raise QueryValidationError("page is 1-indexed")
        state = self._take_state()
        total = await self._count(state.conditions)
        state.limit = per_page
        state.offset = (page - 1) * per_page
        data = await self._fetch(state)
        return Page(
            data=data,
            total=total,
            per_page=per_page,
            current_page=page,
            last_page=math.ceil(total / per_page),
        )

    # -- persistence -----------------------------------------------------

    def _filter_allowed(
        self, data: dict[str, Any], extra: Iterable[str] = ()
    ) -> dict[str, Any]:
        allowed = set(self._options.allowed_fields) | set(extra)
        return {key: value for key, value in data.items() if key in allowed}

    def _apply_timestamps(self, data: dict[str, Any], is_update: bool) -> None:
        options = self._options
        if not options.timestamps:
            return
        now = datetime.now(timezone.utc)
        if not is_update and options.created_at:
            data[options.created_at] = now
        if options.updated_at:
            data[options.updated_at] = now

    def _write_conditions(
        self, state: QueryState, ids: Any, action: str
    ) -> list[Condition]:
        conditions = list(state.conditions)
        if ids is not None:
            pk = self._options.primary_key
            if isinstance(ids, (list, tuple, set, frozenset)):
                if not ids:
                    raise QueryValidationError(f"Cannot {action} with an empty id list")
                conditions.append(InList(pk, list(ids)))
            else:
                conditions.append(Comparison(pk, "=", ids))
        if not compile_where(conditions).sql:
            raise QueryValidationError(
                f"No WHERE condition: refusing to {action} the entire table"
            )
        return conditions

    async def insert(self, data: dict[str, Any]) -> Any:
        """Insert one row and return its generated identifier

        Runs the model's validation and create hooks, stamps the timestamp
        columns, and drops every key outside the allowed fields. ``data`` is
        updated in place with the timestamps and the new primary key.

        Raises:
            QueryValidationError: If no allowed field remains to insert.
        """
        model = self.model_cls
        pk = self._options.primary_key
        await model.on_validate(data, False)
        await model.before_create(data)
        self._apply_timestamps(data, is_update=False)

        filtered = self._filter_allowed(data)
        if filtered.get(pk, 0) is None:
            del filtered[pk]
        if not filtered:
            raise QueryValidationError(f"No allowed fields to insert into {self._options.table}")

        compiled = compile_insert(self._options.table, filtered)
        result = await run_execute(compiled.sql, compiled.params)
        new_id = filtered[pk] if pk in filtered else result.last_insert_id
        data[pk] = filtered[pk] = new_id
        await model.after_create(filtered)
        return new_id

    async def insert_many(self, rows: list[dict[str, Any]]) -> int:
        """Insert several rows in one statement, without running hooks"""
        if not rows:
            return 0
        prepared = []
        for row in rows:
            row = dict(row)
            self._apply_timestamps(row, is_update=False)
            filtered = self._filter_allowed(row)
            pk = self._options.primary_key
            if filtered.get(pk, 0) is None:
                del filtered[pk]
            prepared.append(filtered)

        columns = list(prepared[0])
        if any(list(row) != columns for row in prepared):
            raise QueryValidationError("insert_many() rows must share the same columns")
        placeholders = "(" + ", ".join("?" for _ in columns) + ")"
        sql = (
            f"INSERT INTO {self._options.table} ({', '.join(columns)}) VALUES "
            + ", ".join(placeholders for _ in prepared)
        )
        params = [row[c] for row in prepared for c in columns]
        result = await run_execute(sql, params)
        return result.affected_rows

    async def update(
        self,
        data: dict[str, Any] | None = None,
        *,
        ids: Any = None,
        _extra_allowed: Iterable[str] = (),
        **fields: Any,
    ) -> int:
        """Update matching records and return the number of affected rows

        The WHERE clause is built from ``ids`` (a single primary key or a
        list) plus every pending predicate. ``data`` is updated in place with
        the timestamp columns.

        Raises:
            QueryValidationError: If ``ids`` is an empty list or no WHERE
                condition can be derived; no SQL is issued.

        Examples:
            >>> await User.query().where("id", 1).update({"name": "Taylor"})
            1
            >>> await User.query().update(name="Taylor", ids=[1, 2])
            2
        """
        values = data if data is not None else {}
        values.update(fields)
        conditions = self._write_conditions(self._take_state(), ids, "update")

        model = self.model_cls
        await model.on_validate(values, True)
        await model.before_update(values)
        self._apply_timestamps(values, is_update=True)

        filtered = self._filter_allowed(values, _extra_allowed)
        filtered.pop(self._options.primary_key, None)
        if not filtered:
            raise QueryValidationError(f"No allowed fields to update in {self._options.table}")

        compiled = compile_update(self._options.table, filtered, conditions)
        result = await run_execute(compiled.sql, compiled.params)
        await model.after_update(filtered)
        return result.affected_rows

    async def delete(self, ids: Any = None) -> int:
        """Delete matching records and return the number of affected rows

        Raises:
            QueryValidationError: If ``ids`` is an empty list or no WHERE
                condition can be derived; no SQL is issued.
        """
        conditions = self._write_conditions(self._take_state(), ids, "delete")
        model = self.model_cls
        await model.before_delete()
        compiled = compile_delete(self._options.table, conditions)
        result = await run_execute(compiled.sql, compiled.params)
        await model.after_delete()
        return result.affected_rows

    async def soft_delete(self, ids: Any = None) -> int:
        """Stamp the deleted-at column of matching records

        Raises:
            ConfigurationError: If soft deletes are not enabled.
        """
        column = self._options.require_soft_deletes()
        return await self.update(
            {column: datetime.now(timezone.utc)}, ids=ids, _extra_allowed=(column,)
        )

    async def restore(self, ids: Any = None) -> int:
        """Clear the deleted-at column of matching records

        Raises:
            ConfigurationError: If soft deletes are not enabled.
        """
        column = self._options.require_soft_deletes()
        return await self.update({column: None}, ids=ids, _extra_allowed=(column,))

    def __repr__(self):
        return f"<Query model={self.model_cls.__name__} where={self.state.conditions}>"
