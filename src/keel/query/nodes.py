"""Define condition nodes and field proxies for fluent filtering"""

from typing import Any

from ..exceptions import QueryValidationError

COMPARISON_OPERATORS = frozenset(
    {"=", "!=", "<>", "<", "<=", ">", ">=", "LIKE", "NOT LIKE"}
)


def _require_column(column: str | None) -> str:
    if not column or not isinstance(column, str):
        raise QueryValidationError("Condition requires a non-empty field name")
    return column


class Condition:
    """Base class for every node of the condition tree

    Nodes are plain values. Combining two nodes with ``&`` or ``|`` builds a
    :class:`Group`.

    Examples:
        >>> expr = (User.role == "admin") | (User.role == "owner")
        >>> isinstance(expr, Group)
        True
    """

    def __or__(self, other: "Condition") -> "Group":
        """Combine two nodes with logical OR"""
        if not isinstance(other, Condition):
            return NotImplemented
        return Group("OR", [self, other])

    def __and__(self, other: "Condition") -> "Group":
        """Combine two nodes with logical AND"""
        if not isinstance(other, Condition):
            return NotImplemented
        return Group("AND", [self, other])


class Comparison(Condition):
    """Compare a column against a single bound value

    Attributes:
        column: Column name on the left-hand side.
        operator: SQL comparison operator.
        value: Right-hand value, bound as a parameter.
    """

    def __init__(self, column: str, operator: str, value: Any):
        operator = operator.upper().strip()
        if operator == "==":
            operator = "="
        if operator not in COMPARISON_OPERATORS:
            raise QueryValidationError(f"Unsupported comparison operator: {operator}")
        self.column = _require_column(column)
        self.operator = operator
        self.value = value

    def __repr__(self):
        return (
            f"Comparison(column={self.column!r}, operator={self.operator!r}, "
            f"value={self.value!r})"
        )


class InList(Condition):
    """Match a column against a list of values with ``IN`` / ``NOT IN``"""

    def __init__(self, column: str, values: Any, negated: bool = False):
        if not isinstance(values, (list, tuple, set, frozenset)):
            raise TypeError(
                f"IN conditions expect a list, tuple, or set, got {type(values).__name__}"
            )
        self.column = _require_column(column)
        self.values = list(values)
        self.negated = negated

    @property
    def operator(self) -> str:
        return "NOT IN" if self.negated else "IN"

    def __repr__(self):
        return f"InList(column={self.column!r}, operator={self.operator!r}, values={self.values!r})"


class Between(Condition):
    """Match a column against an inclusive range"""

    def __init__(self, column: str, low: Any, high: Any, negated: bool = False):
        self.column = _require_column(column)
        self.low = low
        self.high = high
        self.negated = negated

    @property
    def operator(self) -> str:
        return "NOT BETWEEN" if self.negated else "BETWEEN"

    def __repr__(self):
        return (
            f"Between(column={self.column!r}, operator={self.operator!r}, "
            f"low={self.low!r}, high={self.high!r})"
        )


class NullCheck(Condition):
    """Test a column for ``IS NULL`` or ``IS NOT NULL``"""

    def __init__(self, column: str, is_not: bool = False):
        self.column = _require_column(column)
        self.is_not = is_not

    @property
    def operator(self) -> str:
        return "IS NOT NULL" if self.is_not else "IS NULL"

    def __repr__(self):
        return f"NullCheck(column={self.column!r}, operator={self.operator!r})"


class RawFragment(Condition):
    """A SQL fragment inserted verbatim together with its bound parameters

    The fragment is trusted as-is; :meth:`Query.where_raw` validates user
    supplied SQL before building one.
    """

    def __init__(self, sql: str, params: list[Any] | tuple[Any, ...] = ()):
        self.sql = sql
        self.params = list(params)

    def __repr__(self):
        return f"RawFragment(sql={self.sql!r}, params={self.params!r})"


class Group(Condition):
    """A parenthesised group of conditions joined by one conjunction

    Attributes:
        conjunction: ``"AND"`` or ``"OR"``.
        children: Nested conditions in insertion order.
    """

    def __init__(self, conjunction: str, children: list[Condition] | None = None):
        conjunction = conjunction.upper()
        if conjunction not in ("AND", "OR"):
            raise QueryValidationError("Group conjunction must be 'AND' or 'OR'")
        self.conjunction = conjunction
        self.children = list(children or [])

    def __repr__(self):
        return f"Group(conjunction={self.conjunction!r}, children={self.children!r})"


class FieldProxy:
    """Capture field comparisons and build condition nodes

    Attributes:
        column: Database column name associated with the model field.

    Examples:
        >>> email_filter = User.email == "taylor@example.com"
        >>> isinstance(email_filter, Comparison)
        True
    """

    def __init__(self, column: str):
        self.column = column

    def __eq__(self, other: Any) -> Comparison:
        """Build an equality comparison node"""
        return Comparison(self.column, "=", other)

    def __ne__(self, other: Any) -> Comparison:
        """Build an inequality comparison node"""
        return Comparison(self.column, "!=", other)

    def __lt__(self, other: Any) -> Comparison:
        return Comparison(self.column, "<", other)

    def __le__(self, other: Any) -> Comparison:
        return Comparison(self.column, "<=", other)

    def __gt__(self, other: Any) -> Comparison:
        return Comparison(self.column, ">", other)

    def __ge__(self, other: Any) -> Comparison:
        return Comparison(self.column, ">=", other)

    def in_(self, other: Any) -> InList:
        """Build an ``IN`` node from an iterable

        Raises:
            TypeError: If ``other`` is not a list, tuple, or set.

        Examples:
            >>> status_filter = User.status.in_(["active", "pending"])
            >>> status_filter.operator
            'IN'
        """
        return InList(self.column, other)

    def not_in(self, other: Any) -> InList:
        """Build a ``NOT IN`` node from an iterable"""
        return InList(self.column, other, negated=True)

    def like(self, pattern: str) -> Comparison:
        """Build a ``LIKE`` node

        Examples:
            >>> User.email.like("%@example.com").operator
            'LIKE'
        """
        return Comparison(self.column, "LIKE", pattern)

    def between(self, low: Any, high: Any) -> Between:
        """Build a ``BETWEEN`` node"""
        return Between(self.column, low, high)

    def is_null(self) -> NullCheck:
        """Build an ``IS NULL`` node"""
        return NullCheck(self.column)

    def is_not_null(self) -> NullCheck:
        """Build an ``IS NOT NULL`` node"""
        return NullCheck(self.column, is_not=True)

    def __lshift__(self, other: Any) -> InList:
        """Use ``<<`` as shorthand syntax for ``IN`` comparisons

        Examples:
            >>> role_filter = User.role << {"admin", "owner"}
            >>> role_filter.operator
            'IN'
        """
        return self.in_(other)

    def __repr__(self):
        return f"FieldProxy(column={self.column!r})"
