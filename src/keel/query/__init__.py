"""Expose query-building primitives used by Keel models"""

from .compiler import CompiledClause, OrderTerm, compile_clauses
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

__all__ = [
    "Between",
    "CompiledClause",
    "Comparison",
    "Condition",
    "FieldProxy",
    "Group",
    "InList",
    "NullCheck",
    "OrderTerm",
    "RawFragment",
    "compile_clauses",
]
