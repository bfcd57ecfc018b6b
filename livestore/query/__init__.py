"""
Query package for livestore.

Re-exports the predicate expression builders, sort descriptors and LiveQuery so
downstream code can import from `livestore.query` directly.
"""

from livestore.query.live import LiveQuery
from livestore.query.predicate import (
    And,
    Compare,
    Contains,
    Equal,
    Expression,
    FieldRef,
    Literal,
    Not,
    Or,
    compile_predicate,
    field,
)
from livestore.query.sort import SortDescriptor, SortOrder, sort_by

__all__ = [
    # Expressions
    "And",
    "Compare",
    "Contains",
    "Equal",
    "Expression",
    "FieldRef",
    "Literal",
    "Not",
    "Or",
    "compile_predicate",
    "field",
    # Sorting
    "SortDescriptor",
    "SortOrder",
    "sort_by",
    # Live results
    "LiveQuery",
]
