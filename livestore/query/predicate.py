"""
Predicate expression trees.

A predicate is a closed boolean expression over record fields. It is built from
a small set of node types (``FieldRef``, ``Literal``, ``Equal``, ``Contains``,
``Compare``, ``And``, ``Or``, ``Not``) and is always a single root node, so it can
be inspected (``describe()``) before it is evaluated against records.

Two ways to build one:

    from livestore.query.predicate import field

    expr = (field("city") == "London") & field("name").contains("R")

or from a callable, which is traced once against a field proxy:

    expr = compile_predicate(lambda user: user.join_date >= minimum, User)

Python control flow on an expression (``if``, ``and``, ``or``, ``not``) cannot be
captured in a tree, so it raises ``InvalidPredicateError`` while the predicate is
being compiled rather than when it is evaluated.
"""

from __future__ import annotations

import ast
import inspect
import operator
import textwrap
import unicodedata
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator, Optional, Sequence, Union

from livestore.domain.models import Record, to_utc
from livestore.errors import InvalidPredicateError

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def resolve_path(record: Any, path: str) -> Any:
    """Follow a dotted field path; a missing hop yields None."""
    value = record
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, Record) and part in value.relationships:
            value = value.children(part)
        elif isinstance(value, Record) and part in value.back_references:
            value = value.parent(part)
        else:
            value = getattr(value, part, None)
    return value


def path_error(model: type[Record], path: str, scalar_only: bool = False) -> Optional[str]:
    """
    Check every hop of a dotted path against the model, returning a message
    describing the first bad hop, or None when the path is valid.

    Back-references move to the owner kind. Scalar fields and to-many
    relationships end a path; with ``scalar_only`` the path must end at a scalar.
    """
    current = model
    parts = path.split(".")
    for index, part in enumerate(parts):
        rest = ".".join(parts[index + 1 :])
        if part in current.model_fields:
            if rest:
                return f"Field '{part}' of {current.kind()} has no field '{rest}'"
            return None
        if part in current.relationships:
            if rest:
                return f"Relationship '{part}' of {current.kind()} is a collection, not a record"
            if scalar_only:
                return f"Relationship '{part}' of {current.kind()} is not a scalar field"
            return None
        if part in current.back_references:
            if not rest:
                if scalar_only:
                    return f"Back-reference '{part}' of {current.kind()} is not a scalar field"
                return None
            owner = current.parent_model(part)
            if owner is None:
                return f"Back-reference '{part}' of {current.kind()} has no known owner kind"
            current = owner
            continue
        return f"Unknown field '{part}' for {current.kind()}"
    return None


def _normalize(text: str, localized: bool) -> str:
    text = unicodedata.normalize("NFC", text)
    if not localized:
        return text
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def _render(value: Any) -> str:
    if isinstance(value, Expression):
        return value.describe()
    return repr(value)


class Expression:
    """Base node. Combine nodes with ``&``, ``|`` and ``~``."""

    def evaluate(self, record: Any) -> Any:  # pragma: no cover - interface only
        raise NotImplementedError

    def describe(self) -> str:  # pragma: no cover - interface only
        raise NotImplementedError

    def operands(self) -> Sequence["Expression"]:
        return ()

    def field_paths(self) -> Iterator[str]:
        """Yield every field path referenced in the tree."""
        for child in self.operands():
            yield from child.field_paths()

    def matches(self, record: Any) -> bool:
        return bool(self.evaluate(record))

    def __and__(self, other: Any) -> "And":
        return And(self, _wrap(other))

    def __rand__(self, other: Any) -> "And":
        return And(_wrap(other), self)

    def __or__(self, other: Any) -> "Or":
        return Or(self, _wrap(other))

    def __ror__(self, other: Any) -> "Or":
        return Or(_wrap(other), self)

    def __invert__(self) -> "Not":
        return Not(self)

    def __bool__(self) -> bool:
        raise InvalidPredicateError(
            f"Predicate '{self.describe()}' was used in Python control flow; "
            "a predicate must be a single expression combined with &, | and ~."
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.describe()}>"


@dataclass(frozen=True, eq=False, repr=False)
class Literal(Expression):
    value: Any

    def __post_init__(self) -> None:
        # Timestamps compare as aware UTC values, like the stored ones.
        if isinstance(self.value, datetime):
            object.__setattr__(self, "value", to_utc(self.value))

    def evaluate(self, record: Any) -> Any:
        return self.value

    def describe(self) -> str:
        return repr(self.value)


@dataclass(frozen=True, eq=False, repr=False)
class FieldRef(Expression):
    """Reference to a (possibly dotted) field path on the record."""

    path: str

    def evaluate(self, record: Any) -> Any:
        return resolve_path(record, self.path)

    def describe(self) -> str:
        return self.path

    def field_paths(self) -> Iterator[str]:
        yield self.path

    def contains(self, needle: Any, localized: bool = False) -> "Contains":
        return Contains(self, _wrap(needle), localized)

    def __getattr__(self, name: str) -> "FieldRef":
        if name.startswith("_"):
            raise AttributeError(name)
        return FieldRef(f"{self.path}.{name}")

    def __eq__(self, other: Any) -> "Equal":  # type: ignore[override]
        return Equal(self, _wrap(other))

    def __ne__(self, other: Any) -> "Compare":  # type: ignore[override]
        return Compare("!=", self, _wrap(other))

    def __lt__(self, other: Any) -> "Compare":
        return Compare("<", self, _wrap(other))

    def __le__(self, other: Any) -> "Compare":
        return Compare("<=", self, _wrap(other))

    def __gt__(self, other: Any) -> "Compare":
        return Compare(">", self, _wrap(other))

    def __ge__(self, other: Any) -> "Compare":
        return Compare(">=", self, _wrap(other))

    def __hash__(self) -> int:
        return hash(("FieldRef", self.path))


@dataclass(frozen=True, eq=False, repr=False)
class Equal(Expression):
    left: Expression
    right: Expression

    def evaluate(self, record: Any) -> bool:
        return self.left.evaluate(record) == self.right.evaluate(record)

    def describe(self) -> str:
        return f"{self.left.describe()} == {self.right.describe()}"

    def operands(self) -> Sequence[Expression]:
        return (self.left, self.right)


@dataclass(frozen=True, eq=False, repr=False)
class Compare(Expression):
    op: str
    left: Expression
    right: Expression

    def __post_init__(self) -> None:
        if self.op not in _COMPARATORS:
            raise InvalidPredicateError(f"Unknown comparison operator '{self.op}'")

    def evaluate(self, record: Any) -> bool:
        lhs = self.left.evaluate(record)
        rhs = self.right.evaluate(record)
        if self.op == "!=":
            return lhs != rhs
        if lhs is None or rhs is None:
            return False
        try:
            return _COMPARATORS[self.op](lhs, rhs)
        except TypeError as exc:
            raise InvalidPredicateError(
                f"Cannot compare {type(lhs).__name__} and {type(rhs).__name__} in '{self.describe()}'"
            ) from exc

    def describe(self) -> str:
        return f"{self.left.describe()} {self.op} {self.right.describe()}"

    def operands(self) -> Sequence[Expression]:
        return (self.left, self.right)


@dataclass(frozen=True, eq=False, repr=False)
class Contains(Expression):
    """
    Substring match on text, or membership in a collection.

    Text is NFC-normalized; ``localized`` additionally folds case and strips
    diacritics.
    """

    haystack: Expression
    needle: Expression
    localized: bool = False

    def evaluate(self, record: Any) -> bool:
        haystack = self.haystack.evaluate(record)
        needle = self.needle.evaluate(record)
        if haystack is None or needle is None:
            return False
        if isinstance(haystack, str):
            return _normalize(str(needle), self.localized) in _normalize(haystack, self.localized)
        return needle in haystack

    def describe(self) -> str:
        verb = "LOCALIZED CONTAINS" if self.localized else "CONTAINS"
        return f"{self.haystack.describe()} {verb} {self.needle.describe()}"

    def operands(self) -> Sequence[Expression]:
        return (self.haystack, self.needle)


@dataclass(frozen=True, eq=False, repr=False)
class And(Expression):
    left: Expression
    right: Expression

    def evaluate(self, record: Any) -> bool:
        return self.left.matches(record) and self.right.matches(record)

    def describe(self) -> str:
        return f"({self.left.describe()}) AND ({self.right.describe()})"

    def operands(self) -> Sequence[Expression]:
        return (self.left, self.right)


@dataclass(frozen=True, eq=False, repr=False)
class Or(Expression):
    left: Expression
    right: Expression

    def evaluate(self, record: Any) -> bool:
        return self.left.matches(record) or self.right.matches(record)

    def describe(self) -> str:
        return f"({self.left.describe()}) OR ({self.right.describe()})"

    def operands(self) -> Sequence[Expression]:
        return (self.left, self.right)


@dataclass(frozen=True, eq=False, repr=False)
class Not(Expression):
    operand: Expression

    def evaluate(self, record: Any) -> bool:
        return not self.operand.matches(record)

    def describe(self) -> str:
        return f"NOT ({self.operand.describe()})"

    def operands(self) -> Sequence[Expression]:
        return (self.operand,)


def _wrap(value: Any) -> Expression:
    if isinstance(value, Expression):
        return value
    return Literal(value)


def field(path: str) -> FieldRef:
    """Start an expression from a field path, e.g. ``field("owner.name")``."""
    if not path or any(not part for part in path.split(".")):
        raise InvalidPredicateError(f"Invalid field path '{path}'")
    return FieldRef(path)


class _RecordProxy:
    """Stand-in record handed to predicate callables; attributes become FieldRefs."""

    def __getattr__(self, name: str) -> FieldRef:
        if name.startswith("_"):
            raise AttributeError(name)
        return FieldRef(name)


PredicateLike = Union[Expression, Callable[[Any], Any], None]


def _target_function(fn: Callable[..., Any]) -> Optional[Any]:
    """The plain function behind a predicate callable (function, method or instance)."""
    if inspect.isfunction(fn):
        return fn
    if inspect.ismethod(fn):
        return fn.__func__
    call = getattr(type(fn), "__call__", None)
    if inspect.isfunction(call):
        return call
    return None


def _check_single_expression(fn: Callable[..., Any]) -> None:
    """
    Reject predicates that bind intermediate names (assignments, ``:=``) or
    whose body is more than one return expression.
    """
    target = _target_function(fn)
    if target is None:
        return
    code = target.__code__
    parameters = (
        code.co_argcount
        + code.co_kwonlyargcount
        + bool(code.co_flags & inspect.CO_VARARGS)
        + bool(code.co_flags & inspect.CO_VARKEYWORDS)
    )
    if code.co_nlocals > parameters:
        raise InvalidPredicateError(
            f"Predicate '{target.__qualname__}' must be a single expression "
            "without intermediate bindings"
        )
    if target.__name__ == "<lambda>":
        return
    try:
        source = textwrap.dedent(inspect.getsource(target))
        tree = ast.parse(source)
    except (OSError, TypeError, SyntaxError):
        # No retrievable source; tracing still rejects branching on expressions.
        return
    if not tree.body or not isinstance(tree.body[0], (ast.FunctionDef, ast.AsyncFunctionDef)):
        return
    body = list(tree.body[0].body)
    if (
        body
        and isinstance(body[0], ast.Expr)
        and isinstance(body[0].value, ast.Constant)
        and isinstance(body[0].value.value, str)
    ):
        body = body[1:]
    if len(body) != 1 or not isinstance(body[0], ast.Return) or body[0].value is None:
        raise InvalidPredicateError(
            f"Predicate '{target.__qualname__}' must consist of a single return expression"
        )


def _validate_fields(expression: Expression, model: Optional[type[Record]]) -> None:
    if model is None:
        return
    for path in expression.field_paths():
        error = path_error(model, path)
        if error is not None:
            raise InvalidPredicateError(f"{error} in predicate '{expression.describe()}'")


def compile_predicate(
    predicate: PredicateLike, model: Optional[type[Record]] = None
) -> Optional[Expression]:
    """
    Turn an expression or a predicate callable into a validated expression tree.

    Parameters
    ----------
    predicate : Expression | callable | None
        ``None`` matches every record.
    model : type[Record] | None
        When given, every referenced field must exist on the model.

    Raises
    ------
    InvalidPredicateError
        If the predicate is not a single closed expression over known fields.
    """
    if predicate is None:
        return None
    if isinstance(predicate, Expression):
        expression = predicate
    elif callable(predicate):
        _check_single_expression(predicate)
        try:
            expression = predicate(_RecordProxy())
        except InvalidPredicateError:
            raise
        except Exception as exc:
            raise InvalidPredicateError(
                f"Predicate {getattr(predicate, '__qualname__', predicate)!r} "
                f"cannot be expressed as an expression tree: {exc}"
            ) from exc
        if not isinstance(expression, Expression):
            raise InvalidPredicateError(
                f"Predicate must evaluate to an expression, got {type(expression).__name__}"
            )
    else:
        raise InvalidPredicateError(f"Unsupported predicate type {type(predicate).__name__}")
    _validate_fields(expression, model)
    return expression


__all__ = [
    "Expression",
    "Literal",
    "FieldRef",
    "Equal",
    "Compare",
    "Contains",
    "And",
    "Or",
    "Not",
    "PredicateLike",
    "compile_predicate",
    "field",
    "path_error",
    "resolve_path",
]
