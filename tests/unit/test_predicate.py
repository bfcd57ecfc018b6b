from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from livestore.domain.models import Job, User
from livestore.errors import InvalidPredicateError
from livestore.query.predicate import (
    And,
    Compare,
    Contains,
    Equal,
    Not,
    Or,
    compile_predicate,
    field,
)

JOINED = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _user(name: str, city: str, join_date: datetime = JOINED) -> User:
    return User(name=name, city=city, join_date=join_date)


def test_builder_yields_single_root_node() -> None:
    expr = (field("city") == "London") & field("name").contains("R")

    assert isinstance(expr, And)
    assert isinstance(expr.left, Equal)
    assert isinstance(expr.right, Contains)
    assert expr.describe() == "(city == 'London') AND (name CONTAINS 'R')"
    assert sorted(expr.field_paths()) == ["city", "name"]


def test_combinators_evaluate() -> None:
    london = field("city") == "London"
    paris = field("city") == "Paris"

    assert isinstance(london | paris, Or)
    assert isinstance(~london, Not)
    assert (london | paris).matches(_user("Rhea", "Paris"))
    assert not (london | paris).matches(_user("Rhea", "Oslo"))
    assert (~london).matches(_user("Rhea", "Paris"))


def test_compare_operators_on_timestamps() -> None:
    cutoff = JOINED - timedelta(days=1)
    expr = field("join_date") >= cutoff

    assert isinstance(expr, Compare)
    assert expr.matches(_user("Rhea", "London"))
    assert not (field("join_date") < cutoff).matches(_user("Rhea", "London"))
    assert (field("city") != "Paris").matches(_user("Rhea", "London"))


def test_compare_with_missing_value_is_false() -> None:
    job = Job(name="Write report", priority=2)

    assert not (field("owner.join_date") >= JOINED).matches(job)


def test_contains_is_case_sensitive_by_default() -> None:
    expr = field("name").contains("R")

    assert expr.matches(_user("Rhea", "London"))
    assert not expr.matches(_user("Piper", "London"))


def test_localized_contains_folds_case_and_diacritics() -> None:
    expr = field("name").contains("emile", localized=True)

    assert expr.matches(_user("Émile Moreau", "Paris"))
    assert not field("name").contains("emile").matches(_user("Émile Moreau", "Paris"))
    assert expr.describe() == "name LOCALIZED CONTAINS 'emile'"


def test_dotted_path_follows_back_reference(store) -> None:
    owner = store.insert(_user("Rhea", "London"))
    job = Job(name="Water plants", priority=1, owner=owner)

    assert not (field("owner.name") == "Rhea").matches(job)
    store.insert(job)
    assert (field("owner.name") == "Rhea").matches(job)


def test_naive_timestamp_literal_is_read_as_utc() -> None:
    naive = JOINED.replace(tzinfo=None)

    assert (field("join_date") == naive).matches(_user("Rhea", "London"))
    assert (field("join_date") >= naive - timedelta(hours=1)).matches(_user("Rhea", "London"))



def test_compile_lambda_captures_closure_values() -> None:
    minimum = JOINED - timedelta(days=30)

    expr = compile_predicate(lambda user: user.join_date >= minimum, User)

    assert expr is not None
    assert expr.describe() == f"join_date >= {minimum!r}"
    assert expr.matches(_user("Rhea", "London"))


def test_compile_single_return_function() -> None:
    def in_london(user):
        """Users living in London."""
        return (user.city == "London") & user.name.contains("R")

    expr = compile_predicate(in_london, User)

    assert expr is not None
    assert expr.matches(_user("Rhea", "London"))
    assert not expr.matches(_user("Piper", "London"))


def test_compile_rejects_multi_statement_function() -> None:
    def branching(user):
        if user.city == "London":
            return user.name.contains("R")
        return user.name.contains("P")

    with pytest.raises(InvalidPredicateError):
        compile_predicate(branching, User)


def test_compile_rejects_intermediate_statements() -> None:
    def staged(user):
        in_london = user.city == "London"
        return in_london & user.name.contains("R")

    with pytest.raises(InvalidPredicateError):
        compile_predicate(staged, User)


def test_compile_rejects_python_boolean_operators() -> None:
    with pytest.raises(InvalidPredicateError):
        compile_predicate(lambda user: user.city == "London" and user.name.contains("R"), User)


def test_compile_rejects_conditional_expression() -> None:
    with pytest.raises(InvalidPredicateError):
        compile_predicate(
            lambda user: user.name.contains("R") if user.city == "London" else user.city == "Paris",
            User,
        )


def test_compile_rejects_non_expression_result() -> None:
    with pytest.raises(InvalidPredicateError):
        compile_predicate(lambda user: True, User)


def test_compile_rejects_unsupported_operations() -> None:
    with pytest.raises(InvalidPredicateError):
        compile_predicate(lambda user: "R" in user.name, User)


def test_compile_rejects_unknown_fields() -> None:
    with pytest.raises(InvalidPredicateError, match="Unknown field 'nickname'"):
        compile_predicate(field("nickname") == "Rhea", User)


def test_compile_rejects_unsupported_predicate_type() -> None:
    with pytest.raises(InvalidPredicateError):
        compile_predicate("city == 'London'", User)  # type: ignore[arg-type]


def test_compile_none_matches_everything() -> None:
    assert compile_predicate(None, User) is None


def test_expression_truthiness_is_rejected() -> None:
    with pytest.raises(InvalidPredicateError):
        bool(field("city") == "London")


def test_field_rejects_empty_path() -> None:
    with pytest.raises(InvalidPredicateError):
        field("owner..name")


def test_compile_rejects_unknown_field_behind_back_reference() -> None:
    with pytest.raises(InvalidPredicateError, match="Unknown field 'nmae' for User"):
        compile_predicate(field("owner.nmae") == "Rhea", Job)


def test_compile_rejects_path_through_scalar_field() -> None:
    with pytest.raises(InvalidPredicateError, match="has no field 'upper'"):
        compile_predicate(lambda user: user.name.upper == "RHEA", User)


def test_compile_rejects_path_through_collection() -> None:
    with pytest.raises(InvalidPredicateError, match="is a collection"):
        compile_predicate(field("jobs.name") == "Write report", User)


def test_compile_accepts_owner_field_and_collection_membership() -> None:
    assert compile_predicate(field("owner.city") == "London", Job) is not None
    assert compile_predicate(field("jobs").contains("anything"), User) is not None


def test_compile_rejects_walrus_binding_in_lambda() -> None:
    with pytest.raises(InvalidPredicateError, match="intermediate bindings"):
        compile_predicate(lambda user: (in_london := user.city == "London") & in_london, User)


class _LondonFilter:
    def __call__(self, user):
        in_london = user.city == "London"
        return in_london


class _CityFilter:
    def __init__(self, city: str) -> None:
        self.city = city

    def __call__(self, user):
        return user.city == self.city


def test_compile_rejects_callable_instance_with_intermediate_binding() -> None:
    with pytest.raises(InvalidPredicateError):
        compile_predicate(_LondonFilter(), User)


def test_compile_single_return_callable_instance() -> None:
    expr = compile_predicate(_CityFilter("Paris"), User)

    assert expr is not None
    assert expr.describe() == "city == 'Paris'"
    assert expr.matches(_user("Rhea", "Paris"))
