"""
Domain models for livestore.

Records are pydantic models with validated assignment and a frozen identity.
Relationships are declared per class and kept outside the pydantic fields, so
they never take part in validation, serialization or equality. Timestamps are
stored as aware UTC datetimes, so any two of them compare. Membership of a
relationship is changed only through the record store (`link`/`unlink`), which
keeps the back-reference on the child consistent with the owner's collection.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator


class DeleteRule(str, Enum):
    """What happens to owned children when their owner is deleted."""

    CASCADE = "cascade"
    NULLIFY = "nullify"
    DENY = "deny"


@dataclass(frozen=True)
class Relationship:
    """
    A to-many relationship from an owner kind to a child kind.

    Attributes
    ----------
    name : str
        Attribute name of the collection on the owner (e.g. ``jobs``).
    target : str
        Record kind of the children (e.g. ``Job``).
    inverse : str | None
        Back-reference attribute on the child (e.g. ``owner``), if any.
    delete_rule : DeleteRule
        Rule applied to the children when the owner is deleted.
    """

    name: str
    target: str
    inverse: Optional[str] = None
    delete_rule: DeleteRule = DeleteRule.NULLIFY


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Record kinds by name, filled as subclasses are defined.
_KINDS: Dict[str, type["Record"]] = {}


class Record(BaseModel):
    """
    Base class for every persisted entity.

    The identity is assigned once at construction and cannot be reassigned.
    Equality and hashing use ``(kind, id)`` only.
    """

    relationships: ClassVar[Mapping[str, Relationship]] = {}
    back_references: ClassVar[Tuple[str, ...]] = ()

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    id: UUID = Field(default_factory=uuid4, frozen=True)

    _children: Dict[str, List["Record"]] = PrivateAttr(default_factory=dict)
    _parents: Dict[str, Optional["Record"]] = PrivateAttr(default_factory=dict)
    # Parents requested at construction; linked only by a successful insert.
    _pending: Dict[str, "Record"] = PrivateAttr(default_factory=dict)

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs: Any) -> None:
        super().__pydantic_init_subclass__(**kwargs)
        _KINDS[cls.kind()] = cls

    @classmethod
    def kind(cls) -> str:
        return cls.__name__

    @classmethod
    def scalar_fields(cls) -> Tuple[str, ...]:
        """Names of the persisted, editable fields (identity excluded)."""
        return tuple(name for name in cls.model_fields if name != "id")

    @classmethod
    def parent_model(cls, back_reference: str) -> Optional[type["Record"]]:
        """Owner kind whose relationship names ``back_reference`` as its inverse."""
        for model in _KINDS.values():
            for rel in model.relationships.values():
                if rel.inverse == back_reference and rel.target == cls.kind():
                    return model
        return None

    def children(self, relationship: str) -> Tuple["Record", ...]:
        return tuple(self._children.get(relationship, ()))

    def parent(self, back_reference: str) -> Optional["Record"]:
        """The linked owner, or None; a requested but not yet inserted owner is not returned."""
        return self._parents.get(back_reference)

    def pending_parent(self, back_reference: str) -> Optional["Record"]:
        return self._pending.get(back_reference)

    def payload(self) -> Dict[str, Any]:
        """JSON-ready dump of the scalar fields."""
        return self.model_dump(mode="json", exclude={"id"})

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return type(self) is type(other) and self.id == other.id

    def __hash__(self) -> int:
        return hash((self.kind(), self.id))


class User(Record):
    """A person who joined on ``join_date`` and owns zero or more jobs."""

    relationships: ClassVar[Mapping[str, Relationship]] = {
        "jobs": Relationship(
            name="jobs", target="Job", inverse="owner", delete_rule=DeleteRule.CASCADE
        ),
    }

    name: str
    city: str
    join_date: datetime

    @field_validator("join_date")
    @classmethod
    def _join_date_utc(cls, value: datetime) -> datetime:
        return to_utc(value)

    @property
    def jobs(self) -> Tuple["Job", ...]:
        return self.children("jobs")  # type: ignore[return-value]


class Job(Record):
    """A prioritized piece of work, optionally owned by a user."""

    back_references: ClassVar[Tuple[str, ...]] = ("owner",)

    name: str
    priority: int

    def __init__(self, owner: Optional[User] = None, **data: Any) -> None:
        super().__init__(**data)
        if owner is not None:
            # Linked into owner.jobs when the job is inserted.
            self._pending["owner"] = owner

    @property
    def owner(self) -> Optional[User]:
        return self.parent("owner")  # type: ignore[return-value]


DEFAULT_MODELS: Tuple[type[Record], ...] = (User, Job)


__all__ = [
    "DeleteRule",
    "Relationship",
    "Record",
    "User",
    "Job",
    "DEFAULT_MODELS",
    "to_utc",
]
