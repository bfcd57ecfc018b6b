"""
Sort descriptors applied lexicographically to fetched records.

The first descriptor is the primary key, ties are broken by the next one, and
records still tied keep their insertion order.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from livestore.domain.models import Record
from livestore.errors import SchemaError
from livestore.query.predicate import path_error, resolve_path


class SortOrder(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


@dataclass(frozen=True)
class SortDescriptor:
    field: str
    order: SortOrder = SortOrder.ASCENDING

    @classmethod
    def parse(cls, spec: str) -> "SortDescriptor":
        """Parse ``"name"`` (ascending) or ``"-name"`` (descending)."""
        spec = spec.strip()
        if spec.startswith("-"):
            return cls(spec[1:], SortOrder.DESCENDING)
        return cls(spec.lstrip("+"), SortOrder.ASCENDING)

    @property
    def descending(self) -> bool:
        return self.order is SortOrder.DESCENDING

    def describe(self) -> str:
        return f"{self.field} {'DESC' if self.descending else 'ASC'}"


SortLike = Union[str, SortDescriptor, Tuple[str, Union[str, SortOrder]]]


def _is_order(value: Any) -> bool:
    return isinstance(value, SortOrder) or value in {order.value for order in SortOrder}


def sort_by(specs: Union[SortLike, Iterable[SortLike], None]) -> Tuple[SortDescriptor, ...]:
    """Normalize a single sort spec or a sequence of them into descriptors."""
    if specs is None:
        return ()
    if isinstance(specs, (str, SortDescriptor)):
        specs = [specs]
    elif isinstance(specs, tuple) and len(specs) == 2 and _is_order(specs[1]):
        specs = [specs]
    descriptors: List[SortDescriptor] = []
    for spec in specs:
        if isinstance(spec, SortDescriptor):
            descriptors.append(spec)
        elif isinstance(spec, str):
            descriptors.append(SortDescriptor.parse(spec))
        else:
            name, order = spec
            descriptors.append(SortDescriptor(name, SortOrder(order)))
    return tuple(descriptors)


def validate_sort(descriptors: Sequence[SortDescriptor], model: Optional[type[Record]]) -> None:
    """Every sort path must resolve, hop by hop, to a scalar field of the model."""
    if model is None:
        return
    for descriptor in descriptors:
        error = path_error(model, descriptor.field, scalar_only=True)
        if error is not None:
            raise SchemaError(f"Cannot sort {model.kind()} by '{descriptor.field}': {error}")


def _sort_key(value: Any) -> Tuple[Any, ...]:
    if value is None:
        return (0,)
    if isinstance(value, str):
        folded = unicodedata.normalize("NFKD", value)
        folded = "".join(ch for ch in folded if not unicodedata.combining(ch)).casefold()
        return (1, folded, value)
    return (1, value)


def apply_sort(records: Iterable[Record], descriptors: Sequence[SortDescriptor]) -> List[Record]:
    """Stable multi-key sort: sort by the last key first, then each earlier key."""
    ordered = list(records)
    for descriptor in reversed(descriptors):
        ordered.sort(
            key=lambda record: _sort_key(resolve_path(record, descriptor.field)),
            reverse=descriptor.descending,
        )
    return ordered


__all__ = [
    "SortOrder",
    "SortDescriptor",
    "SortLike",
    "apply_sort",
    "sort_by",
    "validate_sort",
]
