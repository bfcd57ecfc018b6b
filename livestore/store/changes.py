"""Change notifications published by the record store after each committed write."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Optional
from uuid import UUID


@dataclass(frozen=True)
class ChangeSet:
    """Identities touched by one committed store operation."""

    inserted: FrozenSet[UUID] = field(default_factory=frozenset)
    updated: FrozenSet[UUID] = field(default_factory=frozenset)
    deleted: FrozenSet[UUID] = field(default_factory=frozenset)

    @property
    def is_empty(self) -> bool:
        return not (self.inserted or self.updated or self.deleted)


ChangeListener = Callable[[ChangeSet], None]


class Subscription:
    """Handle returned by `RecordStore.subscribe`; `cancel()` stops delivery."""

    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel: Optional[Callable[[], None]] = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def cancel(self) -> None:
        if self._cancel is not None:
            cancel, self._cancel = self._cancel, None
            cancel()


__all__ = ["ChangeSet", "ChangeListener", "Subscription"]
