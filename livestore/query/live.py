"""
Live queries: a predicate and a sort order kept current against a record store.

A LiveQuery subscribes to the store's change notifications and re-runs its
fetch synchronously on every committed write, so after a notification cycle its
`results` always reflect the store. Replacing the predicate or the sort order
re-evaluates immediately.

Usage:
    users = LiveQuery(
        store,
        User,
        predicate=lambda user: user.join_date >= minimum_join_date,
        sort="name",
    )
    users.observe(lambda rows: render(rows))
"""

from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    Union,
)

from livestore.domain.models import Record
from livestore.query.predicate import Expression, PredicateLike, compile_predicate
from livestore.query.sort import SortDescriptor, SortLike, sort_by, validate_sort
from livestore.store.changes import ChangeSet, Subscription
from livestore.utils.logging import get_logger

if TYPE_CHECKING:
    from livestore.store.record_store import KindLike, RecordStore

log = get_logger(__name__)

ResultsObserver = Callable[[Tuple[Record, ...]], None]
SortSpec = Union[SortLike, Iterable[SortLike], None]

_UNSET: Any = object()


class LiveQuery:
    """
    Continuously updated, ordered view over one record kind.

    Parameters
    ----------
    store : RecordStore
        An open store; the query subscribes to its notifications.
    kind : str | type[Record]
        Record kind to select.
    predicate : Expression | callable | None
        Filter. Compiled and validated before the store is read.
    sort : str | SortDescriptor | sequence
        Sort keys, primary first.
    limit : int | None
        Optional cap on the number of results.

    Raises
    ------
    InvalidPredicateError
        If the predicate is not a single expression over known fields.
    """

    def __init__(
        self,
        store: "RecordStore",
        kind: "KindLike",
        predicate: PredicateLike = None,
        sort: SortSpec = None,
        limit: Optional[int] = None,
    ) -> None:
        self._store = store
        self._model = store.model_for(kind)
        self._predicate = compile_predicate(predicate, self._model)
        self._sort = self._compile_sort(sort)
        self._limit = limit
        self._observers: List[ResultsObserver] = []
        self._results: Tuple[Record, ...] = ()
        self._subscription: Optional[Subscription] = None
        self.refresh()
        self._subscription = store.subscribe(self._on_change)

    def _compile_sort(self, sort: SortSpec) -> Tuple[SortDescriptor, ...]:
        descriptors = sort_by(sort)
        validate_sort(descriptors, self._model)
        return descriptors

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def kind(self) -> type[Record]:
        return self._model

    @property
    def predicate(self) -> Optional[Expression]:
        return self._predicate

    @property
    def sort(self) -> Tuple[SortDescriptor, ...]:
        return self._sort

    @property
    def limit(self) -> Optional[int]:
        return self._limit

    def set_predicate(self, predicate: PredicateLike) -> None:
        self.configure(predicate=predicate)

    def set_sort(self, sort: SortSpec) -> None:
        self.configure(sort=sort)

    def configure(
        self, predicate: PredicateLike = _UNSET, sort: SortSpec = _UNSET, limit: Any = _UNSET
    ) -> None:
        """
        Replace any of predicate, sort and limit, then re-evaluate once.

        If the re-evaluation fails the previous configuration and results are
        kept and the error is re-raised.
        """
        new_predicate = (
            self._predicate if predicate is _UNSET else compile_predicate(predicate, self._model)
        )
        new_sort = self._sort if sort is _UNSET else self._compile_sort(sort)
        previous = (self._predicate, self._sort, self._limit)
        self._predicate = new_predicate
        self._sort = new_sort
        if limit is not _UNSET:
            self._limit = limit
        try:
            self.refresh()
        except Exception:
            self._predicate, self._sort, self._limit = previous
            log.warning(
                "Live query reconfiguration failed; previous configuration kept",
                extra={"kind": self._model.kind()},
            )
            raise

    def describe(self) -> str:
        """Human-readable query plan."""
        where = self._predicate.describe() if self._predicate is not None else "TRUE"
        order = ", ".join(d.describe() for d in self._sort) or "insertion order"
        plan = f"FETCH {self._model.kind()} WHERE {where} ORDER BY {order}"
        if self._limit is not None:
            plan += f" LIMIT {self._limit}"
        return plan

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def results(self) -> Tuple[Record, ...]:
        return self._results

    @property
    def is_active(self) -> bool:
        return self._subscription is not None

    def refresh(self) -> Tuple[Record, ...]:
        """Re-run the fetch and deliver the results to observers."""
        self._results = tuple(
            self._store.fetch(self._model, self._predicate, self._sort, limit=self._limit)
        )
        log.debug(
            "Live query refreshed",
            extra={"kind": self._model.kind(), "results": len(self._results)},
        )
        for observer in list(self._observers):
            try:
                observer(self._results)
            except Exception:  # noqa: BLE001 - one failing view must not starve the others
                log.exception("Live query observer failed", extra={"kind": self._model.kind()})
        return self._results

    def observe(self, observer: ResultsObserver) -> Subscription:
        """Call ``observer`` with the new results after every re-evaluation."""
        self._observers.append(observer)

        def _cancel() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return Subscription(_cancel)

    def _on_change(self, changes: ChangeSet) -> None:
        # Conservative: any committed write may change membership or order.
        if self._store.is_open:
            self.refresh()

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._observers.clear()

    def __enter__(self) -> "LiveQuery":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[Record]:
        return iter(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def __getitem__(self, index: int) -> Record:
        return self._results[index]


__all__ = ["LiveQuery", "ResultsObserver"]
