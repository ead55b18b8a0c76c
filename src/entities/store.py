from __future__ import annotations

import asyncio
import logging
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    Generic,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
)

from common.errors import BackendError
from common.fetcher import DualPathFetcher
from common.rest import Filter, Operation, PayloadClass

from .models import Record, decode_record, decode_records


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Record)


def _sort_records(items: Sequence[T], ordering: Sequence[Tuple[str, bool]]) -> List[T]:
    # Stable multi-key sort: apply keys from least to most significant
    out = list(items)
    for column, ascending in reversed(ordering):
        present = [r for r in out if getattr(r, column, None) is not None]
        missing = [r for r in out if getattr(r, column, None) is None]
        present.sort(key=lambda r: getattr(r, column), reverse=not ascending)
        out = present + missing
    return out


class EntityStore(Generic[T]):
    """
    In-memory, read-through view of one backend collection.

    State
    - `items`: records in presentation order
    - `loading`: a `load()` is in flight
    - `error`: message from the last failed `load()`, else None

    Behaviour
    - `load()` replaces the whole collection with the server result. Failures
      never raise: the collection becomes empty and `error` is set.
    - `create()` / `update()` splice the server-returned record into place;
      nothing unconfirmed is ever shown. `delete()` drops the id only after
      the backend confirms.
    - `reorder()` rewrites the position column 1..n, then reloads.
    - Mutation failures are logged and re-raised.
    - Each `load()` takes a sequence number; a slower, older load that
      settles after a newer one has started is dropped.
    """

    table: ClassVar[str]
    model: ClassVar[Type[Record]]
    ordering: ClassVar[Tuple[Tuple[str, bool], ...]] = ()
    position_field: ClassVar[Optional[str]] = None
    payload_class: ClassVar[PayloadClass] = "read"

    def __init__(
        self,
        fetcher: DualPathFetcher,
        *,
        on_change: Optional[Callable[["EntityStore[T]"], None]] = None,
    ) -> None:
        self._fetcher = fetcher
        self._on_change = on_change
        self.items: List[T] = []
        self.loading = False
        self.error: Optional[str] = None
        self._load_seq = 0

    # --------------- Query shape ---------------
    def filters(self) -> Tuple[Filter, ...]:
        return ()

    def matches(self, record: T) -> bool:
        """Whether a confirmed record belongs in this view (mirrors `filters()`)."""
        return True

    def list_operation(self) -> Operation:
        return Operation.select(
            self.table,
            filters=self.filters(),
            order=self.ordering,
            payload_class=self.payload_class,
        )

    # --------------- Public API ---------------
    def get(self, record_id: str) -> Optional[T]:
        for item in self.items:
            if item.id == record_id:
                return item
        return None

    async def load(self) -> None:
        self._load_seq += 1
        seq = self._load_seq
        self.loading = True
        self.error = None
        self._changed()

        try:
            raw = await self._fetcher.execute(self.list_operation())
            items: List[T] = decode_records(self.model, raw)  # type: ignore[assignment]
        except BackendError as exc:
            if seq != self._load_seq:
                logger.info("%s: dropping failed stale load #%d", self.table, seq)
                return
            logger.error("%s: load failed: %s", self.table, exc)
            self.items = []
            self.error = str(exc) or f"Failed to load {self.table}"
        else:
            if seq != self._load_seq:
                logger.info("%s: dropping stale load #%d (latest #%d)", self.table, seq, self._load_seq)
                return
            self.items = _sort_records(items, self.ordering)
            logger.info("%s: loaded %d records", self.table, len(self.items))

        self.loading = False
        self._changed()

    async def create(self, fields: Mapping[str, Any]) -> T:
        body: Dict[str, Any] = dict(fields)
        pf = self.position_field
        if pf is not None and body.get(pf) is None:
            body[pf] = max((getattr(r, pf) for r in self.items), default=0) + 1

        try:
            raw = await self._fetcher.execute(Operation.insert(self.table, body))
            record: T = decode_record(self.model, raw)  # type: ignore[assignment]
        except BackendError as exc:
            logger.error("%s: create failed: %s", self.table, exc)
            raise
        self._splice(record)
        return record

    async def update(self, record_id: str, patch: Mapping[str, Any]) -> T:
        op = Operation.update(self.table, dict(patch), (Filter("id", record_id),))
        try:
            raw = await self._fetcher.execute(op)
            record: T = decode_record(self.model, raw)  # type: ignore[assignment]
        except BackendError as exc:
            logger.error("%s: update of %s failed: %s", self.table, record_id, exc)
            raise
        self._splice(record)
        return record

    async def delete(self, record_id: str) -> None:
        op = Operation.delete(self.table, (Filter("id", record_id),), returning=False)
        try:
            await self._fetcher.execute(op)
        except BackendError as exc:
            logger.error("%s: delete of %s failed: %s", self.table, record_id, exc)
            raise
        self.items = [r for r in self.items if r.id != record_id]
        self._changed()

    async def reorder(self, records: Sequence[T]) -> None:
        pf = self.position_field
        if pf is None:
            raise TypeError(f"{self.table} has no position column to reorder by")

        changed = [
            (record.id, position)
            for position, record in enumerate(records, start=1)
            if getattr(record, pf) != position
        ]
        logger.info("%s: reordering %d records (%d changed)", self.table, len(records), len(changed))
        results = await asyncio.gather(
            *(
                self._fetcher.execute(Operation.update(self.table, {pf: position}, (Filter("id", rid),)))
                for rid, position in changed
            ),
            return_exceptions=True,
        )
        await self.load()

        for result in results:
            if isinstance(result, BaseException):
                logger.error("%s: reorder write failed: %s", self.table, result)
                raise result

    # --------------- Internal ---------------
    def _splice(self, record: T) -> None:
        rest = [r for r in self.items if r.id != record.id]
        if self.matches(record):
            rest.append(record)
        self.items = _sort_records(rest, self.ordering)
        self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self)


__all__ = ["EntityStore"]
