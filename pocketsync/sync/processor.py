"""Translates realtime events into local collection writes."""

import logging
from typing import Iterable

from ..collection import ApplySink
from ..types import (
    ApplyKind,
    ApplyOp,
    EventKind,
    FieldTransforms,
    RealtimeEvent,
    Record,
    convert,
)
from .ledger import IdLedger, PendingRenames

logger = logging.getLogger(__name__)


class EventProcessor:
    """Applies each realtime event to the local collection in its own transaction.

    A "created" event whose id was assigned to one of our own optimistic
    inserts replaces the temporary record inside the same transaction, so the
    placeholder and the confirmed record are never visible together. A
    "created" event for an id that is already applied (duplicate delivery, or
    a buffered event overlapping the bulk load) becomes an update.
    """

    def __init__(
        self,
        sink: ApplySink,
        ledger: IdLedger,
        renames: PendingRenames,
        to_local: FieldTransforms | None = None,
        key_field: str = "id",
    ):
        self._sink = sink
        self._ledger = ledger
        self._renames = renames
        self._to_local = to_local
        self._key_field = key_field
        self._applied: set[str] = set()

    def seed(self, ids: Iterable[str]) -> None:
        """Mark ids as already present locally (from the bulk load)."""
        self._applied.update(ids)

    def is_applied(self, record_id: str) -> bool:
        return record_id in self._applied

    def process(self, event: RealtimeEvent) -> list[ApplyOp]:
        """Apply one event.

        Returns:
            The operations written, in order.
        """
        record_id = event.record[self._key_field]
        self._ledger.mark_seen(record_id)

        ops = self._plan(event, record_id)
        self._apply(ops)

        logger.debug(
            f"{event.kind.name} {record_id}: "
            f"{', '.join(op.kind.value for op in ops)}"
        )
        return ops

    def reconcile(self, temp_id: str, real_id: str) -> bool:
        """Drop a temporary record whose confirmed record is already applied.

        Covers the realtime "created" event arriving before the create
        response: the event was applied as a plain insert, so the placeholder
        has to be removed here instead of by the rename path.

        Returns:
            True if the placeholder was removed, False if ``real_id`` has not
            been applied yet and the rename should be recorded instead.
        """
        if real_id not in self._applied:
            return False

        self._applied.discard(temp_id)
        self._apply([self._op(ApplyKind.DELETE, {self._key_field: temp_id})])
        logger.info(f"Reconciled temporary id {temp_id} -> {real_id} after echo")
        return True

    def _apply(self, ops: list[ApplyOp]) -> None:
        self._sink.begin()
        try:
            for op in ops:
                self._sink.write(op)
        except Exception:
            self._sink.rollback()
            raise
        self._sink.commit()

    def _plan(self, event: RealtimeEvent, record_id: str) -> list[ApplyOp]:
        value = self._local(event.record)

        if event.kind is EventKind.CREATED:
            temp_id = self._renames.resolve(record_id)
            if temp_id is not None:
                logger.info(f"Reconciled temporary id {temp_id} -> {record_id}")
                self._applied.discard(temp_id)
                self._applied.add(record_id)
                return [
                    self._op(ApplyKind.DELETE, {self._key_field: temp_id}),
                    self._op(ApplyKind.INSERT, value),
                ]

            if record_id in self._applied:
                logger.debug(f"Duplicate create for {record_id}, applying as update")
                return [self._op(ApplyKind.UPDATE, value)]

            self._applied.add(record_id)
            return [self._op(ApplyKind.INSERT, value)]

        if event.kind is EventKind.MODIFIED:
            return [self._op(ApplyKind.UPDATE, value)]

        self._applied.discard(record_id)
        return [self._op(ApplyKind.DELETE, value)]

    def _local(self, record: Record) -> Record:
        return convert(record, self._to_local)

    def _op(self, kind: ApplyKind, value: Record) -> ApplyOp:
        return ApplyOp(kind, value, self._key_field)
