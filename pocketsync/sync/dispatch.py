"""Persists optimistic mutations to the remote store and waits for confirmation."""

import logging
from typing import TYPE_CHECKING

from ..errors import UnexpectedMutationKind
from ..types import FieldTransforms, Mutation, MutationKind, convert
from .gate import (
    DEFAULT_MUTATION_TIMEOUT_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    await_ids,
)
from .ledger import IdLedger, PendingRenames

if TYPE_CHECKING:
    from ..remote import RecordService
    from .processor import EventProcessor

logger = logging.getLogger(__name__)

# Fields the remote store assigns itself
SERVER_FIELDS = ("id", "created", "updated", "collectionId", "collectionName")


def _check_kinds(mutations: list[Mutation], expected: MutationKind) -> None:
    for mutation in mutations:
        if mutation.kind is not expected:
            raise UnexpectedMutationKind(expected.value, mutation.kind.value)


class MutationDispatcher:
    """Insert/update/delete handlers for one collection.

    Each handler takes the mutations of a single transaction. A batch with a
    mutation of the wrong kind is rejected before anything is written. Writes
    are issued one after another; a failing write propagates immediately and
    the rest of the batch is not attempted. Once every write succeeded the
    handler waits for all resulting ids to be confirmed in the ledger.
    """

    def __init__(
        self,
        records: "RecordService",
        ledger: IdLedger,
        renames: PendingRenames,
        to_remote: FieldTransforms | None = None,
        timeout: float = DEFAULT_MUTATION_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        processor: "EventProcessor | None" = None,
    ):
        """Initialize the dispatcher.

        Args:
            records: Remote record service for the collection.
            ledger: Ledger shared with the event processor.
            renames: Pending rename map shared with the event processor.
            to_remote: Field converters applied before sending payloads.
            timeout: Seconds to wait for confirmation of a batch.
            poll_interval: Seconds between ledger checks while waiting.
            processor: Event processor applying realtime events, used to drop
                placeholders whose confirmed record arrived first.
        """
        self._records = records
        self._ledger = ledger
        self._renames = renames
        self._to_remote = to_remote
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.processor = processor

    async def on_insert(self, mutations: list[Mutation]) -> list[str]:
        """Create records remotely and wait for their server ids.

        Returns:
            Server-assigned ids, in mutation order.
        """
        _check_kinds(mutations, MutationKind.INSERT)

        real_ids = []
        for mutation in mutations:
            payload = convert(mutation.modified or {}, self._to_remote)
            temp_id = payload.get("id") or mutation.key
            for field_name in SERVER_FIELDS:
                payload.pop(field_name, None)

            record = await self._records.create(payload)
            real_id = record["id"]
            self._swap(temp_id, real_id)
            logger.debug(f"Created {real_id} (temporary id {temp_id})")
            real_ids.append(real_id)

        await self._await(real_ids)
        return real_ids

    async def on_update(self, mutations: list[Mutation]) -> list[str]:
        """Apply partial updates remotely, keyed by confirmed ids.

        Returns:
            Ids returned by the remote store.
        """
        _check_kinds(mutations, MutationKind.UPDATE)

        ids = []
        for mutation in mutations:
            changes = convert(mutation.changes or {}, self._to_remote)
            record = await self._records.update(str(mutation.key), changes)
            logger.debug(f"Updated {record['id']}")
            ids.append(record["id"])

        await self._await(ids)
        return ids

    async def on_delete(self, mutations: list[Mutation]) -> list[str]:
        """Delete records remotely.

        Returns:
            The deleted keys.
        """
        _check_kinds(mutations, MutationKind.DELETE)

        ids = []
        for mutation in mutations:
            await self._records.delete(str(mutation.key))
            logger.debug(f"Deleted {mutation.key}")
            ids.append(str(mutation.key))

        await self._await(ids)
        return ids

    def _swap(self, temp_id: str, real_id: str) -> None:
        if not temp_id or temp_id == real_id:
            return
        if self.processor is not None and self.processor.reconcile(temp_id, real_id):
            return
        self._renames.record(temp_id, real_id)

    async def _await(self, ids: list[str]) -> None:
        await await_ids(
            self._ledger, ids, timeout=self.timeout, poll_interval=self.poll_interval
        )
