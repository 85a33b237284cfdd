"""Sync session tying one remote collection to one local collection."""

import logging
from typing import TYPE_CHECKING, Any

import httpx

from ..collection import ApplySink
from ..config import CollectionConfig
from ..errors import PocketSyncError, SubscriptionError
from ..types import ApplyKind, ApplyOp, FieldTransforms, Mutation, convert
from .buffer import BufferState, EventBuffer
from .dispatch import MutationDispatcher
from .ledger import IdLedger, PendingRenames
from .processor import EventProcessor

if TYPE_CHECKING:
    from ..remote import PocketBaseClient, Unsubscribe

logger = logging.getLogger(__name__)


class CollectionSync:
    """Keeps a local collection consistent with a remote collection.

    ``start()`` subscribes to realtime changes, bulk loads the collection and
    then replays whatever arrived meanwhile. The ``on_insert``/``on_update``/
    ``on_delete`` handlers persist optimistic mutations and return once the
    remote store has confirmed them.

    The ledger and rename map belong to the session and are shared by the
    event path and the mutation handlers.
    """

    def __init__(
        self,
        client: "PocketBaseClient",
        config: CollectionConfig,
        to_local: FieldTransforms | None = None,
        to_remote: FieldTransforms | None = None,
    ):
        """Initialize the session.

        Args:
            client: Remote client exposing ``collection(name)``.
            config: Settings for the collection.
            to_local: Field converters applied to incoming records.
            to_remote: Field converters applied to outgoing payloads.
        """
        self.config = config
        self.records = client.collection(config.name)
        self._to_local = to_local

        self.ledger = IdLedger(
            retention=config.id_retention_seconds,
            sweep_interval=config.sweep_interval_seconds,
        )
        self.renames = PendingRenames()
        self.dispatcher = MutationDispatcher(
            self.records,
            self.ledger,
            self.renames,
            to_remote=to_remote,
            timeout=config.mutation_timeout_seconds,
            poll_interval=config.poll_interval_seconds,
        )

        self._processor: EventProcessor | None = None
        self._buffer: EventBuffer | None = None
        self._unsubscribe: "Unsubscribe | None" = None
        self._subscribed = False

    async def start(self, sink: ApplySink) -> None:
        """Subscribe, bulk load and start applying realtime events.

        ``sink.mark_ready()`` is always called, even if loading fails.

        Raises:
            SubscriptionError: If realtime could not be established. The bulk
                load has still been applied when this is raised.
        """
        if self._processor is not None:
            raise PocketSyncError(f"Sync for {self.config.name} already started")

        self._processor = EventProcessor(
            sink, self.ledger, self.renames, to_local=self._to_local
        )
        self._buffer = EventBuffer(self._processor.process)
        self.dispatcher.processor = self._processor
        await self.ledger.start()

        subscription_error = None
        if self.config.realtime:
            try:
                self._unsubscribe = await self.records.subscribe(
                    "*", self._buffer.push, self._on_disconnect
                )
                self._subscribed = True
            except SubscriptionError as e:
                logger.error(f"Realtime unavailable for {self.config.name}: {e}")
                subscription_error = e
        else:
            logger.info(f"Realtime disabled for {self.config.name}, bulk load only")

        try:
            await self._initial_sync(sink)
        finally:
            sink.mark_ready()

        if subscription_error:
            raise subscription_error

    async def _initial_sync(self, sink: ApplySink) -> None:
        records = await self.records.get_full_list(self.config.initial_fetch)

        sink.begin()
        try:
            for record in records:
                self.ledger.mark_seen(record["id"])
                sink.write(ApplyOp(ApplyKind.INSERT, convert(record, self._to_local)))
        except Exception:
            sink.rollback()
            raise
        sink.commit()
        self._processor.seed(record["id"] for record in records)

        logger.info(f"Loaded {len(records)} records from {self.config.name}")
        self._buffer.drain()

    def _on_disconnect(self, error: SubscriptionError) -> None:
        self._subscribed = False
        logger.error(f"Realtime for {self.config.name} dropped: {error}")

    async def cancel(self) -> None:
        """Unsubscribe from realtime and stop the ledger sweep.

        Pending ``on_*`` calls are left to time out on their own.
        """
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe:
            try:
                await unsubscribe()
            except (httpx.HTTPError, SubscriptionError) as e:
                logger.warning(f"Unsubscribe from {self.config.name} failed: {e}")
        self._subscribed = False
        await self.ledger.stop()
        logger.info(f"Sync for {self.config.name} cancelled")

    def is_subscribed(self) -> bool:
        return self._subscribed

    async def on_insert(self, mutations: list[Mutation]) -> list[str]:
        return await self.dispatcher.on_insert(mutations)

    async def on_update(self, mutations: list[Mutation]) -> list[str]:
        return await self.dispatcher.on_update(mutations)

    async def on_delete(self, mutations: list[Mutation]) -> list[str]:
        return await self.dispatcher.on_delete(mutations)

    def get_sync_status(self) -> dict[str, Any]:
        """Get current session status.

        Returns:
            Dictionary with session statistics.
        """
        return {
            "collection": self.config.name,
            "subscribed": self._subscribed,
            "buffer_state": (
                self._buffer.state.value if self._buffer else BufferState.BUFFERING.value
            ),
            "buffered_events": len(self._buffer) if self._buffer else 0,
            "known_ids": len(self.ledger),
            "pending_renames": len(self.renames),
        }
