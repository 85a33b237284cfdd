"""Holds realtime events that arrive while the bulk load is still running."""

import logging
from collections import deque
from enum import Enum
from typing import Callable

from ..types import RealtimeEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[RealtimeEvent], None]


class BufferState(Enum):
    """Lifecycle of an event buffer."""

    BUFFERING = "buffering"
    DRAINING = "draining"
    LIVE = "live"


class EventBuffer:
    """FIFO of realtime events replayed once the initial snapshot is applied.

    Until ``drain()`` runs, pushed events are queued. ``drain()`` hands them to
    the handler in arrival order, including any that arrive mid-drain, and
    afterwards events pass straight through.
    """

    def __init__(self, handler: EventHandler):
        self._handler = handler
        self._queue: deque[RealtimeEvent] = deque()
        self._state = BufferState.BUFFERING

    @property
    def state(self) -> BufferState:
        return self._state

    def push(self, event: RealtimeEvent) -> None:
        """Queue an event, or process it immediately once live."""
        if self._state is BufferState.LIVE:
            self._handler(event)
            return

        self._queue.append(event)
        logger.debug(
            f"Buffered {event.kind.name} event for {event.record.get('id')} "
            f"({len(self._queue)} queued)"
        )

    def drain(self) -> int:
        """Replay buffered events in arrival order and switch to live.

        Returns:
            Number of events replayed.
        """
        if self._state is not BufferState.BUFFERING:
            return 0

        self._state = BufferState.DRAINING
        replayed = 0
        while self._queue:
            event = self._queue.popleft()
            try:
                self._handler(event)
            except Exception as e:
                logger.error(
                    f"Failed to replay {event.kind.name} event for "
                    f"{event.record.get('id')}: {e}",
                    exc_info=True,
                )
            replayed += 1

        self._state = BufferState.LIVE
        if replayed:
            logger.info(f"Replayed {replayed} buffered events")
        return replayed

    def __len__(self) -> int:
        return len(self._queue)
