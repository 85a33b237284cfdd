"""Bookkeeping shared by the event processor and the mutation dispatchers.

The ``IdLedger`` remembers which record ids the remote store has recently
acknowledged (through the bulk load, a realtime event or a write response).
``PendingRenames`` remembers which optimistic temporary ids were replaced by a
server-assigned id and are waiting for their "created" event.

Both live for one sync session and are only touched from the session's event
loop, so they carry no locks.
"""

import asyncio
import logging
import time
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 300.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


class IdLedger:
    """Time-stamped set of record ids confirmed by the remote store."""

    def __init__(
        self,
        retention: float = DEFAULT_RETENTION_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the ledger.

        Args:
            retention: Seconds an entry is kept after it was last seen.
            sweep_interval: Seconds between background prune sweeps.
            clock: Wall-clock source, replaceable in tests.
        """
        self.retention = retention
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._seen: dict[str, float] = {}
        self._task: asyncio.Task | None = None

    def mark_seen(self, record_id: str) -> None:
        """Record or refresh the last-seen timestamp for ``record_id``."""
        self._seen[record_id] = self._clock()

    def has_all(self, ids: Iterable[str]) -> bool:
        """Check whether every id is currently present."""
        return all(record_id in self._seen for record_id in ids)

    def missing(self, ids: Iterable[str]) -> list[str]:
        """Return the ids that are not present, in the order given."""
        return [record_id for record_id in ids if record_id not in self._seen]

    def last_seen(self, record_id: str) -> float | None:
        return self._seen.get(record_id)

    def sweep(self, now: float | None = None) -> int:
        """Remove entries last seen before the retention window.

        Args:
            now: Reference time; defaults to the ledger clock.

        Returns:
            Number of entries removed.
        """
        cutoff = (self._clock() if now is None else now) - self.retention
        stale = [rid for rid, seen_at in self._seen.items() if seen_at < cutoff]
        for record_id in stale:
            del self._seen[record_id]

        if stale:
            logger.debug(f"Pruned {len(stale)} ids from ledger, {len(self._seen)} remain")
        return len(stale)

    async def start(self) -> None:
        """Start the periodic sweep as a background task."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._sweep_loop())
        logger.debug(f"Ledger sweep started (interval={self.sweep_interval}s)")

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.debug("Ledger sweep stopped")

    @property
    def is_sweeping(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Ledger sweep failed: {e}", exc_info=True)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)


class PendingRenames:
    """Temporary id -> server-assigned id mappings awaiting their "created" event."""

    def __init__(self) -> None:
        self._pending: dict[str, str] = {}

    def record(self, temp_id: str | None, real_id: str) -> bool:
        """Store a mapping when the server assigned a different id.

        Returns:
            True if a mapping was stored.
        """
        if not temp_id or temp_id == real_id:
            return False
        self._pending[temp_id] = real_id
        logger.debug(f"Pending rename {temp_id} -> {real_id}")
        return True

    def resolve(self, real_id: str) -> str | None:
        """Find, remove and return the temporary id mapped to ``real_id``."""
        matches = [temp for temp, mapped in self._pending.items() if mapped == real_id]
        if not matches:
            return None

        if len(matches) > 1:
            logger.warning(
                f"{len(matches)} temporary ids map to {real_id}, resolving {matches[0]}"
            )
        temp_id = matches[0]
        del self._pending[temp_id]
        return temp_id

    def __contains__(self, temp_id: object) -> bool:
        return temp_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)
