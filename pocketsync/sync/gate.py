"""Bounded wait for remote confirmation of record ids."""

import asyncio
import logging
import time
from typing import Iterable

from ..errors import TimeoutWaitingForIds
from .ledger import IdLedger

logger = logging.getLogger(__name__)

DEFAULT_MUTATION_TIMEOUT_SECONDS = 120.0
DEFAULT_POLL_INTERVAL_SECONDS = 0.1


async def await_ids(
    ledger: IdLedger,
    ids: Iterable[str],
    timeout: float = DEFAULT_MUTATION_TIMEOUT_SECONDS,
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
) -> None:
    """Wait until every id is present in the ledger.

    Polls the ledger rather than blocking the event loop, so realtime events
    keep flowing while a caller waits.

    Args:
        ledger: Ledger populated by the bulk load and the event processor.
        ids: Record ids to wait for.
        timeout: Seconds before giving up.
        poll_interval: Seconds between ledger checks.

    Raises:
        TimeoutWaitingForIds: If some ids are still missing after ``timeout``.
    """
    wanted = list(ids)
    started = time.monotonic()

    while True:
        if ledger.has_all(wanted):
            return

        remaining = timeout - (time.monotonic() - started)
        if remaining < 0:
            missing = ledger.missing(wanted)
            logger.warning(f"Timed out after {timeout}s waiting for {missing}")
            raise TimeoutWaitingForIds(missing)

        # Sleep past the deadline so the next check can time out
        await asyncio.sleep(min(poll_interval, remaining + 0.001))
