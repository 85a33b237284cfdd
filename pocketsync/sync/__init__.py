"""Reconciliation of optimistic local writes with a remote record store.

Buffers realtime events during the initial load, maps temporary ids to
server-assigned ids, and waits for remote confirmation of mutations.
"""

from .buffer import BufferState, EventBuffer
from .dispatch import MutationDispatcher
from .gate import await_ids
from .ledger import IdLedger, PendingRenames
from .processor import EventProcessor
from .session import CollectionSync

__all__ = [
    "BufferState",
    "CollectionSync",
    "EventBuffer",
    "EventProcessor",
    "IdLedger",
    "MutationDispatcher",
    "PendingRenames",
    "await_ids",
]
