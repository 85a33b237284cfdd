"""Local collection state that the sync engine writes into."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable

from .errors import TransactionError
from .types import ApplyKind, ApplyOp, Record

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[list[ApplyOp]], None]


class ApplySink(ABC):
    """Transactional write primitive exposed by a local collection."""

    @abstractmethod
    def begin(self) -> None:
        """Open a transaction."""
        pass

    @abstractmethod
    def write(self, op: ApplyOp) -> None:
        """Stage an operation in the open transaction."""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Apply all staged operations atomically."""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Discard the open transaction without applying it."""
        pass

    @abstractmethod
    def mark_ready(self) -> None:
        """Signal that the initial snapshot has been loaded."""
        pass


class LocalCollection(ApplySink):
    """In-memory keyed collection with commit-level change notifications.

    Writes are staged between ``begin()`` and ``commit()`` and become visible
    together, so subscribers never observe a half-applied transaction.
    """

    def __init__(self, key_field: str = "id"):
        self.key_field = key_field
        self._items: dict[str, Record] = {}
        self._staged: list[ApplyOp] | None = None
        self._subscribers: list[ChangeCallback] = []
        self._ready = asyncio.Event()

    # ApplySink

    def begin(self) -> None:
        if self._staged is not None:
            raise TransactionError("Transaction already open")
        self._staged = []

    def write(self, op: ApplyOp) -> None:
        if self._staged is None:
            raise TransactionError(f"{op.kind.value} outside of a transaction")
        self._staged.append(op)

    def commit(self) -> None:
        if self._staged is None:
            raise TransactionError("No open transaction to commit")
        ops, self._staged = self._staged, None
        self._apply(ops)

    def rollback(self) -> None:
        if self._staged is not None:
            logger.warning(f"Discarding {len(self._staged)} staged operations")
        self._staged = None

    def mark_ready(self) -> None:
        if not self._ready.is_set():
            self._ready.set()
            logger.debug(f"Collection ready with {len(self._items)} items")

    # Optimistic layer used by callers before a mutation is confirmed

    def insert_optimistic(self, record: Record) -> None:
        self._apply([ApplyOp(ApplyKind.INSERT, dict(record), self.key_field)])

    def update_optimistic(self, key: str, changes: Record) -> None:
        value = {**changes, self.key_field: key}
        self._apply([ApplyOp(ApplyKind.UPDATE, value, self.key_field)])

    def delete_optimistic(self, key: str) -> None:
        self._apply([ApplyOp(ApplyKind.DELETE, {self.key_field: key}, self.key_field)])

    # Reads

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait until the initial snapshot is loaded.

        Returns:
            True if ready, False on timeout.
        """
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def get(self, key: str) -> Record | None:
        return self._items.get(key)

    def items(self) -> list[Record]:
        return list(self._items.values())

    def keys(self) -> list[str]:
        return list(self._items)

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register a callback invoked once per commit with the applied ops.

        Returns:
            A function that removes the callback.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _apply(self, ops: list[ApplyOp]) -> None:
        for op in ops:
            key = op.value[self.key_field]
            if op.kind is ApplyKind.INSERT:
                if key in self._items:
                    logger.debug(f"Insert replaces existing item {key}")
                self._items[key] = dict(op.value)
            elif op.kind is ApplyKind.UPDATE:
                self._items[key] = {**self._items.get(key, {}), **op.value}
            elif op.kind is ApplyKind.DELETE:
                self._items.pop(key, None)

        for callback in list(self._subscribers):
            try:
                callback(ops)
            except Exception as e:
                logger.error(f"Collection subscriber failed: {e}", exc_info=True)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)
