"""Shared fixtures for pocketsync tests."""

import asyncio
from typing import Callable

import pytest

from pocketsync.remote import RecordService
from pocketsync.types import FetchOptions, RealtimeEvent, Record


class FakeRecords(RecordService):
    """In-memory stand-in for a remote collection.

    Writes assign sequential ids and, with ``echo`` enabled, broadcast the
    matching realtime event on the next loop iteration as a server would.
    """

    def __init__(self, records: list[Record] | None = None, echo: bool = True):
        self.records = {r["id"]: dict(r) for r in records or []}
        self.echo = echo
        self.callbacks: list[Callable[[RealtimeEvent], None]] = []
        self.disconnect_callbacks: list[Callable] = []
        self.calls: list[tuple] = []
        self.fetch_options: FetchOptions | None = None
        self.on_fetch: Callable[[], None] | None = None
        self.fail_create_after: int | None = None
        self._next_id = 1

    async def subscribe(self, topic, callback, on_disconnect=None):
        self.calls.append(("subscribe", topic))
        self.callbacks.append(callback)
        if on_disconnect:
            self.disconnect_callbacks.append(on_disconnect)

        async def unsubscribe():
            self.calls.append(("unsubscribe", topic))
            if callback in self.callbacks:
                self.callbacks.remove(callback)

        return unsubscribe

    def emit(self, action: str, record: Record) -> None:
        event = RealtimeEvent.from_dict({"action": action, "record": record})
        for callback in list(self.callbacks):
            callback(event)

    def _echo(self, action: str, record: Record) -> None:
        if self.echo:
            asyncio.get_running_loop().call_soon(self.emit, action, dict(record))

    async def get_full_list(self, options=None):
        self.calls.append(("get_full_list",))
        self.fetch_options = options
        if self.on_fetch:
            self.on_fetch()
        await asyncio.sleep(0)
        return [dict(r) for r in self.records.values()]

    async def create(self, payload):
        self.calls.append(("create", dict(payload)))
        if self.fail_create_after is not None and self._next_id > self.fail_create_after:
            raise RuntimeError("create failed")
        record = {**payload, "id": f"rec{self._next_id}"}
        self._next_id += 1
        self.records[record["id"]] = record
        self._echo("create", record)
        return dict(record)

    async def update(self, key, payload):
        self.calls.append(("update", key, dict(payload)))
        record = {**self.records.get(key, {"id": key}), **payload}
        self.records[key] = record
        self._echo("update", record)
        return dict(record)

    async def delete(self, key):
        self.calls.append(("delete", key))
        record = self.records.pop(key, {"id": key})
        self._echo("delete", record)

    def writes(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in ("create", "update", "delete")]


class FakeClient:
    """Remote client handing out a single FakeRecords service."""

    def __init__(self, records: FakeRecords):
        self.records = records
        self.requested: list[str] = []

    def collection(self, name: str) -> FakeRecords:
        self.requested.append(name)
        return self.records


@pytest.fixture
def fake_records():
    return FakeRecords()


@pytest.fixture
def fake_client(fake_records):
    return FakeClient(fake_records)
