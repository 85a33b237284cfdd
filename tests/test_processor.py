"""Tests for the realtime event processor."""

from datetime import datetime

import pytest

from pocketsync.collection import LocalCollection
from pocketsync.sync.ledger import IdLedger, PendingRenames
from pocketsync.sync.processor import EventProcessor
from pocketsync.types import ApplyKind, EventKind, RealtimeEvent


@pytest.fixture
def collection():
    return LocalCollection()


@pytest.fixture
def commits(collection):
    """Ops of every commit, one list per transaction."""
    seen = []
    collection.subscribe(seen.append)
    return seen


@pytest.fixture
def ledger():
    return IdLedger()


@pytest.fixture
def renames():
    return PendingRenames()


@pytest.fixture
def processor(collection, ledger, renames):
    return EventProcessor(collection, ledger, renames)


def created(record_id: str, **fields) -> RealtimeEvent:
    return RealtimeEvent(EventKind.CREATED, {"id": record_id, **fields})


class TestEventProcessor:
    """Tests for EventProcessor."""

    def test_marks_every_kind_seen(self, processor, ledger):
        """Test each event kind confirms its id in the ledger."""
        processor.process(created("a"))
        processor.process(RealtimeEvent(EventKind.MODIFIED, {"id": "b"}))
        processor.process(RealtimeEvent(EventKind.REMOVED, {"id": "c"}))

        assert ledger.has_all(["a", "b", "c"])

    def test_created_inserts(self, processor, collection, commits):
        """Test a create from another client is a plain insert."""
        ops = processor.process(created("a", title="x"))

        assert [op.kind for op in ops] == [ApplyKind.INSERT]
        assert collection.get("a") == {"id": "a", "title": "x"}
        assert len(commits) == 1

    def test_created_with_rename_replaces_temp_record(
        self, processor, collection, commits, renames
    ):
        """Test a create for a renamed id swaps the optimistic record atomically."""
        collection.insert_optimistic({"id": "T", "title": "draft"})
        commits.clear()
        renames.record("T", "R")

        ops = processor.process(created("R", title="draft"))

        assert [(op.kind, op.key) for op in ops] == [
            (ApplyKind.DELETE, "T"),
            (ApplyKind.INSERT, "R"),
        ]
        assert collection.keys() == ["R"]
        assert len(commits) == 1  # both ops in one transaction
        assert len(renames) == 0

    def test_never_observes_temp_and_real_together(self, processor, collection, renames):
        """Test subscribers never see both T and R in the collection."""
        collection.insert_optimistic({"id": "T"})
        renames.record("T", "R")
        snapshots = []
        collection.subscribe(lambda ops: snapshots.append(set(collection.keys())))

        processor.process(created("R"))

        assert snapshots == [{"R"}]
        assert all(not {"T", "R"} <= keys for keys in snapshots)

    def test_duplicate_created_inserts_once(self, processor, commits):
        """Test replaying the same create does not insert twice."""
        processor.process(created("a", title="x"))
        processor.process(created("a", title="x"))

        inserts = [op for ops in commits for op in ops if op.kind is ApplyKind.INSERT]
        assert len(inserts) == 1
        assert commits[1][0].kind is ApplyKind.UPDATE

    def test_created_after_seed_is_update(self, processor, commits):
        """Test a create for a bulk-loaded id does not insert again."""
        processor.seed(["a"])

        ops = processor.process(created("a"))

        assert [op.kind for op in ops] == [ApplyKind.UPDATE]

    def test_modified_updates(self, processor, collection):
        """Test a modify event updates the record."""
        processor.process(created("a", title="x", done=False))

        processor.process(RealtimeEvent(EventKind.MODIFIED, {"id": "a", "done": True}))

        assert collection.get("a") == {"id": "a", "title": "x", "done": True}

    def test_removed_deletes(self, processor, collection):
        """Test a remove event deletes the record and allows re-creation."""
        processor.process(created("a"))

        ops = processor.process(RealtimeEvent(EventKind.REMOVED, {"id": "a"}))

        assert [op.kind for op in ops] == [ApplyKind.DELETE]
        assert "a" not in collection
        assert not processor.is_applied("a")

        again = processor.process(created("a"))
        assert [op.kind for op in again] == [ApplyKind.INSERT]

    def test_to_local_transforms(self, collection, ledger, renames):
        """Test field converters run on incoming records."""
        processor = EventProcessor(
            collection, ledger, renames,
            to_local={"created": datetime.fromisoformat},
        )

        processor.process(created("a", created="2026-01-02T03:04:05"))

        assert collection.get("a")["created"] == datetime(2026, 1, 2, 3, 4, 5)

    def test_one_transaction_per_event(self, ledger, renames):
        """Test begin/write/commit bracket every event."""
        calls = []

        class RecordingSink:
            def begin(self):
                calls.append("begin")

            def write(self, op):
                calls.append(op.kind.value)

            def commit(self):
                calls.append("commit")

            def rollback(self):
                calls.append("rollback")

            def mark_ready(self):
                pass

        renames.record("T", "R")
        processor = EventProcessor(RecordingSink(), ledger, renames)
        processor.process(created("R"))
        processor.process(RealtimeEvent(EventKind.MODIFIED, {"id": "R"}))

        assert calls == ["begin", "delete", "insert", "commit", "begin", "update", "commit"]

    def test_reconcile_drops_placeholder_of_applied_record(self, processor, collection):
        """Test a temp record is removed once its confirmed record is present."""
        collection.insert_optimistic({"id": "T"})
        processor.process(created("R"))

        assert processor.reconcile("T", "R") is True
        assert collection.keys() == ["R"]

    def test_reconcile_defers_until_applied(self, processor, collection, commits):
        """Test nothing is written while the confirmed record is still unknown."""
        collection.insert_optimistic({"id": "T"})
        commits.clear()

        assert processor.reconcile("T", "R") is False
        assert commits == []
        assert collection.keys() == ["T"]

    def test_failed_write_rolls_back(self, ledger, renames):
        """Test a sink error does not leave the transaction open for later events."""

        class FlakyCollection(LocalCollection):
            fail_next = True

            def write(self, op):
                if self.fail_next:
                    self.fail_next = False
                    raise RuntimeError("write failed")
                super().write(op)

        collection = FlakyCollection()
        processor = EventProcessor(collection, ledger, renames)

        with pytest.raises(RuntimeError):
            processor.process(created("a"))
        processor.process(created("b"))

        assert collection.keys() == ["b"]
