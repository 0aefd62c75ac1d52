"""
Tests for the state observer and its snapshot cell.
"""

import json
import threading

import pytest

from kitchen.observer import EMPTY_SNAPSHOT, QueueSnapshot, SnapshotCell, StateObserver
from kitchen.protocol import QueueEntry


def listing(*ids):
    return json.dumps([{"id": i, "items": f"i{i}", "isVip": False, "isExpress": False, "prepTime": 5} for i in ids])


@pytest.fixture
def observer():
    return StateObserver()


class TestSnapshotCell:
    def test_starts_empty(self):
        cell = SnapshotCell()
        assert cell.get() is EMPTY_SNAPSHOT
        assert len(cell.get()) == 0
        assert cell.get().head is None

    def test_replace_bumps_version(self):
        cell = SnapshotCell()
        first = cell.replace((QueueEntry(id=1),))
        second = cell.replace(())
        assert (first.version, second.version) == (1, 2)
        assert cell.get() is second
        assert second.received_at is not None

    def test_snapshot_is_immutable(self):
        snap = SnapshotCell().replace((QueueEntry(id=1),))
        with pytest.raises(AttributeError):
            snap.entries = ()


class TestStateObserver:
    def test_ready_then_single_element_list(self, observer):
        observer.feed(b"READY\n")
        observer.feed(b'[{"id":7,"items":"burger","isVip":false,"isExpress":true,"prepTime":10}]\n')
        snap = observer.snapshot()
        assert snap.ids() == [7]
        assert snap.to_list() == [
            {"id": 7, "items": "burger", "prepTime": 10, "isVip": False, "isExpress": True}
        ]

    def test_last_listing_wins(self, observer):
        observer.handle_line(listing(1, 2, 3))
        observer.handle_line(listing(3, 1))
        assert observer.snapshot().ids() == [3, 1]

    def test_malformed_listing_keeps_previous_snapshot(self, observer):
        observer.handle_line(listing(1, 2))
        before = observer.snapshot()
        observer.handle_line('[{"id":1,"items":')
        assert observer.snapshot() is before
        assert observer.decode_failures == 1
        assert observer.last_error is not None

    def test_error_lines_do_not_touch_snapshot(self, observer):
        observer.handle_line(listing(4))
        before = observer.snapshot()
        observer.handle_line("ERROR:ORDER_NOT_FOUND")
        assert observer.snapshot() is before
        assert observer.engine_errors == 1
        assert observer.last_error == "ERROR:ORDER_NOT_FOUND"

    def test_diagnostics_are_discarded(self, observer):
        observer.handle_line("Order 7 added to queue")
        observer.handle_line("   ")
        assert observer.snapshot() is EMPTY_SNAPSHOT
        assert observer.diagnostics == 1

    def test_listing_split_across_reads(self, observer):
        line = (listing(1, 2) + "\n").encode()
        observer.feed(line[:5])
        assert observer.snapshot() is EMPTY_SNAPSHOT
        observer.feed(line[5:])
        assert observer.snapshot().ids() == [1, 2]

    def test_listener_sees_new_snapshot(self, observer):
        seen = []
        observer.add_listener(seen.append)
        observer.handle_line(listing(9))
        assert len(seen) == 1
        assert isinstance(seen[0], QueueSnapshot)
        assert seen[0].ids() == [9]

    def test_failing_listener_does_not_block_update(self, observer):
        def boom(_):
            raise RuntimeError("listener bug")

        observer.add_listener(boom)
        observer.handle_line(listing(5))
        assert observer.snapshot().ids() == [5]

    def test_readers_never_see_partial_snapshot(self, observer):
        # Every published listing is 1..n, so any snapshot a reader sees
        # must be a full prefix
        stop = threading.Event()
        bad = []

        def reader():
            while not stop.is_set():
                snap = observer.snapshot()
                ids = snap.ids()
                if ids != list(range(1, len(ids) + 1)):
                    bad.append(ids)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for n in range(200):
            observer.handle_line(listing(*range(1, n % 20 + 1)))
        stop.set()
        for t in threads:
            t.join()
        assert bad == []
        assert observer.snapshot().version == 200

    def test_stats(self, observer):
        observer.handle_line(listing(1))
        observer.handle_line("[oops")
        stats = observer.stats()
        assert stats["queue_length"] == 1
        assert stats["decode_failures"] == 1
