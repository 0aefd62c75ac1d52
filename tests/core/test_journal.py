"""
Unit tests for the write-ahead dispatch journal.
"""

import json

import pytest

from core.journal import DispatchJournal, JournalEntry


@pytest.fixture
def path(tmp_path):
    return tmp_path / "state" / "journal.jsonl"


class TestDispatchJournal:
    def test_creates_parent_directory(self, path):
        DispatchJournal(path, fsync=False)
        assert path.parent.is_dir()

    def test_begin_without_commit_is_incomplete(self, path):
        journal = DispatchJournal(path)
        entry_id = journal.begin("submit", 7, {"items": "burger", "prepTime": 10})

        pending = journal.incomplete()

        assert len(pending) == 1
        assert isinstance(pending[0], JournalEntry)
        assert pending[0].entry_id == entry_id
        assert pending[0].op == "submit"
        assert pending[0].order_id == 7
        assert pending[0].payload["items"] == "burger"

    def test_commit_closes_entry(self, path):
        journal = DispatchJournal(path, fsync=False)
        a = journal.begin("cancel", 1)
        b = journal.begin("complete", 2)
        journal.commit(a, dispatched=True)
        assert [e.entry_id for e in journal.incomplete()] == [b]

    def test_unknown_op(self, path):
        with pytest.raises(ValueError):
            DispatchJournal(path, fsync=False).begin("refund", 1)

    def test_entries_survive_reopen(self, path):
        DispatchJournal(path, fsync=False).begin("submit", 3)
        assert [e.order_id for e in DispatchJournal(path, fsync=False).incomplete()] == [3]

    def test_torn_last_line_is_skipped(self, path):
        journal = DispatchJournal(path, fsync=False)
        journal.begin("cancel", 5)
        with open(path, "a", encoding="utf-8") as f:
            f.write('{"kind": "commit", "entry_')
        reopened = DispatchJournal(path, fsync=False)
        assert [e.order_id for e in reopened.incomplete()] == [5]

    def test_compact_keeps_only_incomplete(self, path):
        journal = DispatchJournal(path, fsync=False)
        for oid in range(5):
            entry_id = journal.begin("submit", oid)
            if oid != 3:
                journal.commit(entry_id, dispatched=oid % 2 == 0)

        kept = journal.compact()

        assert kept == 1
        records = [json.loads(line) for line in path.read_text().splitlines()]
        assert [(r["kind"], r["order_id"]) for r in records] == [("begin", 3)]
        assert [e.order_id for e in journal.incomplete()] == [3]

    def test_missing_file_has_nothing_incomplete(self, path):
        assert DispatchJournal(path, fsync=False).incomplete() == []

    def test_open_entries_are_served_from_memory(self, path):
        journal = DispatchJournal(path, fsync=False)
        journal.begin("submit", 8)
        path.unlink()
        assert [e.order_id for e in journal.incomplete()] == [8]
        assert journal.pending == 1


class TestPeriodicCompaction:
    def test_file_is_rewritten_every_n_commits(self, path):
        journal = DispatchJournal(path, fsync=False, compact_every=3)
        open_id = journal.begin("cancel", 99)
        for oid in range(3):
            journal.commit(journal.begin("submit", oid))

        records = [json.loads(line) for line in path.read_text().splitlines()]
        assert [(r["kind"], r["entry_id"]) for r in records] == [("begin", open_id)]

    def test_file_stays_bounded_over_many_operations(self, path):
        journal = DispatchJournal(path, fsync=False, compact_every=10)
        for oid in range(200):
            journal.commit(journal.begin("submit", oid))
        assert len(path.read_text().splitlines()) < 20
        assert journal.incomplete() == []

    def test_compaction_survives_reopen(self, path):
        journal = DispatchJournal(path, fsync=False, compact_every=2)
        journal.begin("complete", 4)
        journal.commit(journal.begin("submit", 1))
        journal.commit(journal.begin("submit", 2))
        assert [e.order_id for e in DispatchJournal(path, fsync=False).incomplete()] == [4]
