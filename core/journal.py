"""
Write-ahead dispatch journal.

A store write and its engine command are not transactionally linked. Every
mutating order operation is journaled before the store write and committed
after the command send, so a crash between the two leaves an incomplete
entry that is replayed on the next start.

Format: JSONL, one record per line.
    {"kind": "begin", "entry_id": ..., "op": "submit", "order_id": 7, "payload": {...}, "ts": ...}
    {"kind": "commit", "entry_id": ..., "dispatched": true, "ts": ...}
"""
from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

JOURNAL_PATH = Path("state/dispatch_journal.jsonl")

JOURNAL_OPS = ("submit", "cancel", "complete")


def _ensure_dir(p: Path) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class JournalEntry:
    """An intent recorded before its store write."""
    entry_id: str
    op: str
    order_id: int
    payload: Dict[str, Any] = field(default_factory=dict)
    ts: str = field(default_factory=_now_iso)

    def to_record(self) -> Dict[str, Any]:
        return {
            "kind": "begin",
            "entry_id": self.entry_id,
            "op": self.op,
            "order_id": self.order_id,
            "payload": self.payload,
            "ts": self.ts,
        }


class DispatchJournal:
    """
    Append-only intent journal with fsync on every append.

    Open intents are also held in memory, so incomplete() never re-reads
    the file. The file is rewritten down to the open intents after every
    compact_every commits. Thread-safe; one journal file per bridge.
    """

    def __init__(self, path: str | Path = JOURNAL_PATH, fsync: bool = True, compact_every: int = 500):
        self.path = Path(path)
        self.fsync = fsync
        self.compact_every = compact_every
        self._lock = threading.Lock()
        self._commits_since_compact = 0
        _ensure_dir(self.path)
        self._open: Dict[str, JournalEntry] = self._load_open()

    def _append(self, record: Dict[str, Any]) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str) + "\n")
            f.flush()
            if self.fsync:
                os.fsync(f.fileno())

    def begin(self, op: str, order_id: int, payload: Optional[Dict[str, Any]] = None) -> str:
        """Record an intent and return its entry id."""
        if op not in JOURNAL_OPS:
            raise ValueError(f"unknown journal op: {op}")
        entry = JournalEntry(
            entry_id=uuid.uuid4().hex,
            op=op,
            order_id=int(order_id),
            payload=payload or {},
        )
        with self._lock:
            self._append(entry.to_record())
            self._open[entry.entry_id] = entry
        return entry.entry_id

    def commit(self, entry_id: str, dispatched: bool = True) -> None:
        """Mark an intent as carried through to the engine (or dropped)."""
        with self._lock:
            self._append({
                "kind": "commit",
                "entry_id": entry_id,
                "dispatched": bool(dispatched),
                "ts": _now_iso(),
            })
            self._open.pop(entry_id, None)
            self._commits_since_compact += 1
            if self.compact_every and self._commits_since_compact >= self.compact_every:
                self._rewrite()

    def _load_open(self) -> Dict[str, JournalEntry]:
        """Replay the file: begun-but-uncommitted intents in journal order."""
        begun: Dict[str, JournalEntry] = {}
        if not self.path.exists():
            return begun
        with open(self.path, "r", encoding="utf-8") as f:
            for lineno, raw in enumerate(f, start=1):
                raw = raw.strip()
                if not raw:
                    continue
                try:
                    rec = json.loads(raw)
                except json.JSONDecodeError:
                    # A torn final line after a crash is expected
                    logger.warning(f"Skipping unreadable journal line {lineno} in {self.path}")
                    continue
                kind = rec.get("kind")
                if kind == "begin":
                    begun[rec["entry_id"]] = JournalEntry(
                        entry_id=rec["entry_id"],
                        op=rec["op"],
                        order_id=int(rec["order_id"]),
                        payload=rec.get("payload") or {},
                        ts=rec.get("ts", ""),
                    )
                elif kind == "commit":
                    begun.pop(rec.get("entry_id"), None)
        return begun

    def incomplete(self) -> List[JournalEntry]:
        """Return begun-but-uncommitted intents in journal order."""
        with self._lock:
            return list(self._open.values())

    @property
    def pending(self) -> int:
        """Number of open intents."""
        with self._lock:
            return len(self._open)

    def _rewrite(self) -> int:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            for entry in self._open.values():
                f.write(json.dumps(entry.to_record(), default=str) + "\n")
            f.flush()
            if self.fsync:
                os.fsync(f.fileno())
        tmp.replace(self.path)
        self._commits_since_compact = 0
        return len(self._open)

    def compact(self) -> int:
        """
        Rewrite the journal keeping only incomplete intents.

        Returns:
            Number of entries kept
        """
        with self._lock:
            return self._rewrite()
