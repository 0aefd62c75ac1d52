"""
State observer: engine output -> authoritative in-memory queue snapshot.

The snapshot is an immutable QueueSnapshot held in a SnapshotCell. The
observer is its only writer and swaps the reference whole; request handlers
read it without locking and never see a half-updated queue.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.exceptions import ProtocolDecodeError
from core.structured_log import jlog
from kitchen.protocol import ERROR_PREFIX, LineFramer, QueueEntry, decode_queue, is_queue_listing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueSnapshot:
    """Full-replacement mirror of the engine queue."""
    entries: Tuple[QueueEntry, ...] = ()
    version: int = 0
    received_at: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def head(self) -> Optional[QueueEntry]:
        return self.entries[0] if self.entries else None

    def ids(self) -> List[int]:
        return [e.id for e in self.entries]

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.entries]


EMPTY_SNAPSHOT = QueueSnapshot()


class SnapshotCell:
    """
    Single-writer, many-reader holder for the current snapshot.

    get() is a plain attribute read; replace() is a single reference swap.
    """

    def __init__(self, initial: QueueSnapshot = EMPTY_SNAPSHOT):
        self._snapshot = initial
        self._writer_lock = threading.Lock()

    def get(self) -> QueueSnapshot:
        return self._snapshot

    def replace(self, entries: Tuple[QueueEntry, ...]) -> QueueSnapshot:
        with self._writer_lock:
            new = QueueSnapshot(
                entries=tuple(entries),
                version=self._snapshot.version + 1,
                received_at=datetime.now(timezone.utc),
            )
            self._snapshot = new
        return new

    def reset(self) -> QueueSnapshot:
        """Swap in an empty snapshot (fresh engine process)."""
        return self.replace(())


class StateObserver:
    """
    Decodes engine stdout into the SnapshotCell.

    feed() takes raw chunks; handle_line() takes one complete line. Bad
    listings are logged and counted and the previous snapshot is kept.
    """

    def __init__(self, cell: Optional[SnapshotCell] = None, max_line_bytes: int = 1024 * 1024):
        self.cell = cell or SnapshotCell()
        self._framer = LineFramer(max_line_bytes=max_line_bytes)
        self._listeners: List[Callable[[QueueSnapshot], None]] = []
        self.decode_failures = 0
        self.engine_errors = 0
        self.diagnostics = 0
        self.last_error: Optional[str] = None

    def add_listener(self, callback: Callable[[QueueSnapshot], None]) -> None:
        """Register a callback invoked after each successful swap."""
        self._listeners.append(callback)

    def snapshot(self) -> QueueSnapshot:
        return self.cell.get()

    def feed(self, chunk: bytes) -> None:
        for line in self._framer.feed(chunk):
            self.handle_line(line)

    def handle_line(self, line: str) -> None:
        text = line.strip()
        if not text:
            return

        if is_queue_listing(text):
            try:
                entries = decode_queue(text)
            except ProtocolDecodeError as e:
                self.decode_failures += 1
                self.last_error = str(e)
                logger.error(f"Failed to parse engine output, keeping previous snapshot: {e}")
                jlog("snapshot_decode_failed", level="WARNING", error=e.message, context=e.context)
                return
            new = self.cell.replace(entries)
            logger.debug(f"Queue snapshot v{new.version}: {len(new)} orders")
            for callback in self._listeners:
                try:
                    callback(new)
                except Exception:
                    logger.exception("Snapshot listener failed")
            return

        if text.startswith(ERROR_PREFIX):
            self.engine_errors += 1
            self.last_error = text
            logger.warning(f"Engine reported {text}")
            return

        self.diagnostics += 1
        logger.debug(f"Engine output: {text}")

    def stats(self) -> Dict[str, Any]:
        snap = self.cell.get()
        return {
            "snapshot_version": snap.version,
            "queue_length": len(snap),
            "decode_failures": self.decode_failures,
            "engine_errors": self.engine_errors,
            "diagnostics": self.diagnostics,
            "last_error": self.last_error,
        }
